"""Render API routes."""

import json
import logging
import queue
import threading
from pathlib import Path

from flask import Blueprint, Response, current_app, jsonify, request, send_file

from cutline.engine import RenderJob
from cutline.errors import PlanningError, RenderError
from cutline.plan import parse_plan

logger = logging.getLogger(__name__)

bp = Blueprint("render", __name__)

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}


@bp.route("/health")
def health():
    return jsonify({"status": "ok", "outputDir": str(current_app.config["OUTPUT_DIR"])})


@bp.route("/api/render", methods=["POST"])
def start_render():
    payload = request.get_json(silent=True)
    if payload is None:
        return jsonify({"error": "Invalid payload", "details": "Expected a JSON body"}), 400

    try:
        plan = parse_plan(payload)
    except ValueError as e:
        return jsonify({"error": "Invalid payload", "details": str(e)}), 400

    progress_queue: queue.Queue = queue.Queue()

    def on_progress(stage: str, percent: int) -> None:
        progress_queue.put({"stage": stage, "progress": percent})

    render_job = RenderJob(
        plan,
        config=current_app.config["RENDER_CONFIG"],
        output_dir=current_app.config["OUTPUT_DIR"],
        on_progress=on_progress,
    )
    try:
        segments = render_job.prepare()
    except PlanningError as e:
        return jsonify(e.to_dict()), 400

    job = {
        "job": render_job,
        "status": "processing",
        "progress_queue": progress_queue,
        "error": None,
        "result": None,
    }
    _jobs[render_job.job_id] = job

    def run():
        try:
            result = render_job.run()
            job["result"] = result.to_dict()
            job["status"] = "done"
        except RenderError as e:
            job["status"] = "error"
            job["error"] = e.to_dict()
        except Exception as e:
            logger.exception("[%s] Unexpected render failure", render_job.job_id)
            job["status"] = "error"
            job["error"] = {"error": type(e).__name__, "message": str(e), "stage": None}
        finally:
            progress_queue.put(None)  # sentinel

    job["thread"] = threading.Thread(target=run, daemon=True)
    job["thread"].start()
    return jsonify({
        "job_id": render_job.job_id,
        "status": "started",
        "segments": [s.to_dict() for s in segments],
    }), 202


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    q = job["progress_queue"]

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "error":
                    data = json.dumps({"error": job["error"]})
                else:
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 100,
                        "result": job["result"],
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    render_job: RenderJob = job["job"]
    resp = {"status": job["status"], "state": render_job.state.value}
    if render_job.progress is not None:
        resp["progress"] = render_job.progress.last_published
    if job["status"] == "done":
        resp["result"] = job["result"]
    if job["status"] == "error":
        resp["error"] = job["error"]
    return jsonify(resp)


@bp.route("/api/jobs/<job_id>/result")
def download_result(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] != "done":
        return jsonify({"error": "Job not complete"}), 409

    output_path = Path(job["result"]["outputPath"])
    return send_file(output_path.resolve(), as_attachment=False)
