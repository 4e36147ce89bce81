"""Flask application factory for the cutline render API."""

from pathlib import Path

from flask import Flask, jsonify

from cutline.config import RenderConfig


def create_app(config: RenderConfig | None = None, output_dir: Path | None = None) -> Flask:
    app = Flask(__name__)
    config = config or RenderConfig()
    app.config["RENDER_CONFIG"] = config
    app.config["OUTPUT_DIR"] = Path(output_dir or config.output_dir)
    app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024  # plans only

    from cutline.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "Plan too large"}), 413

    return app
