"""Error taxonomy shared by every pipeline stage."""


class RenderError(Exception):
    """Base class for failures that end a render job.

    ``stage`` names the pipeline state the job was in when the error was
    raised; the orchestrator fills it in if the raiser did not.
    """

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "stage": self.stage,
        }


class PlanningError(RenderError):
    """The edit plan cannot produce any output (inverted trim, nothing left)."""


class AcquisitionError(RenderError):
    """A source or asset could not be downloaded, validated or transcoded."""

    def __init__(
        self,
        message: str,
        *,
        source_index: int | None = None,
        url: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message, stage=stage)
        self.source_index = source_index
        self.url = url

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["source_index"] = self.source_index
        d["url"] = self.url
        return d


class EngineError(RenderError):
    """ffmpeg/ffprobe failed to start or exited with a non-zero status."""

    def __init__(
        self,
        message: str,
        *,
        diagnostics: str = "",
        stage: str | None = None,
    ) -> None:
        super().__init__(message, stage=stage)
        self.diagnostics = diagnostics

    def __str__(self) -> str:
        if self.diagnostics:
            return f"{self.message}\n{self.diagnostics}"
        return self.message

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["diagnostics"] = self.diagnostics
        return d


class RenderTimeoutError(EngineError):
    """An invocation ran past its timeout and was killed."""

    def __init__(
        self,
        message: str,
        *,
        elapsed: float,
        timeout: float,
        diagnostics: str = "",
        stage: str | None = None,
    ) -> None:
        super().__init__(message, diagnostics=diagnostics, stage=stage)
        self.elapsed = elapsed
        self.timeout = timeout

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["elapsed"] = round(self.elapsed, 3)
        d["timeout"] = self.timeout
        return d


class VerificationError(EngineError):
    """The encoder reported success but the output file never appeared."""
