"""Error taxonomy for the transcription relay pipeline.

Fatal errors (`SourceUnavailable`, `DecodeFailure`, `StreamError`) abort a job.
Every other error is best-effort: logged by the component that catches it and
never propagated past the job finalizer.
"""

from __future__ import annotations


class RelayPipelineError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class SourceUnavailable(RelayPipelineError):
    """The compressed input bytes could not be obtained."""

    def __init__(self, location: object, cause: BaseException | None = None) -> None:
        self.location = location
        super().__init__(f"Source audio '{location}' is unavailable", cause)


class DecodeFailure(RelayPipelineError):
    """The decoder process could not start or exited non-zero."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        stderr_tail: str = "",
        cause: BaseException | None = None,
    ) -> None:
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        super().__init__(message, cause)


class StreamError(RelayPipelineError):
    """The recognition session could not be opened or closed abnormally."""


class RelayError(RelayPipelineError):
    """A send/edit call to the message surface failed."""


class CleanupError(RelayPipelineError):
    """Deleting a blob failed."""


class SchemaError(RelayPipelineError):
    """The counter row lacks the per-language maps an increment needs."""


class UsageUpdateError(RelayPipelineError):
    """A usage counter update failed for a reason other than a missing schema."""


FATAL_ERRORS: tuple[type[RelayPipelineError], ...] = (
    SourceUnavailable,
    DecodeFailure,
    StreamError,
)
