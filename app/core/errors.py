"""
Error taxonomy for the chat and video pipelines.

Retrieval errors never leave the Chat Responder. Render errors other than
RenderRequestError never leave the background poller. StoreError reaches
whoever called the store, unless that caller is a background task.
"""


class AvatarChatError(Exception):
    """Base class for every error raised by this service."""


# ── Retrieval ────────────────────────────────────────────────────────


class RetrievalUnavailable(AvatarChatError):
    """The avatar has no ingested documents. Routing signal, not a fault."""

    def __init__(self, avatar_id: str):
        self.avatar_id = avatar_id
        super().__init__(f"No ingested documents for avatar '{avatar_id}'")


class RetrievalRunFailed(AvatarChatError):
    """
    A retrieval run errored, ended in a non-completed status, or ran out of
    polling attempts. Recovered by falling back to plain generation.
    """

    def __init__(self, reason: str, status: str = ""):
        self.status = status
        super().__init__(reason)


# ── Rendering ────────────────────────────────────────────────────────


class RenderError(AvatarChatError):
    """Base class for video render failures."""

    def __init__(self, message: str, job_id: str = ""):
        self.job_id = job_id
        super().__init__(message)


class RenderRequestError(RenderError):
    """The renderer rejected a submission or returned no job id."""


class RenderStatusError(RenderError):
    """No status endpoint shape answered for this job."""


class RenderFailedError(RenderError):
    """The renderer reported the job as failed."""


class RenderTimeoutError(RenderError):
    """The job did not reach a terminal status within the wait budget."""

    def __init__(self, job_id: str, waited: float):
        self.waited = waited
        super().__init__(
            f"Video {job_id} did not finish within {int(waited)}s", job_id=job_id
        )


# ── Persistence ──────────────────────────────────────────────────────


class StoreError(AvatarChatError):
    """A read or write against the database failed."""

    def __init__(self, operation: str, cause: Exception = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Store operation '{operation}' failed{detail}")
