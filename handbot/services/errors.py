from typing import Optional


class PipelineError(Exception):
    """Base class for every failure the OCR -> correction pipeline reports.

    ``kind`` is the stable tag carried into ``PipelineOutcome.error``.
    ``elapsed`` is filled by the client that raised, so the orchestrator can
    report partial stage timing.
    """

    kind = "pipeline"
    retryable = False

    def __init__(self, message: str, *, elapsed: float = 0.0):
        super().__init__(message)
        self.message = message
        self.elapsed = elapsed
        self.attempts = 1


class FileAccessError(PipelineError):
    kind = "file_access"


class TransportError(PipelineError):
    kind = "transport"
    retryable = True


class AuthOrConfigError(PipelineError):
    kind = "auth_or_config"


class TokenRefreshError(AuthOrConfigError):
    pass


class RemoteServiceError(PipelineError):
    """Non-200 status or an error object embedded in a 200 response.

    Only the status flavour is worth retrying; an explicit error payload
    means the service said no.
    """

    kind = "remote_service"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: str = "",
        retryable: bool = False,
        elapsed: float = 0.0,
    ):
        super().__init__(message, elapsed=elapsed)
        self.status_code = status_code
        self.body = body
        self.retryable = retryable


class ParseError(PipelineError):
    kind = "parse"
    retryable = True


class EmptyResultError(PipelineError):
    kind = "empty_result"
    retryable = True
