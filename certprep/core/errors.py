"""
Error taxonomy shared by services and the HTTP layer.

Services raise these; ``certprep.main`` maps them to responses through
``status_code``.
"""


class CertPrepError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CertPrepError):
    """Missing or malformed input, rejected before the store is touched."""

    status_code = 400


class NotFoundError(CertPrepError):
    status_code = 404


class InvalidStateError(CertPrepError):
    """Operation not legal for the current session state."""

    status_code = 409


class UpstreamServiceError(CertPrepError):
    """LLM provider, PDF tooling or diagram generation failed."""

    status_code = 502


class LLMNotConfiguredError(UpstreamServiceError):
    status_code = 503


class PdfExtractionError(UpstreamServiceError):
    pass
