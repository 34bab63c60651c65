# File: audiobook_sources/errors.py
"""Custom exceptions for the application."""


class AppError(Exception):
    """Base class for application-specific exceptions."""

    def __init__(self, message: str, status_code: int = 500) -> None:
        """Initialize the exception.

        Args:
            message: The error message.
            status_code: The HTTP status code to return.
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidRequestError(AppError):
    """Raised when the client request is invalid (400)."""

    def __init__(self, message: str) -> None:
        """Initialize the exception with 400 Bad Request."""
        super().__init__(message, status_code=400)


class InvalidSourceConfig(AppError):
    """Raised when a source cannot be normalized or lacks a rule required by the operation."""

    def __init__(self, message: str) -> None:
        """Initialize the exception with 400 Bad Request."""
        super().__init__(message, status_code=400)


class FetchFailed(AppError):
    """Raised when the page fetcher cannot retrieve a URL (network error or non-2xx status).

    The original exception is attached as ``__cause__`` by the raiser.
    """

    def __init__(self, message: str, url: str | None = None, status_code: int = 502) -> None:
        """Initialize the exception.

        Args:
            message: The error message.
            url: The URL that was being fetched.
            status_code: The HTTP status code to return.
        """
        super().__init__(message, status_code)
        self.url = url


class FetchAborted(FetchFailed):
    """Raised when a fetch is cancelled through its abort signal."""

    pass


class UnexpectedContentType(AppError):
    """Raised when a response cannot be parsed as the expected content type."""

    def __init__(self, message: str, url: str | None = None) -> None:
        """Initialize the exception with 502 Bad Gateway."""
        super().__init__(message, status_code=502)
        self.url = url


class NoAudioRuleMatched(AppError):
    """Raised when neither the audio rule nor the page heuristics produced a URL."""

    def __init__(self, message: str) -> None:
        """Initialize the exception with 404 Not Found."""
        super().__init__(message, status_code=404)


class UnsupportedRule(AppError):
    """Raised internally by the extractor for rules it cannot evaluate.

    Never escapes the extractor: it is logged and treated as an empty result.
    """

    def __init__(self, rule: str) -> None:
        """Initialize the exception with the offending rule string."""
        super().__init__(f"Unsupported rule: {rule[:50]}", status_code=422)
        self.rule = rule
