"""
sessionscribe.exceptions - Custom exception classes.

All sessionscribe-specific exceptions inherit from SessionScribeError.
"""


class SessionScribeError(Exception):
    """Base exception for all sessionscribe errors."""

    pass


class ConfigError(SessionScribeError):
    """Configuration loading or validation error."""

    pass


class ParseError(SessionScribeError):
    """Unrecognized segment filename or file format."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class ConversionError(SessionScribeError):
    """Raw PCM to WAV conversion error."""

    pass


class TranscriptionError(SessionScribeError):
    """Transcription error."""

    pass


class NotInitializedError(TranscriptionError):
    """Engine used before its model or client was loaded."""

    pass


class UnsupportedPlatformError(TranscriptionError):
    """Native runtime for the engine cannot load on this host."""

    pass


class PayloadTooLargeError(TranscriptionError):
    """Audio file exceeds the backend's size ceiling."""

    def __init__(self, size_mb: float, limit_mb: float):
        self.size_mb = size_mb
        self.limit_mb = limit_mb
        super().__init__(f"Audio file too large: {size_mb:.2f}MB (max {limit_mb:.0f}MB)")


class RateLimitedError(TranscriptionError):
    """Cloud backend rejected the request because of rate limiting."""

    pass


class AuthError(TranscriptionError):
    """Cloud backend rejected the credentials."""

    pass


class TranscriptionFailedError(TranscriptionError):
    """Opaque backend failure."""

    pass


class ModelDownloadError(SessionScribeError):
    """Model download or cache error."""

    pass


class UploadError(SessionScribeError):
    """Upload failure, classified as retryable or terminal."""

    def __init__(self, message: str, retryable: bool, status_code: int | None = None):
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)

