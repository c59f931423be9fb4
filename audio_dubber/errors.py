"""
Error taxonomy for the dubbing pipeline.

Request validation errors map to a 4xx status and carry a message that is
safe to show to the client. Stage errors map to 500 and are reported to the
client with a generic message; their detail only goes to the logs.
"""

GENERIC_FAILURE_MESSAGE = "Failed to process audio"


class PipelineError(Exception):
    """Base error for the audio dubbing pipeline."""

    status_code = 500
    public_message = GENERIC_FAILURE_MESSAGE


class RequestValidationError(PipelineError):
    """Raised before any stage runs when the request itself is invalid."""

    status_code = 400
    public_message = "Invalid request"


class UnsupportedLanguageError(RequestValidationError):
    """Raised when the target language is outside the supported set."""

    public_message = "Unsupported target language"


class InvalidRequestError(RequestValidationError):
    """Raised when the audio payload is missing or empty."""

    public_message = "Missing audio file payload"


class UnsupportedFormatError(PipelineError):
    """Raised when the decoder cannot recognize the input container."""


class CorruptAudioError(PipelineError):
    """Raised when demuxing or decoding fails partway."""


class InvalidAudioStateError(PipelineError):
    """Raised when an AudioBuffer violates its shape invariants."""


class TranscriptionError(PipelineError):
    """Raised when no transcript can be derived from the audio."""


class TranslationError(PipelineError):
    """Raised when translation fails or produces no text."""


class SynthesisError(PipelineError):
    """Raised when text-to-speech synthesis fails."""


class EncodingError(PipelineError):
    """Raised when the final mix cannot be encoded or written."""


class WorkspaceError(PipelineError):
    """Raised when the request scratch directory cannot be created."""


class PipelineCancelledError(PipelineError):
    """Raised at a stage boundary when the caller cancelled or the deadline passed."""
