"""Exception and warning types raised by the localization engine."""

from typing import List, Optional


class LangsyncError(Exception):
    """Base exception for all engine errors."""


class ConfigurationError(LangsyncError):
    """Raised when the project configuration is unusable."""


class UnsupportedFormatError(LangsyncError):
    """Raised when no parser is registered for a format identifier."""


class InvalidStructureError(LangsyncError):
    """Raised when a document does not have a supported top-level shape."""


class InvalidValueError(LangsyncError):
    """Raised when a leaf value has a type that cannot be translated."""

    def __init__(self, path: str, value: object):
        self.path = path
        self.value = value
        super().__init__(
            f'Invalid translation value at "{path}": expected string or object, '
            f'got {type(value).__name__}'
        )


class EncodingError(LangsyncError):
    """Raised when an encoded key segment cannot be decoded.

    Encoded segments are only ever produced by the key codec, so hitting this
    means a key was corrupted between flattening and unflattening.
    """


class TranslationBackendError(LangsyncError):
    """Raised by a backend once its own retry budget is exhausted."""


class TranslationUnresolvedError(LangsyncError):
    """A key that still had no usable result after the retry request."""

    def __init__(self, key: str, reason: str = "no translation returned"):
        self.key = key
        self.reason = reason
        super().__init__(f"Key '{key}' unresolved: {reason}")


class TranslationChunkFailure(LangsyncError):
    """A whole chunk of one locale that could not be translated."""

    def __init__(self, locale: str, source_file: str, chunk_index: int,
                 keys: List[str], cause: Optional[str] = None):
        self.locale = locale
        self.source_file = source_file
        self.chunk_index = chunk_index
        self.keys = keys
        self.cause = cause
        super().__init__(
            f"Chunk {chunk_index} of '{source_file}' for locale '{locale}' failed "
            f"({len(keys)} keys): {cause or 'unknown error'}"
        )


class MergeConflictWarning(UserWarning):
    """Emitted when two keys disagree on shape or casing; the current run wins."""
