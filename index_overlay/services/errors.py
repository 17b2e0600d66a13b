from __future__ import annotations


class RenderError(Exception):
    """Base class for failures raised while producing a report image."""


class ConfigurationError(RenderError):
    """Raised when a required external resource (API key, browser binary) is missing."""


class RenderTimeoutError(RenderError):
    """Raised when the live renderer does not finish before its deadline."""


class CompositeError(RenderError):
    """Raised for invalid geometry or source images that cannot be decoded."""


class NetworkError(RenderError):
    """Raised when a remote tile or thumbnail cannot be downloaded."""
