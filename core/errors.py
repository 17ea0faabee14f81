# core/errors.py
"""Exception taxonomy shared by the category store, the session and the gateway."""


class HitoError(Exception):
    """Base class for every error raised by the engine."""


class ConfigNotFoundError(HitoError):
    """The config file does not exist yet (first run in a directory)."""


class TransportUnavailableError(HitoError):
    """The persistence backend cannot be reached, e.g. no directory is open."""


class ValidationError(HitoError):
    """Input rejected before any state was touched."""


class CategoryValidationError(ValidationError):
    pass


class HotkeyValidationError(ValidationError):
    pass


class PersistenceError(HitoError):
    """A write failed after an optimistic in-memory change."""


class ImageLoadError(HitoError):
    pass


class ImageDeleteError(HitoError):
    pass
