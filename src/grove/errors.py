"""Exception types raised by grove."""


class GroveError(Exception):
    """Base class for grove errors."""


class StoreWriteError(GroveError):
    """Raised when the session store cannot be persisted."""


class ConfigError(GroveError):
    """Raised when the config file is unreadable or holds invalid values."""
