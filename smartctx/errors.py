class SmartContextError(Exception):
    """Base exception for all context discovery errors."""
    pass

class ProjectPathError(SmartContextError):
    """Raised when the project root does not exist or is not a directory."""
    pass

class InvalidChunkStrategyError(SmartContextError, ValueError):
    """Raised when a chunking strategy name is not recognized."""
    pass

class ConfigError(SmartContextError):
    """Raised when a project configuration file cannot be parsed."""
    pass

class CacheError(SmartContextError):
    """Raised when the context cache cannot be opened, read or written."""
    pass
