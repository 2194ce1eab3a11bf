"""smartctx: smart context discovery for language model prompts."""

__version__ = "0.1.0"

from .context.cache import ContextCache
from .context.smart import SmartContext
from .schemas import ContextConfig, DiscoveryRequest, DiscoveryResult

__all__ = [
    "ContextCache",
    "ContextConfig",
    "DiscoveryRequest",
    "DiscoveryResult",
    "SmartContext",
]
