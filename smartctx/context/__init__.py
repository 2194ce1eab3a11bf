"""Context discovery: detection, scoring, selection, chunking and caching."""

from smartctx.context.analyzer import FileAnalyzer
from smartctx.context.cache import ContextCache
from smartctx.context.chunker import ContextChunker, parse_chunking_strategy
from smartctx.context.detector import detect_project
from smartctx.context.optimizer import TokenOptimizer
from smartctx.context.scanner import CodeScanner
from smartctx.context.smart import SmartContext

__all__ = [
    "CodeScanner",
    "ContextCache",
    "ContextChunker",
    "FileAnalyzer",
    "SmartContext",
    "TokenOptimizer",
    "detect_project",
    "parse_chunking_strategy",
]
