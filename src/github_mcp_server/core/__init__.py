"""GitHub MCP Server core components"""

from .envelope import Err, Ok, ResponseEnvelope
from .handlers import ToolDispatcher, ToolInvocation
from .tools import GitHubTools, ToolRegistry, build_default_registry

__all__ = [
    "Err",
    "Ok",
    "ResponseEnvelope",
    "ToolDispatcher",
    "ToolInvocation",
    "GitHubTools",
    "ToolRegistry",
    "build_default_registry",
]
