"""Tool call dispatcher for the GitHub MCP Server"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from ..error_handling import GitHubMcpError, UnknownToolError, ValidationError
from ..github.client import GitHubClient
from ..github.models import ToolInput
from .envelope import Err, Ok, ResponseEnvelope
from .tools import ToolDefinition, ToolRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolInvocation:
    name: str
    arguments: Optional[Dict[str, Any]] = None


def field_path(loc) -> str:
    return ".".join(str(part) for part in loc)


def validate_arguments(tool_def: ToolDefinition, arguments: Any) -> ToolInput:
    """Validate raw arguments against the tool's input model.

    Only the first violation is reported.

    Raises:
        ValidationError: with the dotted path of the offending field.
    """
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise ValidationError("Tool arguments must be an object", field="", reason="type")
    try:
        return tool_def.schema.model_validate(arguments)
    except PydanticValidationError as e:
        first = e.errors()[0]
        path = field_path(first["loc"])
        raise ValidationError(f"Invalid argument {path}: {first['msg']}", field=path, reason=first["msg"]) from e


def to_payload(result: Any) -> Any:
    if hasattr(result, "to_payload"):
        return result.to_payload()
    if isinstance(result, (list, tuple)):
        return [to_payload(item) for item in result]
    return result


class ToolDispatcher:
    """Validate, route and execute tool calls; the only place errors become envelopes.

    Holds no state between invocations beyond the frozen registry and the
    client's credential holder.
    """

    def __init__(self, registry: ToolRegistry, client: GitHubClient):
        self.registry = registry
        self.client = client

    async def dispatch(self, invocation: ToolInvocation) -> ResponseEnvelope:
        started = time.monotonic()
        try:
            tool_def = self.registry.get_tool(invocation.name)
            if tool_def is None:
                raise UnknownToolError(invocation.name)
            params = validate_arguments(tool_def, invocation.arguments)
            result = await tool_def.handler(self.client, params)
            envelope: ResponseEnvelope = Ok(to_payload(result))
        except GitHubMcpError as e:
            envelope = Err(e.code, e.message, e.detail)
        except Exception as e:
            logger.error(f"Tool call failed for {invocation.name}: {e}", exc_info=True)
            envelope = Err("InternalError", f"Tool execution failed: {e}")

        duration_ms = round((time.monotonic() - started) * 1000, 1)
        if envelope.ok:
            logger.info(
                f"Tool {invocation.name} succeeded",
                extra={"tool": invocation.name, "duration_ms": duration_ms},
            )
        else:
            logger.warning(
                f"Tool {invocation.name} failed: {envelope.code}",
                extra={"tool": invocation.name, "duration_ms": duration_ms},
            )
        return envelope
