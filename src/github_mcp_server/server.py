"""
MCP stdio front end for the GitHub MCP Server.

Owns the transport only: tool calls arrive already decoded, are handed to the
ToolDispatcher, and its envelope goes back as JSON text content.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp
from dotenv import dotenv_values, load_dotenv
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .configuration import ServerConfig
from .core.handlers import ToolDispatcher, ToolInvocation
from .core.tools import ToolRegistry, build_default_registry
from .error_handling import GitHubMcpError
from .github.auth import CredentialHolder
from .github.client import GitHubClient

logger = logging.getLogger(__name__)

SERVER_NAME = "github-mcp-server"

# Common placeholder values that should not be used as a token
GITHUB_TOKEN_PLACEHOLDERS = ("", "YOUR_TOKEN_HERE", "REPLACE_ME", "TODO", "CHANGEME")


class ToolCallFailed(Exception):
    """Raised to the MCP layer so the result is flagged ``isError``."""


def is_placeholder_token(token: Optional[str]) -> bool:
    return token is None or token.strip() in GITHUB_TOKEN_PLACEHOLDERS


def load_environment_variables(env_file: Optional[Path] = None) -> List[str]:
    """Load environment variables from .env files without overriding the environment.

    Order of precedence:
    1. Explicit ``env_file`` (if provided)
    2. Project-specific .env file (current working directory)
    3. System environment variables

    A placeholder GITHUB_TOKEN in the environment is replaced by a real one
    from the file.
    """
    loaded_files = []
    candidates = [env_file] if env_file else []
    project_env = Path.cwd() / ".env"
    if not env_file or env_file.resolve() != project_env.resolve():
        candidates.append(project_env)

    for path in candidates:
        if not path.exists():
            continue
        token_before = os.getenv("GITHUB_TOKEN")
        load_dotenv(path, override=False)
        if is_placeholder_token(token_before):
            file_token = dotenv_values(path).get("GITHUB_TOKEN")
            if not is_placeholder_token(file_token):
                os.environ["GITHUB_TOKEN"] = file_token
        loaded_files.append(str(path))
        logger.info(f"Loaded environment variables from {path}")

    return loaded_files


def initial_credentials(environ: Optional[Dict[str, str]] = None) -> CredentialHolder:
    environ = os.environ if environ is None else environ
    token = environ.get("GITHUB_TOKEN")
    holder = CredentialHolder()
    if is_placeholder_token(token):
        logger.debug("🔍 No GitHub token found in environment (GITHUB_TOKEN)")
        return holder
    try:
        holder.set(token)
        logger.info("✅ GitHub token loaded from environment")
    except GitHubMcpError as e:
        logger.warning(f"⚠️ Ignoring GITHUB_TOKEN from environment: {e.message}")
    return holder


def create_server(registry: ToolRegistry, dispatcher: ToolDispatcher) -> Server:
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> List[Tool]:
        return registry.list_tools()

    # arguments are validated by the dispatcher so errors keep their envelope shape
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        envelope = await dispatcher.dispatch(ToolInvocation(name=name, arguments=arguments))
        text = json.dumps(envelope.to_dict(), ensure_ascii=False, indent=2)
        if not envelope.ok:
            raise ToolCallFailed(text)
        return [TextContent(type="text", text=text)]

    return server


async def serve(config: ServerConfig, test_mode: bool = False) -> None:
    """Run the server over stdio until the client disconnects."""
    logger.info(f"🚀 Starting {SERVER_NAME} against {config.github_api_url}")

    registry = build_default_registry()
    credentials = initial_credentials()

    async with aiohttp.ClientSession() as session:
        client = GitHubClient(session, credentials, config)
        server = create_server(registry, ToolDispatcher(registry, client))

        if test_mode:
            logger.info("🧪 Running in test mode - staying alive for CI testing")
            await asyncio.sleep(10)
            return

        try:
            options = server.create_initialization_options()
            async with stdio_server() as (read_stream, write_stream):
                logger.info("Server running. Waiting for requests...")
                await server.run(read_stream, write_stream, options)
        finally:
            credentials.clear()
            logger.info(f"{SERVER_NAME} shutting down.")
