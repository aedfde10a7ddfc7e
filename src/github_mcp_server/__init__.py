import asyncio
import logging
from pathlib import Path
from typing import Optional

import click

from .configuration import load_config_from_env
from .error_handling import ConfigurationError
from .logging_config import configure_logging
from .server import load_environment_variables, serve

__version__ = "0.1.0"


@click.command()
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v INFO, -vv DEBUG)")
@click.option(
    "--env-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Load environment variables from this .env file",
)
@click.option(
    "--test-mode",
    is_flag=True,
    help="Run in test mode for CI (stays alive without immediate stdio)",
)
def main(verbose: int, env_file: Optional[Path], test_mode: bool) -> None:
    """GitHub MCP Server - GitHub repositories, issues and pull requests over MCP"""
    load_environment_variables(env_file)

    try:
        config = load_config_from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    log_level = config.log_level
    if verbose == 1:
        log_level = "INFO"
    elif verbose >= 2:
        log_level = "DEBUG"
    configure_logging(log_level)
    logging.getLogger(__name__).debug(f"Configuration: {config.model_dump()}")

    asyncio.run(serve(config, test_mode=test_mode))


if __name__ == "__main__":
    main()
