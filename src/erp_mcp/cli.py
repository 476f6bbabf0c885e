"""Command line entry point: ``erp-mcp stdio`` and ``erp-mcp http``."""

import logging
import sys

import anyio
import click
from pydantic import ValidationError

from erp_mcp.app import create_app, create_gateway
from erp_mcp.config import Settings
from erp_mcp.transport.stdio import run_stdio
from erp_mcp.utilities.logging import configure_logging

logger = logging.getLogger(__name__)

LOG_LEVELS = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False)


def load_settings(**overrides: object) -> Settings:
    """Read settings, turning validation failures into a readable exit."""
    try:
        return Settings(**{key: value for key, value in overrides.items() if value is not None})
    except ValidationError as e:
        click.echo("Invalid configuration:", err=True)
        for error in e.errors():
            variable = "_".join(str(part) for part in error["loc"]).upper()
            click.echo(f"  {variable}: {error['msg']}", err=True)
        click.echo("Set the variables in the environment or in a .env file.", err=True)
        sys.exit(1)


@click.group()
@click.version_option(package_name="erp-mcp")
def cli() -> None:
    """MCP gateway exposing ERP order lookup and read-only SQL tools."""


@cli.command()
@click.option("--log-level", type=LOG_LEVELS, default=None, help="Logging level (defaults to LOG_LEVEL)")
def stdio(log_level: str | None) -> None:
    """Serve a single session over stdin/stdout."""
    settings = load_settings(log_level=log_level)
    configure_logging(settings.log_level)

    gateway = create_gateway(settings)
    logger.info(f"{gateway.name} {gateway.version} serving on stdio")
    anyio.run(run_stdio, gateway)


@cli.command()
@click.option("--host", default=None, help="Interface to bind (defaults to HOST)")
@click.option("--port", type=int, default=None, help="Port to listen on (defaults to PORT)")
@click.option("--log-level", type=LOG_LEVELS, default=None, help="Logging level (defaults to LOG_LEVEL)")
def http(host: str | None, port: int | None, log_level: str | None) -> None:
    """Serve the HTTP transports (/mcp, /sse) with uvicorn."""
    import uvicorn

    settings = load_settings(host=host, port=port, log_level=log_level)
    configure_logging(settings.log_level)

    app = create_app(create_gateway(settings), settings)
    if not settings.mcp_api_key:
        logger.warning("MCP_API_KEY is not set, the HTTP endpoints are not protected")
    logger.info(f"Listening on http://{settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
