"""Command-line entry point for Vault Agent."""

import sys
from pathlib import Path

import typer

from vault_agent.config import Config, set_config
from vault_agent.exceptions import ConfigurationError
from vault_agent.logging import configure_logging, get_logger

log = get_logger(__name__)

app = typer.Typer(help="Vault Agent - WebSocket bridge between an LLM tool loop and a remote vault")


def load_config(config: str = "", host: str = "", port: int = 0, mock: bool = False) -> Config:
    """Load configuration and apply CLI overrides."""
    cfg = Config.load(Path(config)) if config else Config.load()
    if host:
        cfg.server.host = host
    if port:
        cfg.server.port = port
    if mock:
        cfg.model.provider = "mock"
    return cfg


@app.command()
def serve(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    host: str = typer.Option("", "--host", help="Override listen host"),
    port: int = typer.Option(0, "-p", "--port", help="Override listen port"),
    mock: bool = typer.Option(False, "--mock", help="Use the scripted mock backend"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Start the WebSocket server."""
    try:
        cfg = load_config(config, host, port, mock)
    except Exception as e:
        typer.echo(f"Failed to load config: {e}", err=True)
        raise typer.Exit(code=1)

    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)
    log.info("Starting Vault Agent", **cfg.summary())

    from vault_agent.server import run_server

    try:
        run_server(cfg)
    except ConfigurationError as e:
        log.error("Invalid configuration", error=str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        log.info("Shutting down...")


@app.command()
def version() -> None:
    """Show version information."""
    from vault_agent import __version__

    typer.echo(f"Vault Agent v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
