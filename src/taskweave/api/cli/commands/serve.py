"""Serve command - Run the HTTP/SSE API."""

import os

import typer
import uvicorn

from taskweave.api.server import PROFILE_ENV
from taskweave.application.factory import CONFIG_DIR_ENV


def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8070, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Start the API server for the selected profile."""
    opts = ctx.obj or {}
    os.environ[PROFILE_ENV] = opts.get("profile", "dev")
    if opts.get("config_dir"):
        os.environ[CONFIG_DIR_ENV] = str(opts["config_dir"])

    uvicorn.run(
        "taskweave.api.server:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="debug" if opts.get("verbose") else "info",
    )
