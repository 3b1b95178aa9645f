"""CLI entry point for vicare-auth."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from pathlib import Path
from typing import Any, Awaitable, Callable, NoReturn, TypeVar

import click

from . import __version__
from .callback import CallbackError
from .client import AuthorizedRequestError
from .config import AuthConfig, ConfigError, load_config
from .exchange import MissingRefreshTokenError, TokenExchangeError, TokenRefreshError
from .flow import OAuthFlowError
from .manager import AuthManager
from .output import OutputHandler

# Logger for CLI
logger = logging.getLogger("vicare_auth")

T = TypeVar("T")


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, env_path: str | None, verbose: bool) -> None:
    """vicare-auth - Authenticate against the Viessmann API and call it."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["output"] = OutputHandler(json_mode)

    # Configure logging based on verbosity
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_config(ctx: click.Context) -> AuthConfig | NoReturn:
    """Get config from context, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        return load_config(ctx.obj["env_path"])
    except ConfigError as e:
        output.error(e, help_text="Set VICARE_CLIENT_ID or pass --env-file.")
        raise SystemExit(1)  # Never reached due to sys.exit in output.error


def run_with_manager(
    ctx: click.Context,
    action: Callable[[AuthManager], Awaitable[T]],
    open_browser: bool = False,
) -> T:
    """Run ``action`` against a fresh AuthManager, mapping errors to output."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)

    def on_authorization_url(url: str) -> None:
        if open_browser and not webbrowser.open(url):
            output.status("Could not open browser. Please open the link above manually.")

    async def runner() -> T:
        async with AuthManager(
            config,
            on_status=output.status,
            on_authorization_url=on_authorization_url,
        ) as manager:
            return await action(manager)

    try:
        return asyncio.run(runner())
    except MissingRefreshTokenError as e:
        output.error(e, help_text="Run 'vicare-auth login' first.")
    except TokenRefreshError as e:
        output.error(e, help_text="The refresh token was rejected. Run 'vicare-auth login --force'.")
    except (OAuthFlowError, CallbackError, TokenExchangeError) as e:
        output.error(e, help_text="Authentication failed.")
    except AuthorizedRequestError as e:
        output.error(e)
    raise SystemExit(1)  # Never reached due to sys.exit in output.error


@main.command()
@click.option("--host", help="Address for the redirect listener (default: detected LAN address)")
@click.option("--force", is_flag=True, help="Ignore the stored refresh token")
@click.option("--open-browser", is_flag=True, help="Open the authorization link in a browser")
@click.pass_context
def login(ctx: click.Context, host: str | None, force: bool, open_browser: bool) -> None:
    """Authenticate and persist the refresh token."""
    output: OutputHandler = ctx.obj["output"]

    async def action(manager: AuthManager) -> dict[str, Any]:
        record = await manager.login(host=host, force=force)
        return {
            "authenticated": True,
            "expires_in": record.expires_in,
            "scope": record.scope,
            "settings_path": str(manager.store.path),
        }

    result = run_with_manager(ctx, action, open_browser=open_browser)
    output.success(result, human_message=click.style("Authenticated.", fg="green"))


@main.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """Refresh the access token using the stored refresh token."""
    output: OutputHandler = ctx.obj["output"]

    async def action(manager: AuthManager) -> dict[str, Any]:
        record = await manager.refresh()
        return {"refreshed": True, "expires_in": record.expires_in}

    result = run_with_manager(ctx, action)
    output.success(result, human_message=click.style("Access token refreshed.", fg="green"))


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show whether a refresh token is stored."""
    output: OutputHandler = ctx.obj["output"]

    async def action(manager: AuthManager) -> dict[str, Any]:
        return manager.get_auth_status().to_dict()

    result = run_with_manager(ctx, action)

    if ctx.obj["json_mode"]:
        output.success(result)
        return

    click.secho("\nAuthentication Status:\n", bold=True)
    stored = result["has_stored_refresh_token"]
    click.echo("  Refresh token: ", nl=False)
    click.secho("stored" if stored else "not stored", fg="green" if stored else "yellow")
    click.echo(f"  Settings: {result['settings_path']}")


@main.command()
@click.argument("url")
@click.option("--host", help="Address for the redirect listener if a login is needed")
@click.pass_context
def get(ctx: click.Context, url: str, host: str | None) -> None:
    """Authorized GET of URL, printing the JSON payload."""
    output: OutputHandler = ctx.obj["output"]

    async def action(manager: AuthManager) -> Any:
        await manager.login(host=host)
        return await manager.get_json(url)

    output.success(run_with_manager(ctx, action))
