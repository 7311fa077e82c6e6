"""CLI entry point for mcp-login."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import webbrowser
from pathlib import Path
from typing import Any, NoReturn

import click

from . import __version__
from .config import (
    BearerAuth,
    Config,
    ConfigError,
    NoAuth,
    ServerConfig,
    Settings,
    load_config,
    load_settings,
)
from .oauth.callback import AuthorizationError, CallbackTimeoutError, StateMismatchError
from .oauth.discovery import DiscoveryError, UnsupportedChallengeMethodError
from .oauth.errors import OAuthError
from .oauth.flow import TokenExchangeError
from .oauth.manager import AuthStatus, OAuthManager
from .oauth.store import CredentialManager, TokenStatus, TokenStoreError, normalize_url
from .oauth.tokens import OAuthConfig
from .output import OutputHandler

logger = logging.getLogger("mcp_login")

STATUS_COLORS = {
    TokenStatus.NONE: "white",
    TokenStatus.VALID: "green",
    TokenStatus.EXPIRES_SOON: "yellow",
    TokenStatus.EXPIRED: "red",
}


def _help_for(error: OAuthError) -> str | None:
    """Next step to suggest for a failed OAuth operation."""
    if isinstance(error, CallbackTimeoutError):
        return "The browser never returned to mcp-login. Re-run login, or raise --timeout."
    if isinstance(error, StateMismatchError):
        return "The callback did not belong to this login attempt. Start a new login."
    if isinstance(error, AuthorizationError):
        return "The authorization server did not grant access. Check the account and scopes."
    if isinstance(error, UnsupportedChallengeMethodError):
        return "This server cannot be used: it does not support PKCE with S256."
    if isinstance(error, DiscoveryError):
        return "Check the server URL, or set auth_server_url in the server's auth config."
    if isinstance(error, TokenExchangeError):
        return "Check client_id and client_secret. Run 'mcp-login login' to start over."
    if isinstance(error, TokenStoreError):
        return "Check the token file, or clear it with 'mcp-login logout --all'."
    return None


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Path to MCP config file")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--store", "store_path", type=click.Path(dir_okay=False), help="Path to the token file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: click.Context,
    json_mode: bool,
    config_path: str | None,
    env_path: str | None,
    store_path: str | None,
    verbose: bool,
) -> None:
    """mcp-login - Log in to OAuth-protected MCP servers."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["store_path"] = Path(store_path) if store_path else None
    ctx.obj["output"] = OutputHandler(json_mode, verbose)

    # Configure logging based on verbosity
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_config(ctx: click.Context) -> Config | NoReturn:
    """Get config from context, handling errors.

    Without an explicit --config, a missing config file gives an empty
    config so that servers can still be addressed by URL.
    """
    output: OutputHandler = ctx.obj["output"]
    try:
        return load_config(ctx.obj["config_path"], ctx.obj["env_path"])
    except FileNotFoundError as e:
        if ctx.obj["config_path"] is None:
            logger.debug(f"No config file: {e}")
            return Config()
        output.error(e, help_text=str(e))
        raise SystemExit(1)  # Never reached due to sys.exit in output.error
    except ConfigError as e:
        output.error(e, error_type="ConfigError", help_text="Fix the config file and retry.")
        raise SystemExit(1)  # Never reached due to sys.exit in output.error


def get_settings(ctx: click.Context) -> Settings | NoReturn:
    output: OutputHandler = ctx.obj["output"]
    try:
        return load_settings(ctx.obj["store_path"])
    except ConfigError as e:
        output.error(e, error_type="ConfigError")
        raise SystemExit(1)  # Never reached due to sys.exit in output.error


def get_credentials(ctx: click.Context, settings: Settings) -> CredentialManager | NoReturn:
    """Load the token file, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    credentials = CredentialManager(settings.token_store_path, settings.expiry_buffer)
    try:
        credentials.load()
    except TokenStoreError as e:
        output.error(e, help_text=_help_for(e))
        raise SystemExit(1)  # Never reached due to sys.exit in output.error
    return credentials


def resolve_server(ctx: click.Context, config: Config, server: str) -> ServerConfig | NoReturn:
    """Find a server by config name or URL.

    A URL that is not in the config is treated as an unconfigured HTTP server.
    """
    output: OutputHandler = ctx.obj["output"]

    if server in config.servers:
        server_config = config.servers[server]
        if not server_config.is_remote():
            output.error(
                ValueError(f"Server '{server}' is a {server_config.server_type} server"),
                help_text="Only http and sse servers use OAuth.",
            )
        return server_config

    if server.startswith(("http://", "https://")):
        return config.find_by_url(server) or ServerConfig(name=server, server_type="http", url=server)

    available = ", ".join(sorted(config.servers)) or "none configured"
    output.error(
        ValueError(f"Unknown server: {server}"),
        help_text=f"Pass a server URL or one of the configured servers ({available}).",
    )
    raise SystemExit(1)  # Never reached due to sys.exit in output.error


def oauth_config_for(
    ctx: click.Context,
    server_config: ServerConfig,
    client_id: str | None = None,
    client_secret: str | None = None,
    scopes: tuple[str, ...] = (),
    auth_server: str | None = None,
) -> OAuthConfig | NoReturn:
    """Build the OAuth client config from the server's auth entry plus CLI overrides."""
    output: OutputHandler = ctx.obj["output"]
    auth = server_config.auth

    if isinstance(auth, OAuthConfig):
        base = auth
    elif isinstance(auth, BearerAuth):
        output.error(
            ValueError(f"Server '{server_config.name}' uses a static bearer token"),
            help_text="Bearer tokens come from the config file; there is nothing to log in to.",
        )
        raise SystemExit(1)  # Never reached due to sys.exit in output.error
    elif isinstance(auth, NoAuth):
        if not client_id:
            output.error(
                ValueError(f"No OAuth client configured for '{server_config.name}'"),
                help_text='Pass --client-id, or add "auth": {"type": "oauth", "client_id": ...} '
                "to the server's config entry.",
            )
        base = OAuthConfig(client_id=client_id or "")
    else:
        raise TypeError(f"Unhandled auth type: {type(auth).__name__}")

    overrides: dict[str, Any] = {}
    if client_id:
        overrides["client_id"] = client_id
    if client_secret:
        overrides["client_secret"] = client_secret
    if scopes:
        overrides["scopes"] = tuple(scopes)
    if auth_server:
        overrides["auth_server_url"] = auth_server
    return dataclasses.replace(base, **overrides)


def _format_status_line(status: AuthStatus) -> str:
    line = f"{status.status.description}"
    if status.status in (TokenStatus.VALID, TokenStatus.EXPIRES_SOON) and status.expires_in_human:
        line += f" (expires in {status.expires_in_human})"
    elif status.status is TokenStatus.EXPIRED and status.expired_ago_human:
        line += f" (expired {status.expired_ago_human})"
    return line


@main.command()
@click.argument("server")
@click.option("--timeout", "-t", type=float, default=None, help="Seconds to wait for the browser (0 waits forever)")
@click.option("--no-browser", is_flag=True, help="Print the authorization URL instead of opening a browser")
@click.option("--client-id", help="OAuth client ID (overrides config)")
@click.option("--client-secret", help="OAuth client secret (overrides config)")
@click.option("--scope", "scopes", multiple=True, help="Scope to request (repeatable, overrides config)")
@click.option("--auth-server", help="Authorization server URL (skips resource discovery)")
@click.pass_context
def login(
    ctx: click.Context,
    server: str,
    timeout: float | None,
    no_browser: bool,
    client_id: str | None,
    client_secret: str | None,
    scopes: tuple[str, ...],
    auth_server: str | None,
) -> None:
    """Log in to SERVER (config name or URL) through the browser."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    settings = get_settings(ctx)

    server_config = resolve_server(ctx, config, server)
    oauth_config = oauth_config_for(ctx, server_config, client_id, client_secret, scopes, auth_server)
    credentials = get_credentials(ctx, settings)

    callback_timeout = settings.callback_timeout if timeout is None else (timeout or None)
    manager = OAuthManager(
        credentials,
        callback_timeout=callback_timeout,
        open_browser=None if no_browser else webbrowser.open,
    )

    try:
        token = asyncio.run(manager.login(server_config.url, oauth_config, on_status=output.status))
    except OAuthError as e:
        output.error(e, help_text=_help_for(e))
        return

    status = manager.get_auth_status(server_config.name, server_config.url)
    output.success(
        {"server": server_config.name, "url": server_config.url, **status.to_dict()},
        human_message=click.style(f"Logged in to {server_config.name}. ", fg="green")
        + _format_status_line(status)
        + (f"\nScopes: {' '.join(token.scopes)}" if token.scopes else ""),
    )


@main.command()
@click.argument("server", required=False)
@click.option("--all", "all_servers", is_flag=True, help="Remove every stored token")
@click.pass_context
def logout(ctx: click.Context, server: str | None, all_servers: bool) -> None:
    """Remove the stored token for SERVER (or all tokens with --all)."""
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)

    if all_servers:
        credentials = CredentialManager(settings.token_store_path, settings.expiry_buffer)
        try:
            credentials.clear_all()
        except TokenStoreError as e:
            output.error(e, help_text=_help_for(e))
            return
        output.success({"cleared": True}, human_message="Removed all stored tokens.")
        return

    if not server:
        output.error(ValueError("Missing SERVER"), help_text="Pass a server, or --all.")
        return

    config = get_config(ctx)
    server_config = resolve_server(ctx, config, server)
    manager = OAuthManager(get_credentials(ctx, settings))

    try:
        removed = manager.logout(server_config.url)
    except TokenStoreError as e:
        output.error(e, help_text=_help_for(e))
        return

    message = (
        f"Logged out from {server_config.name}."
        if removed
        else f"No stored token for {server_config.name}."
    )
    output.success({"server": server_config.name, "url": server_config.url, "removed": removed}, message)


@main.command()
@click.argument("server", required=False)
@click.pass_context
def status(ctx: click.Context, server: str | None) -> None:
    """Show authentication status for SERVER or for every known server."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    settings = get_settings(ctx)
    manager = OAuthManager(get_credentials(ctx, settings))

    if server:
        targets = [resolve_server(ctx, config, server)]
    else:
        targets = [s for s in config.servers.values() if s.is_remote()]
        # Tokens for servers not in the config
        known = {normalize_url(s.url) for s in targets if s.url}
        for url in manager.credentials.list_servers():
            if url not in known:
                targets.append(ServerConfig(name=url, server_type="http", url=url))

    results: list[tuple[AuthStatus, dict[str, Any]]] = []
    for target in targets:
        auth_status = manager.get_auth_status(target.name, target.url)
        entry = auth_status.to_dict()
        if isinstance(target.auth, OAuthConfig):
            entry["auth"] = "oauth"
        elif isinstance(target.auth, BearerAuth):
            entry["auth"] = "bearer"
        elif isinstance(target.auth, NoAuth):
            entry["auth"] = "none"
        results.append((auth_status, entry))

    if ctx.obj["json_mode"]:
        output.success({"servers": [entry for _, entry in results]})
        return

    if not results:
        click.echo("No remote servers configured and no stored tokens.")
        return

    click.secho("\nAuthentication status:\n", bold=True)
    for auth_status, entry in results:
        color = STATUS_COLORS[auth_status.status]
        click.secho(f"  [{auth_status.status.symbol}] ", fg=color, nl=False)
        click.secho(f"{auth_status.server_name} ", fg="cyan", bold=True, nl=False)
        if entry["auth"] == "bearer":
            click.echo("Bearer token configured")
        else:
            click.secho(_format_status_line(auth_status), fg=color)
        if auth_status.server_name != auth_status.server_url:
            click.echo(f"      {auth_status.server_url}")
        if auth_status.scopes:
            click.echo(f"      Scopes: {' '.join(auth_status.scopes)}")
    click.echo()


@main.command()
@click.argument("server")
@click.pass_context
def refresh(ctx: click.Context, server: str) -> None:
    """Refresh the stored token for SERVER using its refresh token."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    settings = get_settings(ctx)

    server_config = resolve_server(ctx, config, server)
    oauth_config = oauth_config_for(ctx, server_config)
    manager = OAuthManager(get_credentials(ctx, settings))

    try:
        asyncio.run(manager.refresh(server_config.url, oauth_config, on_status=output.status))
    except OAuthError as e:
        output.error(e, help_text=_help_for(e))
        return

    auth_status = manager.get_auth_status(server_config.name, server_config.url)
    output.success(
        {"server": server_config.name, "url": server_config.url, **auth_status.to_dict()},
        human_message=click.style(f"Refreshed token for {server_config.name}. ", fg="green")
        + _format_status_line(auth_status),
    )


@main.command("list")
@click.pass_context
def list_cmd(ctx: click.Context) -> None:
    """List every server with a stored token."""
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)
    credentials = get_credentials(ctx, settings)

    rows = []
    for url in credentials.list_servers():
        token_status = credentials.token_status(url)
        rows.append([token_status.symbol, url, token_status.description])

    if not rows and not ctx.obj["json_mode"]:
        click.echo(f"No stored tokens in {credentials.store_path}.")
        return

    output.table(["Symbol", "Server", "Status"], rows)


if __name__ == "__main__":
    main()
