"""mcp-login - OAuth 2.1 login and token management for remote MCP servers."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("mcp-login")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    # Core modules
    "Config",
    "ServerConfig",
    "load_config",
    "OutputHandler",
    # OAuth
    "OAuthManager",
    "CredentialManager",
]


# Lazy imports to avoid circular dependencies
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("Config", "ServerConfig", "load_config"):
        from .config import Config, ServerConfig, load_config
        return {"Config": Config, "ServerConfig": ServerConfig, "load_config": load_config}[name]
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    elif name == "OAuthManager":
        from .oauth.manager import OAuthManager
        return OAuthManager
    elif name == "CredentialManager":
        from .oauth.store import CredentialManager
        return CredentialManager
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
