"""Daemon building blocks: configuration file rewriting, panel API client, signed tokens and websocket token checks."""

__version__ = "0.1.0"

__all__ = [
    "config_file",
    "remote",
    "remote_errors",
    "remote_types",
    "replacements",
    "tokens",
    "websocket_auth",
]