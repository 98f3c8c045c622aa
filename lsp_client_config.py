#!/usr/bin/env python3

"""
LSP Client Configuration

Loads the launch configuration and client options from a JSON file, with
environment variable overrides (a .env file is honoured through python-dotenv).
The server path and the document selector are host configuration values, never
computed by the client itself.

Example client.json:

    {
        "client_id": "ofoam_ls",
        "name": "ofoam_ls",
        "server": {
            "command": "/opt/ofoam/bin/ofoam_ls",
            "args": [],
            "env": {},
            "log_level": "debug"
        },
        "document_selector": [{"scheme": "file", "language": "*"}],
        "file_watch_patterns": ["**/.clientrc"]
    }
"""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from constants import (
    DEFAULT_CLIENT_ID,
    DEFAULT_CLIENT_NAME,
    DEFAULT_EXIT_TIMEOUT,
    DEFAULT_INITIALIZE_TIMEOUT,
    DEFAULT_MAX_PENDING_EVENTS,
    DEFAULT_SERVER_LOG_ENV_VAR,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_TERMINATE_GRACE_PERIOD,
    SELECTOR_WILDCARD,
)
from lsp_client import ClientOptions
from lsp_document_bridge import DocumentSelector
from lsp_server_manager import ServerLaunchSpec, ServerOptions

# Environment overrides
ENV_CONFIG_PATH = "LSP_CLIENT_CONFIG"
ENV_SERVER_COMMAND = "LSP_SERVER_COMMAND"
ENV_SERVER_LOG_LEVEL = "LSP_SERVER_LOG_LEVEL"
ENV_CLIENT_LOG_LEVEL = "LSP_CLIENT_LOG_LEVEL"
ENV_CLIENT_DEBUG = "LSP_CLIENT_DEBUG"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _is_truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("true", "1", "yes", "on")


@dataclass
class ServerConfig:
    """Configuration for launching the language server"""

    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    log_level: str | None = None
    log_env_var: str = DEFAULT_SERVER_LOG_ENV_VAR

    def __post_init__(self):
        if not self.command:
            raise ValueError("Server command cannot be empty")
        if not isinstance(self.args, list) or not all(isinstance(a, str) for a in self.args):
            raise ValueError("Server args must be a list of strings")
        if not isinstance(self.env, dict):
            raise ValueError("Server env must be a mapping of names to values")
        if not self.log_env_var:
            raise ValueError("Server log environment variable name cannot be empty")

        self.env = {str(k): str(v) for k, v in self.env.items()}
        if self.cwd:
            self.cwd = os.path.abspath(os.path.expanduser(self.cwd))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ServerConfig":
        if not isinstance(data, Mapping):
            raise ValueError("Server configuration must be an object")
        unknown = set(data) - {"command", "args", "env", "cwd", "log_level", "log_env_var"}
        if unknown:
            raise ValueError(f"Unknown server configuration keys: {sorted(unknown)}")
        return cls(
            command=data.get("command", ""),
            args=list(data.get("args", [])),
            env=dict(data.get("env", {})),
            cwd=data.get("cwd"),
            log_level=data.get("log_level"),
            log_env_var=data.get("log_env_var", DEFAULT_SERVER_LOG_ENV_VAR),
        )

    def to_launch_spec(self) -> ServerLaunchSpec:
        """Build the launch spec; an explicit env entry beats log_level."""
        overlay: dict[str, str] = {}
        if self.log_level:
            overlay[self.log_env_var] = self.log_level
        overlay.update(self.env)
        return ServerLaunchSpec(
            command=os.path.expanduser(self.command),
            args=tuple(self.args),
            env=overlay,
            cwd=self.cwd,
        )


@dataclass
class ClientConfiguration:
    """Complete client configuration"""

    server: ServerConfig
    debug_server: ServerConfig | None = None
    client_id: str = DEFAULT_CLIENT_ID
    name: str = DEFAULT_CLIENT_NAME
    document_selector: list[dict[str, str]] = field(
        default_factory=lambda: [{"scheme": SELECTOR_WILDCARD, "language": SELECTOR_WILDCARD}]
    )
    file_watch_patterns: list[str] = field(default_factory=list)
    workspace_root: str | None = None
    initialization_options: dict[str, Any] | None = None
    initialize_timeout: float = DEFAULT_INITIALIZE_TIMEOUT
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    exit_timeout: float = DEFAULT_EXIT_TIMEOUT
    terminate_grace_period: float = DEFAULT_TERMINATE_GRACE_PERIOD
    max_pending_events: int = DEFAULT_MAX_PENDING_EVENTS
    debug: bool = False
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration after initialization"""
        logger = logging.getLogger(__name__)
        logger.debug(f"Validating client configuration for '{self.client_id}'")

        if not self.client_id:
            raise ValueError("Client id cannot be empty")
        for name in ("initialize_timeout", "shutdown_timeout", "exit_timeout", "terminate_grace_period"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f"{name} must be a positive number, got: {value!r}")
        if not isinstance(self.max_pending_events, int) or self.max_pending_events < 0:
            raise ValueError(
                f"max_pending_events must be a non-negative integer, got: {self.max_pending_events!r}"
            )

        self.log_level = str(self.log_level).upper()
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.log_level}")

        # Fails early on malformed filters
        DocumentSelector.from_filters(self.document_selector)

        if self.workspace_root:
            self.workspace_root = os.path.abspath(os.path.expanduser(self.workspace_root))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClientConfiguration":
        if not isinstance(data, Mapping):
            raise ValueError("Client configuration must be an object")
        if "server" not in data:
            raise ValueError("Client configuration requires a 'server' section")

        known = {f for f in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        values = dict(data)
        values["server"] = ServerConfig.from_dict(data["server"])
        if data.get("debug_server") is not None:
            values["debug_server"] = ServerConfig.from_dict(data["debug_server"])
        return cls(**values)

    @classmethod
    def load(cls, config_path: str | Path) -> "ClientConfiguration":
        """Load configuration from a JSON file."""
        path = Path(config_path).expanduser()
        logging.getLogger(__name__).info(f"Loading client configuration from {path}")
        with open(path) as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_environment(
        cls,
        config_path: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> "ClientConfiguration":
        """Load the JSON file (if any) and apply environment overrides.

        With no explicit environ, variables from a .env file are loaded first.
        Explicit overrides (command line values) beat both; their "server"
        entry is merged key by key.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        path = config_path or environ.get(ENV_CONFIG_PATH)
        if path:
            with open(Path(path).expanduser()) as f:
                data: dict[str, Any] = json.load(f)
        else:
            data = {}

        server = dict(data.get("server") or {})
        if environ.get(ENV_SERVER_COMMAND):
            server["command"] = environ[ENV_SERVER_COMMAND]
        if environ.get(ENV_SERVER_LOG_LEVEL):
            server["log_level"] = environ[ENV_SERVER_LOG_LEVEL]
        for key, value in ((overrides or {}).get("server") or {}).items():
            server[key] = value
        if not server.get("command"):
            raise ValueError(
                f"No server command configured (set it in the config file or {ENV_SERVER_COMMAND})"
            )
        data["server"] = server

        if environ.get(ENV_CLIENT_LOG_LEVEL):
            data["log_level"] = environ[ENV_CLIENT_LOG_LEVEL]
        if ENV_CLIENT_DEBUG in environ:
            data["debug"] = _is_truthy(environ.get(ENV_CLIENT_DEBUG))
        for key, value in (overrides or {}).items():
            if key != "server":
                data[key] = value

        return cls.from_dict(data)

    def to_server_options(self) -> ServerOptions:
        run = self.server.to_launch_spec()
        debug = self.debug_server.to_launch_spec() if self.debug_server else None
        return ServerOptions(run=run, debug=debug)

    def to_client_options(self) -> ClientOptions:
        return ClientOptions(
            document_selector=DocumentSelector.from_filters(self.document_selector),
            file_watch_patterns=tuple(self.file_watch_patterns),
            workspace_root=self.workspace_root,
            initialization_options=self.initialization_options,
            initialize_timeout=float(self.initialize_timeout),
            shutdown_timeout=float(self.shutdown_timeout),
            exit_timeout=float(self.exit_timeout),
            terminate_grace_period=float(self.terminate_grace_period),
            max_pending_events=self.max_pending_events,
        )
