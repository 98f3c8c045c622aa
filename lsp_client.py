"""
LSP Client

The LanguageClient is the single object the host talks to. It owns one Session
at a time together with the document event bridge, exposes start() and stop(),
serializes those lifecycle calls, and answers the server-to-client requests and
notifications every session needs.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from constants import (
    CLIENT_VERSION,
    DEFAULT_EXIT_TIMEOUT,
    DEFAULT_INITIALIZE_TIMEOUT,
    DEFAULT_MAX_PENDING_EVENTS,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_TERMINATE_GRACE_PERIOD,
)
from lsp_constants import (
    JsonRPCMessage,
    LSPCapabilities,
    LSPMessageType,
    LSPMethod,
)
from lsp_document_bridge import DocumentEventBridge, DocumentSelector, HostEvent, path_to_uri
from lsp_errors import SessionError, SessionErrorReason
from lsp_server_manager import ProcessSupervisor, ServerOptions
from lsp_session import (
    FailureListener,
    PhaseListener,
    Session,
    SessionOutcome,
    SessionPhase,
)
from lsp_transport import NotificationHandler, RequestHandler


@dataclass
class ClientOptions:
    """Host supplied options for the client."""

    document_selector: DocumentSelector = field(default_factory=DocumentSelector.match_all)
    file_watch_patterns: tuple[str, ...] = ()
    workspace_root: str | None = None
    initialization_options: dict[str, Any] | None = None
    initialize_timeout: float = DEFAULT_INITIALIZE_TIMEOUT
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    exit_timeout: float = DEFAULT_EXIT_TIMEOUT
    terminate_grace_period: float = DEFAULT_TERMINATE_GRACE_PERIOD
    max_pending_events: int = DEFAULT_MAX_PENDING_EVENTS


class LanguageClient:
    """Host-facing facade over one LSP session."""

    def __init__(
        self,
        client_id: str,
        name: str,
        server_options: ServerOptions,
        client_options: ClientOptions | None = None,
        logger: logging.Logger | None = None,
        debug: bool = False,
        supervisor: ProcessSupervisor | None = None,
    ):
        self.client_id = client_id
        self.name = name
        self.server_options = server_options
        self.client_options = client_options or ClientOptions()
        self.logger = logger or logging.getLogger(__name__)
        self.debug = debug
        self.supervisor = supervisor or ProcessSupervisor(
            self.logger, grace_period=self.client_options.terminate_grace_period
        )

        self.session: Session | None = None
        self.bridge = DocumentEventBridge(
            self.client_options.document_selector,
            self.logger,
            max_pending_events=self.client_options.max_pending_events,
            watch_patterns=self.client_options.file_watch_patterns,
        )
        self.diagnostics: dict[str, list[dict[str, Any]]] = {}

        # Only one start() or stop() sequence runs at a time; later callers wait
        self._lifecycle_lock = asyncio.Lock()
        self._stopped_without_session = False

        self._notification_handlers: dict[str, NotificationHandler] = {}
        self._request_handlers: dict[str, RequestHandler] = {}
        self._phase_listeners: list[PhaseListener] = []
        self._failure_listeners: list[FailureListener] = []

        self._setup_builtin_handlers()

    def _setup_builtin_handlers(self) -> None:
        """Setup built-in message handlers."""
        # Server-to-client notifications
        self._notification_handlers[LSPMethod.PUBLISH_DIAGNOSTICS] = (
            self._handle_publish_diagnostics
        )
        self._notification_handlers[LSPMethod.SHOW_MESSAGE] = self._handle_show_message
        self._notification_handlers[LSPMethod.LOG_MESSAGE] = self._handle_log_message

        # Server-to-client requests
        self._request_handlers[LSPMethod.WORKSPACE_CONFIGURATION] = (
            self._handle_workspace_configuration
        )
        self._request_handlers[LSPMethod.SHOW_MESSAGE_REQUEST] = self._handle_null_request
        self._request_handlers[LSPMethod.REGISTER_CAPABILITY] = self._handle_null_request
        self._request_handlers[LSPMethod.UNREGISTER_CAPABILITY] = self._handle_null_request
        self._request_handlers[LSPMethod.WORK_DONE_PROGRESS_CREATE] = self._handle_null_request

    # Lifecycle

    @property
    def phase(self) -> SessionPhase:
        if self.session is not None:
            return self.session.phase
        if self._stopped_without_session:
            return SessionPhase.STOPPED
        return SessionPhase.UNINITIALIZED

    @property
    def outcome(self) -> SessionOutcome | None:
        if self.session is not None:
            return self.session.outcome
        return SessionOutcome.CLEAN if self._stopped_without_session else None

    @property
    def failure_reason(self) -> str | None:
        return self.session.failure_reason if self.session is not None else None

    @property
    def server_capabilities(self) -> dict[str, Any]:
        if self.session is None:
            return {}
        return self.session.server_capabilities.copy()

    def is_running(self) -> bool:
        return self.phase == SessionPhase.ACTIVE

    async def start(self) -> None:
        """Launch the server and complete the initialize handshake.

        Raises LaunchError or SessionError. Calling start() on a client that
        is already active or already stopped does nothing; a stopped client is
        not restarted.
        """
        async with self._lifecycle_lock:
            if self.phase == SessionPhase.ACTIVE:
                self.logger.debug("LSP client already running")
                return
            if self.phase == SessionPhase.STOPPED:
                self.logger.warning(
                    f"LSP client already stopped ({self.outcome.value if self.outcome else 'unknown'}), "
                    "start() ignored"
                )
                return

            launch_spec = self.server_options.select(self.debug)
            self.session = Session(
                launch_spec,
                self.supervisor,
                self.logger,
                notification_handlers=self._notification_handlers,
                request_handlers=self._request_handlers,
                initialize_timeout=self.client_options.initialize_timeout,
                shutdown_timeout=self.client_options.shutdown_timeout,
                exit_timeout=self.client_options.exit_timeout,
            )
            self.session.add_phase_listener(self._on_phase_change)
            for listener in self._phase_listeners:
                self.session.add_phase_listener(listener)
            for failure_listener in self._failure_listeners:
                self.session.add_failure_listener(failure_listener)
            self.bridge.attach(self.session)

            await self.session.open(self._build_initialize_params())

    async def stop(self) -> None:
        """Shut the session down. Idempotent and never raises."""
        async with self._lifecycle_lock:
            try:
                if self.session is None:
                    if not self._stopped_without_session:
                        self._stopped_without_session = True
                        self.logger.info("LSP client stopped before it was started")
                        self._notify_phase(SessionPhase.UNINITIALIZED, SessionPhase.STOPPED)
                    return
                await self.session.close()
            except Exception as e:
                self.logger.error(f"Error during LSP client stop: {e}")

    def _notify_phase(self, old_phase: SessionPhase, new_phase: SessionPhase) -> None:
        self._on_phase_change(old_phase, new_phase)
        for listener in self._phase_listeners:
            try:
                listener(old_phase, new_phase)
            except Exception as e:
                self.logger.error(f"Error in phase listener: {e}")

    def _on_phase_change(self, old_phase: SessionPhase, new_phase: SessionPhase) -> None:
        self.bridge.on_phase_change(new_phase)

    def _build_initialize_params(self) -> dict[str, Any]:
        workspace_root = self.client_options.workspace_root or os.getcwd()
        root_uri = path_to_uri(workspace_root)
        return {
            "processId": os.getpid(),
            "clientInfo": {"name": self.client_id, "version": CLIENT_VERSION},
            "rootUri": root_uri,
            "workspaceFolders": [
                {"uri": root_uri, "name": os.path.basename(os.path.abspath(workspace_root))}
            ],
            "capabilities": LSPCapabilities.client_capabilities(),
            "initializationOptions": self.client_options.initialization_options,
        }

    # Messaging

    def _require_session(self, method: str) -> Session:
        if self.session is None:
            raise SessionError(
                SessionErrorReason.NOT_READY,
                f"Cannot send {method} while session is {self.phase.value}",
            )
        return self.session

    def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        self._require_session(method).send_notification(method, params)

    async def send_request(
        self, method: str, params: dict[str, Any] | None = None, timeout: float = 30.0
    ) -> Any:
        return await self._require_session(method).send_request(method, params, timeout)

    def submit(self, event: HostEvent) -> bool:
        """Hand a host document or file watch event to the bridge."""
        return self.bridge.submit(event)

    # Observers and handlers

    def add_phase_listener(self, listener: PhaseListener) -> None:
        self._phase_listeners.append(listener)
        if self.session is not None:
            self.session.add_phase_listener(listener)

    def add_failure_listener(self, listener: FailureListener) -> None:
        self._failure_listeners.append(listener)
        if self.session is not None:
            self.session.add_failure_listener(listener)

    def add_notification_handler(self, method: str, handler: NotificationHandler) -> None:
        """Add a notification handler."""
        self._notification_handlers[method] = handler

    def add_request_handler(self, method: str, handler: RequestHandler) -> None:
        """Add a server-to-client request handler; its return value is the result."""
        self._request_handlers[method] = handler

    # Built-in message handlers
    def _handle_publish_diagnostics(self, message: JsonRPCMessage) -> None:
        """Handle publishDiagnostics notification."""
        params = message.get("params", {})
        uri = params.get("uri")
        diagnostics = params.get("diagnostics", [])
        self.diagnostics[uri] = diagnostics
        self.logger.debug(f"Received diagnostics for {uri}: {len(diagnostics)} items")

    def _handle_show_message(self, message: JsonRPCMessage) -> None:
        """Handle showMessage notification."""
        params = message.get("params", {})
        self.logger.log(
            _message_type_level(params.get("type")),
            f"Server message: {params.get('message', '')}",
        )

    def _handle_log_message(self, message: JsonRPCMessage) -> None:
        """Handle logMessage notification."""
        params = message.get("params", {})
        self.logger.debug(f"Server log: {params.get('message', '')}")

    def _handle_workspace_configuration(self, message: JsonRPCMessage) -> list[Any]:
        """Handle workspace/configuration request with one null per item."""
        items = message.get("params", {}).get("items", [])
        return [None] * len(items)

    def _handle_null_request(self, message: JsonRPCMessage) -> None:
        """Acknowledge a request that needs no action."""
        self.logger.debug(f"Acknowledging {message.get('method')}")
        return None


def _message_type_level(message_type: Any) -> int:
    levels = {
        LSPMessageType.ERROR.value: logging.ERROR,
        LSPMessageType.WARNING.value: logging.WARNING,
        LSPMessageType.INFO.value: logging.INFO,
        LSPMessageType.LOG.value: logging.DEBUG,
    }
    return levels.get(message_type, logging.INFO)

