"""
LSP Session State Machine

A Session is one end-to-end lifetime of a client/server pairing. It owns the
server process and the transport channel, performs the initialize and shutdown
handshakes, and enforces which messages may be sent in each phase:

    UNINITIALIZED -> STARTING -> ACTIVE -> SHUTTING_DOWN -> STOPPED

STARTING and ACTIVE may also go directly to STOPPED on failure. Nothing leaves
STOPPED.
"""

import asyncio
import logging
import subprocess
from collections.abc import Callable
from enum import Enum
from typing import Any

from constants import (
    DEFAULT_EXIT_TIMEOUT,
    DEFAULT_INITIALIZE_TIMEOUT,
    DEFAULT_SHUTDOWN_TIMEOUT,
)
from lsp_constants import LSPMethod
from lsp_errors import (
    LaunchError,
    ResponseError,
    SessionError,
    SessionErrorReason,
    TransportError,
    TransportErrorReason,
)
from lsp_server_manager import ProcessSupervisor, ServerLaunchSpec
from lsp_transport import NotificationHandler, RequestHandler, TransportChannel

UNEXPECTED_TERMINATION = "server terminated unexpectedly"


class SessionPhase(Enum):
    """Phases of an LSP session."""

    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    ACTIVE = "active"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class SessionOutcome(Enum):
    """How a stopped session ended."""

    CLEAN = "clean"
    FAILED = "failed"


_TRANSITIONS = {
    SessionPhase.UNINITIALIZED: {SessionPhase.STARTING, SessionPhase.STOPPED},
    SessionPhase.STARTING: {SessionPhase.ACTIVE, SessionPhase.STOPPED},
    SessionPhase.ACTIVE: {SessionPhase.SHUTTING_DOWN, SessionPhase.STOPPED},
    SessionPhase.SHUTTING_DOWN: {SessionPhase.STOPPED},
    SessionPhase.STOPPED: set(),
}

PhaseListener = Callable[[SessionPhase, SessionPhase], None]
FailureListener = Callable[[str], None]


class Session:
    """One connected lifetime of the language server."""

    def __init__(
        self,
        launch_spec: ServerLaunchSpec,
        supervisor: ProcessSupervisor,
        logger: logging.Logger,
        notification_handlers: dict[str, NotificationHandler] | None = None,
        request_handlers: dict[str, RequestHandler] | None = None,
        initialize_timeout: float = DEFAULT_INITIALIZE_TIMEOUT,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        exit_timeout: float = DEFAULT_EXIT_TIMEOUT,
        transport_factory: Callable[..., TransportChannel] = TransportChannel,
    ):
        self.launch_spec = launch_spec
        self.supervisor = supervisor
        self.logger = logger
        self.initialize_timeout = initialize_timeout
        self.shutdown_timeout = shutdown_timeout
        self.exit_timeout = exit_timeout

        self._notification_handlers = notification_handlers if notification_handlers is not None else {}
        self._request_handlers = request_handlers if request_handlers is not None else {}
        self._transport_factory = transport_factory

        self.phase = SessionPhase.UNINITIALIZED
        self.outcome: SessionOutcome | None = None
        self.failure_reason: str | None = None
        self.process: subprocess.Popen | None = None
        self.transport: TransportChannel | None = None
        self.server_capabilities: dict[str, Any] = {}
        self.server_info: dict[str, Any] = {}
        self.exit_code: int | None = None

        self._phase_listeners: list[PhaseListener] = []
        self._failure_listeners: list[FailureListener] = []
        self._teardown_task: asyncio.Task | None = None

    # Observers

    def add_phase_listener(self, listener: PhaseListener) -> None:
        self._phase_listeners.append(listener)

    def add_failure_listener(self, listener: FailureListener) -> None:
        self._failure_listeners.append(listener)

    def _set_phase(self, new_phase: SessionPhase) -> None:
        old_phase = self.phase
        if new_phase not in _TRANSITIONS[old_phase]:
            raise RuntimeError(
                f"Illegal session transition {old_phase.value} -> {new_phase.value}"
            )
        self.phase = new_phase
        self.logger.info(f"LSP session {old_phase.value} -> {new_phase.value}")
        for listener in list(self._phase_listeners):
            try:
                listener(old_phase, new_phase)
            except Exception as e:
                self.logger.error(f"Error in phase listener: {e}")

    def _report_failure(self, reason: str) -> None:
        self.outcome = SessionOutcome.FAILED
        self.failure_reason = reason
        self.logger.error(f"LSP session failed: {reason}")
        for listener in list(self._failure_listeners):
            try:
                listener(reason)
            except Exception as e:
                self.logger.error(f"Error in failure listener: {e}")

    @property
    def is_active(self) -> bool:
        return self.phase == SessionPhase.ACTIVE

    # Initialization handshake

    async def open(self, initialize_params: dict[str, Any]) -> None:
        """Spawn the server and run the initialize handshake.

        Raises LaunchError if the server cannot be started and SessionError
        if the handshake fails or times out. On failure the process is gone
        and the session is STOPPED before the error surfaces.
        """
        if self.phase != SessionPhase.UNINITIALIZED:
            raise SessionError(
                SessionErrorReason.ALREADY_IN_PROGRESS,
                f"Session cannot be opened while {self.phase.value}",
            )

        self._set_phase(SessionPhase.STARTING)

        try:
            self.process = self.supervisor.spawn(self.launch_spec)
        except LaunchError as e:
            self._report_failure(str(e))
            self._set_phase(SessionPhase.STOPPED)
            raise

        self.transport = self._transport_factory(
            self.process,
            self.logger,
            notification_handlers=self._notification_handlers,
            request_handlers=self._request_handlers,
            on_close=self._on_transport_closed,
        )
        self.transport.start()

        self.logger.debug(f"Sending initialize request with params: {initialize_params}")
        try:
            result = await self.transport.request(
                LSPMethod.INITIALIZE, initialize_params, timeout=self.initialize_timeout
            )
        except TimeoutError as e:
            reason = f"No initialize response within {self.initialize_timeout}s"
            await self._abort_start(reason)
            raise SessionError(SessionErrorReason.TIMEOUT, reason) from e
        except TransportError as e:
            await self._abort_start(str(e))
            raise SessionError(
                SessionErrorReason.HANDSHAKE_FAILED, f"Initialize failed: {e}"
            ) from e
        except ResponseError as e:
            await self._abort_start(str(e))
            raise SessionError(
                SessionErrorReason.HANDSHAKE_FAILED, f"Server rejected initialize: {e}"
            ) from e
        except Exception as e:
            await self._abort_start(f"Initialize failed: {e}")
            raise SessionError(
                SessionErrorReason.HANDSHAKE_FAILED, f"Initialize failed: {e}"
            ) from e

        if not isinstance(result, dict) or not isinstance(result.get("capabilities"), dict):
            reason = f"Malformed initialize result: {result!r}"
            await self._abort_start(reason)
            raise SessionError(SessionErrorReason.HANDSHAKE_FAILED, reason)

        self.server_capabilities = result["capabilities"]
        self.server_info = result.get("serverInfo") or {}
        self.logger.debug(f"Server capabilities: {self.server_capabilities}")

        try:
            self.transport.notify(LSPMethod.INITIALIZED, {})
        except TransportError as e:
            await self._abort_start(str(e))
            raise SessionError(
                SessionErrorReason.HANDSHAKE_FAILED, f"Initialized notification failed: {e}"
            ) from e

        self._set_phase(SessionPhase.ACTIVE)
        name = self.server_info.get("name", "server")
        self.logger.info(f"LSP connection to {name} initialized successfully")

    async def _abort_start(self, reason: str) -> None:
        self._report_failure(reason)
        await self._teardown(wait_for_exit=False)
        self._set_phase(SessionPhase.STOPPED)

    # Steady state

    def _require_active(self, method: str) -> TransportChannel:
        if self.phase != SessionPhase.ACTIVE or self.transport is None:
            raise SessionError(
                SessionErrorReason.NOT_READY,
                f"Cannot send {method} while session is {self.phase.value}",
            )
        return self.transport

    def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification; only legal while ACTIVE."""
        transport = self._require_active(method)
        try:
            transport.notify(method, params)
        except TransportError as e:
            self._fail(e)
            raise

    async def send_request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float = 30.0,
    ) -> Any:
        """Send a request and return its result; only legal while ACTIVE."""
        transport = self._require_active(method)
        try:
            return await transport.request(method, params, timeout=timeout)
        except TransportError as e:
            self._fail(e)
            raise

    def _on_transport_closed(self, error: TransportError | None) -> None:
        if error is None:
            return
        if self.phase == SessionPhase.ACTIVE:
            self._fail(error)
        else:
            # STARTING failures surface through the initialize request;
            # closure while shutting down is expected
            self.logger.debug(f"Transport closed during {self.phase.value}: {error}")

    def _fail(self, error: TransportError) -> None:
        """ACTIVE -> STOPPED without the shutdown handshake."""
        if self.phase != SessionPhase.ACTIVE:
            return

        if error.reason == TransportErrorReason.PROTOCOL:
            reason = f"protocol error: {error.message}"
        else:
            reason = UNEXPECTED_TERMINATION

        self._report_failure(reason)
        self._set_phase(SessionPhase.STOPPED)
        self._teardown_task = asyncio.ensure_future(self._teardown(wait_for_exit=False))

    # Shutdown handshake

    async def close(self) -> None:
        """Run the shutdown handshake and terminate the server.

        Idempotent: a STOPPED session only waits for any teardown still in
        flight.
        """
        if self.phase == SessionPhase.STOPPED:
            if self._teardown_task is not None:
                await self._teardown_task
            return

        if self.phase == SessionPhase.UNINITIALIZED:
            self.outcome = SessionOutcome.CLEAN
            self._set_phase(SessionPhase.STOPPED)
            return

        if self.phase != SessionPhase.ACTIVE:
            raise SessionError(
                SessionErrorReason.ALREADY_IN_PROGRESS,
                f"Session cannot be closed while {self.phase.value}",
            )

        transport = self.transport
        if transport is not None and transport.closed:
            # The server went away before its close callback reached us
            self._fail(
                transport.close_error
                or TransportError(TransportErrorReason.CLOSED, "Transport channel is closed")
            )
            if self._teardown_task is not None:
                await self._teardown_task
            return

        self._set_phase(SessionPhase.SHUTTING_DOWN)
        acknowledged = False
        if transport is not None:
            transport.begin_close()
            try:
                await transport.request(
                    LSPMethod.SHUTDOWN, None, timeout=self.shutdown_timeout
                )
                acknowledged = True
            except TimeoutError:
                self.logger.warning(
                    f"No shutdown acknowledgment within {self.shutdown_timeout}s, forcing termination"
                )
            except (TransportError, ResponseError) as e:
                self.logger.warning(f"Shutdown request failed: {e}")

            if acknowledged:
                try:
                    transport.notify(LSPMethod.EXIT)
                except TransportError as e:
                    self.logger.debug(f"Exit notification not delivered: {e}")

        await self._teardown(wait_for_exit=acknowledged)
        self.outcome = SessionOutcome.CLEAN
        self._set_phase(SessionPhase.STOPPED)

    async def _teardown(self, wait_for_exit: bool) -> None:
        """Terminate the process and close the transport. Never raises."""
        transport = self.transport
        process = self.process

        if transport is not None:
            transport.begin_close()

        if process is not None:
            try:
                if wait_for_exit:
                    await asyncio.to_thread(self.supervisor.wait, process, self.exit_timeout)
                self.exit_code = await asyncio.to_thread(self.supervisor.terminate, process)
            except Exception as e:
                self.logger.error(f"Error during server termination: {e}")

        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                self.logger.error(f"Error closing transport: {e}")
