"""
LSP Transport Channel

Duplex message channel over the language server's stdin/stdout. Outgoing
messages are framed and written in program order; a reader thread decodes
incoming frames and hands each message to the event loop, where responses are
matched to pending requests by id, notifications go to registered handlers and
server-initiated requests are answered.
"""

import asyncio
import inspect
import logging
import subprocess
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from constants import READER_JOIN_TIMEOUT
from lsp_constants import JsonRPCMessage, LSPErrorCode, LSPMethod
from lsp_errors import ResponseError, TransportError, TransportErrorReason
from lsp_jsonrpc import (
    FrameDecoder,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCProtocol,
)

NotificationHandler = Callable[[JsonRPCMessage], Awaitable[None] | None]
RequestHandler = Callable[[JsonRPCMessage], Awaitable[Any] | Any]
CloseCallback = Callable[[TransportError | None], None]


@dataclass
class PendingRequest:
    """A request waiting for its response."""

    id: str | int
    method: str
    future: asyncio.Future


class TransportChannel:
    """Framed JSON-RPC channel bound to one server process."""

    def __init__(
        self,
        process: subprocess.Popen,
        logger: logging.Logger,
        protocol: JSONRPCProtocol | None = None,
        notification_handlers: dict[str, NotificationHandler] | None = None,
        request_handlers: dict[str, RequestHandler] | None = None,
        on_close: CloseCallback | None = None,
        read_size: int = 4096,
    ):
        self.process = process
        self.logger = logger
        self.protocol = protocol or JSONRPCProtocol(logger=logger)
        self.read_size = read_size

        self._notification_handlers = (
            notification_handlers if notification_handlers is not None else {}
        )
        self._request_handlers = request_handlers if request_handlers is not None else {}
        self._on_close = on_close

        # Pending requests are added on the loop and drained by whichever
        # thread closes the channel
        self._pending: dict[str | int, PendingRequest] = {}
        self._pending_lock = threading.Lock()

        self._write_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._closed = False
        self._closing = False
        self._close_error: TransportError | None = None

        self._decoder = FrameDecoder()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reader_thread: threading.Thread | None = None
        self._handler_tasks: set[asyncio.Task] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def close_error(self) -> TransportError | None:
        return self._close_error

    @property
    def pending_request_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def start(self) -> None:
        """Start the receive loop. Must be called from the event loop."""
        if self._reader_thread is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._reader_thread = threading.Thread(
            target=self._receive_loop,
            name=f"lsp-reader-{self.process.pid}",
            daemon=True,
        )
        self._reader_thread.start()

    # Sending

    def send(self, message: JSONRPCMessage) -> None:
        """Write one framed message to the server.

        Raises TransportError(CLOSED) if the channel is closed or the pipe
        breaks while writing.
        """
        if self._closed:
            raise self._closed_error()

        serialized = self.protocol.serialize_message(message)
        with self._write_lock:
            if self._closed:
                raise self._closed_error()
            stdin = self.process.stdin
            if stdin is None:
                raise TransportError(TransportErrorReason.CLOSED, "Server stdin is not connected")
            try:
                stdin.write(serialized)
                stdin.flush()
            except (OSError, ValueError) as e:
                error = TransportError(
                    TransportErrorReason.CLOSED, f"Write to server failed: {e}"
                )
                self._shutdown_channel(error)
                raise error from e

        self.logger.debug(f"Sent {message.describe()}")

    def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        self.send(self.protocol.create_notification(method, params))

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float = 30.0,
    ) -> Any:
        """Send a request and wait for its result.

        Raises TimeoutError if no response arrives in time, ResponseError for
        an error response and TransportError if the channel closes first.
        """
        request = self.protocol.create_request(method, params)
        future = asyncio.get_running_loop().create_future()

        with self._pending_lock:
            if self._closed:
                raise self._closed_error()
            self._pending[request.id] = PendingRequest(request.id, method, future)

        try:
            self.send(request)
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as e:
            self.logger.error(f"Request timeout: {method} (id={request.id}) after {timeout}s")
            self._cancel_on_server(request.id)
            raise TimeoutError(f"No response to {method} within {timeout}s") from e
        finally:
            with self._pending_lock:
                self._pending.pop(request.id, None)

    def _cancel_on_server(self, message_id: str | int) -> None:
        try:
            self.notify(LSPMethod.CANCEL_REQUEST, {"id": message_id})
        except TransportError as e:
            self.logger.debug(f"Could not cancel request {message_id}: {e}")

    def _closed_error(self) -> TransportError:
        if self._close_error is not None:
            return TransportError(TransportErrorReason.CLOSED, self._close_error.message)
        return TransportError(TransportErrorReason.CLOSED, "Transport channel is closed")

    # Receiving

    def _receive_loop(self) -> None:
        """Reader thread: decode frames until EOF or a protocol error."""
        stdout = self.process.stdout
        error: TransportError

        if stdout is None:
            self._shutdown_channel(
                TransportError(TransportErrorReason.CLOSED, "Server stdout is not connected")
            )
            return

        while True:
            try:
                data = stdout.read1(self.read_size)
            except (OSError, ValueError) as e:
                error = TransportError(TransportErrorReason.CLOSED, f"Read from server failed: {e}")
                break

            if not data:
                returncode = self.process.poll()
                detail = f" (exit code {returncode})" if returncode is not None else ""
                error = TransportError(
                    TransportErrorReason.CLOSED, f"Server closed its output stream{detail}"
                )
                break

            try:
                messages = self._decoder.feed(data)
            except JSONRPCError as e:
                error = TransportError(TransportErrorReason.PROTOCOL, e.message)
                break

            for message in messages:
                self._schedule(self._dispatch, message)

        self._shutdown_channel(error)

    def _schedule(self, callback: Callable[..., Any], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            self.logger.debug("Event loop is gone, dropping transport callback")
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            self.logger.debug("Event loop closed, dropping transport callback")

    def _dispatch(self, message: JsonRPCMessage) -> None:
        """Route one decoded message. Runs on the event loop."""
        if self.protocol.is_response(message):
            self._handle_response(message)
        elif self.protocol.is_request(message):
            self._track(self._handle_request(message))
        elif self.protocol.is_notification(message):
            self._handle_notification(message)
        else:
            self.logger.warning(f"Unknown message type: {message}")

    def _handle_response(self, message: JsonRPCMessage) -> None:
        message_id = message.get("id")
        with self._pending_lock:
            pending = self._pending.pop(message_id, None)

        if pending is None:
            self.logger.warning(f"No pending request for response ID: {message_id}")
            return
        if pending.future.done():
            return

        self.logger.debug(f"Received response to {pending.method} (id={message_id})")
        error = message.get("error")
        if error is not None:
            pending.future.set_exception(ResponseError.from_error_object(error))
        else:
            pending.future.set_result(message.get("result"))

    def _handle_notification(self, message: JsonRPCMessage) -> None:
        method = message.get("method")
        handler = self._notification_handlers.get(method)
        if handler is None:
            self.logger.debug(f"No handler for notification method: {method}")
            return
        try:
            result = handler(message)
            if inspect.isawaitable(result):
                self._track(self._await_notification_handler(method, result))
        except Exception as e:
            self.logger.error(f"Error in notification handler for {method}: {e}")

    async def _await_notification_handler(self, method: str, awaitable: Awaitable) -> None:
        try:
            await awaitable
        except Exception as e:
            self.logger.error(f"Error in notification handler for {method}: {e}")

    async def _handle_request(self, message: JsonRPCMessage) -> None:
        method = message.get("method")
        message_id = message.get("id")
        handler = self._request_handlers.get(method)

        if handler is None:
            self.logger.warning(f"No handler for request method: {method}")
            response = self.protocol.create_error_response(
                message_id, LSPErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}"
            )
        else:
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    result = await result
                response = self.protocol.create_response(message_id, result)
            except Exception as e:
                self.logger.error(f"Error in request handler for {method}: {e}")
                response = self.protocol.create_error_response(
                    message_id, LSPErrorCode.INTERNAL_ERROR, f"Handler error: {e}"
                )

        try:
            self.send(response)
        except TransportError as e:
            self.logger.debug(f"Could not answer {method} (id={message_id}): {e}")

    def _track(self, coroutine: Awaitable) -> None:
        task = asyncio.ensure_future(coroutine)
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    # Teardown

    def begin_close(self) -> None:
        """Mark the upcoming stream closure as expected."""
        with self._state_lock:
            self._closing = True

    def _shutdown_channel(self, error: TransportError) -> None:
        """Close the channel once: fail pending requests and report the cause."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            self._close_error = error
            expected = self._closing

        if expected:
            self.logger.debug(f"Transport closed: {error}")
        elif error.reason == TransportErrorReason.PROTOCOL:
            self.logger.error(f"Transport protocol error: {error.message}")
        else:
            self.logger.warning(f"Transport closed unexpectedly: {error.message}")

        with self._pending_lock:
            pending = list(self._pending.values())
            self._pending.clear()
        if pending:
            self._schedule(self._fail_pending, pending, error)

        if self._on_close is not None:
            self._schedule(self._on_close, None if expected else error)

    def _fail_pending(self, pending: list[PendingRequest], error: TransportError) -> None:
        for request in pending:
            if not request.future.done():
                self.logger.debug(f"Cancelling pending {request.method} (id={request.id})")
                request.future.set_exception(
                    TransportError(error.reason, f"{request.method} cancelled: {error.message}")
                )

    async def close(self) -> None:
        """Close the channel and wait for the reader thread to finish.

        The server process should already be terminated, so the reader sees
        end of stream promptly.
        """
        self.begin_close()

        stdin = self.process.stdin
        if stdin is not None and not stdin.closed:
            with self._write_lock:
                try:
                    stdin.close()
                except OSError:
                    pass

        thread = self._reader_thread
        if thread is not None and thread.is_alive():
            await asyncio.to_thread(thread.join, READER_JOIN_TIMEOUT)
            if thread.is_alive():
                self.logger.warning("Transport reader thread did not finish")

        self._shutdown_channel(
            TransportError(TransportErrorReason.CLOSED, "Transport channel closed")
        )

        stdout = self.process.stdout
        if stdout is not None and (thread is None or not thread.is_alive()):
            try:
                stdout.close()
            except OSError:
                pass
