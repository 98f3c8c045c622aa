"""
JSON-RPC 2.0 Protocol Implementation for LSP

This module leverages the python-lsp-jsonrpc package to serialize outgoing
messages into Content-Length framed payloads and provides an incremental frame
decoder for the receive path, where partial reads from the server's stdout have
to be buffered and reassembled.
"""

import io
import itertools
import json
import logging
import threading
from typing import Any

from pylsp_jsonrpc.streams import JsonRpcStreamWriter

from constants import MAX_HEADER_BYTES
from lsp_constants import (
    JsonRPCMessage,
    LSPErrorCode,
)

CONTENT_LENGTH_HEADER = "Content-Length"
HEADER_TERMINATOR = b"\r\n\r\n"


class JSONRPCError(Exception):
    """Exception for JSON-RPC protocol errors."""

    def __init__(self, code: LSPErrorCode, message: str, data: Any | None = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"JSON-RPC Error {code.value}: {message}")


# Simple compatibility classes that just wrap dictionaries
class JSONRPCMessage:
    """Base class for JSON-RPC messages - minimal wrapper around dict."""

    def __init__(self, data: dict[str, Any]):
        self._data = data

    def to_dict(self) -> dict[str, Any]:
        """Convert message to dictionary."""
        return self._data.copy()

    def describe(self) -> str:
        """Short label for log lines."""
        method = self._data.get("method")
        message_id = self._data.get("id")
        if method and message_id is not None:
            return f"request {method} (id={message_id})"
        if method:
            return f"notification {method}"
        return f"response (id={message_id})"


class JSONRPCRequest(JSONRPCMessage):
    """JSON-RPC request message."""

    def __init__(
        self,
        method: str,
        message_id: str | int,
        params: dict[str, Any] | list[Any] | None = None,
    ):
        data: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": message_id,
            "method": method,
        }
        if params is not None:
            data["params"] = params
        super().__init__(data)

    @property
    def method(self) -> str:
        return self._data["method"]

    @property
    def params(self) -> dict[str, Any] | list[Any]:
        return self._data.get("params", {})

    @property
    def id(self) -> str | int:
        return self._data["id"]


class JSONRPCNotification(JSONRPCMessage):
    """JSON-RPC notification message."""

    def __init__(self, method: str, params: dict[str, Any] | None = None):
        data: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            data["params"] = params
        super().__init__(data)

    @property
    def method(self) -> str:
        return self._data["method"]

    @property
    def params(self) -> dict[str, Any]:
        return self._data.get("params", {})


class JSONRPCResponse(JSONRPCMessage):
    """JSON-RPC response message."""

    def __init__(
        self,
        message_id: str | int | None,
        result: Any | None = None,
        error: dict[str, Any] | None = None,
    ):
        data: dict[str, Any] = {"jsonrpc": "2.0", "id": message_id}
        if error is not None:
            data["error"] = error
        else:
            data["result"] = result
        super().__init__(data)

    @property
    def id(self) -> str | int | None:
        return self._data["id"]

    @property
    def result(self) -> Any:
        return self._data.get("result")

    @property
    def error(self) -> dict[str, Any] | None:
        return self._data.get("error")

    @classmethod
    def create_error(
        cls,
        message_id: str | int | None,
        code: LSPErrorCode,
        message: str,
        data: Any | None = None,
    ) -> "JSONRPCResponse":
        """Create an error response."""
        error: dict[str, Any] = {"code": code.value, "message": message}
        if data is not None:
            error["data"] = data
        return cls(message_id=message_id, error=error)


class FrameDecoder:
    """Incremental decoder for Content-Length framed JSON-RPC messages.

    Bytes are fed as they arrive; complete frames are returned in wire order
    and any trailing partial frame stays buffered for the next call. A frame
    whose headers or content cannot be decoded raises JSONRPCError, after which
    the stream has no safe resynchronization point.
    """

    def __init__(self, max_header_bytes: int = MAX_HEADER_BYTES):
        self._buffer = bytearray()
        self._max_header_bytes = max_header_bytes

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[JsonRPCMessage]:
        """Append data and return every complete message now available."""
        self._buffer.extend(data)
        messages: list[JsonRPCMessage] = []

        while True:
            header_end = self._buffer.find(HEADER_TERMINATOR)
            if header_end == -1:
                if len(self._buffer) > self._max_header_bytes:
                    raise JSONRPCError(
                        LSPErrorCode.PARSE_ERROR,
                        f"Header block exceeds {self._max_header_bytes} bytes",
                    )
                break
            if header_end > self._max_header_bytes:
                raise JSONRPCError(
                    LSPErrorCode.PARSE_ERROR,
                    f"Header block exceeds {self._max_header_bytes} bytes",
                )

            headers = parse_headers(bytes(self._buffer[:header_end]))
            content_length = content_length_from_headers(headers)

            message_end = header_end + len(HEADER_TERMINATOR) + content_length
            if len(self._buffer) < message_end:
                break

            content = bytes(self._buffer[header_end + len(HEADER_TERMINATOR) : message_end])
            del self._buffer[:message_end]
            messages.append(decode_content(content))

        return messages


def parse_headers(header_data: bytes) -> dict[str, str]:
    """Parse the header block of a frame (without the terminating blank line)."""
    try:
        text = header_data.decode("ascii")
    except UnicodeDecodeError as e:
        raise JSONRPCError(
            LSPErrorCode.PARSE_ERROR, f"Non-ASCII frame header: {e}"
        ) from e

    headers = {}
    for line in text.split("\r\n"):
        if ":" not in line:
            raise JSONRPCError(
                LSPErrorCode.PARSE_ERROR, f"Malformed header line: {line!r}"
            )
        key, value = line.split(":", 1)
        headers[key.strip()] = value.strip()
    return headers


def content_length_from_headers(headers: dict[str, str]) -> int:
    """Return the declared content length, validating it."""
    if CONTENT_LENGTH_HEADER not in headers:
        raise JSONRPCError(LSPErrorCode.PARSE_ERROR, "Missing Content-Length header")
    try:
        content_length = int(headers[CONTENT_LENGTH_HEADER])
    except ValueError as e:
        raise JSONRPCError(
            LSPErrorCode.PARSE_ERROR,
            f"Invalid Content-Length: {headers[CONTENT_LENGTH_HEADER]!r}",
        ) from e
    if content_length < 0:
        raise JSONRPCError(
            LSPErrorCode.PARSE_ERROR, f"Negative Content-Length: {content_length}"
        )
    return content_length


def decode_content(content: bytes) -> JsonRPCMessage:
    """Decode the body of a frame into a JSON-RPC message dict."""
    try:
        message = json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise JSONRPCError(
            LSPErrorCode.PARSE_ERROR, f"Message parsing error: {e}"
        ) from e

    if not isinstance(message, dict):
        raise JSONRPCError(
            LSPErrorCode.INVALID_REQUEST, "JSON-RPC message must be an object"
        )
    if message.get("jsonrpc") != "2.0":
        raise JSONRPCError(LSPErrorCode.INVALID_REQUEST, "Invalid JSON-RPC version")
    return message


def decode_frame(raw_data: bytes) -> JsonRPCMessage:
    """Decode exactly one complete frame."""
    decoder = FrameDecoder()
    messages = decoder.feed(raw_data)
    if len(messages) != 1 or decoder.buffered_bytes:
        raise JSONRPCError(
            LSPErrorCode.PARSE_ERROR, "Expected exactly one complete frame"
        )
    return messages[0]


class JSONRPCProtocol:
    """JSON-RPC 2.0 protocol handler leveraging python-lsp-jsonrpc."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)

        # Create stream writer for serialization
        self._stream_buffer = io.BytesIO()
        self._stream_writer = JsonRpcStreamWriter(self._stream_buffer)
        self._serialize_lock = threading.Lock()

        self._id_counter = itertools.count(1)
        self._id_lock = threading.Lock()

    def next_id(self) -> int:
        """Return the next request id; ids increase monotonically from 1."""
        with self._id_lock:
            return next(self._id_counter)

    def create_request(
        self, method: str, params: dict[str, Any] | None = None
    ) -> JSONRPCRequest:
        """Create a new JSON-RPC request."""
        return JSONRPCRequest(method=method, message_id=self.next_id(), params=params)

    def create_notification(
        self, method: str, params: dict[str, Any] | None = None
    ) -> JSONRPCNotification:
        """Create a new JSON-RPC notification."""
        return JSONRPCNotification(method=method, params=params)

    def create_response(self, message_id: str | int, result: Any) -> JSONRPCResponse:
        """Create a successful JSON-RPC response."""
        return JSONRPCResponse(message_id=message_id, result=result)

    def create_error_response(
        self,
        message_id: str | int | None,
        code: LSPErrorCode,
        message: str,
        data: Any | None = None,
    ) -> JSONRPCResponse:
        """Create an error JSON-RPC response."""
        return JSONRPCResponse.create_error(
            message_id=message_id, code=code, message=message, data=data
        )

    def serialize_message(self, message: JSONRPCMessage) -> bytes:
        """Serialize a JSON-RPC message using python-lsp-jsonrpc."""
        with self._serialize_lock:
            self._stream_buffer.seek(0)
            self._stream_buffer.truncate()
            self._stream_writer.write(message.to_dict())
            self._stream_buffer.seek(0)
            serialized = self._stream_buffer.read()

        # JsonRpcStreamWriter logs and swallows encoding failures
        if not serialized:
            raise JSONRPCError(
                LSPErrorCode.INVALID_PARAMS,
                f"Could not serialize {message.describe()}",
            )
        return serialized

    def is_request(self, message: JsonRPCMessage) -> bool:
        """Check if message is a request."""
        return "id" in message and "method" in message

    def is_response(self, message: JsonRPCMessage) -> bool:
        """Check if message is a response."""
        return (
            "id" in message
            and "method" not in message
            and ("result" in message or "error" in message)
        )

    def is_notification(self, message: JsonRPCMessage) -> bool:
        """Check if message is a notification."""
        return "method" in message and "id" not in message
