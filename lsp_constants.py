"""
LSP Protocol Constants and Message Types

This module defines the constants and message types the client needs for the
session lifecycle and document synchronization parts of the Language Server
Protocol 3.17.
"""

from enum import Enum
from typing import Any


class LSPErrorCode(Enum):
    """JSON-RPC and LSP error codes."""

    # JSON-RPC Error Codes
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # LSP-specific Error Codes
    SERVER_NOT_INITIALIZED = -32002
    UNKNOWN_ERROR_CODE = -32001
    REQUEST_FAILED = -32803
    SERVER_CANCELLED = -32802
    CONTENT_MODIFIED = -32801
    REQUEST_CANCELLED = -32800

    @classmethod
    def from_value(cls, value: Any) -> "LSPErrorCode":
        """Map a wire error code to the enum, falling back to UNKNOWN_ERROR_CODE."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN_ERROR_CODE


class LSPMessageType(Enum):
    """LSP Message Types for logging and notifications."""

    ERROR = 1
    WARNING = 2
    INFO = 3
    LOG = 4


class LSPMethod:
    """LSP Method Names as constants."""

    # General
    INITIALIZE = "initialize"
    INITIALIZED = "initialized"
    SHUTDOWN = "shutdown"
    EXIT = "exit"
    CANCEL_REQUEST = "$/cancelRequest"
    SET_TRACE = "$/setTrace"
    LOG_TRACE = "$/logTrace"
    PROGRESS = "$/progress"

    # Text Document Sync
    DID_OPEN = "textDocument/didOpen"
    DID_CHANGE = "textDocument/didChange"
    DID_CLOSE = "textDocument/didClose"
    DID_SAVE = "textDocument/didSave"
    PUBLISH_DIAGNOSTICS = "textDocument/publishDiagnostics"

    # Workspace Features
    DID_CHANGE_CONFIGURATION = "workspace/didChangeConfiguration"
    DID_CHANGE_WATCHED_FILES = "workspace/didChangeWatchedFiles"
    WORKSPACE_CONFIGURATION = "workspace/configuration"

    # Client registration
    REGISTER_CAPABILITY = "client/registerCapability"
    UNREGISTER_CAPABILITY = "client/unregisterCapability"

    # Window Features
    SHOW_MESSAGE = "window/showMessage"
    SHOW_MESSAGE_REQUEST = "window/showMessageRequest"
    LOG_MESSAGE = "window/logMessage"
    WORK_DONE_PROGRESS_CREATE = "window/workDoneProgress/create"


class LSPCapabilities:
    """LSP Capabilities structure templates."""

    @staticmethod
    def client_capabilities() -> dict[str, Any]:
        """Capabilities advertised by this client.

        Only document synchronization, file watching and the window features
        the client answers are advertised; language features are left to the
        host.
        """
        return {
            "textDocument": {
                "synchronization": {
                    "dynamicRegistration": False,
                    "willSave": False,
                    "willSaveWaitUntil": False,
                    "didSave": True,
                },
                "publishDiagnostics": {
                    "relatedInformation": True,
                    "versionSupport": True,
                },
            },
            "workspace": {
                "didChangeConfiguration": {"dynamicRegistration": False},
                "didChangeWatchedFiles": {"dynamicRegistration": True},
                "configuration": True,
                "workspaceFolders": True,
            },
            "window": {
                "showMessage": {
                    "messageActionItem": {"additionalPropertiesSupport": False}
                },
                "workDoneProgress": True,
            },
            "general": {"positionEncodings": ["utf-16"]},
            "experimental": {},
        }


class LSPTextDocumentSyncKind(Enum):
    """Text document synchronization kind."""

    NONE = 0
    FULL = 1
    INCREMENTAL = 2


class LSPFileChangeType(Enum):
    """File event types for workspace/didChangeWatchedFiles."""

    CREATED = 1
    CHANGED = 2
    DELETED = 3


# JSON-RPC 2.0 Message Types
JsonRPCRequest = dict[str, Any]
JsonRPCResponse = dict[str, Any]
JsonRPCNotification = dict[str, Any]
JsonRPCMessage = JsonRPCRequest | JsonRPCResponse | JsonRPCNotification

# LSP-specific types
TextDocumentIdentifier = dict[str, str]  # {"uri": str}
VersionedTextDocumentIdentifier = dict[str, str | int]  # {"uri": str, "version": int}
TextDocumentItem = dict[str, str | int]  # {"uri", "languageId", "version", "text"}

# Common LSP request/response structures
InitializeParams = dict[str, Any]
InitializeResult = dict[str, Any]
