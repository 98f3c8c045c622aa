"""
Exit code definitions for the LSP client command line.

Provides standardized exit codes that scripts and process managers can
interpret to understand whether the language server session ran and stopped
cleanly, failed to launch, or failed while running.
"""

import enum

from lsp_errors import (
    LaunchError,
    LaunchErrorReason,
    SessionError,
    SessionErrorReason,
)
from lsp_session import SessionOutcome


class ClientExitCode(enum.IntEnum):
    """Exit codes for the different ways a client run can end."""

    # Success codes (0-9)
    SUCCESS_CLEAN_SHUTDOWN = 0  # Session started and stopped cleanly

    # Launch failures (10-19)
    SERVER_NOT_FOUND = 10  # Server executable could not be located
    SERVER_PERMISSION_DENIED = 11  # Server executable is not executable
    SERVER_LAUNCH_ERROR = 12  # Other OS error while spawning

    # Session failures (20-29)
    INITIALIZE_TIMEOUT = 20  # No initialize response within the bound
    HANDSHAKE_FAILED = 21  # Initialize rejected, malformed or transport failure
    SERVER_TERMINATED = 22  # Session failed while active

    # Configuration/setup errors (50-59)
    INVALID_CONFIGURATION = 50  # Invalid client configuration

    # Unknown/unexpected errors (60-69)
    UNEXPECTED_ERROR = 60  # Unexpected exception


_LAUNCH_CODES = {
    LaunchErrorReason.NOT_FOUND: ClientExitCode.SERVER_NOT_FOUND,
    LaunchErrorReason.PERMISSION_DENIED: ClientExitCode.SERVER_PERMISSION_DENIED,
    LaunchErrorReason.OS_ERROR: ClientExitCode.SERVER_LAUNCH_ERROR,
}


def exit_code_for_error(error: Exception) -> ClientExitCode:
    """Map a start() failure to an exit code."""
    if isinstance(error, LaunchError):
        return _LAUNCH_CODES[error.reason]
    if isinstance(error, SessionError):
        if error.reason == SessionErrorReason.TIMEOUT:
            return ClientExitCode.INITIALIZE_TIMEOUT
        return ClientExitCode.HANDSHAKE_FAILED
    if isinstance(error, ValueError):
        return ClientExitCode.INVALID_CONFIGURATION
    return ClientExitCode.UNEXPECTED_ERROR


def exit_code_for_outcome(outcome: SessionOutcome | None) -> ClientExitCode:
    """Map how a session ended to an exit code."""
    if outcome == SessionOutcome.FAILED:
        return ClientExitCode.SERVER_TERMINATED
    return ClientExitCode.SUCCESS_CLEAN_SHUTDOWN


def get_exit_code_description(code: ClientExitCode) -> str:
    """Get human-readable description of exit code."""
    descriptions = {
        ClientExitCode.SUCCESS_CLEAN_SHUTDOWN: "Language server session stopped cleanly",
        ClientExitCode.SERVER_NOT_FOUND: "Language server executable not found",
        ClientExitCode.SERVER_PERMISSION_DENIED: "Language server executable is not executable",
        ClientExitCode.SERVER_LAUNCH_ERROR: "Language server could not be spawned",
        ClientExitCode.INITIALIZE_TIMEOUT: "Language server did not answer initialize in time",
        ClientExitCode.HANDSHAKE_FAILED: "Initialize handshake with the language server failed",
        ClientExitCode.SERVER_TERMINATED: "Language server terminated unexpectedly",
        ClientExitCode.INVALID_CONFIGURATION: "Invalid client configuration",
        ClientExitCode.UNEXPECTED_ERROR: "Unexpected error",
    }
    return descriptions.get(code, f"Unknown exit code: {code}")
