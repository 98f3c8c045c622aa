#!/usr/bin/env python3

"""
Shared constants for the LSP session client.

Default timeouts and limits used by the session, the process supervisor and the
configuration layer.
"""

# Client identity sent in clientInfo
DEFAULT_CLIENT_ID = "lsp-session-client"
DEFAULT_CLIENT_NAME = "LSP Session Client"
CLIENT_VERSION = "1.5.0"

# Handshake timeouts (seconds)
DEFAULT_INITIALIZE_TIMEOUT = 30.0
DEFAULT_SHUTDOWN_TIMEOUT = 5.0

# Process termination (seconds)
DEFAULT_TERMINATE_GRACE_PERIOD = 5.0
DEFAULT_KILL_TIMEOUT = 2.0

# Reader thread join bound on teardown (seconds)
READER_JOIN_TIMEOUT = 5.0

# Document events held while the session is not active
DEFAULT_MAX_PENDING_EVENTS = 64

# Server log verbosity overlay
DEFAULT_SERVER_LOG_ENV_VAR = "RUST_LOG"

# Wildcard for document selector fields
SELECTOR_WILDCARD = "*"

# Largest header block accepted before the blank line (bytes)
MAX_HEADER_BYTES = 8192

# Wait for a voluntary exit after the exit notification (seconds)
DEFAULT_EXIT_TIMEOUT = 2.0
