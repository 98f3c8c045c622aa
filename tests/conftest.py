"""
Pytest configuration and shared fixtures for LSP client tests.
"""

import logging
import sys
import threading
import time
from pathlib import Path

import pytest
import pytest_asyncio

from lsp_client import ClientOptions, LanguageClient
from lsp_server_manager import ServerLaunchSpec, ServerOptions

MOCK_SERVER = Path(__file__).parent / "mock_lsp_server.py"


@pytest.fixture
def logger():
    """Logger that propagates to pytest's caplog."""
    test_logger = logging.getLogger("lsp_client.tests")
    test_logger.setLevel(logging.DEBUG)
    return test_logger


@pytest.fixture
def mock_server_path():
    return str(MOCK_SERVER)


@pytest.fixture
def launch_spec_factory(mock_server_path):
    """Build launch specs that run the mock server under this interpreter."""

    def make(mode: str = "normal", env: dict[str, str] | None = None) -> ServerLaunchSpec:
        return ServerLaunchSpec(
            command=sys.executable,
            args=("-u", mock_server_path, "--mode", mode),
            env=env or {},
        )

    return make


@pytest.fixture
def fast_options():
    """Client options with short timeouts so failure paths finish quickly."""
    return ClientOptions(
        initialize_timeout=2.0,
        shutdown_timeout=1.0,
        exit_timeout=1.0,
        terminate_grace_period=1.0,
        max_pending_events=8,
    )


@pytest_asyncio.fixture
async def client_factory(launch_spec_factory, fast_options, logger):
    """Create clients against the mock server; every client is stopped afterwards."""
    clients: list[LanguageClient] = []

    def make(
        mode: str = "normal",
        env: dict[str, str] | None = None,
        options: ClientOptions | None = None,
    ) -> LanguageClient:
        client = LanguageClient(
            "mock-lsp",
            "Mock LSP",
            ServerOptions(run=launch_spec_factory(mode, env)),
            client_options=options or fast_options,
            logger=logger,
        )
        clients.append(client)
        return client

    yield make

    for client in clients:
        await client.stop()


@pytest.fixture(autouse=True)
def cleanup_threads():
    """Give non-daemon threads started by a test a moment to finish."""
    initial_threads = set(threading.enumerate())

    yield

    deadline = time.time() + 5.0
    while time.time() < deadline:
        remaining = [
            t
            for t in set(threading.enumerate()) - initial_threads
            if t.is_alive() and not t.daemon and t != threading.current_thread()
        ]
        if not remaining:
            break
        time.sleep(0.1)
