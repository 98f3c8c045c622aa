"""
Tests for host activation and deactivation hooks.
"""

import sys
from unittest.mock import Mock

import pytest

from lsp_client_config import ClientConfiguration, ServerConfig
from lsp_errors import LaunchError
from lsp_host import HostContext, activate, create_client, deactivate
from lsp_session import SessionOutcome, SessionPhase


def mock_server_configuration(mock_server_path: str, mode: str = "normal") -> ClientConfiguration:
    return ClientConfiguration(
        server=ServerConfig(
            command=sys.executable, args=["-u", mock_server_path, "--mode", mode]
        ),
        client_id="mock-lsp",
        name="Mock LSP",
        initialize_timeout=2.0,
        shutdown_timeout=1.0,
        exit_timeout=1.0,
        terminate_grace_period=1.0,
    )


class TestHostHooks:
    """Test activate()/deactivate() around a real server."""

    @pytest.mark.asyncio
    async def test_activate_and_deactivate(self, mock_server_path, logger):
        context = HostContext(mock_server_configuration(mock_server_path), logger)

        client = await activate(context)
        assert context.client is client
        assert client.phase == SessionPhase.ACTIVE
        assert client.client_id == "mock-lsp"

        await deactivate(context)
        assert client.phase == SessionPhase.STOPPED
        assert client.outcome == SessionOutcome.CLEAN

    @pytest.mark.asyncio
    async def test_deactivate_disposes_subscriptions_in_reverse(self, mock_server_path, logger):
        context = HostContext(mock_server_configuration(mock_server_path), logger)
        order = []
        context.subscriptions.append(lambda: order.append("first"))
        context.subscriptions.append(Mock(side_effect=RuntimeError("dispose failed")))
        context.subscriptions.append(lambda: order.append("last"))

        await activate(context)
        await deactivate(context)

        assert order == ["last", "first"]
        assert context.subscriptions == []

    @pytest.mark.asyncio
    async def test_deactivate_without_activate(self, mock_server_path, logger):
        context = HostContext(mock_server_configuration(mock_server_path), logger)
        await deactivate(context)
        assert context.client is None

    @pytest.mark.asyncio
    async def test_activation_failure_propagates(self, tmp_path, logger):
        configuration = ClientConfiguration(server=ServerConfig(command=str(tmp_path / "nope")))
        context = HostContext(configuration, logger)

        with pytest.raises(LaunchError):
            await activate(context)

        assert context.client is not None
        await deactivate(context)
        assert context.client.phase == SessionPhase.STOPPED

    def test_create_client_uses_configuration(self, mock_server_path, logger):
        configuration = mock_server_configuration(mock_server_path)
        configuration.debug = True
        client = create_client(configuration, logger)

        assert client.name == "Mock LSP"
        assert client.debug is True
        assert client.client_options.initialize_timeout == 2.0
