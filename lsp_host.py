"""
Host integration for the LSP client

The host owns a HostContext and passes it to activate() and deactivate(); the
context holds the one LanguageClient for that host together with any
subscriptions the host registered, so there is no process-wide client state.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from lsp_client import LanguageClient
from lsp_client_config import ClientConfiguration


@dataclass
class HostContext:
    """Per-host state shared by the activation and deactivation hooks."""

    configuration: ClientConfiguration
    logger: logging.Logger
    client: LanguageClient | None = None
    subscriptions: list[Callable[[], Any]] = field(default_factory=list)


def create_client(configuration: ClientConfiguration, logger: logging.Logger) -> LanguageClient:
    """Create a LanguageClient from configuration."""
    return LanguageClient(
        configuration.client_id,
        configuration.name,
        configuration.to_server_options(),
        client_options=configuration.to_client_options(),
        logger=logger,
        debug=configuration.debug,
    )


async def activate(context: HostContext) -> LanguageClient:
    """Create the client for this host and start it.

    Start failures propagate; the client stays on the context so deactivate()
    still runs cleanly.
    """
    if context.client is None:
        context.client = create_client(context.configuration, context.logger)
    await context.client.start()
    return context.client


async def deactivate(context: HostContext) -> None:
    """Release host subscriptions and stop the client, if any."""
    while context.subscriptions:
        dispose = context.subscriptions.pop()
        try:
            dispose()
        except Exception as e:
            context.logger.error(f"Error disposing subscription: {e}")

    if context.client is None:
        return
    await context.client.stop()
