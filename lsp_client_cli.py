#!/usr/bin/env python3

"""
LSP Session Client CLI
Launches a language server, opens the given files through the document bridge,
waits for the server to react, then shuts the session down cleanly.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from exit_codes import (
    ClientExitCode,
    exit_code_for_error,
    exit_code_for_outcome,
    get_exit_code_description,
)
from lsp_client_config import ClientConfiguration
from lsp_document_bridge import DocumentEvent, path_to_uri
from lsp_errors import LaunchError, SessionError
from lsp_host import HostContext, activate, deactivate
from system_utils import setup_logger

LANGUAGE_IDS = {
    ".c": "c",
    ".cpp": "cpp",
    ".h": "c",
    ".js": "javascript",
    ".json": "json",
    ".md": "markdown",
    ".py": "python",
    ".rs": "rust",
    ".sh": "shellscript",
    ".toml": "toml",
    ".ts": "typescript",
    ".txt": "plaintext",
    ".yaml": "yaml",
    ".yml": "yaml",
}


def guess_language_id(path: str) -> str:
    """Guess a language id from the file extension."""
    return LANGUAGE_IDS.get(Path(path).suffix.lower(), "plaintext")


def parse_env_assignments(assignments: list[str]) -> dict[str, str]:
    """Parse KEY=VALUE strings."""
    env = {}
    for assignment in assignments:
        if "=" not in assignment:
            raise ValueError(f"Invalid --env value (expected KEY=VALUE): {assignment}")
        key, value = assignment.split("=", 1)
        if not key:
            raise ValueError(f"Invalid --env value (empty name): {assignment}")
        env[key] = value
    return env


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Turn command line options into configuration overrides."""
    server: dict[str, Any] = {}
    if args.command:
        server["command"] = args.command
    if args.arg:
        server["args"] = list(args.arg)
    if args.env:
        server["env"] = parse_env_assignments(args.env)
    if args.cwd:
        server["cwd"] = args.cwd
    if args.server_log_level:
        server["log_level"] = args.server_log_level

    overrides: dict[str, Any] = {}
    if server:
        overrides["server"] = server
    if args.workspace:
        overrides["workspace_root"] = args.workspace
    if args.initialize_timeout is not None:
        overrides["initialize_timeout"] = args.initialize_timeout
    if args.debug:
        overrides["debug"] = True
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    return overrides


def format_summary(client, opened: list[str]) -> str:
    """Format the end-of-run summary."""
    lines = [
        f"Client: {client.name} ({client.client_id})",
        f"Phase: {client.phase.value}",
        f"Outcome: {client.outcome.value if client.outcome else 'none'}",
    ]
    if client.failure_reason:
        lines.append(f"Failure: {client.failure_reason}")
    lines.append(f"Documents opened: {len(opened)}")
    for uri in opened:
        diagnostics = client.diagnostics.get(uri)
        count = "n/a" if diagnostics is None else str(len(diagnostics))
        lines.append(f"  {uri}: {count} diagnostics")
    return "\n".join(lines)


async def run_client(
    context: HostContext,
    files: list[str],
    language: str | None,
    linger: float,
) -> ClientExitCode:
    """Activate, open files, wait, deactivate."""
    try:
        client = await activate(context)
    except (LaunchError, SessionError) as e:
        context.logger.error(f"Failed to start language server: {e}")
        await deactivate(context)
        return exit_code_for_error(e)

    opened = []
    for file_path in files:
        text = Path(file_path).read_text(encoding="utf-8", errors="replace")
        uri = path_to_uri(file_path)
        client.submit(
            DocumentEvent.opened(uri, language or guess_language_id(file_path), text)
        )
        opened.append(uri)

    if linger > 0:
        await asyncio.sleep(linger)

    for file_path, uri in zip(files, opened):
        client.submit(DocumentEvent.closed(uri, language or guess_language_id(file_path)))

    await deactivate(context)
    print(format_summary(client, opened))
    return exit_code_for_outcome(client.outcome)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point - handles argument parsing and object creation."""
    parser = argparse.ArgumentParser(
        description="Run a language server session from the command line",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --config client.json --open src/main.rs
  %(prog)s --command ofoam_ls --env RUST_LOG=debug --open cavity/0/U --linger 2
  LSP_SERVER_COMMAND=pyright-langserver %(prog)s --arg=--stdio --open app.py
        """,
    )

    parser.add_argument("--config", help="Path to a client configuration JSON file")
    parser.add_argument("--command", help="Language server executable")
    parser.add_argument(
        "--arg", action="append", default=[], help="Server argument (repeatable)"
    )
    parser.add_argument(
        "--env", action="append", default=[], help="Server environment KEY=VALUE (repeatable)"
    )
    parser.add_argument("--cwd", help="Server working directory")
    parser.add_argument("--server-log-level", help="Server log verbosity (e.g. debug)")
    parser.add_argument("--workspace", help="Workspace root sent in initialize")
    parser.add_argument(
        "--open", action="append", default=[], dest="files", help="File to open (repeatable)"
    )
    parser.add_argument("--language", help="Language id for opened files")
    parser.add_argument(
        "--linger", type=float, default=1.0, help="Seconds to keep the session open"
    )
    parser.add_argument(
        "--initialize-timeout", type=float, help="Seconds to wait for initialize"
    )
    parser.add_argument("--debug", action="store_true", help="Use the debug server launch")
    parser.add_argument("--log-file", help="Write a detailed debug log to this file")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )

    args = parser.parse_args(argv)

    for file_path in args.files:
        if not Path(file_path).is_file():
            print(f"Error: file not found: {file_path}", file=sys.stderr)
            return ClientExitCode.INVALID_CONFIGURATION

    try:
        configuration = ClientConfiguration.from_environment(
            args.config, overrides=build_overrides(args)
        )
    except (OSError, ValueError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return ClientExitCode.INVALID_CONFIGURATION

    logger = setup_logger(
        "lsp_client",
        level=getattr(logging, configuration.log_level),
        log_file=args.log_file,
    )
    context = HostContext(configuration=configuration, logger=logger)

    exit_code = asyncio.run(run_client(context, args.files, args.language, args.linger))
    if exit_code != ClientExitCode.SUCCESS_CLEAN_SHUTDOWN:
        print(f"Error: {get_exit_code_description(exit_code)}", file=sys.stderr)
    return int(exit_code)


if __name__ == "__main__":
    sys.exit(main())
