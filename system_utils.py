"""
System utilities for logging and process diagnostics

This module provides the logger setup shared by every client component and the
psutil-based helpers the process supervisor uses to inspect the language server
process around spawn and termination.
"""

import logging
import sys
from datetime import datetime

import psutil

CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
DETAILED_FORMAT = '%(asctime)s [%(levelname)8s] %(name)s.%(funcName)s:%(lineno)d - %(message)s'


class MicrosecondFormatter(logging.Formatter):
    """Custom formatter that provides microsecond precision timestamps"""
    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created)
        return dt.strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]  # Keep 3 decimal places (milliseconds)


def setup_logger(name='lsp_client', level=logging.INFO, log_file=None):
    """Setup the logger that gets passed to all client components.

    Console output uses the short format; when log_file is given, a file
    handler with the detailed format records everything at DEBUG.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if log_file else level)

    # Prevent duplicate handlers
    if logger.handlers:
        logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(MicrosecondFormatter(CONSOLE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(MicrosecondFormatter(DETAILED_FORMAT))
        logger.addHandler(file_handler)
        logger.debug(f"Debug log: {log_file}")

    logger.debug(f"Log level set to: {logging.getLevelName(level)}")
    return logger


def is_process_running(pid):
    """Return True if pid names a live process; zombies count as exited."""
    if pid is None:
        return False
    try:
        proc = psutil.Process(pid)
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def get_process_state(pid):
    """Get process state information as a dictionary"""
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            memory_info = proc.memory_info()
            return {
                'pid': pid,
                'name': proc.name(),
                'status': proc.status(),
                'rss_mb': memory_info.rss / 1024 / 1024,
                'num_threads': proc.num_threads(),
                'children': len(proc.children(recursive=True)),
                'timestamp': datetime.now().isoformat()
            }
    except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
        return {
            'pid': pid,
            'error': str(e),
            'timestamp': datetime.now().isoformat()
        }


def log_process_state(logger, pid, phase):
    """Log the state of a server process at DEBUG"""
    if not logger.isEnabledFor(logging.DEBUG):
        return

    state = get_process_state(pid)
    if 'error' in state:
        logger.debug(f"=== PROCESS {pid} ({phase}): {state['error']} ===")
        return

    logger.debug(
        f"=== PROCESS {pid} ({phase}): {state['name']} status={state['status']} "
        f"RSS={state['rss_mb']:.1f}MB threads={state['num_threads']} "
        f"children={state['children']} ==="
    )
