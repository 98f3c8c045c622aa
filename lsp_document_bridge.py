"""
Document Event Bridge

Forwards host document lifecycle events (open, change, save, close) and file
system watch matches to the language server as protocol notifications. Events
are filtered by a DocumentSelector, held in a bounded queue while the session
is not yet active, and drained in arrival order once it is.
"""

import fnmatch
import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import unquote, urlsplit

from constants import DEFAULT_MAX_PENDING_EVENTS, SELECTOR_WILDCARD
from lsp_constants import LSPFileChangeType, LSPMethod
from lsp_errors import SessionError, TransportError
from lsp_session import SessionPhase


@dataclass(frozen=True)
class DocumentFilter:
    """One (scheme, language-id) predicate; "*" matches anything."""

    scheme: str = SELECTOR_WILDCARD
    language: str = SELECTOR_WILDCARD

    def matches(self, scheme: str, language_id: str | None) -> bool:
        if self.scheme != SELECTOR_WILDCARD and self.scheme != scheme:
            return False
        if language_id is None:
            return True
        return self.language == SELECTOR_WILDCARD or self.language == language_id

    def to_dict(self) -> dict[str, str]:
        return {"scheme": self.scheme, "language": self.language}


@dataclass(frozen=True)
class DocumentSelector:
    """Set of document filters; a document matches if any filter does."""

    filters: frozenset[DocumentFilter]

    @classmethod
    def match_all(cls) -> "DocumentSelector":
        return cls(frozenset({DocumentFilter()}))

    @classmethod
    def from_filters(cls, filters: Iterable[dict[str, str] | DocumentFilter]) -> "DocumentSelector":
        """Build from {"scheme": ..., "language": ...} mappings; missing keys are wildcards."""
        built = set()
        for item in filters:
            if isinstance(item, DocumentFilter):
                built.add(item)
                continue
            unknown = set(item) - {"scheme", "language"}
            if unknown:
                raise ValueError(f"Unknown document filter keys: {sorted(unknown)}")
            built.add(
                DocumentFilter(
                    scheme=item.get("scheme") or SELECTOR_WILDCARD,
                    language=item.get("language") or SELECTOR_WILDCARD,
                )
            )
        return cls(frozenset(built))

    def matches(self, scheme: str, language_id: str | None) -> bool:
        return any(f.matches(scheme, language_id) for f in self.filters)


class DocumentEventKind(Enum):
    """Document lifecycle events delivered by the host."""

    OPEN = "open"
    CHANGE = "change"
    SAVE = "save"
    CLOSE = "close"


@dataclass(frozen=True)
class DocumentEvent:
    """A host document lifecycle event."""

    kind: DocumentEventKind
    uri: str
    language_id: str
    version: int = 0
    text: str | None = None

    @classmethod
    def opened(cls, uri: str, language_id: str, text: str, version: int = 1) -> "DocumentEvent":
        return cls(DocumentEventKind.OPEN, uri, language_id, version, text)

    @classmethod
    def changed(cls, uri: str, language_id: str, text: str, version: int) -> "DocumentEvent":
        return cls(DocumentEventKind.CHANGE, uri, language_id, version, text)

    @classmethod
    def saved(cls, uri: str, language_id: str, text: str | None = None) -> "DocumentEvent":
        return cls(DocumentEventKind.SAVE, uri, language_id, text=text)

    @classmethod
    def closed(cls, uri: str, language_id: str) -> "DocumentEvent":
        return cls(DocumentEventKind.CLOSE, uri, language_id)


@dataclass(frozen=True)
class FileWatchEvent:
    """A file system watcher match delivered by the host."""

    uri: str
    change: LSPFileChangeType


HostEvent = DocumentEvent | FileWatchEvent


class NotificationSender(Protocol):
    """What the bridge needs from a session."""

    phase: SessionPhase

    def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None: ...


def uri_scheme(uri: str) -> str:
    return urlsplit(uri).scheme or "file"


def uri_path(uri: str) -> str:
    parts = urlsplit(uri)
    return unquote(parts.path) if parts.scheme else uri


def path_to_uri(path: str | Path) -> str:
    return Path(path).resolve().as_uri()


class DocumentEventBridge:
    """Bounded, drain-based forwarder of host events to the session."""

    def __init__(
        self,
        selector: DocumentSelector,
        logger: logging.Logger,
        max_pending_events: int = DEFAULT_MAX_PENDING_EVENTS,
        watch_patterns: Iterable[str] = (),
    ):
        self.selector = selector
        self.logger = logger
        self.max_pending_events = max_pending_events
        self.watch_patterns = tuple(watch_patterns)

        self._queue: deque[HostEvent] = deque()
        self._session: NotificationSender | None = None
        self._phase = SessionPhase.UNINITIALIZED
        self.forwarded_count = 0
        self.dropped_count = 0

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    def attach(self, session: NotificationSender) -> None:
        """Route notifications through session from now on."""
        self._session = session
        self.on_phase_change(session.phase)

    def on_phase_change(self, phase: SessionPhase) -> None:
        self._phase = phase
        if phase == SessionPhase.ACTIVE:
            self.drain()
        elif phase == SessionPhase.STOPPED and self._queue:
            dropped = len(self._queue)
            self._queue.clear()
            self.dropped_count += dropped
            self.logger.warning(f"Session stopped, dropped {dropped} pending document events")

    def matches(self, event: HostEvent) -> bool:
        """Apply the selector (and, for watch events, the watcher globs)."""
        scheme = uri_scheme(event.uri)
        if isinstance(event, FileWatchEvent):
            if not self.selector.matches(scheme, None):
                return False
            if not self.watch_patterns:
                return True
            path = uri_path(event.uri)
            return any(fnmatch.fnmatch(path, pattern) for pattern in self.watch_patterns)
        return self.selector.matches(scheme, event.language_id)

    def submit(self, event: HostEvent) -> bool:
        """Accept an event from the host without blocking.

        Returns True if the event was forwarded or queued, False if it was
        filtered out or dropped.
        """
        if not self.matches(event):
            self.logger.debug(f"Ignoring event for unselected document: {event.uri}")
            return False

        if self._phase == SessionPhase.STOPPED:
            self.dropped_count += 1
            self.logger.warning(f"Session stopped, dropping event for {event.uri}")
            return False

        # The bound only covers events held back before the session is active
        if self._phase == SessionPhase.ACTIVE and not self._queue:
            self._queue.append(event)
            self.drain()
            return True

        if len(self._queue) >= self.max_pending_events:
            self.dropped_count += 1
            self.logger.warning(
                f"Pending event queue full ({self.max_pending_events}), dropping event for {event.uri}"
            )
            return False

        self._queue.append(event)
        if self._phase == SessionPhase.ACTIVE:
            self.drain()
        return True

    def drain(self) -> int:
        """Send queued events while the session is active. Returns the number sent."""
        sent = 0
        while self._queue and self._session is not None and self._session.phase == SessionPhase.ACTIVE:
            event = self._queue.popleft()
            method, params = self.translate(event)
            try:
                self._session.send_notification(method, params)
            except (SessionError, TransportError) as e:
                self.dropped_count += 1
                self.logger.warning(f"Failed to forward {method} for {event.uri}: {e}")
                break
            sent += 1
            self.forwarded_count += 1
        return sent

    def translate(self, event: HostEvent) -> tuple[str, dict[str, Any]]:
        """Map a host event to a notification method and params."""
        if isinstance(event, FileWatchEvent):
            return LSPMethod.DID_CHANGE_WATCHED_FILES, {
                "changes": [{"uri": event.uri, "type": event.change.value}]
            }

        if event.kind == DocumentEventKind.OPEN:
            return LSPMethod.DID_OPEN, {
                "textDocument": {
                    "uri": event.uri,
                    "languageId": event.language_id,
                    "version": event.version,
                    "text": event.text or "",
                }
            }
        if event.kind == DocumentEventKind.CHANGE:
            # Full document sync
            return LSPMethod.DID_CHANGE, {
                "textDocument": {"uri": event.uri, "version": event.version},
                "contentChanges": [{"text": event.text or ""}],
            }
        if event.kind == DocumentEventKind.SAVE:
            params: dict[str, Any] = {"textDocument": {"uri": event.uri}}
            if event.text is not None:
                params["text"] = event.text
            return LSPMethod.DID_SAVE, params
        return LSPMethod.DID_CLOSE, {"textDocument": {"uri": event.uri}}
