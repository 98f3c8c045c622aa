"""
Tests for document selection and the document event bridge.
"""

from unittest.mock import Mock

import pytest

from lsp_constants import LSPFileChangeType, LSPMethod
from lsp_document_bridge import (
    DocumentEvent,
    DocumentEventBridge,
    DocumentFilter,
    DocumentSelector,
    FileWatchEvent,
    path_to_uri,
    uri_path,
    uri_scheme,
)
from lsp_errors import SessionError, SessionErrorReason
from lsp_session import SessionPhase


class FakeSession:
    """Records notifications instead of sending them."""

    def __init__(self, phase: SessionPhase = SessionPhase.STARTING):
        self.phase = phase
        self.sent: list[tuple[str, dict]] = []
        self.fail = False

    def send_notification(self, method, params=None):
        if self.fail:
            raise SessionError(SessionErrorReason.NOT_READY, "not ready")
        self.sent.append((method, params))


class TestDocumentSelector:
    """Test document filter matching."""

    def test_match_all(self):
        selector = DocumentSelector.match_all()
        assert selector.matches("file", "rust")
        assert selector.matches("untitled", "anything")

    def test_scheme_and_language(self):
        selector = DocumentSelector.from_filters([{"scheme": "file", "language": "python"}])

        assert selector.matches("file", "python")
        assert not selector.matches("file", "rust")
        assert not selector.matches("untitled", "python")

    def test_missing_keys_are_wildcards(self):
        selector = DocumentSelector.from_filters([{"scheme": "file"}])
        assert selector.matches("file", "rust")
        assert not selector.matches("git", "rust")

    def test_any_filter_matches(self):
        selector = DocumentSelector.from_filters(
            [DocumentFilter("file", "c"), {"scheme": "untitled", "language": "*"}]
        )
        assert selector.matches("file", "c")
        assert selector.matches("untitled", "rust")
        assert not selector.matches("file", "rust")

    def test_unknown_filter_key_rejected(self):
        with pytest.raises(ValueError):
            DocumentSelector.from_filters([{"pattern": "**/*.py"}])

    def test_language_none_checks_scheme_only(self):
        selector = DocumentSelector.from_filters([{"scheme": "file", "language": "python"}])
        assert selector.matches("file", None)
        assert not selector.matches("untitled", None)


class TestUriHelpers:
    """Test URI helpers."""

    def test_uri_scheme(self):
        assert uri_scheme("file:///tmp/a.rs") == "file"
        assert uri_scheme("untitled:Untitled-1") == "untitled"
        assert uri_scheme("/tmp/a.rs") == "file"

    def test_uri_path_unquotes(self):
        assert uri_path("file:///tmp/my%20file.rs") == "/tmp/my file.rs"

    def test_path_to_uri(self, tmp_path):
        uri = path_to_uri(tmp_path / "a b.txt")
        assert uri.startswith("file://")
        assert uri_path(uri) == str((tmp_path / "a b.txt").resolve())


class TestDocumentEventBridge:
    """Test queueing, draining and translation of host events."""

    def setup_method(self):
        self.logger = Mock()
        self.bridge = DocumentEventBridge(
            DocumentSelector.from_filters([{"scheme": "file", "language": "*"}]),
            self.logger,
            max_pending_events=3,
            watch_patterns=("**/.clientrc",),
        )
        self.session = FakeSession()
        self.bridge.attach(self.session)

    def activate(self):
        self.session.phase = SessionPhase.ACTIVE
        self.bridge.on_phase_change(SessionPhase.ACTIVE)

    def test_events_queued_until_active_then_drained_in_order(self):
        events = [
            DocumentEvent.opened("file:///a.rs", "rust", "fn main() {}"),
            DocumentEvent.changed("file:///a.rs", "rust", "fn main() { }", 2),
            DocumentEvent.saved("file:///a.rs", "rust"),
        ]
        for event in events:
            assert self.bridge.submit(event)

        assert self.session.sent == []
        assert self.bridge.pending_count == 3

        self.activate()

        assert [m for m, _ in self.session.sent] == [
            LSPMethod.DID_OPEN,
            LSPMethod.DID_CHANGE,
            LSPMethod.DID_SAVE,
        ]
        assert self.bridge.pending_count == 0
        assert self.bridge.forwarded_count == 3

    def test_active_events_forwarded_immediately(self):
        self.activate()
        self.bridge.submit(DocumentEvent.closed("file:///a.rs", "rust"))
        assert self.session.sent == [
            (LSPMethod.DID_CLOSE, {"textDocument": {"uri": "file:///a.rs"}})
        ]

    def test_unselected_documents_ignored(self):
        self.activate()
        assert not self.bridge.submit(DocumentEvent.opened("untitled:1", "rust", ""))
        assert self.session.sent == []
        assert self.bridge.dropped_count == 0

    def test_full_queue_drops_with_warning(self):
        for n in range(4):
            self.bridge.submit(DocumentEvent.opened(f"file:///{n}.rs", "rust", ""))

        assert self.bridge.pending_count == 3
        assert self.bridge.dropped_count == 1
        self.logger.warning.assert_called()

    def test_active_events_bypass_full_queue_bound(self):
        for n in range(3):
            self.bridge.submit(DocumentEvent.opened(f"file:///{n}.rs", "rust", ""))
        self.activate()

        for n in range(5):
            assert self.bridge.submit(DocumentEvent.saved(f"file:///{n}.rs", "rust"))

        assert self.bridge.dropped_count == 0
        assert self.bridge.forwarded_count == 8
        assert self.bridge.pending_count == 0

    def test_zero_bound_still_forwards_while_active(self):
        bridge = DocumentEventBridge(
            DocumentSelector.match_all(), self.logger, max_pending_events=0
        )
        session = FakeSession()
        bridge.attach(session)

        assert not bridge.submit(DocumentEvent.opened("file:///early.rs", "rust", ""))
        assert bridge.dropped_count == 1

        session.phase = SessionPhase.ACTIVE
        bridge.on_phase_change(SessionPhase.ACTIVE)

        assert bridge.submit(DocumentEvent.opened("file:///a.rs", "rust", ""))
        assert bridge.submit(DocumentEvent.closed("file:///a.rs", "rust"))
        assert [m for m, _ in session.sent] == [LSPMethod.DID_OPEN, LSPMethod.DID_CLOSE]
        assert bridge.dropped_count == 1

    def test_stopped_session_drops_queue(self):
        self.bridge.submit(DocumentEvent.opened("file:///a.rs", "rust", ""))

        self.session.phase = SessionPhase.STOPPED
        self.bridge.on_phase_change(SessionPhase.STOPPED)

        assert self.bridge.pending_count == 0
        assert self.bridge.dropped_count == 1
        assert not self.bridge.submit(DocumentEvent.opened("file:///b.rs", "rust", ""))
        assert self.session.sent == []

    def test_send_failure_stops_drain(self):
        self.bridge.submit(DocumentEvent.opened("file:///a.rs", "rust", ""))
        self.bridge.submit(DocumentEvent.opened("file:///b.rs", "rust", ""))
        self.session.fail = True

        self.activate()

        assert self.bridge.dropped_count == 1
        assert self.bridge.pending_count == 1

    def test_watch_event_matches_glob(self):
        self.activate()

        assert self.bridge.submit(
            FileWatchEvent("file:///work/case/.clientrc", LSPFileChangeType.CHANGED)
        )
        assert not self.bridge.submit(
            FileWatchEvent("file:///work/case/other.txt", LSPFileChangeType.CHANGED)
        )
        assert self.session.sent == [
            (
                LSPMethod.DID_CHANGE_WATCHED_FILES,
                {"changes": [{"uri": "file:///work/case/.clientrc", "type": 2}]},
            )
        ]

    def test_watch_event_without_patterns_accepted(self):
        bridge = DocumentEventBridge(DocumentSelector.match_all(), self.logger)
        assert bridge.submit(FileWatchEvent("file:///x", LSPFileChangeType.DELETED))

    def test_translate_open(self):
        method, params = self.bridge.translate(
            DocumentEvent.opened("file:///a.rs", "rust", "text", version=4)
        )
        assert method == LSPMethod.DID_OPEN
        assert params == {
            "textDocument": {
                "uri": "file:///a.rs",
                "languageId": "rust",
                "version": 4,
                "text": "text",
            }
        }

    def test_translate_change_sends_full_text(self):
        method, params = self.bridge.translate(
            DocumentEvent.changed("file:///a.rs", "rust", "new", 5)
        )
        assert method == LSPMethod.DID_CHANGE
        assert params["textDocument"] == {"uri": "file:///a.rs", "version": 5}
        assert params["contentChanges"] == [{"text": "new"}]

    def test_translate_save_includes_text_when_given(self):
        _, without_text = self.bridge.translate(DocumentEvent.saved("file:///a.rs", "rust"))
        _, with_text = self.bridge.translate(DocumentEvent.saved("file:///a.rs", "rust", "x"))

        assert "text" not in without_text
        assert with_text["text"] == "x"
