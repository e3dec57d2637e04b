# /logic/state.py

import logging
from typing import Callable, Dict, List, Optional, Protocol, Set, Tuple

from data_models import AnalysisResult, BatchSummary, ChatMessage, Page
from logic.store import ALL_SPECIES

logger = logging.getLogger(__name__)

CHAT_APOLOGY = "Sorry, I encountered an error. Please try again."


# --- Audio Playback ---

class AudioBackend(Protocol):
    def play(self, url: str) -> None: ...
    def stop(self) -> None: ...


class AudioSlot:
    """
    The one shared audio output. At most one file_id holds it at a time;
    acquiring it for a new id stops whoever held it before.
    """

    def __init__(self, backend: Optional[AudioBackend] = None):
        self.backend = backend
        self.playing_file_id: Optional[str] = None
        self.listeners: List[Callable[[Optional[str]], None]] = []

    def _notify(self):
        for listener in self.listeners:
            listener(self.playing_file_id)

    def is_playing(self, file_id: str) -> bool:
        return self.playing_file_id == file_id

    def start(self, file_id: str, url: str):
        if self.playing_file_id is not None:
            self.release()
        if self.backend is not None:
            self.backend.play(url)
        self.playing_file_id = file_id
        self._notify()

    def release(self):
        if self.playing_file_id is None:
            return
        if self.backend is not None:
            self.backend.stop()
        self.playing_file_id = None
        self._notify()

    def toggle(self, file_id: str, url: str) -> bool:
        """Play/pause button semantics. Returns True if `file_id` is now playing."""
        if self.is_playing(file_id):
            self.release()
            return False
        self.start(file_id, url)
        return True

    def on_ended(self, file_id: Optional[str] = None):
        """Natural end of playback. A late event for a previous holder is ignored."""
        if file_id is not None and file_id != self.playing_file_id:
            return
        self.playing_file_id = None
        self._notify()


# --- Chat ---

class ChatTranscript:
    """Append-only list of role-tagged messages. Lives only as long as the session."""

    def __init__(self):
        self._messages: List[ChatMessage] = []

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def append(self, role: str, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self._messages.append(message)
        return message


# --- Request Ordering ---

class RequestSequencer:
    """
    Hands out increasing sequence numbers per channel ("results", "stats", ...)
    and only accepts a completion if nothing newer has been applied yet.
    """

    def __init__(self):
        self._issued: Dict[str, int] = {}
        self._applied: Dict[str, int] = {}

    def next(self, channel: str) -> int:
        seq = self._issued.get(channel, 0) + 1
        self._issued[channel] = seq
        return seq

    def latest(self, channel: str) -> int:
        """The most recently issued number for `channel`, 0 if none."""
        return self._issued.get(channel, 0)

    def accept(self, channel: str, seq: int) -> bool:
        if seq <= self._applied.get(channel, 0):
            logger.debug("Discarding stale %s response #%d", channel, seq)
            return False
        self._applied[channel] = seq
        return True


# --- Session State ---

class SessionState:
    """Transient UI state. Nothing in here is sent to or loaded from the service."""

    def __init__(self, audio: Optional[AudioSlot] = None):
        self.current_page: Page = Page.DASHBOARD
        self.expanded_result_ids: Set[str] = set()
        self.filter_species: str = ALL_SPECIES
        self.search_term: str = ""
        self.selected_species: Optional[str] = None
        self.audio = audio or AudioSlot()
        self.chat = ChatTranscript()
        self.chat_loading = False

        # Single analysis
        self.selected_file: Optional[str] = None
        self.current_result: Optional[AnalysisResult] = None
        self.analyzing = False

        # Batch analysis
        self.batch_files: List[str] = []
        self.batch_summary: Optional[BatchSummary] = None
        self.batch_analyzing = False

        self.is_online = True
        self.loading_results = False

    @property
    def playing_file_id(self) -> Optional[str]:
        return self.audio.playing_file_id

    def navigate(self, page: Page):
        self.current_page = Page(page)

    def toggle_expanded(self, file_id: str) -> bool:
        if file_id in self.expanded_result_ids:
            self.expanded_result_ids.discard(file_id)
            return False
        self.expanded_result_ids.add(file_id)
        return True

    def is_expanded(self, file_id: str) -> bool:
        return file_id in self.expanded_result_ids

    def set_filter(self, species: Optional[str]):
        self.filter_species = species or ALL_SPECIES

    def forget_result(self, file_id: str):
        """Drops local references to a result that no longer exists server-side."""
        self.expanded_result_ids.discard(file_id)
        if self.audio.is_playing(file_id):
            self.audio.release()
        if self.current_result is not None and self.current_result.file_id == file_id:
            self.current_result = None

    def add_batch_files(self, paths: List[str]):
        for path in paths:
            if path not in self.batch_files:
                self.batch_files.append(path)

    def remove_batch_file(self, path: str):
        if path in self.batch_files:
            self.batch_files.remove(path)

    def teardown(self):
        self.audio.release()
