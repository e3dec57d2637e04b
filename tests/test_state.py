import pytest

from data_models import Page
from logic.state import AudioSlot, ChatTranscript, RequestSequencer, SessionState
from logic.store import ALL_SPECIES


class FakeAudioBackend:
    def __init__(self):
        self.calls = []

    def play(self, url):
        self.calls.append(("play", url))

    def stop(self):
        self.calls.append(("stop",))


@pytest.fixture
def backend():
    return FakeAudioBackend()


@pytest.fixture
def slot(backend):
    return AudioSlot(backend)


def test_navigation_keeps_other_state():
    state = SessionState()
    state.toggle_expanded("a")
    state.set_filter("Myotis")

    state.navigate(Page.HISTORY)
    state.navigate(Page.ANALYTICS)

    assert state.current_page == Page.ANALYTICS
    assert state.is_expanded("a")
    assert state.filter_species == "Myotis"


def test_navigate_accepts_page_value():
    state = SessionState()
    state.navigate("chat")
    assert state.current_page is Page.CHAT


def test_toggle_twice_restores_expansion_set():
    state = SessionState()
    state.toggle_expanded("x")
    before = set(state.expanded_result_ids)

    assert state.toggle_expanded("y") is True
    assert state.toggle_expanded("y") is False

    assert state.expanded_result_ids == before


def test_multiple_results_can_be_expanded():
    state = SessionState()
    state.toggle_expanded("a")
    state.toggle_expanded("b")
    assert state.expanded_result_ids == {"a", "b"}


def test_set_filter_defaults_to_all():
    state = SessionState()
    state.set_filter("Myotis")
    state.set_filter(None)
    assert state.filter_species == ALL_SPECIES


def test_starting_new_playback_releases_previous(slot, backend):
    slot.start("A", "http://testserver/a.wav")
    slot.start("B", "http://testserver/b.wav")

    assert slot.playing_file_id == "B"
    assert not slot.is_playing("A")
    assert backend.calls == [("play", "http://testserver/a.wav"), ("stop",), ("play", "http://testserver/b.wav")]


def test_toggle_same_id_stops(slot, backend):
    assert slot.toggle("A", "a.wav") is True
    assert slot.toggle("A", "a.wav") is False
    assert slot.playing_file_id is None
    assert backend.calls[-1] == ("stop",)


def test_natural_end_clears_slot(slot):
    slot.start("A", "a.wav")
    slot.on_ended()
    assert slot.playing_file_id is None


def test_late_end_event_for_previous_holder_is_ignored(slot):
    slot.start("A", "a.wav")
    slot.start("B", "b.wav")
    slot.on_ended("A")
    assert slot.playing_file_id == "B"


def test_release_when_idle_does_not_touch_backend(slot, backend):
    slot.release()
    assert backend.calls == []


def test_listeners_see_every_change(slot):
    seen = []
    slot.listeners.append(seen.append)
    slot.start("A", "a.wav")
    slot.start("B", "b.wav")
    slot.on_ended()
    assert seen == ["A", None, "B", None]


def test_forget_result_clears_references(slot):
    state = SessionState(audio=slot)
    state.toggle_expanded("gone")
    slot.start("gone", "gone.wav")

    state.forget_result("gone")

    assert not state.is_expanded("gone")
    assert state.playing_file_id is None


def test_teardown_releases_audio(slot, backend):
    state = SessionState(audio=slot)
    slot.start("A", "a.wav")
    state.teardown()
    assert state.playing_file_id is None
    assert backend.calls[-1] == ("stop",)


def test_chat_transcript_is_append_only():
    chat = ChatTranscript()
    chat.append("user", "Which species was most common?")
    chat.append("assistant", "Myotis daubentonii.")

    messages = chat.messages
    assert [m.role for m in messages] == ["user", "assistant"]
    assert isinstance(messages, tuple)
    assert len(chat) == 2


def test_batch_file_queue_deduplicates():
    state = SessionState()
    state.add_batch_files(["a.wav", "b.wav", "a.wav"])
    state.remove_batch_file("a.wav")
    state.remove_batch_file("missing.wav")
    assert state.batch_files == ["b.wav"]


def test_sequencer_discards_older_completions():
    seq = RequestSequencer()
    first = seq.next("results")
    second = seq.next("results")

    assert seq.accept("results", second) is True
    assert seq.accept("results", first) is False


def test_sequencer_channels_are_independent():
    seq = RequestSequencer()
    results_seq = seq.next("results")
    stats_seq = seq.next("stats")
    assert results_seq == stats_seq == 1
    assert seq.accept("results", results_seq)
    assert seq.accept("stats", stats_seq)


def test_sequencer_reports_latest_issued():
    seq = RequestSequencer()
    assert seq.latest("results") == 0
    seq.next("results")
    seq.next("results")
    assert seq.latest("results") == 2
