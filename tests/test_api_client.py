import asyncio
import json

import httpx
import pytest

from conftest import BASE_URL, make_raw
from data_models import InputType
from logic.core import APIClient, HealthMonitor
from logic.exceptions import BatScopeError, NetworkFailure, NormalizationError
from logic.state import CHAT_APOLOGY

STATS = {
    "total_analyses": 2,
    "total_duration_hours": 0.01,
    "unique_species_detected": 2,
    "storage_type": "firebase",
    "top_species": [{"species": "Myotis", "count": 1}],
}


class FakeService:
    """Routes requests by (method, path) and records what it saw."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def on(self, method, path, status=200, json_body=None, content=None):
        self.routes[(method, path)] = (status, json_body, content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"detail": "Not Found"})
        status, json_body, content = self.routes[key]
        if content is not None:
            return httpx.Response(status, content=content)
        return httpx.Response(status, json=json_body)

    def last(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path][-1]


@pytest.fixture
def service():
    fake = FakeService()
    fake.on("GET", "/api/stats", json_body=STATS)
    fake.on("GET", "/api/results", json_body={"results": [
        make_raw("r1", [("Myotis", 0.9)]),
        make_raw("r2", [("Pipistrellus", 80)]),
    ]})
    return fake


@pytest.fixture
def client(session, service):
    return APIClient(session, transport=httpx.MockTransport(service))


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "night_01.wav"
    path.write_bytes(b"RIFF....WAVEfmt ")
    return path


@pytest.mark.asyncio
async def test_fetch_results_replaces_store(client, session):
    results = await client.fetch_results()
    assert [r.file_id for r in results] == ["r1", "r2"]
    assert session.store.get("r2").top_match.confidence == 80.0
    assert session.store.get("r1").audio_url == f"{BASE_URL}/static/audio/r1.wav"
    assert session.state.loading_results is False


@pytest.mark.asyncio
async def test_fetch_statistics(client, session):
    stats = await client.fetch_statistics()
    assert stats.storage_type == "firebase"
    assert session.server_stats.top_species[0].species == "Myotis"


@pytest.mark.asyncio
async def test_stale_results_response_is_discarded(client, session, make_result):
    stale_seq = session.sequencer.next("results")
    await client.fetch_results()

    applied = session.apply_results(stale_seq, [make_result("stale", [("Nyctalus", 0.9)])])

    assert applied is False
    assert "stale" not in session.store
    assert len(session.store) == 2


@pytest.mark.asyncio
async def test_health_check_sets_online(client, session, service):
    service.on("GET", "/api/health/detailed", json_body={"status": "healthy", "services": {"model": "loaded"}})
    assert await client.check_health() is True
    assert session.state.is_online is True
    assert session.health.services == {"model": "loaded"}


@pytest.mark.asyncio
async def test_health_check_failure_only_flips_offline(session):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = APIClient(session, transport=httpx.MockTransport(refuse))
    assert await client.check_health() is False
    assert session.state.is_online is False


@pytest.mark.asyncio
async def test_analyze_audio_posts_form_and_stores_result(client, session, service, audio_file):
    service.on("POST", "/api/analyze/audio", json_body={"result": make_raw("new", [("Nyctalus", 0.77)])})
    session.user_settings.threshold = 0.05

    result = await client.analyze_file(str(audio_file))

    assert result.file_id == "new"
    assert result.top_match.confidence == pytest.approx(77.0)
    assert session.state.current_result is result
    assert session.state.analyzing is False

    body = service.last("POST", "/api/analyze/audio").content
    assert b'name="file"; filename="night_01.wav"' in body
    assert b'name="theme"' in body and b"dark_viridis" in body
    assert b'name="threshold"\r\n\r\n0.05' in body
    assert b'name="max_freq"\r\n\r\n250' in body
    # the store was refreshed afterwards
    assert service.last("GET", "/api/results") is not None


@pytest.mark.asyncio
async def test_analyze_spectrogram_uses_image_endpoint(client, service, tmp_path):
    image = tmp_path / "call_01.png"
    image.write_bytes(b"\x89PNG")
    service.on("POST", "/api/analyze/spectrogram", json_body={"data": make_raw("img", [("Myotis", 0.5)])})

    result = await client.analyze_file(str(image), input_type=InputType.SPECTROGRAM)

    assert result.file_id == "img"


@pytest.mark.asyncio
async def test_failed_analysis_leaves_state_unchanged(client, session, service, audio_file):
    await client.fetch_results()
    service.on("POST", "/api/analyze/audio", status=500, json_body={"detail": "Model not loaded"})

    with pytest.raises(NetworkFailure) as excinfo:
        await client.analyze_file(str(audio_file))

    assert excinfo.value.status_code == 500
    assert excinfo.value.detail == "Model not loaded"
    assert "Model not loaded" in str(excinfo.value)
    assert session.state.current_result is None
    assert session.state.analyzing is False
    assert len(session.store) == 2


@pytest.mark.asyncio
async def test_malformed_analysis_response_raises(client, service, audio_file):
    service.on("POST", "/api/analyze/audio", json_body={"message": "done"})
    with pytest.raises(NormalizationError):
        await client.analyze_file(str(audio_file))


@pytest.mark.asyncio
async def test_missing_file_is_reported(client):
    with pytest.raises(BatScopeError):
        await client.analyze_file("/does/not/exist.wav")


@pytest.mark.asyncio
async def test_batch_sends_repeated_files(client, session, service, tmp_path):
    paths = []
    for name in ("a.wav", "b.wav"):
        path = tmp_path / name
        path.write_bytes(b"RIFF")
        paths.append(str(path))
    service.on("POST", "/api/analyze/batch", json_body={"results": [make_raw("a", [("Myotis", 0.9)])]})

    summary = await client.analyze_batch(paths)

    assert (summary.total_files, summary.completed, summary.failed) == (2, 1, 1)
    assert session.state.batch_summary is summary
    body = service.last("POST", "/api/analyze/batch").content
    assert body.count(b'name="files"') == 2
    assert b'name="input_type"\r\n\r\naudio' in body


@pytest.mark.asyncio
async def test_empty_batch_is_rejected_locally(client, service):
    with pytest.raises(BatScopeError):
        await client.analyze_batch([])
    assert service.requests == []


@pytest.mark.asyncio
async def test_delete_removes_after_confirmation(client, session, service):
    await client.fetch_results()
    session.state.toggle_expanded("r1")
    service.on("DELETE", "/api/results/r1", json_body={"detail": "deleted"})
    service.on("GET", "/api/results", json_body={"results": [make_raw("r2", [("Pipistrellus", 80)])]})

    await client.delete_result("r1")

    assert "r1" not in session.store
    assert not session.state.is_expanded("r1")


@pytest.mark.asyncio
async def test_failed_delete_keeps_local_state(client, session, service):
    await client.fetch_results()
    service.on("DELETE", "/api/results/r1", status=503, json_body={"detail": "storage offline"})

    with pytest.raises(NetworkFailure):
        await client.delete_result("r1")

    assert "r1" in session.store


@pytest.mark.asyncio
async def test_delete_of_unknown_id_with_remote_failure(client, session):
    await client.fetch_results()
    with pytest.raises(NetworkFailure):
        await client.delete_result("ghost")
    assert len(session.store) == 2
    session.remove_result("ghost")
    assert len(session.store) == 2


@pytest.mark.asyncio
async def test_downloads_return_bytes(client, service):
    service.on("GET", "/api/download/csv", content=b"file_id,species\nr1,Myotis\n")
    service.on("GET", "/api/download/pdf/r1", content=b"%PDF-1.4")
    assert (await client.download_csv()).startswith(b"file_id")
    assert await client.download_pdf("r1") == b"%PDF-1.4"


@pytest.mark.asyncio
async def test_chat_appends_user_then_reply(client, session, service):
    await client.refresh_data()
    service.on("POST", "/api/chat", json_body={"response": "Myotis dominates your recordings."})
    seen_before_reply = []

    reply = await client.send_chat("  What is most common?  ",
                                   on_pending=lambda: seen_before_reply.append(len(session.state.chat)))

    assert seen_before_reply == [1]
    assert reply.content == "Myotis dominates your recordings."
    assert [m.role for m in session.state.chat.messages] == ["user", "assistant"]
    payload = json.loads(service.last("POST", "/api/chat").content)
    assert payload["message"] == "What is most common?"
    assert [r["file_id"] for r in payload["history"]] == ["r1", "r2"]
    assert payload["statistics"]["total_analyses"] == 2


@pytest.mark.asyncio
async def test_chat_failure_appends_apology_and_keeps_user_entry(client, session, service):
    service.on("POST", "/api/chat", status=502, json_body={"detail": "LLM unavailable"})

    reply = await client.send_chat("hello")

    messages = session.state.chat.messages
    assert [(m.role, m.content) for m in messages] == [("user", "hello"), ("assistant", CHAT_APOLOGY)]
    assert reply.content == CHAT_APOLOGY
    assert session.state.chat_loading is False


@pytest.mark.asyncio
async def test_blank_chat_message_is_ignored(client, session):
    assert await client.send_chat("   ") is None
    assert len(session.state.chat) == 0


@pytest.mark.asyncio
async def test_refresh_data_survives_partial_failure(client, session, service):
    service.on("GET", "/api/stats", status=500, json_body={"detail": "boom"})
    await client.refresh_data()
    assert session.server_stats is None
    assert len(session.store) == 2


@pytest.mark.asyncio
async def test_health_monitor_polls_until_stopped(client, service):
    service.on("GET", "/api/health/detailed", json_body={"status": "healthy"})
    updates = []
    monitor = HealthMonitor(client, interval=0.01, on_update=updates.append)

    monitor.start()
    await asyncio.sleep(0.05)
    await monitor.stop()
    count = len(updates)
    await asyncio.sleep(0.03)

    assert count >= 2
    assert len(updates) == count
    assert not monitor.running


@pytest.mark.asyncio
async def test_refresh_keeps_good_entries_when_one_rank_is_malformed(client, session, service):
    bad = make_raw("bad", [])
    bad["species_detected"] = [{"species": "Myotis", "confidence": 0.9, "rank": "2"}]
    service.on("GET", "/api/results", json_body={"results": [bad, make_raw("good", [("Nyctalus", 0.8)])]})

    await client.refresh_data()

    assert [r.file_id for r in session.store.all()] == ["good"]


@pytest.mark.asyncio
async def test_batch_with_null_counts_raises_normalization_error(client, service, tmp_path):
    path = tmp_path / "a.wav"
    path.write_bytes(b"RIFF")
    service.on("POST", "/api/analyze/batch", json_body={
        "total_files": None, "completed": None, "failed": None,
        "results": [make_raw("a", [("Myotis", 0.9)])],
    })

    with pytest.raises(NormalizationError):
        await client.analyze_batch([str(path)])


@pytest.mark.asyncio
async def test_loading_flag_stays_while_newer_results_request_is_pending(session, service):
    def handler(request):
        if request.url.path == "/api/results":
            # a second refresh is issued while this one is in flight
            session.sequencer.next("results")
        return service(request)

    client = APIClient(session, transport=httpx.MockTransport(handler))
    await client.fetch_results()

    assert session.state.loading_results is True
    assert len(session.store) == 2


@pytest.mark.asyncio
async def test_health_monitor_survives_failing_callback(client, service):
    service.on("GET", "/api/health/detailed", json_body={"status": "healthy"})
    calls = []

    def on_update(online):
        calls.append(online)
        raise RuntimeError("page closed")

    monitor = HealthMonitor(client, interval=0.01, on_update=on_update)
    monitor.start()
    await asyncio.sleep(0.05)
    assert monitor.running
    await monitor.stop()

    assert len(calls) >= 2
