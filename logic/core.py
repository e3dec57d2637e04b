# /logic/core.py

import flet as ft
import asyncio
import datetime
import logging
import math
import mimetypes
import os
import uuid
from typing import Any, Callable, Dict, List, Optional

import httpx
from fpdf import FPDF
from fpdf.enums import XPos, YPos

from config import AnalysisSettings, AppConfig, get_config
from data_models import (
    AnalysisResult, BatchSummary, ChatMessage, GlobalStats, HealthStatus,
    InputType, ServerStats, SpeciesAnalytics,
)
from logic.analytics import AnalyticsEngine
from logic.exceptions import BatScopeError, NetworkFailure, NormalizationError
from logic.normalizer import ResponseNormalizer
from logic.state import CHAT_APOLOGY, AudioSlot, RequestSequencer, SessionState
from logic.store import ResultStore

logger = logging.getLogger(__name__)


# --- State Management (Session) ---

class Session:
    """
    Everything one dashboard session owns: settings, the result store, derived
    analytics and UI state. Created once per connected page and torn down
    when the page goes away.
    """
    def __init__(self, config: Optional[AppConfig] = None, audio: Optional[AudioSlot] = None):
        self.config = config or get_config()
        self.session_id = f"sess_{uuid.uuid4().hex[:8]}"
        self.start_time = datetime.datetime.now()
        self.user_settings = AnalysisSettings()

        self.store = ResultStore()
        self.analytics = AnalyticsEngine(self.store)
        self.state = SessionState(audio=audio)
        self.sequencer = RequestSequencer()
        self.normalizer = ResponseNormalizer(self.config.api_base)

        self.server_stats: Optional[ServerStats] = None
        self.health: Optional[HealthStatus] = None

    def get_user_settings(self) -> AnalysisSettings:
        return self.user_settings

    def get_history(self) -> List[AnalysisResult]:
        """Results after the species filter and the text search, in service order."""
        filtered = self.store.filter_by_species(self.state.filter_species)
        term = self.state.search_term.strip().lower()
        if not term:
            return filtered
        matching = {r.file_id for r in self.store.search(term)}
        return [r for r in filtered if r.file_id in matching]

    def apply_results(self, seq: int, results: List[AnalysisResult]) -> bool:
        if not self.sequencer.accept("results", seq):
            return False
        self.store.replace_all(results)
        held = set(self.state.expanded_result_ids)
        if self.state.playing_file_id is not None:
            held.add(self.state.playing_file_id)
        for file_id in held:
            if file_id not in self.store:
                self.state.forget_result(file_id)
        return True

    def apply_stats(self, seq: int, stats: ServerStats) -> bool:
        if not self.sequencer.accept("stats", seq):
            return False
        self.server_stats = stats
        return True

    def remove_result(self, file_id: str):
        """Local removal. Only called once the service has confirmed the delete."""
        self.store.remove(file_id)
        self.state.forget_result(file_id)

    def teardown(self):
        logger.info("Tearing down session %s", self.session_id)
        self.state.teardown()


# --- API Client ---

class APIClient:
    """Async client for the bat analysis service. Every failure surfaces as a BatScopeError."""
    def __init__(self, session: Session, base_url: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.session = session
        self.client = httpx.AsyncClient(
            base_url=base_url or session.config.api_base,
            timeout=session.config.request_timeout,
            transport=transport,
        )

    async def aclose(self):
        await self.client.aclose()

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict) and body.get("detail"):
            return str(body["detail"])
        return response.reason_phrase

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.ConnectError as e:
            logger.warning("%s %s: cannot connect (%s)", method, url, e)
            raise NetworkFailure("Connection Error: Is the analysis server running?") from e
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise NetworkFailure(f"Request failed: {e}") from e

        if response.is_success:
            return response

        detail = self._error_detail(response)
        logger.warning("%s %s returned %d: %s", method, url, response.status_code, detail)
        raise NetworkFailure(f"API Error {response.status_code}: {detail}",
                             status_code=response.status_code, detail=detail)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise NormalizationError("Service returned a body that is not JSON") from e

    # --- Background / refresh calls ---

    async def check_health(self) -> bool:
        """Never raises. A failure only flips the session offline."""
        state = self.session.state
        try:
            response = await self._request("GET", "/api/health/detailed")
            self.session.health = HealthStatus.model_validate(self._json(response))
            online = True
        except (BatScopeError, ValueError) as e:
            logger.debug("Health check failed: %s", e)
            online = False

        if online != state.is_online:
            logger.info("Service is now %s", "online" if online else "offline")
        state.is_online = online
        return online

    async def fetch_statistics(self) -> Optional[ServerStats]:
        seq = self.session.sequencer.next("stats")
        response = await self._request("GET", "/api/stats")
        try:
            stats = ServerStats.model_validate(self._json(response))
        except ValueError as e:
            raise NormalizationError(f"Unexpected statistics payload: {e}") from e
        self.session.apply_stats(seq, stats)
        return self.session.server_stats

    async def fetch_results(self) -> List[AnalysisResult]:
        seq = self.session.sequencer.next("results")
        state = self.session.state
        state.loading_results = True
        try:
            response = await self._request("GET", "/api/results")
            results = self.session.normalizer.normalize_results_list(self._json(response))
            self.session.apply_results(seq, results)
        finally:
            # A newer request still owns the spinner
            if seq == self.session.sequencer.latest("results"):
                state.loading_results = False
        return list(self.session.store.all())

    async def refresh_data(self):
        """Stats and results together. Failures are logged, not raised."""
        outcomes = await asyncio.gather(self.fetch_statistics(), self.fetch_results(),
                                        return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BatScopeError):
                logger.warning("Refresh incomplete: %s", outcome)
            elif isinstance(outcome, BaseException):
                raise outcome

    async def refresh_all(self):
        await self.check_health()
        await self.refresh_data()

    # --- User-triggered calls ---

    @staticmethod
    def _file_part(path: str):
        name = os.path.basename(path)
        mime = mimetypes.guess_type(name)[0] or "application/octet-stream"
        with open(path, "rb") as f:
            return name, f.read(), mime

    async def analyze_file(self, file_path: str, input_type: Optional[InputType] = None) -> AnalysisResult:
        """Uploads one audio file or spectrogram image and stores the canonical result."""
        settings = self.session.get_user_settings()
        input_type = InputType(input_type or settings.input_type)
        endpoint = "/api/analyze/audio" if input_type == InputType.AUDIO else "/api/analyze/spectrogram"
        state = self.session.state

        state.analyzing = True
        state.current_result = None
        try:
            try:
                files_payload = {"file": self._file_part(file_path)}
            except OSError as e:
                raise BatScopeError(f"Could not read {file_path}: {e}") from e

            response = await self._request("POST", endpoint, files=files_payload, data=settings.form_fields())
            result = self.session.normalizer.normalize(self._json(response))
        finally:
            state.analyzing = False

        state.current_result = result
        self.session.store.insert(result)
        logger.info("Analyzed %s as %s", result.original_filename, result.top_match.species)
        await self.refresh_data()
        return result

    async def analyze_batch(self, file_paths: List[str]) -> BatchSummary:
        if not file_paths:
            raise BatScopeError("No files selected.")

        settings = self.session.get_user_settings()
        state = self.session.state
        state.batch_analyzing = True
        state.batch_summary = None
        try:
            try:
                files_payload = [("files", self._file_part(p)) for p in file_paths]
            except OSError as e:
                raise BatScopeError(f"Could not read batch file: {e}") from e

            response = await self._request(
                "POST", "/api/analyze/batch",
                files=files_payload,
                data=settings.form_fields(include_input_type=True),
            )
            summary = self.session.normalizer.normalize_batch(self._json(response), submitted=len(file_paths))
        finally:
            state.batch_analyzing = False

        state.batch_summary = summary
        logger.info("Batch finished: %d/%d completed", summary.completed, summary.total_files)
        await self.refresh_data()
        return summary

    async def delete_result(self, file_id: str):
        """Deletes server-side first. Local state only changes once that succeeds."""
        await self._request("DELETE", f"/api/results/{file_id}")
        self.session.remove_result(file_id)
        logger.info("Deleted result %s", file_id)
        await self.refresh_data()

    async def download_csv(self) -> bytes:
        response = await self._request("GET", "/api/download/csv")
        return response.content

    async def download_pdf(self, file_id: str) -> bytes:
        response = await self._request("GET", f"/api/download/pdf/{file_id}")
        return response.content

    async def send_chat(self, message: str, on_pending: Optional[Callable[[], Any]] = None) -> Optional[ChatMessage]:
        """
        Appends the user's message straight away, then the assistant's answer.
        A failed request appends an apology instead; the user entry stays.
        """
        text = message.strip()
        if not text:
            return None

        chat = self.session.state.chat
        chat.append("user", text)
        self.session.state.chat_loading = True
        if on_pending is not None:
            on_pending()
        stats = self.session.server_stats
        payload = {
            "message": text,
            "history": [r.model_dump(mode="json") for r in self.session.store.all()],
            "statistics": stats.model_dump(mode="json") if stats else None,
        }
        try:
            response = await self._request("POST", "/api/chat", json=payload)
            body = self._json(response)
            if not isinstance(body, dict) or not isinstance(body.get("response"), str):
                raise NormalizationError("Chat reply has no 'response' text")
            return chat.append("assistant", body["response"])
        except BatScopeError as e:
            logger.warning("Chat request failed: %s", e)
            return chat.append("assistant", CHAT_APOLOGY)
        finally:
            self.session.state.chat_loading = False


# --- Health Monitor ---

class HealthMonitor:
    """Polls the health endpoint on a fixed interval until stopped."""
    def __init__(self, api_client: APIClient, interval: float,
                 on_update: Optional[Callable[[bool], Any]] = None):
        self.api_client = api_client
        self.interval = interval
        self.on_update = on_update
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def _run(self):
        while True:
            online = await self.api_client.check_health()
            if self.on_update is not None:
                try:
                    self.on_update(online)
                except Exception:
                    logger.exception("Health update callback failed")
            await asyncio.sleep(self.interval)

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


# --- Export Manager (Logic/Utility) ---

def csv_download_name(today: Optional[datetime.date] = None) -> str:
    today = today or datetime.date.today()
    return f"bat_analysis_{today.isoformat()}.csv"


def pdf_download_name(file_id: str) -> str:
    return f"bat_report_{file_id}.pdf"


def show_snack(page: ft.Page, message: str, bgcolor: Optional[str] = None):
    page.open(ft.SnackBar(ft.Text(message), bgcolor=bgcolor))
    page.update()


def build_summary_pdf(stats: GlobalStats, species_rows: List[SpeciesAnalytics],
                      generated_at: Optional[datetime.datetime] = None) -> bytes:
    """A one-page dashboard summary. Report generation proper stays server-side."""
    generated_at = generated_at or datetime.datetime.now()
    pdf = FPDF()
    pdf.add_page()

    pdf.set_font("Helvetica", "B", 16)
    pdf.cell(0, 10, "BatScope Dashboard Summary", new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="C")
    pdf.ln(5)

    pdf.set_font("Helvetica", "", 12)
    for line in (
        f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M')}",
        f"Total analyses: {stats.total_count}",
        f"Distinct species: {stats.distinct_species}",
        f"Recorded duration: {stats.total_duration:.1f} s",
        f"Average top-match confidence: {stats.average_confidence:.1f}%",
    ):
        pdf.cell(0, 8, line, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(5)

    pdf.set_font("Helvetica", "B", 11)
    pdf.cell(70, 9, "Species", border=1)
    pdf.cell(25, 9, "Count", border=1)
    pdf.cell(45, 9, "Avg peak (kHz)", border=1)
    pdf.cell(0, 9, "Avg pulse (ms)", border=1, new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    pdf.set_font("Helvetica", "", 11)
    if not species_rows:
        pdf.cell(0, 9, "No results recorded.", border=1, new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="C")
    for row in species_rows:
        peak = "n/a" if math.isnan(row.avg_peak_frequency) else f"{row.avg_peak_frequency:.1f}"
        pulse = "n/a" if math.isnan(row.avg_pulse_duration) else f"{row.avg_pulse_duration:.1f}"
        pdf.cell(70, 9, f" {row.species}", border=1)
        pdf.cell(25, 9, str(row.count), border=1)
        pdf.cell(45, 9, peak, border=1)
        pdf.cell(0, 9, pulse, border=1, new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    return bytes(pdf.output())


class ExportManager:
    """Saves service downloads and local exports through the shared save dialog."""

    def __init__(self, save_dialog: ft.FilePicker, api_client: APIClient):
        self.save_dialog = save_dialog
        self.api_client = api_client

    def _save(self, data, file_name: str, extension: str, title: str, mode: str):
        # Read back by the FilePicker result handler in main.py
        self.save_dialog.data_to_save = data
        self.save_dialog.save_mode = mode
        self.save_dialog.save_file(
            dialog_title=title,
            file_name=file_name,
            file_type=ft.FilePickerFileType.CUSTOM,
            allowed_extensions=[extension],
        )

    async def download_csv(self, page: ft.Page):
        try:
            data = await self.api_client.download_csv()
        except BatScopeError as e:
            show_snack(page, f"CSV download failed: {e}", ft.Colors.RED_500)
            return
        self._save(data, csv_download_name(), "csv", "Save CSV As", "binary")

    async def download_pdf(self, page: ft.Page, file_id: str):
        try:
            data = await self.api_client.download_pdf(file_id)
        except BatScopeError as e:
            show_snack(page, f"PDF download failed: {e}", ft.Colors.RED_500)
            return
        self._save(data, pdf_download_name(file_id), "pdf", "Save PDF Report As", "binary")

    def export_json(self, result: AnalysisResult):
        self._save(result.model_dump_json(indent=4), f"{result.file_id}.json", "json", "Save JSON As", "text")

    def export_summary_pdf(self, page: ft.Page, session: Session):
        try:
            stats = session.analytics.global_stats()
            rows = [session.analytics.species_analytics(s.species) for s in stats.top_species]
            data = build_summary_pdf(stats, rows)
        except Exception as e:
            logger.exception("Summary PDF failed")
            show_snack(page, f"Error generating PDF: {e}", ft.Colors.RED_500)
            return
        self._save(data, f"bat_summary_{datetime.date.today().isoformat()}.pdf", "pdf", "Save Summary As", "binary")
