# /ui/controls.py

import flet as ft
import os
from typing import Callable, Optional

from data_models import AnalysisResult, SpeciesDetection
from logic.analytics import confidence_band

CHART_COLORS = ["#10b981", "#06b6d4", "#3b82f6", "#8b5cf6", "#14b8a6", "#f59e0b", "#84cc16", "#6366f1"]
BAND_COLORS = {"high": ft.Colors.GREEN_600, "medium": ft.Colors.AMBER_700, "low": ft.Colors.RED_400}


def fmt_value(value: Optional[float], unit: str = "", digits: int = 1) -> str:
    """Missing call parameters are shown as N/A, never as an error."""
    if value is None:
        return "N/A"
    return f"{value:.{digits}f}{unit}"


class FletAudioBackend:
    """Drives one ft.Audio control that is shared by every play button."""
    def __init__(self, page: ft.Page, on_completed: Callable[[], None]):
        self.page = page
        self.on_completed = on_completed
        self.audio: Optional[ft.Audio] = None

    def _on_state_changed(self, e):
        if e.data == "completed":
            self.on_completed()

    def play(self, url: str):
        if self.audio is None:
            # ft.Audio needs a src when it is first mounted
            self.audio = ft.Audio(src=url, autoplay=True, on_state_changed=self._on_state_changed)
            self.page.overlay.append(self.audio)
            self.page.update()
            return
        self.audio.src = url
        self.audio.update()
        self.audio.play()

    def stop(self):
        if self.audio is not None:
            self.audio.pause()


class StatTile(ft.Container):
    """A small labelled number for the dashboard header."""
    def __init__(self, icon: str, label: str, value: str, color: str = ft.Colors.TEAL_600):
        super().__init__()
        self.content = ft.Row([
                ft.Container(
                    content=ft.Icon(icon, size=28, color=color),
                    bgcolor=ft.Colors.with_opacity(0.15, color),
                    border_radius=12,
                    padding=10,
                ),
                ft.Column([
                        ft.Text(label, size=12, color=ft.Colors.GREY_600),
                        ft.Text(value, size=22, weight=ft.FontWeight.BOLD),
                    ], spacing=0),
            ], spacing=12)
        self.width = 230
        self.padding = 15
        self.border_radius = 16
        self.bgcolor = ft.Colors.SURFACE
        self.shadow = ft.BoxShadow(blur_radius=8, color=ft.Colors.with_opacity(0.15, ft.Colors.BLACK))


class SpeciesBar(ft.Column):
    """Species name, confidence text and a bar scaled to the percentage."""
    def __init__(self, detection: SpeciesDetection, highlight: bool = False):
        super().__init__()
        color = BAND_COLORS[confidence_band(detection.confidence)] if highlight else ft.Colors.GREY_500
        self.controls = [
            ft.Row([
                    ft.Text(detection.species, weight=ft.FontWeight.BOLD if highlight else None, size=13),
                    ft.Text(f"{detection.confidence:.1f}%", color=color, size=13),
                ], alignment=ft.MainAxisAlignment.SPACE_BETWEEN),
            ft.ProgressBar(value=min(detection.confidence, 100.0) / 100.0, color=color,
                           bgcolor=ft.Colors.with_opacity(0.15, color), bar_height=6),
        ]
        self.spacing = 4


class BatchFileChip(ft.Container):
    """One queued batch file with a remove button."""
    def __init__(self, file_path: str, on_remove=None):
        super().__init__()
        self.file_path = file_path
        icon = ft.Icons.AUDIOTRACK if file_path.lower().endswith((".wav", ".mp3", ".flac")) else ft.Icons.IMAGE
        self.content = ft.Row([
                ft.Icon(icon, size=18, color=ft.Colors.TEAL_600),
                ft.Text(os.path.basename(file_path), size=12, expand=True, no_wrap=True),
                ft.IconButton(ft.Icons.CLOSE, icon_size=16, tooltip="Remove file",
                              on_click=lambda e: on_remove(self.file_path) if on_remove else None),
            ], spacing=6)
        self.padding = ft.padding.symmetric(horizontal=10, vertical=2)
        self.border = ft.border.all(1, ft.Colors.GREY_300)
        self.border_radius = 10
        self.width = 260


class ResultCard(ft.Container):
    """A history entry. Collapsed shows the top match; expanded adds call parameters and all matches."""
    def __init__(self, result: AnalysisResult, expanded: bool, playing: bool,
                 on_toggle=None, on_play=None, on_pdf=None, on_json=None, on_delete=None):
        super().__init__()
        top = result.top_match

        header = ft.Row([
                ft.Icon(ft.Icons.GRAPHIC_EQ, color=ft.Colors.TEAL_600),
                ft.Column([
                        ft.Text(result.original_filename, weight=ft.FontWeight.BOLD),
                        ft.Text(f"{result.analyzed_at.strftime('%Y-%m-%d %H:%M')} | {len(result.species_detected)} matches"
                                f" | {result.duration:.2f}s", color=ft.Colors.GREY_600, size=12),
                    ], expand=True, spacing=2),
                ft.Column([
                        ft.Text(top.species, weight=ft.FontWeight.BOLD, color=ft.Colors.TEAL_700),
                        ft.Text(f"{top.confidence:.1f}%", size=12,
                                color=BAND_COLORS[confidence_band(top.confidence)]),
                    ], spacing=2, horizontal_alignment=ft.CrossAxisAlignment.END),
                ft.IconButton(
                    ft.Icons.PAUSE_CIRCLE if playing else ft.Icons.PLAY_CIRCLE,
                    tooltip="Stop" if playing else "Play recording",
                    disabled=not result.audio_url,
                    on_click=lambda e: on_play(result) if on_play else None,
                ),
                ft.PopupMenuButton(
                    icon=ft.Icons.MORE_VERT,
                    items=[
                        ft.PopupMenuItem(text="Download PDF report", icon=ft.Icons.PICTURE_AS_PDF,
                                         on_click=lambda e: on_pdf(result) if on_pdf else None),
                        ft.PopupMenuItem(text="Export as JSON", icon=ft.Icons.DATA_OBJECT,
                                         on_click=lambda e: on_json(result) if on_json else None),
                        ft.PopupMenuItem(),
                        ft.PopupMenuItem(text="Delete result", icon=ft.Icons.DELETE_FOREVER,
                                         on_click=lambda e: on_delete(result) if on_delete else None),
                    ],
                ),
                ft.Icon(ft.Icons.EXPAND_LESS if expanded else ft.Icons.EXPAND_MORE, color=ft.Colors.GREY_600),
            ], vertical_alignment=ft.CrossAxisAlignment.CENTER)

        body = [header]
        if expanded:
            body.append(ft.Divider())
            body.append(self._details(result))

        self.content = ft.Column(body, spacing=8)
        self.padding = 15
        self.border_radius = 12
        self.bgcolor = ft.Colors.SURFACE
        self.margin = ft.margin.symmetric(vertical=5)
        self.shadow = ft.BoxShadow(blur_radius=8, color=ft.Colors.with_opacity(0.15, ft.Colors.BLACK))
        self.on_click = lambda e: on_toggle(result) if on_toggle else None

    @staticmethod
    def _details(result: AnalysisResult) -> ft.Control:
        params = result.call_parameters
        metrics = [
            ("Start freq", fmt_value(params.start_frequency, " kHz")),
            ("End freq", fmt_value(params.end_frequency, " kHz")),
            ("Peak freq", fmt_value(params.peak_frequency, " kHz")),
            ("Bandwidth", fmt_value(params.bandwidth, " kHz")),
            ("Pulse", fmt_value(params.pulse_duration, " ms")),
            ("Intensity", fmt_value(params.intensity, " dB")),
            ("Shape", params.shape or "unknown"),
            ("Sample rate", f"{result.sample_rate} Hz" if result.sample_rate else "unknown"),
        ]
        metric_grid = ft.Row(
            [
                ft.Container(
                    content=ft.Column([
                            ft.Text(label, size=11, color=ft.Colors.GREY_600),
                            ft.Text(value, size=13, weight=ft.FontWeight.BOLD),
                        ], spacing=0),
                    width=120, padding=8, border_radius=8,
                    bgcolor=ft.Colors.with_opacity(0.05, ft.Colors.TEAL_600),
                )
                for label, value in metrics
            ],
            wrap=True, spacing=8, run_spacing=8,
        )

        matches = ft.Column(
            [SpeciesBar(d, highlight=(i == 0)) for i, d in enumerate(result.species_detected)],
            spacing=6, width=300,
        )

        images = []
        if result.spectrogram_url:
            images.append(ft.Image(src=result.spectrogram_url, height=180, fit=ft.ImageFit.CONTAIN, border_radius=8))
        if result.species_image_url:
            images.append(ft.Image(src=result.species_image_url, height=180, fit=ft.ImageFit.CONTAIN, border_radius=8))

        return ft.Column([
                metric_grid,
                ft.Row([matches] + images, spacing=20, wrap=True, vertical_alignment=ft.CrossAxisAlignment.START),
            ], spacing=12)
