# /ui/views.py

import flet as ft
import math
import os
from typing import Dict, List, Optional, Tuple

# --- Imports from Client Logic and Data Layers ---
from data_models import AnalysisResult, InputType, Page, SpectrogramTheme
from logic.analytics import detections_above
from logic.core import APIClient, ExportManager, Session, show_snack
from logic.exceptions import BatScopeError
from logic.store import ALL_SPECIES
from ui.controls import (
    CHART_COLORS, BatchFileChip, ResultCard, SpeciesBar, StatTile, fmt_value,
)

ROUTES: Dict[Page, str] = {
    Page.DASHBOARD: "/",
    Page.ANALYZE: "/analyze",
    Page.BATCH: "/batch",
    Page.HISTORY: "/history",
    Page.ANALYTICS: "/analytics",
    Page.CHAT: "/chat",
}

NAV_ITEMS: List[Tuple[Page, str, str]] = [
    (Page.DASHBOARD, "Dashboard", ft.Icons.BAR_CHART),
    (Page.ANALYZE, "Single Analysis", ft.Icons.UPLOAD),
    (Page.BATCH, "Batch Processing", ft.Icons.INVENTORY_2),
    (Page.HISTORY, "Data History", ft.Icons.HISTORY),
    (Page.ANALYTICS, "Species Analytics", ft.Icons.TRENDING_UP),
    (Page.CHAT, "Eco-Assistant", ft.Icons.CHAT),
]

GALLERY_SIZE = 12
AUDIO_EXTENSIONS = ["wav", "mp3", "flac", "ogg"]
IMAGE_EXTENSIONS = ["png", "jpg", "jpeg"]


def route_to_page(route: str) -> Page:
    for page_id, path in ROUTES.items():
        if path == route:
            return page_id
    return Page.DASHBOARD


# --- Chart helpers ---

def bar_chart(points: List[Tuple[str, Optional[float]]], color: str, unit: str = "") -> ft.BarChart:
    values = [v or 0.0 for _, v in points]
    return ft.BarChart(
        bar_groups=[
            ft.BarChartGroup(
                x=i,
                bar_rods=[ft.BarChartRod(from_y=0, to_y=v, width=16, color=color, border_radius=4,
                                         tooltip=f"{label}: {fmt_value(raw, unit)}")],
            )
            for i, ((label, raw), v) in enumerate(zip(points, values))
        ],
        bottom_axis=ft.ChartAxis(
            labels=[ft.ChartAxisLabel(value=i, label=ft.Text(label[:8], size=9)) for i, (label, _) in enumerate(points)],
            labels_size=28,
        ),
        left_axis=ft.ChartAxis(labels_size=40),
        horizontal_grid_lines=ft.ChartGridLines(color=ft.Colors.with_opacity(0.1, ft.Colors.GREY), width=1),
        max_y=(max(values) * 1.15) if values and max(values) > 0 else 1,
        height=240,
        expand=True,
    )


def confidence_line_chart(confidences: List[float], labels: List[str]) -> ft.LineChart:
    return ft.LineChart(
        data_series=[
            ft.LineChartData(
                data_points=[ft.LineChartDataPoint(i, c, tooltip=f"{labels[i]}: {c:.1f}%") for i, c in enumerate(confidences)],
                stroke_width=3,
                color=CHART_COLORS[0],
                curved=True,
                below_line_bgcolor=ft.Colors.with_opacity(0.15, CHART_COLORS[0]),
            )
        ],
        bottom_axis=ft.ChartAxis(
            labels=[ft.ChartAxisLabel(value=i, label=ft.Text(label, size=9)) for i, label in enumerate(labels)],
            labels_size=28,
        ),
        left_axis=ft.ChartAxis(labels_size=40),
        min_y=0,
        max_y=100,
        height=240,
        expand=True,
    )


def distribution_pie(counts: List[Tuple[str, int]]) -> ft.PieChart:
    return ft.PieChart(
        sections=[
            ft.PieChartSection(value=c, title=f"{c}", radius=80, color=CHART_COLORS[i % len(CHART_COLORS)],
                               title_style=ft.TextStyle(size=12, color=ft.Colors.WHITE, weight=ft.FontWeight.BOLD))
            for i, (_, c) in enumerate(counts)
        ],
        sections_space=2,
        center_space_radius=30,
        height=240,
    )


def card(content: ft.Control, expand=False, width=None) -> ft.Container:
    return ft.Container(
        content=content,
        padding=20,
        border_radius=16,
        bgcolor=ft.Colors.SURFACE,
        shadow=ft.BoxShadow(blur_radius=12, color=ft.Colors.with_opacity(0.2, ft.Colors.BLACK)),
        expand=expand,
        width=width,
    )


def section_title(icon: str, title: str, subtitle: str) -> ft.Column:
    return ft.Column([
            ft.Row([ft.Icon(icon, color=ft.Colors.TEAL_600), ft.Text(title, size=18, weight=ft.FontWeight.BOLD)], spacing=10),
            ft.Text(subtitle, color=ft.Colors.GREY_600, size=13),
        ], spacing=4)


# --- The AppLogic Class with all View Builders ---

class AppLogic:
    """Builds one view per dashboard page from the injected Session."""

    def __init__(self, session: Session, api_client: APIClient, export_manager: ExportManager,
                 single_file_picker: ft.FilePicker, batch_file_picker: ft.FilePicker):
        self.session = session
        self.state = session.state
        self.api_client = api_client
        self.export_manager = export_manager
        self.single_file_picker = single_file_picker
        self.batch_file_picker = batch_file_picker

        self.settings_panel_visible = False
        self.chat_input = ft.TextField(hint_text="Ask about your recordings...", expand=True,
                                       on_submit=self.on_chat_submit)

    # --- Rendering ---

    def build_view(self, page: ft.Page, route: str) -> ft.View:
        page_id = route_to_page(route)
        self.state.navigate(page_id)
        builders = {
            Page.DASHBOARD: self.build_dashboard_view,
            Page.ANALYZE: self.build_analyze_view,
            Page.BATCH: self.build_batch_view,
            Page.HISTORY: self.build_history_view,
            Page.ANALYTICS: self.build_analytics_view,
            Page.CHAT: self.build_chat_view,
        }
        content = builders[page_id](page)
        return self._shell(page, page_id, content)

    def rerender(self, page: ft.Page):
        page.views.clear()
        page.views.append(self.build_view(page, page.route))
        page.update()

    def _shell(self, page: ft.Page, page_id: Page, content: ft.Control) -> ft.View:
        online = self.state.is_online
        status_chip = ft.Container(
            content=ft.Row([
                    ft.Icon(ft.Icons.WIFI if online else ft.Icons.WIFI_OFF, size=14,
                            color=ft.Colors.GREEN_600 if online else ft.Colors.RED_400),
                    ft.Text("SYSTEM ONLINE" if online else "DISCONNECTED", size=11, weight=ft.FontWeight.BOLD,
                            color=ft.Colors.GREEN_600 if online else ft.Colors.RED_400),
                ], spacing=6),
            padding=ft.padding.symmetric(horizontal=12, vertical=6),
            border_radius=20,
            border=ft.border.all(1, ft.Colors.GREEN_200 if online else ft.Colors.RED_200),
        )

        header = ft.Row([
                ft.Row([
                        ft.Container(content=ft.Icon(ft.Icons.ECO, size=30, color=ft.Colors.WHITE),
                                     bgcolor=ft.Colors.TEAL_600, border_radius=14, padding=10),
                        ft.Column([
                                ft.Text("BatScope", size=24, weight=ft.FontWeight.BOLD),
                                ft.Text("Multi-Species Bat Call Identification", size=12, color=ft.Colors.GREY_600),
                            ], spacing=0),
                    ], spacing=12),
                ft.Row([
                        status_chip,
                        ft.IconButton(ft.Icons.LIGHT_MODE if self.session.user_settings.dark_mode else ft.Icons.DARK_MODE,
                                      tooltip="Toggle theme", on_click=self.on_theme_toggle),
                        ft.IconButton(ft.Icons.REFRESH, tooltip="Refresh", on_click=self.on_refresh_click),
                        ft.IconButton(ft.Icons.TUNE, tooltip="Analysis settings", on_click=self.on_settings_click),
                    ], spacing=6),
            ], alignment=ft.MainAxisAlignment.SPACE_BETWEEN)

        nav = ft.Row(
            [
                ft.FilledButton(label, icon=icon, on_click=lambda e, p=p: page.go(ROUTES[p]))
                if p == page_id else
                ft.OutlinedButton(label, icon=icon, on_click=lambda e, p=p: page.go(ROUTES[p]))
                for p, label, icon in NAV_ITEMS
            ],
            spacing=8,
            scroll=ft.ScrollMode.AUTO,
        )

        main_content = ft.Column(
            [header, nav, ft.Divider(height=10, color="transparent"),
             ft.Container(content=content, expand=True)],
            expand=True,
            scroll=ft.ScrollMode.ADAPTIVE,
        )

        return ft.View(
            ROUTES[page_id],
            [
                ft.Stack(
                    [main_content, self._build_settings_panel(page)],
                    expand=True,
                )
            ],
            padding=30,
        )

    def _build_settings_panel(self, page: ft.Page) -> ft.Container:
        settings = self.session.get_user_settings()
        threshold_text = ft.Text(f"Detection threshold: {settings.threshold:.2f}", weight=ft.FontWeight.BOLD)
        max_threshold_text = ft.Text(f"Max threshold: {settings.max_threshold:.2f}", weight=ft.FontWeight.BOLD)

        def on_threshold(e: ft.ControlEvent):
            settings.threshold = round(float(e.control.value), 2)
            threshold_text.value = f"Detection threshold: {settings.threshold:.2f}"
            page.update()

        def on_max_threshold(e: ft.ControlEvent):
            settings.max_threshold = round(float(e.control.value), 2)
            max_threshold_text.value = f"Max threshold: {settings.max_threshold:.2f}"
            page.update()

        def on_max_freq(e: ft.ControlEvent):
            try:
                value = int(e.control.value)
            except (TypeError, ValueError):
                value = 0
            if value > 0:
                settings.max_freq = value
                e.control.error_text = None
            else:
                e.control.error_text = "Enter a positive number"
            page.update()

        def on_theme(e: ft.ControlEvent):
            settings.theme = SpectrogramTheme(e.control.value)

        def on_input_type(e: ft.ControlEvent):
            settings.input_type = InputType(e.control.value)

        return ft.Container(
            content=ft.Column(
                [
                    ft.Text("Analysis Settings", size=16, weight=ft.FontWeight.BOLD),
                    ft.RadioGroup(
                        value=settings.input_type.value,
                        on_change=on_input_type,
                        content=ft.Row([
                                ft.Radio(value=InputType.AUDIO.value, label="Audio"),
                                ft.Radio(value=InputType.SPECTROGRAM.value, label="Spectrogram"),
                            ]),
                    ),
                    ft.Dropdown(
                        label="Spectrogram theme",
                        value=settings.theme.value,
                        options=[ft.dropdown.Option(t.value, t.label) for t in SpectrogramTheme],
                        on_change=on_theme,
                    ),
                    threshold_text,
                    ft.Slider(min=0, max=1, divisions=100, value=settings.threshold, on_change=on_threshold),
                    max_threshold_text,
                    ft.Slider(min=0, max=1, divisions=100, value=settings.max_threshold, on_change=on_max_threshold),
                    ft.TextField(label="Max frequency (kHz)", value=str(settings.max_freq),
                                 keyboard_type=ft.KeyboardType.NUMBER, on_change=on_max_freq),
                ],
                tight=True,
                spacing=10,
            ),
            top=90,
            right=10,
            visible=self.settings_panel_visible,
            bgcolor=ft.Colors.SURFACE,
            padding=15,
            border_radius=10,
            shadow=ft.BoxShadow(blur_radius=15, color=ft.Colors.with_opacity(0.1, ft.Colors.BLACK)),
            border=ft.border.all(1, ft.Colors.GREY_300),
            width=320,
        )

    # --- Shared handlers ---

    def on_settings_click(self, e: ft.ControlEvent):
        self.settings_panel_visible = not self.settings_panel_visible
        stack = e.page.views[-1].controls[0]
        stack.controls[1].visible = self.settings_panel_visible
        e.page.update()

    def on_theme_toggle(self, e: ft.ControlEvent):
        settings = self.session.get_user_settings()
        settings.dark_mode = not settings.dark_mode
        e.page.theme_mode = ft.ThemeMode.DARK if settings.dark_mode else ft.ThemeMode.LIGHT
        self.rerender(e.page)

    async def on_refresh_click(self, e: ft.ControlEvent):
        await self.api_client.refresh_all()
        self.rerender(e.page)

    # --- Dashboard ---

    def build_dashboard_view(self, page: ft.Page) -> ft.Control:
        stats = self.session.server_stats
        local = self.session.analytics.global_stats()

        tiles = ft.Row(
            [
                StatTile(ft.Icons.STORAGE, "Total analyses", str(stats.total_analyses if stats else local.total_count)),
                StatTile(ft.Icons.SCHEDULE, "Recorded hours",
                         f"{stats.total_duration_hours:.2f}" if stats else f"{local.total_duration / 3600:.2f}",
                         ft.Colors.CYAN_600),
                StatTile(ft.Icons.PETS, "Unique species",
                         str(stats.unique_species_detected if stats else local.distinct_species), ft.Colors.BLUE_600),
                StatTile(ft.Icons.TRACK_CHANGES, "Avg confidence", f"{local.average_confidence:.1f}%", ft.Colors.PURPLE_600),
                StatTile(ft.Icons.TODAY, "Last 24h", str(local.recent_count), ft.Colors.AMBER_700),
            ],
            wrap=True, spacing=15, run_spacing=15,
        )

        top = local.top_species[:8]
        if top:
            distribution = ft.Row([
                    distribution_pie([(s.species, s.count) for s in top]),
                    ft.Column([
                            ft.Row([ft.Container(width=12, height=12, border_radius=3,
                                                 bgcolor=CHART_COLORS[i % len(CHART_COLORS)]),
                                    ft.Text(f"{s.species} ({s.count})", size=12)], spacing=8)
                            for i, s in enumerate(top)
                        ], spacing=6),
                ], spacing=20)
            ranking = bar_chart([(s.species, float(s.count)) for s in top], CHART_COLORS[1])
        else:
            distribution = ft.Text("No analyses yet.", italic=True, color=ft.Colors.GREY_600)
            ranking = ft.Text("Run an analysis to see species rankings.", italic=True, color=ft.Colors.GREY_600)

        health = self.session.health
        services = [
            ft.Row([
                    ft.Icon(ft.Icons.CHECK_CIRCLE if status in (True, "ok", "healthy", "online") else ft.Icons.ERROR,
                            size=16,
                            color=ft.Colors.GREEN_600 if status in (True, "ok", "healthy", "online") else ft.Colors.RED_400),
                    ft.Text(f"{name}: {status}", size=12),
                ], spacing=6)
            for name, status in (health.services.items() if health else [])
        ] or [ft.Text("No health data.", size=12, color=ft.Colors.GREY_600)]

        return ft.Column([
                ft.Row([
                        section_title(ft.Icons.BAR_CHART, "Ecological Overview",
                                      "Live monitoring of acoustic sensors and classification metrics"),
                        ft.Row([
                                ft.ElevatedButton("Download CSV", icon=ft.Icons.DOWNLOAD,
                                                  on_click=lambda e: page.run_task(self.export_manager.download_csv, page)),
                                ft.OutlinedButton("Summary PDF", icon=ft.Icons.PICTURE_AS_PDF,
                                                  on_click=lambda e: self.export_manager.export_summary_pdf(page, self.session)),
                            ], spacing=10),
                    ], alignment=ft.MainAxisAlignment.SPACE_BETWEEN, wrap=True),
                tiles,
                ft.Row([
                        card(ft.Column([ft.Text("Species distribution", weight=ft.FontWeight.BOLD), distribution]), expand=True),
                        card(ft.Column([ft.Text("Top species", weight=ft.FontWeight.BOLD), ranking]), expand=True),
                    ], spacing=20, vertical_alignment=ft.CrossAxisAlignment.START),
                card(ft.Column([
                        ft.Text("Service status" + (f" ({stats.storage_type} storage)" if stats else ""), weight=ft.FontWeight.BOLD),
                        ft.Row(services, wrap=True, spacing=20),
                    ])),
            ], spacing=20)

    # --- Single analysis ---

    def build_analyze_view(self, page: ft.Page) -> ft.Control:
        settings = self.session.get_user_settings()
        selected = self.state.selected_file
        status = ft.Text("", size=13)

        async def on_analyze_click(e: ft.ControlEvent):
            if not self.state.selected_file:
                show_snack(page, "Please select a file first.", ft.Colors.RED_500)
                return
            status.value = "Analyzing, please wait..."
            status.color = ft.Colors.BLUE_600
            page.update()
            try:
                await self.api_client.analyze_file(self.state.selected_file)
            except BatScopeError as ex:
                show_snack(page, f"Analysis failed: {ex}", ft.Colors.RED_500)
            self.rerender(page)

        extensions = AUDIO_EXTENSIONS if settings.input_type == InputType.AUDIO else IMAGE_EXTENSIONS
        upload_box = ft.Container(
            content=ft.Column([
                        ft.Icon(ft.Icons.UPLOAD_FILE, size=40, color=ft.Colors.GREY_600),
                        ft.Text(os.path.basename(selected) if selected else f"Upload {settings.input_type.value}",
                                weight=ft.FontWeight.BOLD),
                        ft.Text(", ".join(ext.upper() for ext in extensions), color=ft.Colors.GREY_500, size=12),
                    ], alignment=ft.MainAxisAlignment.CENTER, horizontal_alignment=ft.CrossAxisAlignment.CENTER, spacing=5),
            border=ft.border.all(1, ft.Colors.GREY_300), border_radius=12,
            padding=ft.padding.symmetric(vertical=40),
            width=420,
            on_click=lambda e: self.single_file_picker.pick_files(
                allow_multiple=False, file_type=ft.FilePickerFileType.CUSTOM, allowed_extensions=extensions),
        )

        controls_column = ft.Column(
            [
                section_title(ft.Icons.UPLOAD, "Single Analysis", "Identify the species in one recording or spectrogram"),
                ft.Text(f"Input: {settings.input_type.value} | Theme: {settings.theme.label} | "
                        f"Threshold: {settings.threshold:.2f} | Max freq: {settings.max_freq} kHz",
                        size=12, color=ft.Colors.GREY_600),
                upload_box,
                ft.ElevatedButton("Analyzing..." if self.state.analyzing else "Analyze", width=420,
                                  disabled=self.state.analyzing, on_click=on_analyze_click),
                status,
            ],
            width=420, spacing=15,
        )

        result_panel = self._build_result_panel(page, self.state.current_result)
        return ft.Row([card(controls_column), ft.Container(content=result_panel, expand=True)],
                      spacing=30, vertical_alignment=ft.CrossAxisAlignment.START)

    def _build_result_panel(self, page: ft.Page, result: Optional[AnalysisResult]) -> ft.Control:
        if result is None:
            return card(ft.Column([
                    ft.Icon(ft.Icons.GRAPHIC_EQ, size=50, color=ft.Colors.GREY_400),
                    ft.Text("No result yet", color=ft.Colors.GREY_600),
                ], horizontal_alignment=ft.CrossAxisAlignment.CENTER))

        threshold = self.session.get_user_settings().threshold
        shown = detections_above(result, threshold)
        if shown:
            matches = [SpeciesBar(d, highlight=(i == 0)) for i, d in enumerate(shown)]
        else:
            matches = [ft.Text(f"No species detected above the confidence threshold ({threshold}).",
                               italic=True, color=ft.Colors.AMBER_700)]

        playing = self.state.audio.is_playing(result.file_id)
        actions = ft.Row([
                ft.OutlinedButton("Stop" if playing else "Play", icon=ft.Icons.PAUSE if playing else ft.Icons.PLAY_ARROW,
                                  disabled=not result.audio_url, on_click=lambda e: self.on_play(page, result)),
                ft.OutlinedButton("PDF report", icon=ft.Icons.PICTURE_AS_PDF,
                                  on_click=lambda e: page.run_task(self.export_manager.download_pdf, page, result.file_id)),
            ], spacing=10)

        visuals = []
        if result.spectrogram_url:
            visuals.append(ft.Image(src=result.spectrogram_url, height=220, fit=ft.ImageFit.CONTAIN, border_radius=8))
        if result.species_image_url:
            visuals.append(ft.Image(src=result.species_image_url, height=220, fit=ft.ImageFit.CONTAIN, border_radius=8))

        return card(ft.Column([
                ft.Text(result.original_filename, size=16, weight=ft.FontWeight.BOLD),
                ft.Text(f"Duration {result.duration:.2f}s | {result.sample_rate} Hz", size=12, color=ft.Colors.GREY_600),
                ft.Row(visuals, wrap=True, spacing=10),
                ft.Text("Top matches", weight=ft.FontWeight.BOLD),
                ft.Column(matches, spacing=8),
                actions,
            ], spacing=12))

    # --- Batch ---

    def build_batch_view(self, page: ft.Page) -> ft.Control:
        settings = self.session.get_user_settings()

        def on_remove(path: str):
            self.state.remove_batch_file(path)
            self.rerender(page)

        async def on_analyze_click(e: ft.ControlEvent):
            try:
                await self.api_client.analyze_batch(list(self.state.batch_files))
            except BatScopeError as ex:
                show_snack(page, f"Batch analysis failed: {ex}", ft.Colors.RED_500)
            self.rerender(page)

        extensions = AUDIO_EXTENSIONS if settings.input_type == InputType.AUDIO else IMAGE_EXTENSIONS
        files = self.state.batch_files
        picker_column = ft.Column(
            [
                section_title(ft.Icons.INVENTORY_2, "Batch Processing", "Analyze many recordings in one request"),
                ft.Row([
                        ft.ElevatedButton("Select files", icon=ft.Icons.FOLDER_OPEN,
                                          on_click=lambda e: self.batch_file_picker.pick_files(
                                              allow_multiple=True, file_type=ft.FilePickerFileType.CUSTOM,
                                              allowed_extensions=extensions)),
                        ft.TextButton("Clear", disabled=not files,
                                      on_click=lambda e: (files.clear(), self.rerender(page))),
                    ], spacing=10),
                ft.Text(f"{len(files)} files selected" if files else "No files selected.",
                        color=ft.Colors.GREY_600, size=12, italic=True),
                ft.Row([BatchFileChip(p, on_remove=on_remove) for p in files], wrap=True, spacing=8, run_spacing=8),
                ft.ElevatedButton("Processing..." if self.state.batch_analyzing else "Analyze batch",
                                  disabled=self.state.batch_analyzing or not files, on_click=on_analyze_click),
            ],
            spacing=12,
        )

        body = [card(picker_column)]
        summary = self.state.batch_summary
        if summary is not None:
            body.append(ft.Row([
                    StatTile(ft.Icons.FOLDER, "Total files", str(summary.total_files)),
                    StatTile(ft.Icons.CHECK_CIRCLE, "Completed", str(summary.completed), ft.Colors.GREEN_600),
                    StatTile(ft.Icons.CANCEL, "Failed", str(summary.failed), ft.Colors.RED_400),
                    ft.ElevatedButton("Download CSV", icon=ft.Icons.DOWNLOAD,
                                      on_click=lambda e: page.run_task(self.export_manager.download_csv, page)),
                ], wrap=True, spacing=15))
            rows = [
                ft.DataRow(cells=[
                    ft.DataCell(ft.Text(r.original_filename)),
                    ft.DataCell(ft.Text(r.top_match.species)),
                    ft.DataCell(ft.Text(f"{r.top_match.confidence:.2f}%")),
                    ft.DataCell(ft.Text(fmt_value(r.call_parameters.peak_frequency, " kHz"))),
                ])
                for r in summary.results
            ]
            body.append(card(ft.DataTable(
                columns=[ft.DataColumn(ft.Text("File")), ft.DataColumn(ft.Text("Top species")),
                         ft.DataColumn(ft.Text("Confidence"), numeric=True), ft.DataColumn(ft.Text("Peak"), numeric=True)],
                rows=rows,
            )))
        return ft.Column(body, spacing=20)

    # --- History ---

    def build_history_view(self, page: ft.Page) -> ft.Control:
        def on_filter(e: ft.ControlEvent):
            self.state.set_filter(e.control.value)
            self.rerender(page)

        def on_search(e: ft.ControlEvent):
            self.state.search_term = e.control.value or ""
            self.rerender(page)

        def on_toggle(result: AnalysisResult):
            self.state.toggle_expanded(result.file_id)
            self.rerender(page)

        history = self.session.get_history()
        species_options = [ft.dropdown.Option(ALL_SPECIES, "All species")] + [
            ft.dropdown.Option(s) for s in self.session.store.species_in_first_seen_order()
        ]

        toolbar = ft.Row([
                ft.Dropdown(label="Species", value=self.state.filter_species, options=species_options,
                            on_change=on_filter, width=260),
                ft.TextField(label="Search", value=self.state.search_term, prefix_icon=ft.Icons.SEARCH,
                             on_submit=on_search, width=260),
                ft.ElevatedButton("Download all (CSV)", icon=ft.Icons.DOWNLOAD,
                                  on_click=lambda e: page.run_task(self.export_manager.download_csv, page)),
            ], spacing=15, wrap=True)

        if self.state.loading_results:
            cards = [ft.ProgressRing()]
        elif not history:
            cards = [ft.Text("No analyses match the current filter.", italic=True, color=ft.Colors.GREY_600)]
        else:
            cards = [
                ResultCard(
                    r,
                    expanded=self.state.is_expanded(r.file_id),
                    playing=self.state.audio.is_playing(r.file_id),
                    on_toggle=on_toggle,
                    on_play=lambda result: self.on_play(page, result),
                    on_pdf=lambda result: page.run_task(self.export_manager.download_pdf, page, result.file_id),
                    on_json=self.export_manager.export_json,
                    on_delete=lambda result: self._confirm_delete(page, result),
                )
                for r in history
            ]

        return ft.Column([
                section_title(ft.Icons.HISTORY, "Data History",
                              f"Archive of {len(self.session.store)} acoustic events processed"),
                toolbar,
                ft.Column(cards, spacing=4),
            ], spacing=15)

    def on_play(self, page: ft.Page, result: AnalysisResult):
        if not result.audio_url:
            show_snack(page, "No audio available for this result.")
            return
        self.state.audio.toggle(result.file_id, result.audio_url)
        self.rerender(page)

    def _confirm_delete(self, page: ft.Page, result: AnalysisResult):
        def close(e):
            page.close(dialog)

        def confirm(e):
            page.close(dialog)
            page.run_task(self.delete_result, page, result.file_id)

        dialog = ft.AlertDialog(
            modal=True,
            title=ft.Text("Delete this result?"),
            content=ft.Text(result.original_filename),
            actions=[ft.TextButton("Cancel", on_click=close),
                     ft.TextButton("Delete", on_click=confirm, style=ft.ButtonStyle(color=ft.Colors.RED_500))],
        )
        page.open(dialog)

    async def delete_result(self, page: ft.Page, file_id: str):
        try:
            await self.api_client.delete_result(file_id)
            show_snack(page, f"Result {file_id[:8]}... deleted.", ft.Colors.TEAL_600)
        except BatScopeError as ex:
            show_snack(page, f"Deletion failed: {ex}", ft.Colors.RED_500)
        self.rerender(page)

    # --- Species analytics ---

    def build_analytics_view(self, page: ft.Page) -> ft.Control:
        gallery = self.session.store.species_in_first_seen_order()[:GALLERY_SIZE]
        selected = self.state.selected_species

        def on_select(species: str):
            self.state.selected_species = species
            self.rerender(page)

        chips = ft.Row(
            [
                ft.Chip(label=ft.Text(s), selected=(s == selected), on_select=lambda e, s=s: on_select(s),
                        leading=ft.Icon(ft.Icons.PETS, size=16))
                for s in gallery
            ] or [ft.Text("No species recorded yet.", italic=True, color=ft.Colors.GREY_600)],
            wrap=True, spacing=8, run_spacing=8,
        )

        body = [
            section_title(ft.Icons.TRENDING_UP, "Species Analytics", "Call statistics for results whose top match is the selected species"),
            chips,
        ]
        if selected is None:
            body.append(ft.Text("Pick a species to see its analytics.", color=ft.Colors.GREY_600))
            return ft.Column(body, spacing=15)

        analytics = self.session.analytics.species_analytics(selected)
        if not analytics.has_data:
            body.append(card(ft.Text(f"No results list {selected} as the top match.", italic=True)))
            return ft.Column(body, spacing=15)

        avg_peak = "N/A" if math.isnan(analytics.avg_peak_frequency) else f"{analytics.avg_peak_frequency:.1f} kHz"
        avg_pulse = "N/A" if math.isnan(analytics.avg_pulse_duration) else f"{analytics.avg_pulse_duration:.1f} ms"
        body.append(ft.Row([
                StatTile(ft.Icons.NUMBERS, "Detections", str(analytics.count)),
                StatTile(ft.Icons.WAVES, "Avg peak frequency", avg_peak, ft.Colors.CYAN_600),
                StatTile(ft.Icons.TIMER, "Avg pulse duration", avg_pulse, ft.Colors.PURPLE_600),
            ], wrap=True, spacing=15))

        body.append(card(ft.Column([
                ft.Text("Confidence over time", weight=ft.FontWeight.BOLD),
                confidence_line_chart([p.confidence for p in analytics.time_data],
                                      [p.date.strftime("%m/%d") for p in analytics.time_data]),
            ])))
        body.append(ft.Row([
                card(ft.Column([
                        ft.Text("Peak frequency per recording", weight=ft.FontWeight.BOLD),
                        bar_chart([(p.name, p.peak) for p in analytics.freq_data], CHART_COLORS[2], " kHz"),
                    ]), expand=True),
                card(ft.Column([
                        ft.Text("Pulse duration per recording", weight=ft.FontWeight.BOLD),
                        bar_chart([(p.name, p.duration) for p in analytics.duration_data], CHART_COLORS[3], " ms"),
                    ]), expand=True),
            ], spacing=20, vertical_alignment=ft.CrossAxisAlignment.START))
        return ft.Column(body, spacing=15)

    # --- Chat ---

    async def on_chat_submit(self, e: ft.ControlEvent):
        page = e.page
        message = self.chat_input.value or ""
        if not message.strip() or self.state.chat_loading:
            return
        self.chat_input.value = ""
        await self.api_client.send_chat(message, on_pending=lambda: self.rerender(page))
        self.rerender(page)

    def build_chat_view(self, page: ft.Page) -> ft.Control:
        messages = self.state.chat.messages
        bubbles = [
            ft.Row([
                    ft.Container(
                        content=ft.Text(m.content, selectable=True,
                                        color=ft.Colors.WHITE if m.role == "user" else None),
                        bgcolor=ft.Colors.TEAL_600 if m.role == "user" else ft.Colors.with_opacity(0.08, ft.Colors.GREY),
                        padding=12, border_radius=12, width=520,
                    ),
                ], alignment=ft.MainAxisAlignment.END if m.role == "user" else ft.MainAxisAlignment.START)
            for m in messages
        ]
        if not bubbles:
            bubbles = [ft.Text("Ask the assistant about species trends, call parameters or your recent recordings.",
                               italic=True, color=ft.Colors.GREY_600)]
        if self.state.chat_loading:
            bubbles.append(ft.Row([ft.ProgressRing(width=16, height=16), ft.Text("Thinking...", size=12)]))

        return ft.Column([
                section_title(ft.Icons.CHAT, "Eco-Assistant", "Questions are answered over your full result history"),
                card(ft.Column(bubbles, spacing=10, height=420, scroll=ft.ScrollMode.AUTO, auto_scroll=True)),
                ft.Row([
                        self.chat_input,
                        ft.IconButton(ft.Icons.SEND, disabled=self.state.chat_loading, on_click=self.on_chat_submit),
                    ]),
            ], spacing=15)

    # --- File Picker Handlers ---

    def on_single_file_result(self, e: ft.FilePickerResultEvent):
        if e.files:
            self.state.selected_file = e.files[0].path
            self.state.current_result = None
        self.rerender(e.page)

    def on_batch_file_result(self, e: ft.FilePickerResultEvent):
        if e.files:
            self.state.add_batch_files([f.path for f in e.files if f.path])
            self.state.batch_summary = None
        self.rerender(e.page)
