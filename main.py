# /main.py

import flet as ft
import logging

# Import Client Logic and UI from the new folders
from config import get_config, init_logging
from logic.core import APIClient, ExportManager, HealthMonitor, Session, show_snack
from logic.state import AudioSlot
from ui.controls import FletAudioBackend
from ui.views import AppLogic

logger = logging.getLogger(__name__)


async def main(page: ft.Page):
    config = get_config()
    page.title = config.app_name
    page.padding = 0

    # 1. Picker controls first, their handlers are attached once AppLogic exists
    single_file_picker = ft.FilePicker()
    batch_file_picker = ft.FilePicker()

    def on_save_file_result(e: ft.FilePickerResultEvent):
        if not e.path:
            show_snack(page, "Save operation cancelled.")
            return
        try:
            data_to_save = e.control.data_to_save
            save_mode = getattr(e.control, "save_mode", "text")

            if save_mode == "binary":
                with open(e.path, "wb") as f:
                    f.write(data_to_save)
            else:
                with open(e.path, "w", encoding="utf-8") as f:
                    f.write(data_to_save)
            show_snack(page, f"Successfully exported to {e.path}", ft.Colors.GREEN_700)
        except OSError as ex:
            logger.error("Error saving file %s: %s", e.path, ex)
            show_snack(page, f"Error saving file: {ex}", ft.Colors.RED_500)

    save_file_dialog = ft.FilePicker(on_result=on_save_file_result)

    # 2. Initialize Core State and Managers
    audio_slot = AudioSlot()
    app_session = Session(config=config, audio=audio_slot)
    api_client = APIClient(session=app_session)
    export_manager = ExportManager(save_dialog=save_file_dialog, api_client=api_client)
    app_logic = AppLogic(
        session=app_session,
        api_client=api_client,
        export_manager=export_manager,
        single_file_picker=single_file_picker,
        batch_file_picker=batch_file_picker,
    )

    def on_playback_completed():
        audio_slot.on_ended()
        app_logic.rerender(page)

    audio_slot.backend = FletAudioBackend(page, on_completed=on_playback_completed)
    single_file_picker.on_result = app_logic.on_single_file_result
    batch_file_picker.on_result = app_logic.on_batch_file_result

    page.overlay.extend([
        single_file_picker,
        batch_file_picker,
        save_file_dialog,
    ])
    page.theme_mode = ft.ThemeMode.DARK if app_session.user_settings.dark_mode else ft.ThemeMode.LIGHT
    page.theme = ft.Theme(color_scheme_seed=ft.Colors.TEAL)
    page.dark_theme = ft.Theme(color_scheme_seed=ft.Colors.TEAL)

    # 3. Define Route Change Handler
    def route_change_handler(e: ft.RouteChangeEvent):
        try:
            app_logic.rerender(e.page)
        except Exception:
            logger.exception("Failed to build view for route %s", e.route)

    def view_pop_handler(e: ft.ViewPopEvent):
        e.page.go("/")

    # 4. Background health check, stopped with the session
    def on_health(online: bool):
        if page.views:
            app_logic.rerender(page)

    monitor = HealthMonitor(api_client, interval=config.health_interval, on_update=on_health)

    async def teardown(e):
        await monitor.stop()
        app_session.teardown()
        await api_client.aclose()

    page.on_route_change = route_change_handler
    page.on_view_pop = view_pop_handler
    page.on_disconnect = teardown
    page.on_close = teardown
    page.go(page.route)

    # 5. Initial load
    await api_client.refresh_data()
    monitor.start()
    app_logic.rerender(page)


def run():
    init_logging()
    ft.app(target=main)


if __name__ == "__main__":
    run()
