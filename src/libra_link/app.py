"""libra-link - offline-first terminal client for a libra-link e-book library."""

from __future__ import annotations

import logging
import sys
from functools import partial
from typing import Any, Optional

from textual.app import App
from textual.binding import Binding
from textual.worker import Worker

from libra_link import theme
from libra_link.api.client import ApiClient
from libra_link.config import AppConfig, load_config
from libra_link.errors import StorageError
from libra_link.library.database import Database
from libra_link.session import SessionFile
from libra_link.sync.worker import SyncWorker
from libra_link.ui.commands import Commands
from libra_link.ui.coordinator import Coordinator
from libra_link.ui.messages import Command, Quit, Task, TaskFailed, Tick
from libra_link.ui.screens.main_screen import MainScreen
from libra_link.ui.themes import APP_CSS

log = logging.getLogger(__name__)


class LibraLinkApp(App):
    """Hosts the coordinator: runs its commands and renders its state."""

    TITLE = "libra-link"
    CSS = APP_CSS
    ENABLE_COMMAND_PALETTE = False

    BINDINGS = [
        Binding("ctrl+c", "interrupt", "Quit", show=False, priority=True),
    ]

    def __init__(self, config: AppConfig | None = None) -> None:
        super().__init__()
        self.config = config or load_config()
        self.db = Database(self.config.db_path)
        self.api = ApiClient(self.config.api_base_url, self.config.http_timeout)
        self.sync = SyncWorker(self.db, self.api, self.config.sync_batch_size)
        self.coordinator = Coordinator(
            Commands(self.config, self.db, self.api, SessionFile(self.config.session_path)),
            on_quit=self.sync.stop,
        )
        self._main: Optional[MainScreen] = None
        self._sync_worker: Optional[Worker] = None
        self._applied_theme: Optional[tuple[str, theme.Tokens]] = None
        self._shutting_down = False

    def on_mount(self) -> None:
        self._main = MainScreen()
        self.push_screen(self._main)
        self._sync_worker = self.run_worker(
            self.sync.run(self.config.sync_interval), name="sync", group="sync"
        )
        self._execute(self.coordinator.init())

    # ── Coordinator bridge ──────────────────────

    def handle_key(self, key: str, character: Optional[str]) -> None:
        self._execute(self.coordinator.handle_key(key, character))

    def resize_view(self, width: int, height: int) -> None:
        self.coordinator.resize(width, height)
        self._render()

    def deliver(self, msg: Any) -> None:
        if self._shutting_down:
            return
        self._execute(self.coordinator.update(msg))

    def _execute(self, cmds: list[Command]) -> None:
        for cmd in cmds:
            if isinstance(cmd, Task):
                self.run_worker(self._run_task(cmd), group="tasks", exit_on_error=False)
            elif isinstance(cmd, Tick):
                self.set_timer(cmd.delay, partial(self.deliver, cmd.message))
            elif isinstance(cmd, Quit):
                self._shutting_down = True
                self.run_worker(self._close(), group="shutdown", exit_on_error=False)
        self._render()

    async def _run_task(self, task: Task) -> None:
        try:
            result = await task.run()
        except Exception as e:
            log.exception("Background task failed")
            result = TaskFailed(e)
        self.deliver(result)

    def _render(self) -> None:
        state = self.coordinator.state
        self._apply_theme()
        if self._main is not None and self._main.is_mounted:
            self._main.refresh_view(state)

    def _apply_theme(self) -> None:
        prefs = self.coordinator.state.prefs
        tokens = theme.resolve_tokens(prefs.theme_mode, prefs.theme_overrides)
        wanted = (prefs.theme_mode, tokens)
        if wanted == self._applied_theme:
            return
        self._applied_theme = wanted

        name = theme.theme_name(prefs.theme_mode)
        self.register_theme(theme.build_theme(prefs.theme_mode, tokens))
        if self.theme == name:
            self.refresh_css(animate=False)
        else:
            self.theme = name

    # ── Actions ─────────────────────────────────

    def action_interrupt(self) -> None:
        self.handle_key("ctrl+c", None)

    async def action_quit(self) -> None:
        self.handle_key("ctrl+c", None)

    async def _close(self) -> None:
        if self._sync_worker is not None:
            self._sync_worker.cancel()
        await self.api.close()
        self.db.close()
        log.info("Shutdown complete")
        self.exit()


def _setup_logging(config: AppConfig) -> None:
    handler = logging.FileHandler(config.log_path, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root = logging.getLogger("libra_link")
    level = logging.getLevelName(config.log_level)
    root.setLevel(level if isinstance(level, int) else logging.DEBUG)
    root.addHandler(handler)


def main() -> None:
    try:
        config = load_config()
        _setup_logging(config)
        app = LibraLinkApp(config=config)
    except (StorageError, OSError) as e:
        print(f"libra-link: {e}", file=sys.stderr)
        sys.exit(1)

    log.info("Starting libra-link against %s", config.api_base_url)
    app.run()


if __name__ == "__main__":
    main()
