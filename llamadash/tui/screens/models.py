"""
Models pane — the registry as a table.
Load, unload, favorite and rescan act on the highlighted row; statuses
update in place as the server answers.
"""
from __future__ import annotations
import asyncio
from textual.app import ComposeResult
from textual.binding import Binding
from textual.widgets import DataTable, Static, TabbedContent
from llamadash.errors import LlamaDashError
from llamadash.tui.screens.base import DashPane
from llamadash.types import ModelEntry, ModelStatus

_STATUS_MARKS = {
    "loaded": "●",
    "loading": "◐",
    "unloaded": "○",
    "error": "✗",
}


def _not_chattable(model_id: str, entry: ModelEntry | None) -> str | None:
    """Why a chat can't start against this model yet, or None if it can."""
    if entry is None:
        return f"{model_id} is no longer listed. Press 's' to rescan."
    if entry.status is not ModelStatus.LOADED:
        return f"{model_id} is {entry.status.value}. Press 'l' to load it first."
    return None


def _size(size: int) -> str:
    gb = size / (1024 ** 3)
    if gb >= 1:
        return f"{gb:.1f} GB"
    return f"{size / (1024 ** 2):.0f} MB"


class ModelsPane(DashPane):
    """Model list with lifecycle actions."""

    BINDINGS = [
        Binding("l", "load", "Load"),
        Binding("u", "unload", "Unload"),
        Binding("f", "favorite", "Favorite"),
        Binding("s", "rescan", "Rescan"),
        Binding("c", "chat", "Chat"),
    ]

    def compose(self) -> ComposeResult:
        yield self.section("Models")
        yield Static("", id="models-status", markup=True)
        yield DataTable(id="models-table", cursor_type="row")

    def on_mount(self) -> None:
        table = self.query_one("#models-table", DataTable)
        table.add_columns("", "★", "Model", "Arch", "Quant", "Size", "Status")
        self.refresh_content()

    def refresh_content(self) -> None:
        self.run_worker(self._fetch(), group="models", exclusive=True, exit_on_error=False)

    async def _fetch(self) -> None:
        self.query_one("#models-status", Static).update("[dim]fetching...[/dim]")
        await self.registry.fetch_all()
        self._redraw()

    def _redraw(self) -> None:
        table = self.query_one("#models-table", DataTable)
        status = self.query_one("#models-status", Static)
        cursor = table.cursor_row

        table.clear()
        for m in self.registry.models:
            table.add_row(
                _STATUS_MARKS.get(m.status.value, "?"),
                "★" if m.favorite else "",
                m.display_name,
                m.architecture or "-",
                m.quantization or "-",
                _size(m.size),
                m.status.value,
                key=m.id,
            )
        if self.registry.models:
            table.move_cursor(row=min(cursor, len(self.registry.models) - 1))

        if self.registry.error:
            error = self.registry.error.replace("[", "\\[")
            status.update(f"[red]✗ {error}[/red]")
        else:
            status.update(
                f"[dim]{len(self.registry.models)} models  │  "
                f"{len(self.registry.loaded_models)} loaded  │  "
                f"{len(self.registry.favorite_models)} favorites[/dim]"
            )

    def _selected_id(self) -> str | None:
        table = self.query_one("#models-table", DataTable)
        if table.row_count == 0:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return row_key.value

    async def _mutate(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        await asyncio.sleep(0)
        self._redraw()
        try:
            await task
        except LlamaDashError as e:
            self.notify(str(e), severity="error")
        self._redraw()

    def action_load(self) -> None:
        model_id = self._selected_id()
        if model_id:
            self.run_worker(self._mutate(self.registry.load(model_id)), group="mutate", exit_on_error=False)

    def action_unload(self) -> None:
        model_id = self._selected_id()
        if model_id:
            self.run_worker(self._mutate(self.registry.unload(model_id)), group="mutate", exit_on_error=False)

    def action_favorite(self) -> None:
        model_id = self._selected_id()
        if model_id:
            self.run_worker(self._mutate(self.registry.toggle_favorite(model_id)), group="mutate", exit_on_error=False)

    def action_rescan(self) -> None:
        self.run_worker(self._mutate(self.registry.rescan()), group="models", exclusive=True, exit_on_error=False)

    def action_chat(self) -> None:
        """Start a conversation against the highlighted model."""
        model_id = self._selected_id()
        if not model_id:
            return
        refusal = _not_chattable(model_id, self.registry.find(model_id))
        if refusal:
            self.notify(refusal, severity="warning")
            return
        self.controller.create(model_id)
        self.app.query_one(TabbedContent).active = "chat"
