"""
llamadash Console — models and chat in one terminal.
Textual-based TUI with a pane registry: add a (label, tab_id, pane_class)
entry to PANE_REGISTRY to get a new tab.
Entry point: llamadash console (alias: tui)
"""
from __future__ import annotations
from typing import ClassVar
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Footer, Header, TabbedContent, TabPane
from llamadash.api import ApiClient
from llamadash.chat import ConversationController
from llamadash.registry import ModelRegistry
from llamadash.tui.screens.base import DashPane
from llamadash.tui.screens.chat import ChatPane
from llamadash.tui.screens.models import ModelsPane
from llamadash.types import GenerationOptions
from llamadash.wiretap import WireLog

# Each entry: (label, tab_id, pane_class)
PANE_REGISTRY: list[tuple[str, str, type[DashPane]]] = [
    ("Models", "models", ModelsPane),
    ("Chat",   "chat",   ChatPane),
]


class LlamaDashApp(App):
    """llamadash TUI."""
    TITLE = "llamadash"
    SUB_TITLE = "stream the tokens · mind the models"
    CSS = """
    #chat-scroll {
        height: 1fr;
        border: round $accent;
        padding: 0 1;
    }
    #chat-status, #models-status {
        height: 1;
        padding: 0 1;
    }
    #models-table {
        height: 1fr;
    }
    """
    BINDINGS: ClassVar[list[Binding]] = [
        Binding("ctrl+q", "quit", "Quit", priority=True),
        Binding("f1", "switch_tab('models')", "Models", show=True),
        Binding("f2", "switch_tab('chat')", "Chat", show=True),
        Binding("ctrl+r", "refresh_all", "Refresh", show=True),
    ]

    def __init__(self, cfg: dict, api: ApiClient | None = None):
        super().__init__()
        self.cfg = cfg
        self.api = api or ApiClient.from_config(cfg)
        self.wire = WireLog(cfg["wiretap"]["path"]) if cfg.get("wiretap", {}).get("enabled") else None
        self.registry = ModelRegistry(self.api)
        self.controller = ConversationController(
            self.api,
            GenerationOptions.from_config(cfg),
            wire=self.wire,
        )

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with TabbedContent(initial="models"):
            for label, tab_id, pane_cls in PANE_REGISTRY:
                with TabPane(label, id=tab_id):
                    yield pane_cls(self.registry, self.controller, id=f"{tab_id}-pane")
        yield Footer()

    async def on_unmount(self) -> None:
        self.controller.stop()
        if self.wire:
            self.wire.close()
        await self.api.aclose()

    def action_switch_tab(self, tab_id: str) -> None:
        self.query_one(TabbedContent).active = tab_id

    def action_refresh_all(self) -> None:
        for pane in self.query(DashPane):
            pane.refresh_content()
