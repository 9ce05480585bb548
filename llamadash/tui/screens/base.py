"""
Base class for all llamadash TUI panes.
Every pane gets the shared service objects at construction time and
provides refresh_content(), which the app calls on its refresh action.
"""
from __future__ import annotations
from textual.widget import Widget
from textual.widgets import Static
from llamadash.chat import ConversationController
from llamadash.registry import ModelRegistry


class DashPane(Widget):
    """
    Base widget for all TUI panel content.
    Subclass this, implement compose() and optionally refresh_content().
    """
    DEFAULT_CSS = """
    DashPane {
        height: 1fr;
        width: 1fr;
    }
    """

    def __init__(self, registry: ModelRegistry, controller: ConversationController, **kwargs):
        super().__init__(**kwargs)
        self.registry = registry
        self.controller = controller

    def refresh_content(self) -> None:
        """Called by the app to request a data refresh. Override in subclasses."""
        self.refresh()

    @staticmethod
    def section(title: str) -> Static:
        """Return a styled section header widget."""
        return Static(f"[bold green]── {title} ──[/bold green]", markup=True)
