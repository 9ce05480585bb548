"""
Chat pane — the active conversation plus the live streaming buffer.
Redraws on every controller event, so partial output shows as it arrives.
"""
from __future__ import annotations
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import Input, Static
from llamadash.tui.screens.base import DashPane

_ROLE_LABELS = {
    "system": "● system",
    "user": "▶ you",
    "assistant": "◀ model",
}


def _escape(text: str) -> str:
    return text.replace("[", "\\[")


class ChatPane(DashPane):
    """Streaming chat against the active conversation."""

    BINDINGS = [
        Binding("escape", "stop", "Stop"),
        Binding("ctrl+n", "new_chat", "New chat"),
    ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._unsubscribe = None

    def compose(self) -> ComposeResult:
        yield Static("", id="chat-status", markup=True)
        with VerticalScroll(id="chat-scroll"):
            yield Static("", id="chat-body", markup=False)
        yield Input(placeholder="Say something...", id="chat-input")

    def on_mount(self) -> None:
        self._unsubscribe = self.controller.subscribe(self._on_controller_event)
        self.refresh_content()

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()

    def _on_controller_event(self, event: str, data) -> None:
        self.refresh_content()

    def refresh_content(self) -> None:
        status = self.query_one("#chat-status", Static)
        body = self.query_one("#chat-body", Static)
        conv = self.controller.get_active_conversation()

        if conv is None:
            status.update("[dim]── no conversation ──[/dim]")
            body.update("Pick a model on the Models tab and press 'c', or just type to use the first loaded model.")
            return

        state = "[yellow]generating…[/yellow]" if self.controller.generating else "[green]idle[/green]"
        status.update(
            f"[bold]{_escape(conv.title)}[/bold]  [dim]│  {_escape(conv.model)}  │  "
            f"{len(conv.messages)} messages  │[/dim]  {state}"
        )

        blocks = [f"{_ROLE_LABELS[m.role]}\n{m.content}" for m in conv.messages]
        if self.controller.generating and self.controller.generating_conversation_id == conv.id:
            blocks.append(f"{_ROLE_LABELS['assistant']}\n{self.controller.streaming_content}▍")
        body.update("\n\n".join(blocks))
        self.query_one("#chat-scroll", VerticalScroll).scroll_end(animate=False)

    def _default_model(self) -> str | None:
        loaded = self.registry.loaded_models
        return loaded[0].id if loaded else None

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        event.input.value = ""
        if not text:
            return
        if self.controller.generating:
            self.notify("Still generating, press Esc to stop", severity="warning")
            return
        if self.controller.get_active_conversation() is None:
            model = self._default_model()
            if model is None:
                self.notify("No loaded model. Load one on the Models tab.", severity="warning")
                return
            self.controller.create(model)
        self.run_worker(self.controller.send(text), group="chat", exit_on_error=False)

    def action_stop(self) -> None:
        self.controller.stop()

    def action_new_chat(self) -> None:
        conv = self.controller.get_active_conversation()
        model = conv.model if conv else self._default_model()
        if model is None:
            self.notify("No loaded model to chat with.", severity="warning")
            return
        self.controller.create(model)
