"""NiceGUI chat page driven by the ChatController."""

import logging
import os

from nicegui import app, events, ui

from devtwin.chat import (
    ChatController,
    ConversationState,
    create_chat_controller,
    create_http_client,
    get_chat_config,
)
from devtwin.models.schemas import DispatchStatus, Message

logger = logging.getLogger(__name__)

CUSTOM_CSS = """
<style>
    body { background: #f4f5f7; min-height: 100vh; }

    .app-container {
        background: white;
        border-radius: 12px;
        box-shadow: 0 2px 8px rgba(0, 0, 0, 0.1);
        overflow: hidden;
    }

    .header { background: #1f2937; }

    .message-user {
        background: #2563eb;
        color: white;
        border-radius: 18px 18px 4px 18px;
    }

    .message-assistant {
        background: #f3f4f6;
        color: #1f2937;
        border-radius: 18px 18px 18px 4px;
    }

    .typing-dot {
        width: 8px; height: 8px;
        background: #2563eb;
        border-radius: 50%;
        animation: bounce 1.4s infinite ease-in-out;
    }
    .typing-dot:nth-child(2) { animation-delay: 0.2s; }
    .typing-dot:nth-child(3) { animation-delay: 0.4s; }

    @keyframes bounce {
        0%, 60%, 100% { transform: translateY(0); }
        30% { transform: translateY(-6px); }
    }

    .message-assistant p { margin: 0; }
    .message-assistant pre { margin: 0.5rem 0; }
</style>
"""

SUGGESTIONS = [
    "Explain code",
    "Write a Git commit message",
    "Generate unit tests",
    "Suggest code improvements",
]


@ui.page("/")
def chat_page() -> None:
    """Main chat page."""
    ui.add_head_html(CUSTOM_CSS)
    config = get_chat_config()
    http_client = create_http_client(config)
    controller: ChatController = create_chat_controller(app.storage.user, http_client, config)

    messages_container: ui.column
    input_field: ui.textarea
    feature_select: ui.select
    # Snapshot of what is on screen, so streaming only touches one bubble
    shown: dict[str, Message] = {}
    bodies: dict[str, ui.markdown] = {}

    def render_message(msg: Message) -> None:
        align = "justify-end" if msg.is_user else "justify-start"
        bubble = "message-user" if msg.is_user else "message-assistant"
        icon = "person" if msg.is_user else "smart_toy"

        with ui.row().classes(f"w-full {align} gap-3 items-end"):
            if not msg.is_user:
                ui.icon(icon).classes("text-2xl text-gray-500")
            with ui.column().classes("max-w-[75%] gap-1"):
                with ui.element("div").classes(f"px-4 py-3 {bubble}"):
                    if not msg.is_user and not msg.content:
                        with ui.row().classes("gap-1 items-center h-5"):
                            for _ in range(3):
                                ui.element("div").classes("typing-dot")
                    else:
                        bodies[msg.id] = ui.markdown(msg.content).classes("text-sm")
                ui.label(msg.created_at.astimezone().strftime("%I:%M %p")).classes(
                    f"text-[10px] text-gray-400 {'self-end' if msg.is_user else 'self-start'}"
                )
            if msg.is_user:
                ui.icon(icon).classes("text-2xl text-blue-600")

    def render_welcome() -> None:
        with ui.column().classes("w-full items-center justify-center gap-3 py-10"):
            ui.icon("smart_toy").classes("text-5xl text-gray-300")
            ui.label("How can I help you today?").classes("text-lg text-gray-500")
            with ui.row().classes("gap-2 justify-center"):
                for suggestion in SUGGESTIONS:
                    ui.button(
                        suggestion,
                        on_click=lambda s=suggestion: input_field.set_value(s),
                    ).props("outline rounded no-caps size=sm")

    def refresh_messages() -> None:
        messages_container.clear()
        shown.clear()
        bodies.clear()
        with messages_container:
            if not controller.state.messages:
                render_welcome()
            for msg in controller.state.messages:
                shown[msg.id] = msg
                render_message(msg)

    def on_state_change(state: ConversationState) -> None:
        if [m.id for m in state.messages] != list(shown):
            refresh_messages()
            return
        for msg in state.messages:
            before = shown[msg.id]
            if msg.content == before.content:
                continue
            if msg.id not in bodies:
                # First fragment replaces the typing indicator
                refresh_messages()
                return
            bodies[msg.id].set_content(msg.content)
            shown[msg.id] = msg

    async def load_features() -> None:
        features = await controller.features.list_features()
        current = controller.features.current()
        feature_select.set_options(
            {f.id: f.display_name for f in features}, value=current.id if current else None
        )

    def on_feature_change(e: events.ValueChangeEventArguments) -> None:
        try:
            controller.features.select(e.value or None)
        except ValueError:
            ui.notify("That feature is no longer available", type="warning")
            feature_select.set_value(None)

    async def send_message() -> None:
        text = input_field.value or ""
        if not text.strip() or controller.busy:
            return
        input_field.value = ""
        result = await controller.send(text)
        if result.status is DispatchStatus.FAILED:
            ui.notify("The assistant could not answer. Please try again.", type="negative")

    def new_chat() -> None:
        controller.new_conversation()
        input_field.run_method("focus")

    async def release() -> None:
        controller.state.remove_listener(on_state_change)
        controller.close()
        await http_client.aclose()

    # === UI Layout ===
    with (
        ui.element("div").classes("w-full min-h-screen p-4 md:p-8"),
        ui.column().classes("w-full max-w-3xl mx-auto app-container").style(
            "height: calc(100vh - 4rem)"
        ),
    ):
        # Header
        with ui.row().classes("w-full header px-5 py-3 items-center justify-between"):
            with ui.row().classes("items-center gap-3"):
                ui.icon("smart_toy").classes("text-white text-3xl")
                ui.label("DevTwin").classes("text-lg font-semibold text-white")
            with ui.row().classes("items-center gap-3"):
                feature_select = (
                    ui.select(
                        {}, label="Select feature...", clearable=True, on_change=on_feature_change
                    )
                    .props("dense dark standout")
                    .classes("w-48")
                )
                ui.label().bind_text_from(
                    controller, "session_id", lambda s: s[:8].upper()
                ).classes("text-xs text-white/80 font-mono")
                ui.button(icon="add", on_click=new_chat).props("flat round color=white").tooltip(
                    "New conversation"
                )

        # Messages
        with (
            ui.scroll_area().classes("flex-grow w-full bg-gray-50"),
            ui.column().classes("w-full p-5"),
        ):
            messages_container = ui.column().classes("w-full gap-4")
            refresh_messages()

        # Input
        with ui.row().classes("w-full p-4 gap-3 items-end bg-white border-t"):
            input_field = (
                ui.textarea(placeholder="Ask DevTwin anything...")
                .props("autogrow outlined dense rows=1")
                .classes("flex-grow")
                .on("keydown.enter.prevent", send_message)
            )
            (
                ui.button(icon="send", on_click=send_message)
                .props("round unelevated color=primary")
                .bind_enabled_from(controller, "busy", backward=lambda busy: not busy)
            )

    controller.state.add_listener(on_state_change)
    ui.context.client.on_disconnect(release)
    ui.timer(0.1, load_features, once=True)


def main() -> None:
    """Serve the chat page alone; the backend is reached through API_BASE_URL."""
    ui.run(
        title="DevTwin",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("UI_PORT", "8080")),
        reload=False,
        storage_secret=os.getenv("NICEGUI_STORAGE_SECRET", "devtwin-secret"),
    )


if __name__ == "__main__":
    main()
