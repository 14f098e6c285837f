"""Completion endpoints of the development backend.

Implements both completion interfaces the chat controller can use:

    - POST /webhook/chat: synchronous completion
    - POST /messages: durable message log insert
    - GET /messages/{id}/stream: SSE push channel for a logged message

Replies are a canned DevTwin answer; the real backend is external.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from devtwin.api.store import BackendStore
from devtwin.models.schemas import (
    CompletionReply,
    CompletionRequest,
    FragmentEvent,
    MessageLogRecord,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

# Pause between streamed words so the page visibly streams
FRAGMENT_DELAY_SECONDS = 0.03


def get_store(request: Request) -> BackendStore:
    return request.app.state.store


def compose_reply(message: str) -> str:
    """Canned assistant answer for a user message."""
    return (
        f'I understand you\'re asking about "{message}". Based on the codebase '
        "context and development history, here's what I found..."
    )


def split_fragments(text: str) -> list[str]:
    """Split text into word fragments that concatenate back to the text."""
    words = text.split(" ")
    return [word if i == 0 else f" {word}" for i, word in enumerate(words)]


def _sse(event: FragmentEvent) -> str:
    return f"data: {event.model_dump_json()}\n\n"


@router.post("/webhook/chat", response_model=CompletionReply)
async def complete_chat(payload: CompletionRequest, request: Request) -> CompletionReply:
    """Answer a chat message in one reply.

    Args:
        payload: chatInput, feat_id and sessionId.

    Returns:
        CompletionReply with the answer and the feature's links, if any.

    Raises:
        422: Blank or missing chatInput / sessionId.
    """
    store = get_store(request)
    feature = store.get_feature(payload.feat_id)
    links = list(feature.links.values()) if feature else []
    logger.info(f"Webhook completion for session {payload.session_id} (feature {payload.feat_id})")
    return CompletionReply(
        success=True,
        response=compose_reply(payload.chat_input),
        reference_links=links or None,
    )


@router.post("/messages", status_code=status.HTTP_201_CREATED)
async def insert_message(record: MessageLogRecord, request: Request) -> dict[str, str]:
    """Store a user message and return its generated id."""
    stored = get_store(request).insert_message(record)
    logger.info(f"Logged message {stored.id} (feature {stored.feature_id})")
    return {"id": stored.id}


@router.get("/messages/{message_id}/stream")
async def stream_message(message_id: str, request: Request) -> StreamingResponse:
    """Stream the answer to a logged message as Server-Sent Events.

    Each event is ``{"chunk": ...}``; the last one carries ``done: true``.

    Raises:
        404: Unknown message id, or its answer was already streamed.
    """
    stored = get_store(request).take_message(message_id)
    if stored is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Message {message_id} not found",
        )

    async def events() -> AsyncGenerator[str]:
        for fragment in split_fragments(compose_reply(stored.content)):
            yield _sse(FragmentEvent(chunk=fragment))
            await asyncio.sleep(FRAGMENT_DELAY_SECONDS)
        yield _sse(FragmentEvent(done=True))

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
