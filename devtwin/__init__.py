"""DevTwin - conversational assistant for codebase questions.

Combines NiceGUI for the chat page, httpx for backend transports,
FastAPI for the development backend, and Pydantic for data validation.

Components:
    - chat: session identity, conversation state, dispatch and streaming
    - api: development backend implementing the completion interfaces
    - ui: NiceGUI chat page
    - models: wire and domain schemas
"""

__version__ = "0.1.0"
