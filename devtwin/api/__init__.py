"""FastAPI development backend for the DevTwin chat page.

Endpoints:
    - GET /health: Service health status
    - POST /webhook/chat: Synchronous chat completion
    - POST /messages: Durable message log insert
    - GET /messages/{id}/stream: SSE fragments for a logged message
    - GET /features, POST /features: Feature catalog
"""

from devtwin.api.app import app, create_app

__all__ = ["app", "create_app"]
