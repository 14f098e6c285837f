"""Integration tests against the development backend.

Drives the real FastAPI app through httpx.ASGITransport, both directly and
through the ChatController over each completion transport.
"""
