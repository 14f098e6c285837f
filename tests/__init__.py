"""Test package for DevTwin.

Structure:
    - unit/: Component tests with in-memory fakes and httpx.MockTransport
    - integration/: Controller and backend tests over httpx.ASGITransport

Leverages pytest with pytest-asyncio and pytest-check for soft assertions.
"""
