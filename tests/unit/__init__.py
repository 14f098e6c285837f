"""Unit tests for individual components in isolation.

Coverage:
    - chat/: session store, feature binder, state, reconciler,
      subscriptions, transports, dispatcher, controller, config

Uses fakes for the backend. No network and no running servers.
"""
