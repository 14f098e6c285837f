"""NiceGUI interface - thin presentation layer for the chat controller.

Responsibilities:
    - Timeline rendering with in-place streaming updates
    - Feature selection and the "new conversation" action
    - Disabling send while a response is in flight

Contains no dispatch logic. Delegates everything to ChatController.
"""
