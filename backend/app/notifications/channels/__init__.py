"""
channels — Delivery transports.

Each transport exposes:
    async send(user_id, notification) → None   (raises on failure)

Transports are stateless apart from their HTTP client. Failure handling
lives in the dispatcher.
"""
