"""
channels — Per-channel delivery backends.

Per-recipient channels expose:
    async send(payload, recipient, address) → DeliveryAttempt

    sms_gateway  — Semaphore SMS API (or simulation)
    email_alert  — SMTP (or simulation)
    web_push     — push notification (simulated)

web_feed is the odd one out: it broadcasts once per alert to every
dashboard connected over WebSocket, not once per recipient.

Channels never raise for a delivery problem; they return a FAILED attempt.
Retry logic lives in the dispatcher.
"""
