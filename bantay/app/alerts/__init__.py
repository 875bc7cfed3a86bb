"""
alerts — Barangay emergency alert lifecycle and multi-channel broadcasting.

Sub-modules:
    channels/        — Per-channel delivery backends (SMS, email, push, web feed)
    alert_service    — Orchestration: publish → background dispatch
    lifecycle        — Draft / publish / extend / deactivate with audit trail
    dispatcher       — Per-recipient delivery, retry, counters
    acknowledgments  — Idempotent resident acknowledgments
    geo_fence        — Target area → recipients
    statistics       — Per-alert and summary statistics
    orm              — Alert tables
    models           — Data structures shared across the system
"""
