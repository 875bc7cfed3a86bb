"""
rescue — Resident rescue requests with GPS location.

Sub-modules:
    models   — enums, status transition table, input validation
    orm      — rescue_requests, status history and notes tables
    service  — create / status updates / assignment / notes / queries
"""
