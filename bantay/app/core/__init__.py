"""
Core package — cross-cutting concerns.

Modules:
    config    — environment variables & settings
    logging   — structured JSON logging
    errors    — exception hierarchy & handlers
    health    — health check aggregation
    database  — async SQLAlchemy engine, sessions, ORM base
    cache     — Redis read-cache for public alert listings
    identity  — ALT-/RR- daily sequence codes
    auth      — acting-user resolution and role checks
"""
