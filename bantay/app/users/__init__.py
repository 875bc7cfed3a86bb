"""
users — Resident / official directory.

Sub-modules:
    orm        — users table
    directory  — registration and the area / radius queries used for targeting
"""
