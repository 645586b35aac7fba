"""Core Layer — pure domain logic, no IO, no DB.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or db/
    - Scoring, validation and transition rules are pure and deterministic

Design Decisions:
    - Functional core separated from imperative shell (services/ orchestrates the IO)
"""
