"""Service Layer — lifecycle orchestration, matching, background sweeping.

Invariants:
    - Services own the async IO around the pure core
    - RequestLifecycle is the only writer of request/response status
"""
