"""Infrastructure Layer — database, event outbox, collaborator clients, observability.

Invariants:
    - Every outbound collaborator call goes through DownstreamGateway
    - Downstream failures are converted to DownstreamUnavailableError at the gateway

Design Decisions:
    - Resilient wrapper over raw httpx clients: isolates breaker/retry/timeout from services
"""
