"""ORM Models — SQLAlchemy declarative rows backing the RequestStore and EventBus.

Invariants:
    - All models inherit from Base (db/base.py)
    - Rows reference each other by id column only (no relationship() graph)

Design Decisions:
    - One file per table for locality
    - All models imported here so Base.metadata is complete before create_all()
"""

from lifeflow.models.blood_request import BloodRequestRow  # noqa: F401
from lifeflow.models.request_response import RequestResponseRow  # noqa: F401
from lifeflow.models.event_outbox import EventOutboxRow  # noqa: F401
