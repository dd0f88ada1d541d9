"""ORM Models — SQLAlchemy declarative models for all persisted entities.

Invariants:
    - All models inherit from Base (db/base.py)
    - Cycle is the aggregate root; registrants scoped by cycle_id

Design Decisions:
    - One file per entity for locality (ADR: ExMA max 3-4 files to understand a feature)
    - All models imported here so SQLAlchemy resolves string-based relationship()
      references before any query runs (ADR: standard SQLAlchemy pattern)
"""

from waterfall.models.cycle import Cycle  # noqa: F401
from waterfall.models.registrant import Registrant  # noqa: F401
