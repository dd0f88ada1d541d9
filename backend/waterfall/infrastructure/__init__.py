"""Infrastructure Layer — persistence, locking, notification delivery and logging.

Invariants:
    - Infrastructure implements core/ protocols; core never imports from here
    - All external calls wrapped with timeout/error mapping (DatabaseError,
      NotificationDeliveryError, TransientContentionError)

Design Decisions:
    - Resilient wrappers over raw clients (ADR: ExMA single responsibility)
"""
