"""Services Layer — promotion engine, expiry sweeper, cycle controller, and the facade over them.

Invariants:
    - Services own IO ordering (store commit, then publish, then backfill)
    - Business rules live in core/; services never re-implement a guard

Design Decisions:
    - One file per collaborator for locality (ADR: ExMA no god objects)
"""
