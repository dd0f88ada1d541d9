"""Pydantic Schemas — request/response validation for API endpoints.

Invariants:
    - Schemas validate at system boundary (admin and registrant input, API responses)
    - Domain types from core/ used for enum fields

Design Decisions:
    - Separate from models and entities: schemas are API contracts, entities are
      the core's records, models are persistence (ADR: DDD boundary)
"""
