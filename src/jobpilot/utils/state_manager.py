"""
State Management for Pipeline Entities.

This module is the single entry point for status changes. Every transition is
claim-then-transition: the requested move is validated against the transition
table (config.statuses), then applied with a compare-and-set on the status the
caller observed. If another worker moved the entity first, the store raises
ClaimConflictError and the caller backs off.

It also selects the store backend from configuration and re-exports both store
implementations.

Environment Variables:
    STORE_BACKEND: "memory" (default) or "dynamodb"
    DYNAMODB_TABLE_PREFIX: Prefix for DynamoDB table names (default: "jobpilot")
"""

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel

from jobpilot.config.entity_schemas import KEY_FIELD_BY_KIND, utcnow
from jobpilot.config.settings import STORE_BACKEND
from jobpilot.config.statuses import check_transition
from jobpilot.utils.dynamodb_manager import DynamoDBStore
from jobpilot.utils.exceptions import ClaimConflictError, EntityNotFoundError
from jobpilot.utils.logger import get_logger
from jobpilot.utils.memory_store import InMemoryStore

logger = get_logger(__name__)

Store = Union[InMemoryStore, DynamoDBStore]

_store: Optional[Store] = None


def create_store(backend: str = STORE_BACKEND) -> Store:
    """Build a store for the given backend name."""
    if backend == "dynamodb":
        return DynamoDBStore()
    if backend == "memory":
        return InMemoryStore()
    raise ValueError(f"Unknown store backend: {backend}")


def get_store() -> Store:
    """Get or create the process-wide store using lazy initialization."""
    global _store
    if _store is None:
        _store = create_store()
        logger.info(
            "Initialized store",
            extra={"extra_fields": {"backend": type(_store).__name__}},
        )
    return _store


def transition(
    store: Store, kind: str, entity: BaseModel, target: Enum, **updates: Any
) -> BaseModel:
    """Move `entity` from its observed status to `target`.

    Args:
        store: Store holding the entity.
        kind: Entity kind (e.g., "job_offers").
        entity: The entity as last read by the caller.
        target: Requested status.
        **updates: Additional fields to set in the same atomic write.

    Returns:
        The updated entity.

    Raises:
        IllegalTransitionError: If the transition table does not allow the move.
        ClaimConflictError: If the status changed since `entity` was read.
    """
    check_transition(entity.status, target)
    updates["status"] = target
    if "updated_at" in type(entity).model_fields:
        updates.setdefault("updated_at", utcnow())
    key = getattr(entity, KEY_FIELD_BY_KIND[kind])
    return store.compare_and_set(kind, key, {"status": entity.status}, updates)


def claim(
    store: Store,
    kind: str,
    entity_id: str,
    expected: Enum,
    target: Enum,
    **updates: Any,
) -> BaseModel:
    """Atomically acquire an entity that is in the `expected` pre-state.

    Exactly one of several concurrent callers wins; the others get
    ClaimConflictError.

    Raises:
        EntityNotFoundError: If the entity does not exist.
        ClaimConflictError: If the entity is not (or no longer) in `expected`.
    """
    entity = store.get(kind, entity_id)
    if entity is None:
        raise EntityNotFoundError(kind, entity_id)
    if entity.status != expected:
        raise ClaimConflictError(
            f"{kind}/{entity_id}: expected {expected.value}, "
            f"found {entity.status.value}"
        )
    return transition(store, kind, entity, target, **updates)


__all__ = [
    "Store",
    "InMemoryStore",
    "DynamoDBStore",
    "create_store",
    "get_store",
    "transition",
    "claim",
]
