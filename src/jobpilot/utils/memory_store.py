"""
In-Memory Store for Pipeline State.

Thread-safe, process-local implementation of the store interface used for
local development and tests. Items are kept in their JSON form (exactly what
the DynamoDB backend persists), so comparisons in `compare_and_set` behave the
same on both backends.

Store interface (shared with DynamoDBStore):
    - put(kind, item, if_absent=False) -> bool
    - get(kind, key) -> Optional[model]
    - query(kind, **filters) -> List[model]
    - compare_and_set(kind, key, expected, updates) -> model
    - delete(kind, key) -> None
    - next_sequence(name) -> int
"""

import copy
import threading
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from jobpilot.config.entity_schemas import KEY_FIELD_BY_KIND, MODEL_BY_KIND
from jobpilot.utils.exceptions import ClaimConflictError, EntityNotFoundError
from jobpilot.utils.logger import get_logger

logger = get_logger(__name__)


def to_storable(value: Any) -> Any:
    """Convert enums, datetimes and models to their JSON representation."""
    return to_jsonable_python(value)


class InMemoryStore:
    """Dictionary-backed store guarded by a single lock.

    The lock is held only for the duration of one dictionary operation, never
    across a call to an external service.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {
            kind: {} for kind in MODEL_BY_KIND
        }
        self._sequences: Dict[str, int] = {}

    # ------------------------------
    # Public interface
    # ------------------------------
    def put(self, kind: str, item: BaseModel, if_absent: bool = False) -> bool:
        """Store an item.

        Args:
            kind: Entity kind (see MODEL_BY_KIND).
            item: Pydantic model instance.
            if_absent: Only insert when no item with the same key exists.

        Returns:
            bool: False if `if_absent` was set and the key already existed.
        """
        data = item.model_dump(mode="json")
        key = data[KEY_FIELD_BY_KIND[kind]]
        with self._lock:
            table = self._tables[kind]
            if if_absent and key in table:
                return False
            table[key] = data
        return True

    def get(self, kind: str, key: str) -> Optional[BaseModel]:
        with self._lock:
            data = copy.deepcopy(self._tables[kind].get(key))
        if data is None:
            return None
        return MODEL_BY_KIND[kind].model_validate(data)

    def query(self, kind: str, **filters: Any) -> List[BaseModel]:
        """Return all items of `kind` whose top-level fields equal `filters`."""
        wanted = {name: to_storable(value) for name, value in filters.items()}
        with self._lock:
            rows = [
                copy.deepcopy(data)
                for data in self._tables[kind].values()
                if all(data.get(name) == value for name, value in wanted.items())
            ]
        model = MODEL_BY_KIND[kind]
        return [model.model_validate(row) for row in rows]

    def compare_and_set(
        self,
        kind: str,
        key: str,
        expected: Dict[str, Any],
        updates: Dict[str, Any],
    ) -> BaseModel:
        """Atomically apply `updates` if every field in `expected` matches.

        Raises:
            EntityNotFoundError: If the item does not exist.
            ClaimConflictError: If any expected field has changed.
        """
        model = MODEL_BY_KIND[kind]
        wanted = {name: to_storable(value) for name, value in expected.items()}
        with self._lock:
            current = self._tables[kind].get(key)
            if current is None:
                raise EntityNotFoundError(kind, key)
            for name, value in wanted.items():
                if current.get(name) != value:
                    raise ClaimConflictError(
                        f"{kind}/{key}: expected {name}={value!r}, "
                        f"found {current.get(name)!r}"
                    )
            merged = {**current, **to_storable(updates)}
            updated = model.model_validate(merged)
            self._tables[kind][key] = updated.model_dump(mode="json")
        return updated

    def delete(self, kind: str, key: str) -> None:
        with self._lock:
            self._tables[kind].pop(key, None)

    def next_sequence(self, name: str) -> int:
        """Atomically increment and return the named counter (starts at 1)."""
        with self._lock:
            value = self._sequences.get(name, 0) + 1
            self._sequences[name] = value
        return value
