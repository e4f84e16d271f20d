"""
DynamoDB Manager for Pipeline State.

DynamoDB implementation of the store interface (see memory_store.py). Each
entity kind lives in its own table named "{prefix}-{kind}" with the kind's key
field as the partition key. Atomic operations map directly onto DynamoDB
conditional writes:

- put(if_absent=True)   -> PutItem with attribute_not_exists(key)
- compare_and_set       -> UpdateItem with a ConditionExpression on the expected fields
- next_sequence         -> UpdateItem ADD on "{prefix}-sequences" (atomic counter)

A failed condition surfaces as ClientError "ConditionalCheckFailedException"
and is translated to False / ClaimConflictError. Any other AWS error means the
store is unavailable and is raised as InfrastructureError.

Environment Variables:
    DYNAMODB_TABLE_PREFIX: Prefix for all table names (default: "jobpilot")

Note:
    AWS clients are created lazily to avoid import-time dependencies and to
    support local development without AWS credentials.
"""

import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from jobpilot.config.entity_schemas import KEY_FIELD_BY_KIND, MODEL_BY_KIND
from jobpilot.config.settings import DYNAMODB_TABLE_PREFIX
from jobpilot.utils.exceptions import (
    ClaimConflictError,
    EntityNotFoundError,
    InfrastructureError,
)
from jobpilot.utils.logger import get_logger
from jobpilot.utils.memory_store import to_storable

logger = get_logger(__name__)

# Initialize DynamoDB resource (lazy initialization)
_dynamodb_resource: Optional[Any] = None


def get_dynamodb_resource() -> Any:
    """Get or create the DynamoDB resource using lazy initialization.

    Returns:
        boto3.resource: DynamoDB resource instance.
    """
    global _dynamodb_resource
    if _dynamodb_resource is None:
        import boto3

        _dynamodb_resource = boto3.resource("dynamodb")
    return _dynamodb_resource


def to_dynamo(value: Any) -> Any:
    """Convert a JSON-compatible value for DynamoDB (floats become Decimal)."""
    return json.loads(json.dumps(to_storable(value)), parse_float=Decimal)


def from_dynamo(value: Any) -> Any:
    """Convert DynamoDB values back to plain JSON types."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [from_dynamo(v) for v in value]
    return value


def _is_conditional_failure(error: ClientError) -> bool:
    code = error.response.get("Error", {}).get("Code", "")
    return code == "ConditionalCheckFailedException"


class DynamoDBStore:
    """Store backed by one DynamoDB table per entity kind.

    Args:
        table_prefix: Prefix for table names.
        resource: Optional boto3 DynamoDB resource (defaults to a lazily created one).
    """

    def __init__(
        self, table_prefix: str = DYNAMODB_TABLE_PREFIX, resource: Any = None
    ) -> None:
        self.table_prefix = table_prefix
        self._resource = resource

    # ------------------------------
    # Public interface
    # ------------------------------
    def put(self, kind: str, item: BaseModel, if_absent: bool = False) -> bool:
        key_field = KEY_FIELD_BY_KIND[kind]
        kwargs: Dict[str, Any] = {"Item": to_dynamo(item.model_dump(mode="json"))}
        if if_absent:
            kwargs["ConditionExpression"] = "attribute_not_exists(#key)"
            kwargs["ExpressionAttributeNames"] = {"#key": key_field}

        try:
            self._table(kind).put_item(**kwargs)
        except ClientError as e:
            if if_absent and _is_conditional_failure(e):
                logger.debug(
                    "Item already exists",
                    extra={
                        "extra_fields": {
                            "kind": kind,
                            "key": getattr(item, key_field),
                        }
                    },
                )
                return False
            raise self._unavailable("put_item", kind, e) from e
        except BotoCoreError as e:
            raise self._unavailable("put_item", kind, e) from e
        return True

    def get(self, kind: str, key: str) -> Optional[BaseModel]:
        try:
            response = self._table(kind).get_item(
                Key={KEY_FIELD_BY_KIND[kind]: key}, ConsistentRead=True
            )
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable("get_item", kind, e) from e

        item = response.get("Item")
        if not item:
            return None
        return MODEL_BY_KIND[kind].model_validate(from_dynamo(item))

    def query(self, kind: str, **filters: Any) -> List[BaseModel]:
        """Scan `kind` with equality filters on top-level fields."""
        kwargs: Dict[str, Any] = {"ConsistentRead": True}
        condition = None
        for name, value in filters.items():
            clause = Attr(name).eq(to_dynamo(value))
            condition = clause if condition is None else condition & clause
        if condition is not None:
            kwargs["FilterExpression"] = condition

        table = self._table(kind)
        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = table.scan(**kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable("scan", kind, e) from e

        model = MODEL_BY_KIND[kind]
        return [model.model_validate(from_dynamo(item)) for item in items]

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
            InfrastructureError: If DynamoDB is unavailable.
        """
        key_field = KEY_FIELD_BY_KIND[kind]
        names: Dict[str, str] = {"#key": key_field}
        values: Dict[str, Any] = {}
        set_clauses = []
        conditions = ["attribute_exists(#key)"]

        for i, (name, value) in enumerate(updates.items()):
            names[f"#u{i}"] = name
            values[f":u{i}"] = to_dynamo(value)
            set_clauses.append(f"#u{i} = :u{i}")

        for i, (name, value) in enumerate(expected.items()):
            names[f"#e{i}"] = name
            if value is None:
                conditions.append(f"(attribute_not_exists(#e{i}) OR #e{i} = :null)")
                values[":null"] = None
            else:
                values[f":e{i}"] = to_dynamo(value)
                conditions.append(f"#e{i} = :e{i}")

        table = self._table(kind)
        try:
            response = table.update_item(
                Key={key_field: key},
                UpdateExpression="SET " + ", ".join(set_clauses),
                ConditionExpression=" AND ".join(conditions),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if not _is_conditional_failure(e):
                raise self._unavailable("update_item", kind, e) from e
            if self.get(kind, key) is None:
                raise EntityNotFoundError(kind, key) from e
            raise ClaimConflictError(
                f"{kind}/{key}: expected {sorted(expected)} changed"
            ) from e
        except BotoCoreError as e:
            raise self._unavailable("update_item", kind, e) from e

        return MODEL_BY_KIND[kind].model_validate(from_dynamo(response["Attributes"]))

    def delete(self, kind: str, key: str) -> None:
        try:
            self._table(kind).delete_item(Key={KEY_FIELD_BY_KIND[kind]: key})
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable("delete_item", kind, e) from e

    def next_sequence(self, name: str) -> int:
        """Atomically increment and return the named counter (starts at 1)."""
        table = self._resource_or_default().Table(f"{self.table_prefix}-sequences")
        try:
            response = table.update_item(
                Key={"name": name},
                UpdateExpression="ADD #value :one",
                ExpressionAttributeNames={"#value": "value"},
                ExpressionAttributeValues={":one": 1},
                ReturnValues="UPDATED_NEW",
            )
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable("update_item", "sequences", e) from e
        return int(response["Attributes"]["value"])

    # ------------------------------
    # Internal functions
    # ------------------------------
    def _resource_or_default(self) -> Any:
        if self._resource is None:
            self._resource = get_dynamodb_resource()
        return self._resource

    def _table(self, kind: str) -> Any:
        return self._resource_or_default().Table(f"{self.table_prefix}-{kind}")

    def _unavailable(
        self, operation: str, kind: str, error: Exception
    ) -> InfrastructureError:
        logger.error(
            "DynamoDB operation failed",
            extra={
                "extra_fields": {
                    "operation": operation,
                    "kind": kind,
                    "error": str(error),
                    "error_type": type(error).__name__,
                }
            },
            exc_info=True,
        )
        return InfrastructureError(f"DynamoDB {operation} on {kind} failed: {error}")
