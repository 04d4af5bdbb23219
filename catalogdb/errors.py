"""
Error types for the CatalogDB core.

This module defines every exception raised by the query compiler, the
lifecycle guard, the ACL merge engine and the entity adaptors:
- CatalogError: Base exception
- CatalogValidationError: Query or patch rejected before touching the store
- AlreadyExists / NotFound / AlreadyDeleted: Entity state conflicts
- PrincipalNotFound / AclUpdateFailed: Permission changes
- BatchOperationError: A batch stopped at a failing item

Store transport errors (StoreUnavailableError, StoreTimeoutError) live in
catalogdb.store.base and are passed through unchanged.

Invariants:
    - All errors inherit from CatalogError
    - Errors carry the entity id, field and attempted value when known
    - Error messages are actionable
"""

from __future__ import annotations

from typing import Any


class CatalogError(Exception):
    """Base exception for all CatalogDB errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CATALOG_ERROR"
        self.details = details or {}


class CatalogValidationError(CatalogError):
    """Input rejected before any store mutation."""


class UnknownQueryParam(CatalogValidationError):
    """Query key does not resolve to a known parameter."""

    def __init__(self, key: str, entity: str) -> None:
        super().__init__(
            f"Unknown query parameter '{key}' for {entity}",
            code="UNKNOWN_QUERY_PARAM",
            details={"key": key, "entity": entity},
        )
        self.key = key
        self.entity = entity


class InvalidQueryValue(CatalogValidationError):
    """Query value is malformed or has the wrong type.

    Raised when:
    - Operator prefix is malformed (e.g. "=>5", "<" with no operand)
    - Operand does not parse as the parameter's value kind
    - Enum value is not one of the allowed values
    """

    def __init__(self, key: str, value: Any, reason: str) -> None:
        super().__init__(
            f"Invalid value {value!r} for query parameter '{key}': {reason}",
            code="INVALID_QUERY_VALUE",
            details={"key": key, "value": value, "reason": reason},
        )
        self.key = key
        self.value = value
        self.reason = reason


class InvalidFieldValue(CatalogValidationError):
    """Update or create payload carries a value of the wrong type."""

    def __init__(self, field_name: str, value: Any, reason: str) -> None:
        super().__init__(
            f"Invalid value {value!r} for field '{field_name}': {reason}",
            code="INVALID_FIELD_VALUE",
            details={"field": field_name, "value": value, "reason": reason},
        )
        self.field_name = field_name
        self.value = value
        self.reason = reason


class InvalidPermission(CatalogValidationError):
    """Permission token is not defined for the entity kind."""

    def __init__(self, token: str, allowed: list[str]) -> None:
        super().__init__(
            f"Unknown permission '{token}'. Valid permissions: {', '.join(allowed)}",
            code="INVALID_PERMISSION",
            details={"permission": token, "allowed": allowed},
        )
        self.token = token
        self.allowed = allowed


class AlreadyExists(CatalogError):
    """Name or identifier collides with an existing entity."""

    def __init__(self, entity: str, field_name: str, value: Any) -> None:
        super().__init__(
            f"{entity} {{ {field_name}: {value!r} }} already exists",
            code="ALREADY_EXISTS",
            details={"entity": entity, "field": field_name, "value": value},
        )
        self.entity = entity
        self.field_name = field_name
        self.value = value


class NotFound(CatalogError):
    """Identifier has no matching document."""

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity} id '{entity_id}' does not exist",
            code="NOT_FOUND",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class AlreadyDeleted(CatalogError):
    """Delete attempted on an entity that is already deleted or removed."""

    def __init__(self, entity: str, entity_id: int, status: str) -> None:
        super().__init__(
            f"The {entity.lower()} {{{entity_id}}} was already {status}",
            code="ALREADY_DELETED",
            details={"entity": entity, "id": entity_id, "status": status},
        )
        self.entity = entity
        self.entity_id = entity_id
        self.status = status


class UnsupportedOperation(CatalogError):
    """Lifecycle operation that the catalog does not implement."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            f"Operation '{operation}' is not supported",
            code="UNSUPPORTED_OPERATION",
            details={"operation": operation},
        )
        self.operation = operation


class PrincipalNotFound(CatalogError):
    """Member does not resolve to a principal of the study."""

    def __init__(self, study_id: int, members: list[str]) -> None:
        super().__init__(
            f"Members {members} do not belong to study {study_id}",
            code="PRINCIPAL_NOT_FOUND",
            details={"study_id": study_id, "members": members},
        )
        self.study_id = study_id
        self.members = members


class AclUpdateFailed(CatalogError):
    """Store update modified fewer documents than the ACL change required."""

    def __init__(self, operation: str, entity_id: int, member: str | None = None) -> None:
        msg = f"{operation}: no document was modified for entity {entity_id}"
        if member is not None:
            msg += f" (member '{member}')"
        super().__init__(
            msg,
            code="ACL_UPDATE_FAILED",
            details={"operation": operation, "id": entity_id, "member": member},
        )
        self.operation = operation
        self.entity_id = entity_id
        self.member = member


class BatchOperationError(CatalogError):
    """A batch operation stopped at a failing item.

    Items processed before the failure are not rolled back.

    Attributes:
        operation: Batch operation name
        query: The query that selected the batch
        failed_id: Identifier of the item that failed
        processed: Identifiers handled successfully before the failure
        cause: The underlying error
    """

    def __init__(
        self,
        operation: str,
        query: dict[str, Any],
        failed_id: int,
        processed: list[int],
        cause: Exception,
    ) -> None:
        super().__init__(
            f"{operation} selected by {query} failed at id {failed_id} "
            f"after {len(processed)} item(s): {cause}",
            code="BATCH_OPERATION_FAILED",
            details={
                "operation": operation,
                "query": query,
                "failed_id": failed_id,
                "processed": processed,
            },
        )
        self.operation = operation
        self.query = query
        self.failed_id = failed_id
        self.processed = processed
        self.cause = cause
