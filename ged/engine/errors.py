"""
GED Error Hierarchy — Typed exceptions for folder, document and mail operations.

Every error carries enough context (entity, entity_id, field, status) for the
UI layer to build a message without parsing strings.

Hierarchy:
    GedError
    ├── GedValidationError   — Missing/invalid field, unknown referenced id
    ├── GedPermissionError   — Authority level insufficient
    ├── GedConflictError     — State precondition violated
    ├── GedNotFoundError     — Entity id does not exist
    ├── GedStorageError      — Database or file operation failed
    └── GedConfigError       — Invalid ged.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

_CORE_KEYS = ("entity", "entity_id", "field")


class GedError(Exception):
    """
    Base error for all GED core failures.
    All context is serializable to JSON for the audit trail.
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.entity: Optional[str] = context.get("entity")
        self.entity_id: Optional[Any] = context.get("entity_id")
        self.field: Optional[str] = context.get("field")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "field": self.field,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items() if k not in _CORE_KEYS
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.entity:
            parts.append(f"entity={self.entity}")
        if self.entity_id is not None:
            parts.append(f"entity_id={self.entity_id}")
        if self.field:
            parts.append(f"field={self.field}")
        return " | ".join(parts)


class GedValidationError(GedError):
    """
    Required field missing or invalid, or a referenced id does not exist.
    Always raised before anything is persisted.
    """

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Optional[List[Dict[str, Any]]] = context.get("validation_errors")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class GedPermissionError(GedError):
    """Acting user's authority level is insufficient for the mutation."""

    def __init__(self, message: str, **context: Any):
        self.user_id: Optional[int] = context.get("user_id")
        self.authority_level: Optional[int] = context.get("authority_level")
        self.required_level: Optional[int] = context.get("required_level")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["user_id"] = self.user_id
        d["authority_level"] = self.authority_level
        d["required_level"] = self.required_level
        return d


class GedConflictError(GedError):
    """
    State precondition violated: deleting a system or non-empty folder,
    archiving a mail that is not PROCESSED, duplicate code, ...
    """

    def __init__(self, message: str, **context: Any):
        self.current_status: Optional[str] = context.get("current_status")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["current_status"] = self.current_status
        return d


class GedNotFoundError(GedError):
    """Referenced entity id does not exist."""
    pass


class GedStorageError(GedError):
    """Persistence or file operation failed. Wraps the driver/OS error."""

    def __init__(self, message: str, **context: Any):
        self.operation: Optional[str] = context.get("operation")
        super().__init__(message, **context)


class GedConfigError(GedError):
    """Configuration error — invalid ged.yaml."""
    pass
