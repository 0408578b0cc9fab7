"""
Error taxonomy for the relationship & deduplication engine.

Row-level problems (validation, hierarchy rejections, field conflicts) are
captured in that row's outcome by the import orchestrator. Only
StaleSnapshotError travels all the way back to the caller, who decides
whether to retry the batch.
"""

from typing import Any, List, Optional


class EngineError(Exception):
    """Base class for all engine errors."""
    pass


class UnknownEntityError(EngineError):
    """Raised when an operation references an entity missing from the snapshot."""

    def __init__(self, kind: str, entity_id: Any):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"Unknown {kind} id: {entity_id}")


class RowValidationError(EngineError):
    """Raised when an import row cannot be turned into an entity."""

    def __init__(self, messages: List[str]):
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))


class HierarchyError(EngineError):
    """Rejected company hierarchy mutation."""
    pass


class CycleError(HierarchyError):
    def __init__(self, child_id: Any, parent_id: Any):
        self.child_id = child_id
        self.parent_id = parent_id
        if child_id == parent_id:
            message = f"Company {child_id} cannot be its own parent"
        else:
            message = f"Company {child_id} is an ancestor of {parent_id}; edge would create a cycle"
        super().__init__(message)


class MultipleParentError(HierarchyError):
    def __init__(self, child_id: Any, current_parent_id: Any, requested_parent_id: Any):
        self.child_id = child_id
        self.current_parent_id = current_parent_id
        self.requested_parent_id = requested_parent_id
        super().__init__(
            f"Company {child_id} already has parent {current_parent_id}; "
            f"pass replace=True to move it under {requested_parent_id}"
        )


class LinkNotFoundError(EngineError):
    """Raised when a primary flag is set on a contact/company pair that is not linked."""

    def __init__(self, contact_id: Any, company_id: Any):
        self.contact_id = contact_id
        self.company_id = company_id
        super().__init__(f"Contact {contact_id} is not linked to company {company_id}")


class ConflictingFieldError(EngineError):
    """
    A non-empty incoming value disagrees with a non-empty existing value.

    Never raised past a row: the orchestrator records instances in the
    merged outcome's conflicts list and keeps the existing value.
    """

    def __init__(self, field: str, existing: Any, incoming: Any):
        self.field = field
        self.existing = existing
        self.incoming = incoming
        super().__init__(f"Field '{field}' conflict: kept {existing!r}, ignored {incoming!r}")

    def to_dict(self) -> dict:
        return {"field": self.field, "existing": self.existing, "incoming": self.incoming}


class StaleSnapshotError(EngineError):
    """
    Raised by the persistence collaborator when the stored version no longer
    matches the version the mutation was computed against.
    """

    def __init__(self, kind: str, entity_id: Any, expected: Optional[int], actual: Optional[int]):
        self.kind = kind
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Stale snapshot for {kind} {entity_id}: expected version {expected}, found {actual}"
        )
