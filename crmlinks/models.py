"""
Value types shared by the matcher, the relationship graph and the importer.

All of these are snapshots or proposals: the persistence collaborator owns
the stored entities, the engine only reads them and emits Mutations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

CONTACT = "contact"
COMPANY = "company"
ENTITY_KINDS = (CONTACT, COMPANY)

PHONE = "phone"
EMAIL_DOMAIN = "email-domain"
NAME = "name"
ADDRESS = "address"
WEBSITE = "website"

CREATED = "created"
MERGED = "merged"
SKIPPED = "skipped"
ERROR = "error"


@dataclass(frozen=True)
class NormalizedField:
    field_type: str
    raw: str
    canonical: str
    # Lower-cased local part for email-domain fields
    qualifier: str = ""


@dataclass(frozen=True)
class NormalizationFallback:
    """A non-empty raw value that normalized to nothing. Logged, never fatal."""

    field: str
    raw: str

    def __str__(self) -> str:
        return f"Field '{self.field}' could not be normalized: {self.raw!r}"


@dataclass(frozen=True)
class Entity:
    """Read snapshot of a contact or company."""

    id: Optional[int]
    kind: str
    attributes: Dict[str, Any]
    fields: Tuple[NormalizedField, ...] = ()
    updated_at: Optional[datetime] = None
    version: int = 1

    def fields_of(self, field_type: str) -> List[NormalizedField]:
        return [f for f in self.fields if f.field_type == field_type and f.canonical]

    @property
    def display_name(self) -> str:
        if self.kind == COMPANY:
            return str(self.attributes.get("name") or "")
        parts = [self.attributes.get("first_name") or "", self.attributes.get("last_name") or ""]
        return " ".join(p for p in parts if p).strip()


@dataclass(frozen=True)
class MatchCandidate:
    entity_id: int
    confidence: float
    matched_fields: FrozenSet[str] = frozenset()
    name_score: float = 0.0
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "confidence": round(self.confidence, 4),
            "matched_fields": sorted(self.matched_fields),
            "name_score": round(self.name_score, 4),
        }


@dataclass(frozen=True)
class AreaOfActivity:
    contact_id: int
    company_id: int
    is_primary_company_for_contact: bool = False
    is_primary_contact_for_company: bool = False
    role: Optional[str] = None
    job_description: Optional[str] = None

    @property
    def key(self) -> Tuple[int, int]:
        return (self.contact_id, self.company_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "company_id": self.company_id,
            "is_primary_company_for_contact": self.is_primary_company_for_contact,
            "is_primary_contact_for_company": self.is_primary_contact_for_company,
            "role": self.role,
            "job_description": self.job_description,
        }


@dataclass(frozen=True)
class CompanyHierarchyEdge:
    child_company_id: int
    parent_company_id: int


@dataclass
class GraphSnapshot:
    """Contacts, companies, their links and the company forest at one version."""

    contact_ids: FrozenSet[int] = frozenset()
    company_ids: FrozenSet[int] = frozenset()
    areas: Dict[Tuple[int, int], AreaOfActivity] = field(default_factory=dict)
    parents: Dict[int, int] = field(default_factory=dict)
    version: int = 0

    @classmethod
    def build(
        cls,
        contact_ids=(),
        company_ids=(),
        areas=(),
        edges=(),
        version: int = 0,
    ) -> "GraphSnapshot":
        return cls(
            contact_ids=frozenset(contact_ids),
            company_ids=frozenset(company_ids),
            areas={a.key: a for a in areas},
            parents={e.child_company_id: e.parent_company_id for e in edges},
            version=version,
        )

    @property
    def edges(self) -> List[CompanyHierarchyEdge]:
        return [CompanyHierarchyEdge(child, parent) for child, parent in sorted(self.parents.items())]


@dataclass(frozen=True)
class Mutation:
    """A proposed change for the persistence collaborator."""

    op: str
    kind: str
    entity_id: Any
    payload: Dict[str, Any] = field(default_factory=dict)
    expected_version: Optional[int] = None


CREATE_ENTITY = "create_entity"
UPDATE_ENTITY = "update_entity"
DELETE_ENTITY = "delete_entity"
UPSERT_LINK = "upsert_link"
DELETE_LINK = "delete_link"
SET_PARENT = "set_parent"
CLEAR_PARENT = "clear_parent"

LINK = "link"
HIERARCHY = "hierarchy"


@dataclass
class MutationPlan:
    mutations: List[Mutation] = field(default_factory=list)
    graph_version: int = 0

    def __len__(self) -> int:
        return len(self.mutations)

    def touches_graph(self) -> bool:
        return any(m.kind in (LINK, HIERARCHY) for m in self.mutations)


class ProvisionalIds:
    """Hands out negative ids for entities created inside a batch."""

    def __init__(self, start: int = -1):
        self._next = start

    def allocate(self) -> int:
        value = self._next
        self._next -= 1
        return value


@dataclass
class RowOutcome:
    row_index: int
    status: str
    entity_id: Optional[int] = None
    conflicts: List[Any] = field(default_factory=list)
    reason: Optional[str] = None
    warnings: List[NormalizationFallback] = field(default_factory=list)
    match: Optional[MatchCandidate] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"row": self.row_index, "status": self.status}
        if self.entity_id is not None:
            data["entity_id"] = self.entity_id
        if self.conflicts:
            data["conflicts"] = [c.to_dict() for c in self.conflicts]
        if self.reason:
            data["reason"] = self.reason
        if self.warnings:
            data["warnings"] = [str(w) for w in self.warnings]
        if self.match is not None:
            data["match"] = self.match.to_dict()
        return data


@dataclass
class ImportResult:
    outcomes: List[RowOutcome]
    plan: MutationPlan
    population: List[Entity]
    graph: GraphSnapshot

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def created(self) -> int:
        return self.count(CREATED)

    @property
    def merged(self) -> int:
        return self.count(MERGED)

    @property
    def skipped(self) -> int:
        return self.count(SKIPPED)

    @property
    def errors(self) -> int:
        return self.count(ERROR)
