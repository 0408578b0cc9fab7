"""
Export Row Builder.

Responsibilities:
- Flatten contacts and companies into ordered row dicts for a file encoder.
- Resolve relationship columns (primary company, parent company).

Non-Responsibilities:
- No file encoding (CSV/Excel writers are external collaborators).
- No filtering of which entities to export.

Invariant:
Every row carries every selected column, empty string when unknown.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from crmlinks.models import COMPANY, CONTACT, Entity, GraphSnapshot
from pipelines.relationships.graph import RelationshipGraph

CONTACT_COLUMNS = [
    "id",
    "first_name",
    "last_name",
    "email",
    "phone",
    "mobile",
    "company_name",
    "job_title",
    "address",
    "tags",
    "updated_at",
]

COMPANY_COLUMNS = [
    "id",
    "name",
    "email",
    "phone",
    "website",
    "address",
    "industry",
    "parent_company",
    "tags",
    "updated_at",
]

DATE_FORMAT = "%Y-%m-%d"


def _format(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def export_rows(
    entities: Iterable[Entity],
    kind: str,
    graph: Optional[Any] = None,
    companies: Optional[Mapping[int, Entity]] = None,
    columns: Optional[Sequence[str]] = None,
) -> List[Dict[str, str]]:
    """
    Build export rows for one entity kind.

    Args:
        entities: Entities to export; other kinds are ignored
        kind: "contact" or "company"
        graph: RelationshipGraph or GraphSnapshot used for relationship columns
        companies: id -> company for naming related companies (defaults to
            the companies among entities)
        columns: Subset/order of columns; defaults to every column for the kind

    Returns:
        One dict per entity, keys in column order
    """
    entities = list(entities)
    if isinstance(graph, GraphSnapshot):
        graph = RelationshipGraph(graph)
    companies = dict(companies) if companies is not None else {}
    for entity in entities:
        if entity.kind == COMPANY:
            companies.setdefault(entity.id, entity)
    entities = [e for e in entities if e.kind == kind]

    default_columns = CONTACT_COLUMNS if kind == CONTACT else COMPANY_COLUMNS
    columns = list(columns) if columns else default_columns

    rows = []
    for entity in entities:
        values: Dict[str, Any] = dict(entity.attributes)
        values["id"] = entity.id
        values["updated_at"] = entity.updated_at
        if graph is not None:
            related_id = graph.primary_company_of(entity.id) if kind == CONTACT else graph.parent_of(entity.id)
            related = companies.get(related_id) if related_id is not None else None
            key = "company_name" if kind == CONTACT else "parent_company"
            values[key] = related.display_name if related is not None else ""
        rows.append({column: _format(values.get(column)) for column in columns})
    return rows


def export_links(graph: Any, entities: Iterable[Entity] = ()) -> List[Dict[str, str]]:
    """One row per area of activity, ordered by contact then company."""
    snapshot = graph.to_snapshot() if isinstance(graph, RelationshipGraph) else graph
    names = {(e.kind, e.id): e.display_name for e in entities}
    rows = []
    for key in sorted(snapshot.areas):
        area = snapshot.areas[key]
        rows.append({
            "contact_id": _format(area.contact_id),
            "contact_name": names.get((CONTACT, area.contact_id), ""),
            "company_id": _format(area.company_id),
            "company_name": names.get((COMPANY, area.company_id), ""),
            "role": _format(area.role),
            "job_description": _format(area.job_description),
            "primary_company": "yes" if area.is_primary_company_for_contact else "no",
            "primary_contact": "yes" if area.is_primary_contact_for_company else "no",
        })
    return rows
