"""
CRM Repository.

Responsibilities:
- Read contacts, companies, links and hierarchy edges into engine snapshots.
- Apply a MutationPlan in one transaction.
- Reject plans computed against a stale snapshot (compare-and-swap on
  entity versions and the graph_state version).

Non-Responsibilities:
- No business logic.
- No entity resolution.
- No invariant checks beyond version comparison.

Invariant:
Repositories must not encode domain decisions.
"""

from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from crmlinks.config import EngineConfig
from crmlinks.database import (
    GRAPH_STATE_ID,
    AreaOfActivityRecord,
    CompanyRecord,
    ContactRecord,
    GraphState,
)
from crmlinks.errors import StaleSnapshotError
from crmlinks.logger import get_logger
from crmlinks.models import (
    CLEAR_PARENT,
    COMPANY,
    CONTACT,
    CREATE_ENTITY,
    DELETE_ENTITY,
    DELETE_LINK,
    SET_PARENT,
    UPDATE_ENTITY,
    UPSERT_LINK,
    AreaOfActivity,
    CompanyHierarchyEdge,
    Entity,
    GraphSnapshot,
    MutationPlan,
)
from crmlinks.normalize import build_entity
from crmlinks.schema import ENTITY_ATTRIBUTES

MODELS = {CONTACT: ContactRecord, COMPANY: CompanyRecord}
_KINDS = {model: kind for kind, model in MODELS.items()}

logger = get_logger()


def _record_to_entity(record, kind: str, config: Optional[EngineConfig]) -> Entity:
    attributes = {}
    for column in ENTITY_ATTRIBUTES[kind]:
        value = getattr(record, column)
        if value not in (None, "", []):
            attributes[column] = value
    return build_entity(kind, record.id, attributes, config, updated_at=record.updated_at, version=record.version)


def graph_version(session: Session) -> int:
    state = session.get(GraphState, GRAPH_STATE_ID)
    return state.version if state is not None else 0


def load_snapshot(session: Session, config: Optional[EngineConfig] = None) -> Tuple[List[Entity], GraphSnapshot]:
    """
    Read everything the engine needs for one batch.

    Returns:
        Tuple of (population, graph snapshot)
    """
    contacts = session.query(ContactRecord).order_by(ContactRecord.id).all()
    companies = session.query(CompanyRecord).order_by(CompanyRecord.id).all()
    links = session.query(AreaOfActivityRecord).order_by(AreaOfActivityRecord.id).all()

    population = [_record_to_entity(r, CONTACT, config) for r in contacts]
    population += [_record_to_entity(r, COMPANY, config) for r in companies]

    snapshot = GraphSnapshot.build(
        contact_ids=[r.id for r in contacts],
        company_ids=[r.id for r in companies],
        areas=[
            AreaOfActivity(
                contact_id=link.contact_id,
                company_id=link.company_id,
                is_primary_company_for_contact=bool(link.is_primary_company),
                is_primary_contact_for_company=bool(link.is_primary_contact),
                role=link.role,
                job_description=link.job_description,
            )
            for link in links
        ],
        edges=[
            CompanyHierarchyEdge(r.id, r.parent_company_id)
            for r in companies
            if r.parent_company_id is not None
        ],
        version=graph_version(session),
    )
    return population, snapshot


def _bump_version(session: Session, model, entity_id, expected: Optional[int]) -> None:
    """Compare-and-swap on a version column; expected=None only checks the row exists."""
    column = model.version
    statement = update(model).where(model.id == entity_id)
    if expected is not None:
        statement = statement.where(column == expected)
    result = session.execute(
        statement.values(version=column + 1).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        actual = session.execute(select(column).where(model.id == entity_id)).scalar_one_or_none()
        raise StaleSnapshotError(_KINDS.get(model, "graph"), entity_id, expected, actual)


def apply_plan(session: Session, plan: MutationPlan) -> Dict[int, int]:
    """
    Apply a mutation plan atomically.

    Versions are checked with conditional UPDATEs against what is stored
    now, not against objects this session loaded earlier, so a commit made
    by another session since the snapshot was read is always detected.

    Args:
        session: SQLAlchemy session
        plan: Plan produced by the engine

    Returns:
        Mapping of provisional (negative) ids to the ids assigned on insert

    Raises:
        StaleSnapshotError: A version moved since the snapshot was read;
            nothing is written.
    """
    id_map: Dict[int, int] = {}
    touched: Set[Tuple[str, int]] = set()
    now = datetime.now()

    def resolve(entity_id):
        return id_map.get(entity_id, entity_id)

    try:
        # Drop whatever load_snapshot left in the identity map
        session.expire_all()
        if session.get(GraphState, GRAPH_STATE_ID) is None:
            session.add(GraphState(id=GRAPH_STATE_ID, version=0))
            session.flush()
        if plan.touches_graph():
            _bump_version(session, GraphState, GRAPH_STATE_ID, plan.graph_version)

        for mutation in plan.mutations:
            if mutation.op == CREATE_ENTITY:
                model = MODELS[mutation.kind]
                record = model(**mutation.payload, version=1, created_at=now, updated_at=now)
                session.add(record)
                session.flush()
                id_map[mutation.entity_id] = record.id
                touched.add((mutation.kind, record.id))

            elif mutation.op == UPDATE_ENTITY:
                model = MODELS[mutation.kind]
                entity_id = resolve(mutation.entity_id)
                if (mutation.kind, entity_id) not in touched:
                    _bump_version(session, model, entity_id, mutation.expected_version)
                    touched.add((mutation.kind, entity_id))
                record = session.get(model, entity_id)
                if record is None:
                    raise StaleSnapshotError(mutation.kind, entity_id, mutation.expected_version, None)
                for column, value in mutation.payload.items():
                    setattr(record, column, value)
                record.updated_at = now

            elif mutation.op == DELETE_ENTITY:
                record = session.get(MODELS[mutation.kind], resolve(mutation.entity_id))
                if record is not None:
                    session.delete(record)

            elif mutation.op == UPSERT_LINK:
                contact_id, company_id = (resolve(i) for i in mutation.entity_id)
                record = (
                    session.query(AreaOfActivityRecord)
                    .filter_by(contact_id=contact_id, company_id=company_id)
                    .one_or_none()
                )
                if record is None:
                    record = AreaOfActivityRecord(contact_id=contact_id, company_id=company_id, created_at=now)
                    session.add(record)
                record.role = mutation.payload.get("role")
                record.job_description = mutation.payload.get("job_description")
                record.is_primary_company = bool(mutation.payload.get("is_primary_company_for_contact"))
                record.is_primary_contact = bool(mutation.payload.get("is_primary_contact_for_company"))
                record.updated_at = now

            elif mutation.op == DELETE_LINK:
                contact_id, company_id = (resolve(i) for i in mutation.entity_id)
                session.query(AreaOfActivityRecord).filter_by(
                    contact_id=contact_id, company_id=company_id
                ).delete()

            elif mutation.op in (SET_PARENT, CLEAR_PARENT):
                record = session.get(CompanyRecord, resolve(mutation.entity_id))
                if record is None:
                    raise StaleSnapshotError(COMPANY, resolve(mutation.entity_id), None, None)
                parent = mutation.payload.get("parent_company_id") if mutation.op == SET_PARENT else None
                record.parent_company_id = resolve(parent) if parent is not None else None
                record.updated_at = now

            else:
                raise ValueError(f"Unsupported mutation op: {mutation.op}")

            session.flush()

        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(
        f"Applied {len(plan)} mutations",
        created=len(id_map),
        graph_version=graph_version(session),
    )
    return id_map
