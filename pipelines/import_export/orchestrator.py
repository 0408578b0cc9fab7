"""
Batch Import Orchestrator.

Responsibilities:
- Turn parsed rows into created / merged / skipped / error outcomes.
- Match each row against the batch population, then merge or create.
- Link contacts to companies and companies to parents through the
  relationship graph.
- Collect the proposed mutations for the persistence collaborator.

Non-Responsibilities:
- No file decoding (rows arrive as key/value mappings).
- No database access.
- No retries.

Invariant:
A batch never aborts on a single row. A failing row leaves no trace in the
population, the graph or the plan; every other row still gets its outcome.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from crmlinks.config import EngineConfig
from crmlinks.errors import EngineError, RowValidationError
from crmlinks.logger import StructuredLogger, get_logger
from crmlinks.models import (
    COMPANY,
    CONTACT,
    CREATE_ENTITY,
    CREATED,
    ENTITY_KINDS,
    ERROR,
    MERGED,
    SKIPPED,
    UPDATE_ENTITY,
    Entity,
    GraphSnapshot,
    ImportResult,
    MatchCandidate,
    Mutation,
    MutationPlan,
    ProvisionalIds,
    RowOutcome,
)
from crmlinks.normalize import build_entity, normalize_record
from crmlinks.schema import entity_attributes, is_blank_row, map_row, validate_row
from pipelines.entity_resolution.resolver import find_best_match
from pipelines.relationships.graph import RelationshipGraph

from .merge import merge_attributes


@dataclass
class ImportOptions:
    column_mapping: Optional[Dict[str, str]] = None
    merge_duplicates: bool = True
    threshold: Optional[float] = None
    create_missing_companies: bool = True
    replace_parent: bool = False
    now: Optional[datetime] = None


class ImportBatch:
    """
    State of one import batch.

    The population is copied once when the batch starts; entities created or
    merged by earlier rows are written into that copy so later rows can match
    them. The caller's population and snapshot are never touched.
    """

    def __init__(
        self,
        population: Iterable[Entity],
        graph_snapshot: Optional[GraphSnapshot] = None,
        kind: str = CONTACT,
        config: Optional[EngineConfig] = None,
        options: Optional[ImportOptions] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        if kind not in ENTITY_KINDS:
            raise ValueError(f"Unknown entity kind: {kind}")
        self.kind = kind
        self.config = config or EngineConfig()
        self.options = options or ImportOptions()
        self.logger = logger or get_logger()
        self.now = self.options.now or datetime.now()

        self.population: List[Entity] = list(population)
        self._positions: Dict[int, int] = {e.id: i for i, e in enumerate(self.population)}

        snapshot = graph_snapshot or GraphSnapshot.build(
            contact_ids=[e.id for e in self.population if e.kind == CONTACT],
            company_ids=[e.id for e in self.population if e.kind == COMPANY],
        )
        self.graph = RelationshipGraph(snapshot, self.config)
        for entity in self.population:
            if entity.kind == CONTACT:
                self.graph.add_contact(entity.id)
            else:
                self.graph.add_company(entity.id)

        self.ids = ProvisionalIds(start=min([-1] + [e.id - 1 for e in self.population if e.id < 0]))
        self.mutations: List[Mutation] = []
        self.outcomes: List[RowOutcome] = []

    # -- population -------------------------------------------------------

    def _put(self, entity: Entity) -> None:
        position = self._positions.get(entity.id)
        if position is None:
            self._positions[entity.id] = len(self.population)
            self.population.append(entity)
        else:
            self.population[position] = entity

    def entity(self, entity_id: int) -> Optional[Entity]:
        position = self._positions.get(entity_id)
        return self.population[position] if position is not None else None

    # -- rows -------------------------------------------------------------

    def process(self, rows: Iterable[Any]) -> ImportResult:
        for index, row in enumerate(rows):
            self.outcomes.append(self.process_row(index, row))
        return self.result()

    def process_row(self, index: int, row: Any) -> RowOutcome:
        staged: List[Mutation] = []
        staged_entities: Dict[int, Entity] = {}
        graph_mark = len(self.graph.pending_mutations())

        try:
            with self.graph.transaction():
                outcome = self._handle_row(index, row, staged, staged_entities)
        except EngineError as e:
            outcome = RowOutcome(row_index=index, status=ERROR, reason=str(e))
            self.logger.error(f"Row {index} rejected: {e}", row=index, error_type=type(e).__name__)
            self.logger.record_error(type(e).__name__)
        except Exception as e:
            outcome = RowOutcome(row_index=index, status=ERROR, reason=f"{type(e).__name__}: {e}")
            self.logger.error(f"Row {index} failed: {e}", row=index, error_type=type(e).__name__)
            self.logger.record_error(type(e).__name__)
        else:
            for entity in staged_entities.values():
                self._put(entity)
            self.mutations.extend(staged)
            self.mutations.extend(self.graph.pending_mutations()[graph_mark:])

        self.logger.record_row(outcome.status)
        if outcome.conflicts:
            self.logger.record_conflicts(len(outcome.conflicts))
        return outcome

    def _handle_row(
        self,
        index: int,
        row: Any,
        staged: List[Mutation],
        staged_entities: Dict[int, Entity],
    ) -> RowOutcome:
        if not isinstance(row, Mapping):
            raise RowValidationError([f"Row must be a key/value mapping, got {type(row).__name__}"])
        if is_blank_row(row):
            return RowOutcome(row_index=index, status=SKIPPED, reason="empty row")

        data = map_row(self.kind, row, self.options.column_mapping)
        messages = validate_row(self.kind, data)
        if messages:
            raise RowValidationError(messages)

        attributes = entity_attributes(self.kind, data)
        fields, fallbacks = normalize_record(self.kind, attributes, self.config)
        for fallback in fallbacks:
            self.logger.warning(f"Row {index}: {fallback}", row=index, field=fallback.field)
            self.logger.record_fallback(fallback.field)

        incoming = Entity(id=None, kind=self.kind, attributes=attributes, fields=fields, updated_at=self.now)
        match = find_best_match(incoming, self.population, self.options.threshold, self.config)

        if match is not None and not self.options.merge_duplicates:
            return RowOutcome(
                row_index=index,
                status=SKIPPED,
                entity_id=match.entity_id,
                reason=f"duplicate of {match.entity_id}",
                warnings=fallbacks,
                match=match,
            )

        if match is not None:
            entity_id, conflicts = self._merge(match, attributes, staged, staged_entities)
            status = MERGED
        else:
            entity_id = self._create(self.kind, attributes, staged, staged_entities)
            conflicts = []
            status = CREATED

        if self.kind == CONTACT:
            self._link_company(entity_id, data, staged, staged_entities)
        else:
            self._attach_parent(entity_id, data, staged, staged_entities)

        self.logger.debug(
            f"Row {index} {status}",
            row=index,
            entity_id=entity_id,
            match=match.to_dict() if match else None,
        )
        return RowOutcome(
            row_index=index,
            status=status,
            entity_id=entity_id,
            conflicts=conflicts,
            warnings=fallbacks,
            match=match,
        )

    # -- create / merge ---------------------------------------------------

    def _create(
        self,
        kind: str,
        attributes: Dict[str, Any],
        staged: List[Mutation],
        staged_entities: Dict[int, Entity],
    ) -> int:
        entity_id = self.ids.allocate()
        entity = build_entity(kind, entity_id, attributes, self.config, updated_at=self.now, version=1)
        staged_entities[entity_id] = entity
        staged.append(Mutation(op=CREATE_ENTITY, kind=kind, entity_id=entity_id, payload=dict(attributes)))
        if kind == CONTACT:
            self.graph.add_contact(entity_id)
        else:
            self.graph.add_company(entity_id)
        return entity_id

    def _merge(
        self,
        match: MatchCandidate,
        attributes: Dict[str, Any],
        staged: List[Mutation],
        staged_entities: Dict[int, Entity],
    ):
        existing = staged_entities.get(match.entity_id) or self.entity(match.entity_id)
        merged, conflicts, changed = merge_attributes(existing.attributes, attributes, self.config)
        if changed:
            fields, _ = normalize_record(existing.kind, merged, self.config)
            staged_entities[existing.id] = replace(existing, attributes=merged, fields=fields, updated_at=self.now)
            staged.append(
                Mutation(
                    op=UPDATE_ENTITY,
                    kind=existing.kind,
                    entity_id=existing.id,
                    payload={f: merged[f] for f in changed},
                    # Rows created earlier in this batch have nothing stored to compare against
                    expected_version=existing.version if existing.id >= 0 else None,
                )
            )
        return existing.id, conflicts

    def _resolve_company(
        self,
        name: str,
        staged: List[Mutation],
        staged_entities: Dict[int, Entity],
    ) -> int:
        """Find a company by name in the batch population, creating it when allowed."""
        attributes = {"name": name}
        fields, _ = normalize_record(COMPANY, attributes, self.config)
        lookup = Entity(id=None, kind=COMPANY, attributes=attributes, fields=fields)
        population = self.population + [e for e in staged_entities.values() if e.id not in self._positions]
        match = find_best_match(lookup, population, self.options.threshold, self.config)
        if match is not None:
            return match.entity_id
        if not self.options.create_missing_companies:
            raise RowValidationError([f"Unknown company '{name}'"])
        return self._create(COMPANY, attributes, staged, staged_entities)

    # -- relationships ----------------------------------------------------

    def _link_company(self, contact_id: int, data: Dict[str, Any], staged, staged_entities) -> None:
        company_id = data.get("company_id")
        if company_id is None and data.get("company"):
            company_id = self._resolve_company(data["company"], staged, staged_entities)
        if company_id is None:
            return
        self.graph.link(
            contact_id,
            company_id,
            role=data.get("job_title"),
            make_primary=bool(data.get("primary")),
            job_description=data.get("job_description"),
        )

    def _attach_parent(self, company_id: int, data: Dict[str, Any], staged, staged_entities) -> None:
        parent_id = data.get("parent_company_id")
        if parent_id is None and data.get("parent_company"):
            parent_id = self._resolve_company(data["parent_company"], staged, staged_entities)
        if parent_id is None:
            return
        self.graph.set_parent(company_id, parent_id, replace=self.options.replace_parent)

    # -- result -----------------------------------------------------------

    def result(self) -> ImportResult:
        return ImportResult(
            outcomes=list(self.outcomes),
            plan=MutationPlan(mutations=list(self.mutations), graph_version=self.graph.base_version),
            population=list(self.population),
            graph=self.graph.to_snapshot(),
        )


def run_import(
    rows: Iterable[Any],
    population: Iterable[Entity],
    graph_snapshot: Optional[GraphSnapshot] = None,
    kind: str = CONTACT,
    config: Optional[EngineConfig] = None,
    options: Optional[ImportOptions] = None,
    logger: Optional[StructuredLogger] = None,
) -> ImportResult:
    """
    Run one import batch.

    Args:
        rows: Parsed rows (key/value mappings) in file order
        population: Existing contacts and companies, read once for the batch
        graph_snapshot: Existing links and hierarchy; derived from the
            population (no links) when omitted
        kind: "contact" or "company"
        config: Engine thresholds and normalization settings
        options: Batch behaviour (column mapping, duplicate policy, ...)
        logger: Structured logger; the global one by default

    Returns:
        ImportResult with one outcome per row and the mutation plan
    """
    batch = ImportBatch(population, graph_snapshot, kind, config, options, logger)
    result = batch.process(rows)
    batch.logger.info(
        f"Import batch finished: {result.created} created, {result.merged} merged, "
        f"{result.skipped} skipped, {result.errors} errors",
        kind=kind,
        mutations=len(result.plan),
    )
    return result
