"""
Entity Resolution Orchestrator.

Responsibilities:
- Coordinate candidate selection.
- Invoke scoring logic.
- Apply decision thresholds.
- Return an explainable match candidate.

Non-Responsibilities:
- No database access.
- No feature computation.
- No mutation of persistent state.

Invariant:
This module must be deterministic given the same inputs.
One scorer evaluation per population member; nothing is mutated, so
batches may fan rows out over a shared, immutable population.
"""

from typing import Iterable, List, Optional

from crmlinks.config import EngineConfig
from crmlinks.models import Entity, MatchCandidate

from .candidate_selector import select_candidates
from .scoring import record_confidence


def _order_key(candidate: MatchCandidate):
    updated = candidate.updated_at.timestamp() if candidate.updated_at is not None else float("-inf")
    return (
        -round(candidate.confidence, 9),
        -round(candidate.name_score, 9),
        -updated,
        candidate.entity_id,
    )


def find_candidates(
    incoming: Entity,
    population: Iterable[Entity],
    threshold: Optional[float] = None,
    config: Optional[EngineConfig] = None,
) -> List[MatchCandidate]:
    """
    Score incoming against every eligible record.

    Returns:
        Candidates with confidence >= threshold, best first. Ties prefer the
        closer name, then the most recently updated record, then the lowest id.
    """
    config = config or EngineConfig()
    if threshold is None:
        threshold = config.match_threshold

    retained = []
    for existing in select_candidates(incoming, population):
        candidate = record_confidence(incoming, existing, config)
        if candidate.confidence > 0 and candidate.confidence >= threshold:
            retained.append(candidate)
    return sorted(retained, key=_order_key)


def find_best_match(
    incoming: Entity,
    population: Iterable[Entity],
    threshold: Optional[float] = None,
    config: Optional[EngineConfig] = None,
) -> Optional[MatchCandidate]:
    candidates = find_candidates(incoming, population, threshold, config)
    return candidates[0] if candidates else None
