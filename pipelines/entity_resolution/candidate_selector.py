"""
Candidate Selection Logic.

Responsibilities:
- Select the set of existing records worth scoring against an incoming one.
- Apply hard filters (entity kind, self-exclusion).

Non-Responsibilities:
- No scoring.
- No similarity computation.
- No resolution decisions.

Invariant:
Candidate selection must never exclude a valid match.
It may include false positives but never false negatives.
"""

from typing import Iterable, Iterator

from crmlinks.models import Entity


def select_candidates(incoming: Entity, population: Iterable[Entity]) -> Iterator[Entity]:
    for existing in population:
        if existing.kind != incoming.kind:
            continue
        if existing.id == incoming.id:
            continue
        yield existing
