"""
Scoring Logic for Entity Resolution (v1).

Responsibilities:
- Compute a deterministic match confidence between an incoming record and
  an existing record.
- Report which field types contributed.

Non-Responsibilities:
- No database access.
- No candidate selection.
- No threshold decisions.

Invariant:
Given identical inputs, this module must always return
the same confidence and matched fields.

Signals combine by max, not by sum: several weak partial matches never add
up to a strong one.
"""

from typing import Optional, Set

from crmlinks.config import EngineConfig
from crmlinks.models import COMPANY, EMAIL_DOMAIN, NAME, PHONE, WEBSITE, Entity, MatchCandidate

from .features import (
    best_name_similarity,
    email_relation,
    has_comparable_identifiers,
    phones_match,
    websites_match,
)

PHONE_SIGNAL = 0.95
EXACT_EMAIL_SIGNAL = 0.95
EMAIL_SIGNAL = 0.90
WEBSITE_SIGNAL = 0.90
NAME_SIGNAL_WEIGHT = 0.85


def record_confidence(
    candidate: Entity,
    existing: Entity,
    config: Optional[EngineConfig] = None,
) -> MatchCandidate:
    config = config or EngineConfig()
    confidence = 0.0
    matched: Set[str] = set()

    if phones_match(candidate, existing):
        confidence = max(confidence, PHONE_SIGNAL)
        matched.add(PHONE)

    relation = email_relation(candidate, existing, config.related_domains)
    if relation:
        confidence = max(confidence, EXACT_EMAIL_SIGNAL if relation == "exact" else EMAIL_SIGNAL)
        matched.add(EMAIL_DOMAIN)

    if candidate.kind == COMPANY and websites_match(candidate, existing):
        confidence = max(confidence, WEBSITE_SIGNAL)
        matched.add(WEBSITE)

    name_score = best_name_similarity(candidate, existing)
    if name_score >= config.name_threshold:
        matched.add(NAME)
        # Name alone only counts when there is nothing stronger to compare
        if not has_comparable_identifiers(candidate, existing):
            confidence = max(confidence, NAME_SIGNAL_WEIGHT * name_score)

    return MatchCandidate(
        entity_id=existing.id,
        confidence=confidence,
        matched_fields=frozenset(matched),
        name_score=name_score,
        updated_at=existing.updated_at,
    )
