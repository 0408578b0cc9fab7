"""
Feature Extraction for Entity Resolution.

Responsibilities:
- Compute individual similarity features between two entities.
- Compare normalized fields (phone, email, website, name).

Non-Responsibilities:
- No weighting logic.
- No threshold logic.
- No persistence.

Invariant:
Missing data must never be treated as a mismatch.
"""

from typing import Iterable, Tuple

from rapidfuzz.distance import Levenshtein

from crmlinks.models import EMAIL_DOMAIN, NAME, PHONE, WEBSITE, Entity
from crmlinks.normalize import domains_related


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance over the full strings, case-sensitive."""
    return Levenshtein.distance(a or "", b or "")


def name_similarity(a: str, b: str) -> float:
    a = a or ""
    b = b or ""
    longest = max(len(a), len(b), 1)
    score = 1.0 - edit_distance(a.lower(), b.lower()) / longest
    return min(1.0, max(0.0, score))


def phones_match(incoming: Entity, existing: Entity) -> bool:
    ours = {f.canonical for f in incoming.fields_of(PHONE)}
    theirs = {f.canonical for f in existing.fields_of(PHONE)}
    return bool(ours & theirs)


def email_relation(
    incoming: Entity,
    existing: Entity,
    related_pairs: Iterable[Tuple[str, str]],
) -> str:
    """
    Returns "exact" for an identical address, "related" for the same local
    part on related domains, "" otherwise.
    """
    related_pairs = tuple(related_pairs)
    best = ""
    for ours in incoming.fields_of(EMAIL_DOMAIN):
        for theirs in existing.fields_of(EMAIL_DOMAIN):
            if ours.qualifier != theirs.qualifier:
                continue
            if ours.canonical == theirs.canonical:
                return "exact"
            if domains_related(ours.canonical, theirs.canonical, related_pairs):
                best = "related"
    return best


def websites_match(incoming: Entity, existing: Entity) -> bool:
    ours = {f.canonical for f in incoming.fields_of(WEBSITE)}
    theirs = {f.canonical for f in existing.fields_of(WEBSITE)}
    return bool(ours & theirs)


def best_name_similarity(incoming: Entity, existing: Entity) -> float:
    best = 0.0
    for ours in incoming.fields_of(NAME):
        for theirs in existing.fields_of(NAME):
            best = max(best, name_similarity(ours.canonical, theirs.canonical))
    return best


def has_comparable_identifiers(incoming: Entity, existing: Entity) -> bool:
    """True when both sides carry at least one identifier of the same type."""
    for field_type in (PHONE, EMAIL_DOMAIN, WEBSITE):
        if incoming.fields_of(field_type) and existing.fields_of(field_type):
            return True
    return False
