"""
Merge Policy for Matched Rows.

Responsibilities:
- Fill empty fields of an existing record from an incoming row.
- Report conflicting non-empty values without overwriting them.

Non-Responsibilities:
- No matching.
- No persistence.

Invariant:
A non-empty existing value is never replaced.
"""

from typing import Any, Dict, List, Optional, Tuple

from crmlinks.config import EngineConfig
from crmlinks.errors import ConflictingFieldError
from crmlinks.normalize import normalize_phone, normalize_text, website_domain


def same_value(field: str, existing: Any, incoming: Any, config: Optional[EngineConfig] = None) -> bool:
    """Compare two values the way their field is canonicalized."""
    config = config or EngineConfig()
    if field in ("phone", "mobile"):
        a = normalize_phone(existing, config.default_country_code)
        b = normalize_phone(incoming, config.default_country_code)
        if a and b:
            return a == b
    elif field == "website":
        a, b = website_domain(existing), website_domain(incoming)
        if a and b:
            return a == b
    return normalize_text(existing) == normalize_text(incoming)


def merge_attributes(
    existing: Dict[str, Any],
    incoming: Dict[str, Any],
    config: Optional[EngineConfig] = None,
) -> Tuple[Dict[str, Any], List[ConflictingFieldError], List[str]]:
    """
    Returns:
        Tuple of (merged attributes, conflicts, changed field names)
    """
    merged = dict(existing)
    conflicts: List[ConflictingFieldError] = []
    changed: List[str] = []

    for field, value in incoming.items():
        if value in (None, "", [], ()):
            continue
        if field == "tags":
            current = list(merged.get("tags") or [])
            seen = {normalize_text(t) for t in current}
            additions = [t for t in value if normalize_text(t) not in seen]
            if additions:
                merged["tags"] = current + additions
                changed.append(field)
            continue

        current = merged.get(field)
        if current in (None, ""):
            merged[field] = value
            changed.append(field)
        elif not same_value(field, current, value, config):
            conflicts.append(ConflictingFieldError(field, current, value))

    return merged, conflicts, changed
