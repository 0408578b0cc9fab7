from typing import Any, Dict, List, Mapping, Optional

from .models import COMPANY, CONTACT, ENTITY_KINDS

# Canonical key -> accepted column names, first match wins
CONTACT_ALIASES: Dict[str, List[str]] = {
    "first_name": ["first_name", "firstName", "nome"],
    "last_name": ["last_name", "lastName", "cognome"],
    "full_name": ["name", "full_name", "fullName", "nome_completo"],
    "email": ["email", "email_address", "indirizzo_email"],
    "phone": ["phone", "phoneNumber", "phone_number", "telefono"],
    "mobile": ["mobile", "cellulare"],
    "address": ["address", "indirizzo"],
    "job_title": ["job_title", "jobTitle", "role", "ruolo"],
    "job_description": ["job_description", "jobDescription", "mansione"],
    "company": ["company", "company_name", "companyName", "azienda"],
    "company_id": ["company_id", "companyId"],
    "primary": ["primary", "is_primary", "isPrimary", "principale"],
    "tags": ["tags", "tag"],
}

COMPANY_ALIASES: Dict[str, List[str]] = {
    "name": ["name", "company_name", "companyName", "azienda"],
    "email": ["email", "email_address", "company_email", "indirizzo_email"],
    "phone": ["phone", "phoneNumber", "company_phone", "telefono"],
    "website": ["website", "sito_web", "url"],
    "address": ["address", "indirizzo"],
    "industry": ["industry", "settore"],
    "parent_company": ["parent_company", "parentCompany", "azienda_madre"],
    "parent_company_id": ["parent_company_id", "parentCompanyId"],
    "tags": ["tags", "tag"],
}

# Attributes stored on the entity itself; everything else drives links
ENTITY_ATTRIBUTES: Dict[str, List[str]] = {
    CONTACT: ["first_name", "last_name", "email", "phone", "mobile", "address", "job_title", "tags"],
    COMPANY: ["name", "email", "phone", "website", "address", "industry", "tags"],
}

TRUE_STRINGS = {"1", "true", "yes", "y", "si", "sì", "x"}


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_tags(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = str(value).split(",")
    return [t.strip() for t in items if t is not None and str(t).strip()]


def _parse_id(value: Any) -> Optional[int]:
    text = _clean(value)
    if text is None:
        return None
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return None


def map_row(kind: str, row: Mapping[str, Any], column_mapping: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Map an untyped parsed row onto canonical keys.

    column_mapping renames source headers first (header -> canonical key).
    Blank values are dropped. Contacts given only a full name get it split
    into first name and the remainder as last name.
    """
    if kind not in ENTITY_KINDS:
        raise ValueError(f"Unknown entity kind: {kind}")
    aliases = CONTACT_ALIASES if kind == CONTACT else COMPANY_ALIASES

    source: Dict[str, Any] = {}
    for key, value in row.items():
        if key is None:
            continue
        target = column_mapping.get(key, key) if column_mapping else key
        source.setdefault(str(target).strip(), value)

    mapped: Dict[str, Any] = {}
    for canonical, names in aliases.items():
        for name in [canonical] + names:
            if name in source and _clean(source[name]) is not None:
                mapped[canonical] = source[name]
                break

    result: Dict[str, Any] = {}
    for key, value in mapped.items():
        if key == "tags":
            tags = _parse_tags(value)
            if tags:
                result["tags"] = tags
        elif key in ("company_id", "parent_company_id"):
            parsed = _parse_id(value)
            result[key] = parsed if parsed is not None else _clean(value)
        elif key == "primary":
            result["primary"] = value if isinstance(value, bool) else str(value).strip().lower() in TRUE_STRINGS
        else:
            result[key] = _clean(value)

    full_name = result.pop("full_name", None)
    if kind == CONTACT and full_name and not (result.get("first_name") or result.get("last_name")):
        parts = full_name.split(None, 1)
        result["first_name"] = parts[0]
        if len(parts) > 1:
            result["last_name"] = parts[1]
    return result


def is_blank_row(row: Mapping[str, Any]) -> bool:
    for value in row.values():
        if isinstance(value, (list, tuple)):
            if value:
                return False
        elif _clean(value) is not None:
            return False
    return True


def validate_row(kind: str, data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    Expects a row already passed through map_row.
    """
    errors: List[str] = []

    if kind == CONTACT:
        if not data.get("first_name") and not data.get("last_name"):
            errors.append("Contact must have a first name or a last name")
        if not data.get("email") and not data.get("phone") and not data.get("mobile"):
            errors.append("Contact must have an email or a phone number")
        if "company_id" in data and not isinstance(data["company_id"], int):
            errors.append("Field 'company_id' must be an integer id")
    else:
        if not data.get("name"):
            errors.append("Company must have a name")
        if "parent_company_id" in data and not isinstance(data["parent_company_id"], int):
            errors.append("Field 'parent_company_id' must be an integer id")

    # Malformed emails and phones are not errors: they normalize to empty
    # and surface as row warnings instead.
    return errors


def entity_attributes(kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the keys stored on the entity."""
    return {k: data[k] for k in ENTITY_ATTRIBUTES[kind] if data.get(k)}
