import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from .config import DEFAULT_COUNTRY_CODE, DEFAULT_RELATED_DOMAINS, EngineConfig
from .models import (
    ADDRESS,
    COMPANY,
    EMAIL_DOMAIN,
    NAME,
    PHONE,
    WEBSITE,
    Entity,
    NormalizationFallback,
    NormalizedField,
)

# Countries whose national numbers keep the leading 0 after the country code
TRUNK_PREFIX_RETAINED = {"39", "378", "379"}

_NON_DIGITS = re.compile(r"\D")
_ADDRESS_PUNCT = re.compile(r"[.,;]+")


def normalize_text(s: Any) -> str:
    if s is None:
        return ""
    return " ".join(str(s).strip().lower().split())


def normalize_name(name: Any) -> str:
    return normalize_text(name)


def normalize_address(address: Any) -> str:
    return normalize_text(_ADDRESS_PUNCT.sub(" ", str(address or "")))


def normalize_phone(raw: Any, default_country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """
    Canonicalize a phone number to +<country><number>.

    Numbers written with '+' or '00' keep their own country code; anything
    else is treated as a national number of default_country_code. Input
    without digits yields an empty string.
    """
    if raw is None:
        return ""
    text = str(raw).strip()
    digits = _NON_DIGITS.sub("", text)
    if not digits:
        return ""
    if text.startswith("+"):
        return "+" + digits
    if digits.startswith("00"):
        digits = digits[2:]
        return "+" + digits if digits else ""
    if digits.startswith("0") and default_country_code not in TRUNK_PREFIX_RETAINED:
        digits = digits[1:]
        if not digits:
            return ""
    return "+" + default_country_code + digits


def extract_email_domain(raw: Any) -> str:
    if not raw or "@" not in str(raw):
        return ""
    return str(raw).rsplit("@", 1)[1].strip().lower()


def email_local_part(raw: Any) -> str:
    if not raw or "@" not in str(raw):
        return ""
    return str(raw).rsplit("@", 1)[0].strip().lower()


def domains_related(
    a: str,
    b: str,
    related_pairs: Iterable[Tuple[str, str]] = DEFAULT_RELATED_DOMAINS,
) -> bool:
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()
    if not a or not b:
        return False
    if a == b:
        return True
    return any((a, b) == (x, y) or (b, a) == (x, y) for x, y in related_pairs)


def website_domain(url: Any) -> str:
    text = str(url or "").strip().lower()
    if not text:
        return ""
    # urlparse only fills netloc when a scheme or '//' is present
    parsed = urlparse(text if "://" in text else "//" + text)
    host = parsed.netloc.split("@")[-1].split(":")[0]
    if host.startswith("www."):
        host = host[4:]
    return host.strip(".")


def record_name(kind: str, attributes: Dict[str, Any]) -> str:
    if kind == COMPANY:
        return str(attributes.get("name") or "")
    parts = [attributes.get("first_name") or "", attributes.get("last_name") or ""]
    return " ".join(str(p).strip() for p in parts if str(p).strip())


def normalize_record(
    kind: str,
    attributes: Dict[str, Any],
    config: Optional[EngineConfig] = None,
) -> Tuple[Tuple[NormalizedField, ...], List[NormalizationFallback]]:
    """
    Turn raw attributes into tagged comparison fields.

    Returns:
        Tuple of (fields, fallbacks). A fallback is reported for every
        non-empty raw value whose canonical form came out empty.
    """
    config = config or EngineConfig()
    fields: List[NormalizedField] = []
    fallbacks: List[NormalizationFallback] = []

    name = record_name(kind, attributes)
    if name:
        fields.append(NormalizedField(NAME, name, normalize_name(name)))

    for key in ("phone", "mobile"):
        raw = attributes.get(key)
        if not raw or not str(raw).strip():
            continue
        canonical = normalize_phone(raw, config.default_country_code)
        if canonical:
            fields.append(NormalizedField(PHONE, str(raw), canonical))
        else:
            fallbacks.append(NormalizationFallback(key, str(raw)))

    email = attributes.get("email")
    if email and str(email).strip():
        domain = extract_email_domain(email)
        local = email_local_part(email)
        if domain and local:
            fields.append(NormalizedField(EMAIL_DOMAIN, str(email), domain, qualifier=local))
        else:
            fallbacks.append(NormalizationFallback("email", str(email)))

    if kind == COMPANY:
        website = attributes.get("website")
        if website and str(website).strip():
            domain = website_domain(website)
            if domain:
                fields.append(NormalizedField(WEBSITE, str(website), domain))
            else:
                fallbacks.append(NormalizationFallback("website", str(website)))

    address = attributes.get("address")
    if address and str(address).strip():
        fields.append(NormalizedField(ADDRESS, str(address), normalize_address(address)))

    return tuple(fields), fallbacks


def build_entity(
    kind: str,
    entity_id: Optional[int],
    attributes: Dict[str, Any],
    config: Optional[EngineConfig] = None,
    updated_at: Optional[datetime] = None,
    version: int = 1,
) -> Entity:
    fields, _ = normalize_record(kind, attributes, config)
    return Entity(
        id=entity_id,
        kind=kind,
        attributes=dict(attributes),
        fields=fields,
        updated_at=updated_at,
        version=version,
    )
