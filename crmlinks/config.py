"""
Engine configuration.

Every knob has a default; EngineConfig.from_env() lets deployments override
them through CRMLINKS_* environment variables (optionally from a .env file).
"""

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple

from .env import load_env

DEFAULT_MATCH_THRESHOLD = 0.80
DEFAULT_NAME_THRESHOLD = 0.82
DEFAULT_COUNTRY_CODE = "39"

# Mailbox providers that serve the same accounts under several domains
DEFAULT_RELATED_DOMAINS: Tuple[Tuple[str, str], ...] = (
    ("gmail.com", "googlemail.com"),
    ("outlook.com", "hotmail.com"),
    ("outlook.com", "live.com"),
    ("outlook.com", "msn.com"),
    ("yahoo.com", "ymail.com"),
    ("icloud.com", "me.com"),
    ("icloud.com", "mac.com"),
)

ENV_PREFIX = "CRMLINKS_"


@dataclass(frozen=True)
class EngineConfig:
    match_threshold: float = DEFAULT_MATCH_THRESHOLD
    name_threshold: float = DEFAULT_NAME_THRESHOLD
    default_country_code: str = DEFAULT_COUNTRY_CODE
    related_domains: Tuple[Tuple[str, str], ...] = field(default=DEFAULT_RELATED_DOMAINS)
    auto_primary_first_link: bool = True

    def __post_init__(self):
        for name in ("match_threshold", "name_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if not self.default_country_code.isdigit():
            raise ValueError(f"default_country_code must be digits, got {self.default_country_code!r}")

    def with_overrides(self, **changes) -> "EngineConfig":
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, load_dotenv_file: bool = True) -> "EngineConfig":
        """
        Build a config from CRMLINKS_* variables.

        Args:
            environ: Mapping to read instead of os.environ
            load_dotenv_file: Load .env from the working directory first

        Returns:
            EngineConfig with defaults for anything unset
        """
        if environ is None:
            if load_dotenv_file:
                load_env()
            environ = os.environ

        kwargs = {}
        if environ.get(ENV_PREFIX + "MATCH_THRESHOLD"):
            kwargs["match_threshold"] = float(environ[ENV_PREFIX + "MATCH_THRESHOLD"])
        if environ.get(ENV_PREFIX + "NAME_THRESHOLD"):
            kwargs["name_threshold"] = float(environ[ENV_PREFIX + "NAME_THRESHOLD"])
        if environ.get(ENV_PREFIX + "DEFAULT_COUNTRY_CODE"):
            kwargs["default_country_code"] = environ[ENV_PREFIX + "DEFAULT_COUNTRY_CODE"].strip().lstrip("+")
        if environ.get(ENV_PREFIX + "RELATED_DOMAINS"):
            extra = parse_domain_pairs(environ[ENV_PREFIX + "RELATED_DOMAINS"])
            kwargs["related_domains"] = DEFAULT_RELATED_DOMAINS + extra
        if environ.get(ENV_PREFIX + "AUTO_PRIMARY_FIRST_LINK"):
            flag = environ[ENV_PREFIX + "AUTO_PRIMARY_FIRST_LINK"].strip().lower()
            kwargs["auto_primary_first_link"] = flag in ("1", "true", "yes", "on")
        return cls(**kwargs)


def parse_domain_pairs(value: str) -> Tuple[Tuple[str, str], ...]:
    """Parse 'a.com=b.com,c.com=d.com' into lower-cased pairs; malformed items are ignored."""
    pairs = []
    for item in value.split(","):
        if "=" not in item:
            continue
        left, right = item.split("=", 1)
        left, right = left.strip().lower(), right.strip().lower()
        if left and right:
            pairs.append((left, right))
    return tuple(pairs)
