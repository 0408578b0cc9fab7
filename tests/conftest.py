"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime
from typing import Any, Dict, Optional

from crmlinks.config import EngineConfig
from crmlinks.logger import StructuredLogger, reset_logger
from crmlinks.models import COMPANY, CONTACT, Entity
from crmlinks.normalize import build_entity


@pytest.fixture(autouse=True)
def _fresh_global_logger():
    """Keep the global logger from leaking handlers between tests."""
    reset_logger()
    yield
    reset_logger()


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def quiet_logger() -> StructuredLogger:
    """Logger with no handlers attached, metrics still tracked."""
    return StructuredLogger(name="crmlinks-test", enable_console=False, enable_file=False)


@pytest.fixture
def make_contact(config):
    """Factory for contact snapshots."""
    def _make(entity_id: Optional[int], updated_at: datetime = None, version: int = 1, **attributes: Any) -> Entity:
        return build_entity(CONTACT, entity_id, attributes, config, updated_at=updated_at, version=version)
    return _make


@pytest.fixture
def make_company(config):
    """Factory for company snapshots."""
    def _make(entity_id: Optional[int], updated_at: datetime = None, version: int = 1, **attributes: Any) -> Entity:
        return build_entity(COMPANY, entity_id, attributes, config, updated_at=updated_at, version=version)
    return _make


@pytest.fixture
def marco_rows():
    """Two rows describing the same person with sibling mail domains."""
    return [
        {"name": "Marco Rossi", "email": "marco.rossi@gmail.com"},
        {"name": "Marco Rossi", "email": "marco.rossi@googlemail.com"},
    ]


@pytest.fixture
def contact_row() -> Dict[str, Any]:
    return {
        "first_name": "Giulia",
        "last_name": "Bianchi",
        "email": "giulia.bianchi@acme.it",
        "phone": "02 5551234",
        "company": "Acme Srl",
        "job_title": "CFO",
    }
