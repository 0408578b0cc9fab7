"""
Tests for row mapping and validation.
"""

import pytest

from crmlinks.models import COMPANY, CONTACT
from crmlinks.schema import entity_attributes, is_blank_row, map_row, validate_row


class TestMapRow:
    """Column aliases and value coercion."""

    def test_aliases(self):
        row = {"nome": "Giulia", "cognome": "Bianchi", "telefono": "02 555", "azienda": "Acme"}
        assert map_row(CONTACT, row) == {
            "first_name": "Giulia",
            "last_name": "Bianchi",
            "phone": "02 555",
            "company": "Acme",
        }

    def test_canonical_key_wins_over_alias(self):
        row = {"email_address": "old@acme.it", "email": "new@acme.it"}
        assert map_row(CONTACT, row)["email"] == "new@acme.it"

    def test_blank_values_dropped(self):
        row = {"first_name": "  Anna ", "last_name": "", "phone": None}
        assert map_row(CONTACT, row) == {"first_name": "Anna"}

    def test_full_name_split(self):
        data = map_row(CONTACT, {"name": "Maria Grazia De Luca"})
        assert data == {"first_name": "Maria", "last_name": "Grazia De Luca"}

    def test_full_name_ignored_when_parts_present(self):
        data = map_row(CONTACT, {"name": "Marco Rossi", "first_name": "Marco"})
        assert data == {"first_name": "Marco"}

    def test_company_name_is_name(self):
        assert map_row(COMPANY, {"name": "Acme"}) == {"name": "Acme"}

    def test_tags_split(self):
        assert map_row(CONTACT, {"tags": "vip, lead,,"})["tags"] == ["vip", "lead"]
        assert map_row(CONTACT, {"tags": ["a", " b "]})["tags"] == ["a", "b"]

    def test_ids_parsed(self):
        assert map_row(CONTACT, {"company_id": "12"})["company_id"] == 12
        assert map_row(COMPANY, {"parent_company_id": 4.0})["parent_company_id"] == 4
        assert map_row(CONTACT, {"company_id": "acme"})["company_id"] == "acme"

    @pytest.mark.parametrize("value", ["1e400", "inf", "-inf", "nan"])
    def test_unrepresentable_ids_kept_as_text(self, value):
        """Ids that are not finite numbers stay strings so validation rejects them."""
        data = map_row(CONTACT, {"first_name": "Ada", "email": "ada@x.it", "company_id": value})
        assert data["company_id"] == value
        assert validate_row(CONTACT, data) == ["Field 'company_id' must be an integer id"]

    @pytest.mark.parametrize("value,expected", [("yes", True), ("Sì", True), ("1", True), ("no", False), (True, True)])
    def test_primary_flag(self, value, expected):
        assert map_row(CONTACT, {"primary": value})["primary"] is expected

    def test_column_mapping(self):
        data = map_row(COMPANY, {"Ragione sociale": "Acme Srl"}, {"Ragione sociale": "name"})
        assert data == {"name": "Acme Srl"}

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            map_row("deal", {"name": "x"})


class TestIsBlankRow:
    def test_blank(self):
        assert is_blank_row({})
        assert is_blank_row({"a": "", "b": None, "c": "   ", "d": []})

    def test_not_blank(self):
        assert not is_blank_row({"a": "", "b": "x"})
        assert not is_blank_row({"tags": ["vip"]})


class TestValidateRow:
    """Validation after mapping."""

    def test_valid_contact(self, contact_row):
        assert validate_row(CONTACT, map_row(CONTACT, contact_row)) == []

    def test_contact_needs_name(self):
        errors = validate_row(CONTACT, {"email": "a@b.it"})
        assert errors == ["Contact must have a first name or a last name"]

    def test_contact_needs_reachability(self):
        errors = validate_row(CONTACT, {"last_name": "Rossi"})
        assert any("email or a phone" in e for e in errors)

    def test_mobile_is_enough(self):
        assert validate_row(CONTACT, {"last_name": "Rossi", "mobile": "333 1234567"}) == []

    def test_malformed_email_is_not_an_error(self):
        assert validate_row(CONTACT, {"first_name": "Anna", "email": "anna-at-acme"}) == []

    def test_bad_company_id(self):
        errors = validate_row(CONTACT, map_row(CONTACT, {"first_name": "A", "email": "a@b.it", "company_id": "acme"}))
        assert errors == ["Field 'company_id' must be an integer id"]

    def test_company_needs_name(self):
        assert validate_row(COMPANY, {"website": "acme.it"}) == ["Company must have a name"]

    def test_bad_parent_id(self):
        errors = validate_row(COMPANY, {"name": "Acme", "parent_company_id": "x"})
        assert errors == ["Field 'parent_company_id' must be an integer id"]


class TestEntityAttributes:
    def test_link_keys_removed(self):
        data = {"first_name": "Anna", "company": "Acme", "company_id": 3, "primary": True, "job_title": "CFO"}
        assert entity_attributes(CONTACT, data) == {"first_name": "Anna", "job_title": "CFO"}

    def test_company_drops_parent(self):
        data = {"name": "Acme", "parent_company": "Holding", "industry": "Retail"}
        assert entity_attributes(COMPANY, data) == {"name": "Acme", "industry": "Retail"}
