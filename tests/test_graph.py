"""
Tests for the relationship graph: areas of activity and company hierarchy.
"""

import pytest

from crmlinks.config import EngineConfig
from crmlinks.errors import CycleError, LinkNotFoundError, MultipleParentError, UnknownEntityError
from crmlinks.models import (
    CLEAR_PARENT,
    DELETE_ENTITY,
    DELETE_LINK,
    SET_PARENT,
    UPSERT_LINK,
    AreaOfActivity,
    GraphSnapshot,
)
from pipelines.relationships.graph import RelationshipGraph, check_invariants


@pytest.fixture
def graph():
    """Contacts 1-3, companies 10-15, no links."""
    return RelationshipGraph(GraphSnapshot.build(contact_ids=[1, 2, 3], company_ids=range(10, 16), version=4))


def primaries_of_contact(graph, contact_id):
    return [a.company_id for a in graph.companies_of_contact(contact_id) if a.is_primary_company_for_contact]


def primaries_of_company(graph, company_id):
    return [a.contact_id for a in graph.contacts_of_company(company_id) if a.is_primary_contact_for_company]


class TestLink:
    """Areas of activity."""

    def test_first_link_is_primary_company(self, graph):
        area = graph.link(1, 10, role="CFO")
        assert area.is_primary_company_for_contact
        assert not area.is_primary_contact_for_company
        assert graph.primary_company_of(1) == 10

    def test_second_link_is_not_primary(self, graph):
        graph.link(1, 10)
        area = graph.link(1, 11)
        assert not area.is_primary_company_for_contact
        assert graph.primary_company_of(1) == 10

    def test_first_link_auto_primary_disabled(self):
        graph = RelationshipGraph(
            GraphSnapshot.build(contact_ids=[1], company_ids=[10]),
            EngineConfig(auto_primary_first_link=False),
        )
        assert not graph.link(1, 10).is_primary_company_for_contact
        assert graph.primary_company_of(1) is None

    def test_link_is_idempotent(self, graph):
        graph.link(1, 10, role="CFO")
        graph.link(1, 10, role="CFO")
        assert len(graph.companies_of_contact(1)) == 1
        upserts = [m for m in graph.pending_mutations() if m.op == UPSERT_LINK]
        assert len(upserts) == 1

    def test_relink_updates_role_in_place(self, graph):
        graph.link(1, 10, role="CFO", job_description="Finance")
        area = graph.link(1, 10, role="CEO")
        assert area.role == "CEO"
        assert area.job_description == "Finance"
        assert len(graph.companies_of_contact(1)) == 1

    def test_relink_without_role_keeps_role(self, graph):
        graph.link(1, 10, role="CFO")
        assert graph.link(1, 10).role == "CFO"

    def test_make_primary_sets_both_flags(self, graph):
        area = graph.link(1, 10, make_primary=True)
        assert area.is_primary_company_for_contact
        assert area.is_primary_contact_for_company
        assert graph.primary_contact_of(10) == 1

    def test_make_primary_is_exclusive_per_contact(self, graph):
        graph.link(1, 10, make_primary=True)
        graph.link(1, 11, make_primary=True)
        assert primaries_of_contact(graph, 1) == [11]
        assert not graph.link_for(1, 10).is_primary_company_for_contact

    def test_make_primary_is_exclusive_per_company(self, graph):
        graph.link(1, 10, make_primary=True)
        graph.link(2, 10, make_primary=True)
        assert primaries_of_company(graph, 10) == [2]
        assert not graph.link_for(1, 10).is_primary_contact_for_company
        # Contact 1 keeps its primary company
        assert graph.primary_company_of(1) == 10

    def test_linking_without_make_primary_keeps_flags(self, graph):
        graph.link(1, 10, make_primary=True)
        graph.link(1, 10, role="CTO")
        area = graph.link_for(1, 10)
        assert area.is_primary_company_for_contact
        assert area.is_primary_contact_for_company

    def test_unknown_contact(self, graph):
        with pytest.raises(UnknownEntityError) as exc:
            graph.link(99, 10)
        assert exc.value.entity_id == 99
        assert graph.pending_mutations() == []

    def test_unknown_company(self, graph):
        with pytest.raises(UnknownEntityError):
            graph.link(1, 99)

    def test_link_emits_upsert(self, graph):
        graph.link(1, 10, role="CFO")
        (mutation,) = graph.pending_mutations()
        assert mutation.op == UPSERT_LINK
        assert mutation.entity_id == (1, 10)
        assert mutation.payload["role"] == "CFO"
        assert mutation.payload["is_primary_company_for_contact"] is True

    def test_displaced_primary_emits_upsert(self, graph):
        graph.link(1, 10, make_primary=True)
        graph.link(1, 11, make_primary=True)
        keys = [m.entity_id for m in graph.pending_mutations()]
        assert keys == [(1, 10), (1, 10), (1, 11)]


class TestUnlink:
    """Removing links."""

    def test_unlink_missing_pair(self, graph):
        assert graph.unlink(1, 10) is False
        assert graph.pending_mutations() == []

    def test_unlink_primary_does_not_promote(self, graph):
        graph.link(1, 10)
        graph.link(1, 11)
        assert graph.unlink(1, 10) is True
        assert graph.primary_company_of(1) is None
        assert [a.company_id for a in graph.companies_of_contact(1)] == [11]

    def test_unlink_emits_delete(self, graph):
        graph.link(1, 10)
        graph.unlink(1, 10)
        assert graph.pending_mutations()[-1].op == DELETE_LINK


class TestSetPrimary:
    """Explicit primary changes."""

    def test_set_primary_company(self, graph):
        graph.link(1, 10)
        graph.link(1, 11)
        graph.set_primary_company(1, 11)
        assert primaries_of_contact(graph, 1) == [11]

    def test_set_primary_contact(self, graph):
        graph.link(1, 10)
        graph.link(2, 10)
        graph.set_primary_contact(10, 2)
        assert graph.primary_contact_of(10) == 2
        graph.set_primary_contact(10, 1)
        assert primaries_of_company(graph, 10) == [1]

    def test_set_primary_requires_link(self, graph):
        with pytest.raises(LinkNotFoundError):
            graph.set_primary_company(1, 10)
        with pytest.raises(LinkNotFoundError):
            graph.set_primary_contact(10, 1)

    def test_contacts_of_company_lists_primary_first(self, graph):
        graph.link(1, 10)
        graph.link(3, 10)
        graph.link(2, 10)
        graph.set_primary_contact(10, 3)
        assert [a.contact_id for a in graph.contacts_of_company(10)] == [3, 1, 2]


class TestHierarchy:
    """Company parent edges."""

    def test_set_parent(self, graph):
        graph.set_parent(11, 10)
        assert graph.parent_of(11) == 10
        (mutation,) = graph.pending_mutations()
        assert mutation.op == SET_PARENT
        assert mutation.payload == {"parent_company_id": 10, "previous_parent_id": None}

    def test_two_node_cycle_rejected(self, graph):
        graph.set_parent(10, 11)
        with pytest.raises(CycleError):
            graph.set_parent(11, 10)
        assert graph.parent_of(11) is None
        assert graph.parent_of(10) == 11

    def test_long_cycle_rejected(self, graph):
        graph.set_parent(11, 10)
        graph.set_parent(12, 11)
        graph.set_parent(13, 12)
        before = graph.to_snapshot().parents
        with pytest.raises(CycleError):
            graph.set_parent(10, 13)
        assert graph.to_snapshot().parents == before

    def test_self_parent_rejected(self, graph):
        with pytest.raises(CycleError):
            graph.set_parent(10, 10)

    def test_second_parent_rejected(self, graph):
        graph.set_parent(11, 10)
        with pytest.raises(MultipleParentError) as exc:
            graph.set_parent(11, 12)
        assert exc.value.current_parent_id == 10
        assert graph.parent_of(11) == 10

    def test_replace_parent(self, graph):
        graph.set_parent(11, 10)
        graph.set_parent(11, 12, replace=True)
        assert graph.parent_of(11) == 12
        assert graph.pending_mutations()[-1].payload["previous_parent_id"] == 10

    def test_same_parent_is_noop(self, graph):
        graph.set_parent(11, 10)
        graph.set_parent(11, 10)
        assert len(graph.pending_mutations()) == 1

    def test_unknown_company(self, graph):
        with pytest.raises(UnknownEntityError):
            graph.set_parent(11, 99)

    def test_clear_parent(self, graph):
        graph.set_parent(11, 10)
        assert graph.clear_parent(11) is True
        assert graph.parent_of(11) is None
        assert graph.clear_parent(11) is False
        assert graph.pending_mutations()[-1].op == CLEAR_PARENT

    def test_ancestors_nearest_first(self, graph):
        graph.set_parent(11, 10)
        graph.set_parent(12, 11)
        graph.set_parent(13, 12)
        assert graph.ancestors_of(13) == [12, 11, 10]
        assert graph.ancestors_of(10) == []

    def test_descendants(self, graph):
        graph.set_parent(11, 10)
        graph.set_parent(12, 10)
        graph.set_parent(13, 11)
        assert sorted(graph.descendants_of(10)) == [11, 12, 13]
        assert graph.descendants_of(13) == []


class TestRemoval:
    """Cascading entity deletes."""

    def test_remove_company_cascades(self, graph):
        graph.link(1, 11)
        graph.link(2, 11)
        graph.set_parent(11, 10)
        graph.set_parent(12, 11)
        graph.remove_company(11)

        assert not graph.has_company(11)
        assert graph.companies_of_contact(1) == []
        assert graph.parent_of(12) is None
        assert check_invariants(graph.to_snapshot()) == []
        ops = [m.op for m in graph.pending_mutations()[-5:]]
        assert ops == [DELETE_LINK, DELETE_LINK, CLEAR_PARENT, CLEAR_PARENT, DELETE_ENTITY]

    def test_remove_contact_cascades(self, graph):
        graph.link(1, 10)
        graph.link(1, 11)
        graph.remove_contact(1)
        assert not graph.has_contact(1)
        assert graph.contacts_of_company(10) == []

    def test_remove_unknown(self, graph):
        with pytest.raises(UnknownEntityError):
            graph.remove_company(99)


class TestTransaction:
    """Rollback of a failed block."""

    def test_rollback_restores_state(self, graph):
        graph.link(1, 10)
        with pytest.raises(CycleError):
            with graph.transaction():
                graph.link(1, 11, make_primary=True)
                graph.set_parent(10, 11)
                graph.set_parent(11, 10)
        assert graph.primary_company_of(1) == 10
        assert graph.link_for(1, 11) is None
        assert graph.parent_of(10) is None
        assert len(graph.pending_mutations()) == 1

    def test_commit_keeps_changes(self, graph):
        with graph.transaction():
            graph.link(1, 10)
        assert graph.link_for(1, 10) is not None


class TestSnapshots:
    """Snapshot isolation and invariant checks."""

    def test_source_snapshot_untouched(self):
        snapshot = GraphSnapshot.build(contact_ids=[1], company_ids=[10, 11])
        graph = RelationshipGraph(snapshot)
        graph.link(1, 10)
        graph.set_parent(11, 10)
        assert snapshot.areas == {}
        assert snapshot.parents == {}

    def test_plan_carries_base_version(self, graph):
        graph.link(1, 10)
        plan = graph.plan()
        assert plan.graph_version == 4
        assert plan.touches_graph()

    def test_invariants_of_valid_graph(self, graph):
        graph.link(1, 10, make_primary=True)
        graph.link(2, 10)
        graph.set_parent(11, 10)
        assert check_invariants(graph.to_snapshot()) == []

    def test_invariants_detect_corruption(self):
        snapshot = GraphSnapshot.build(
            contact_ids=[1, 2],
            company_ids=[10, 11],
            areas=[
                AreaOfActivity(1, 10, is_primary_company_for_contact=True, is_primary_contact_for_company=True),
                AreaOfActivity(1, 11, is_primary_company_for_contact=True),
                AreaOfActivity(2, 10, is_primary_contact_for_company=True),
                AreaOfActivity(3, 10),
            ],
        )
        snapshot.parents = {10: 11, 11: 10}
        problems = check_invariants(snapshot)
        assert any("primary companies" in p for p in problems)
        assert any("primary contacts" in p for p in problems)
        assert any("unknown contact 3" in p for p in problems)
        assert any("cycle" in p for p in problems)
