"""
Relationship Graph Manager.

Responsibilities:
- Maintain the contact <-> company areas of activity.
- Keep primary-company and primary-contact flags exclusive.
- Keep the company hierarchy a forest (no cycles, one parent each).
- Record every accepted change as a Mutation for the persistence layer.

Non-Responsibilities:
- No storage; works on a private copy of a GraphSnapshot.
- No entity matching.
- No retry of stale commits.

Invariant:
Every observable state satisfies the link and hierarchy invariants: a
change is validated in full before any of it is applied, so two primaries
never coexist, not even between two statements.
"""

from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterator, List, Optional, Set, Tuple

from crmlinks.config import EngineConfig
from crmlinks.errors import (
    CycleError,
    LinkNotFoundError,
    MultipleParentError,
    UnknownEntityError,
)
from crmlinks.models import (
    CLEAR_PARENT,
    COMPANY,
    CONTACT,
    DELETE_ENTITY,
    DELETE_LINK,
    HIERARCHY,
    LINK,
    SET_PARENT,
    UPSERT_LINK,
    AreaOfActivity,
    GraphSnapshot,
    Mutation,
    MutationPlan,
)

from .hierarchy import ancestors, descendants, find_cycle_members, would_create_cycle

Key = Tuple[int, int]


class RelationshipGraph:
    """Validating, copy-on-write view over one GraphSnapshot."""

    def __init__(self, snapshot: Optional[GraphSnapshot] = None, config: Optional[EngineConfig] = None):
        snapshot = snapshot or GraphSnapshot()
        self.config = config or EngineConfig()
        self.base_version = snapshot.version
        self._contacts: Set[int] = set(snapshot.contact_ids)
        self._companies: Set[int] = set(snapshot.company_ids)
        self._areas: Dict[Key, AreaOfActivity] = {}
        self._by_contact: Dict[int, Set[int]] = {}
        self._by_company: Dict[int, Set[int]] = {}
        self._parents: Dict[int, int] = dict(snapshot.parents)
        self._pending: List[Mutation] = []
        for area in snapshot.areas.values():
            self._store(area)

    # -- bookkeeping ------------------------------------------------------

    def _store(self, area: AreaOfActivity) -> None:
        self._areas[area.key] = area
        self._by_contact.setdefault(area.contact_id, set()).add(area.company_id)
        self._by_company.setdefault(area.company_id, set()).add(area.contact_id)

    def _drop(self, key: Key) -> AreaOfActivity:
        area = self._areas.pop(key)
        self._by_contact.get(area.contact_id, set()).discard(area.company_id)
        self._by_company.get(area.company_id, set()).discard(area.contact_id)
        return area

    def _emit(self, op: str, kind: str, entity_id, payload=None) -> None:
        self._pending.append(Mutation(op=op, kind=kind, entity_id=entity_id, payload=payload or {}))

    def _require_contact(self, contact_id: int) -> None:
        if contact_id not in self._contacts:
            raise UnknownEntityError(CONTACT, contact_id)

    def _require_company(self, company_id: int) -> None:
        if company_id not in self._companies:
            raise UnknownEntityError(COMPANY, company_id)

    def _commit_areas(self, updates: Dict[Key, AreaOfActivity]) -> None:
        """Apply already-validated link updates together."""
        for key in sorted(updates):
            area = updates[key]
            if self._areas.get(key) == area:
                continue
            self._store(area)
            self._emit(UPSERT_LINK, LINK, key, area.to_dict())

    def _exclusive_updates(self, area: AreaOfActivity) -> Dict[Key, AreaOfActivity]:
        """area plus every sibling link whose primary flag it displaces."""
        updates = {area.key: area}
        if area.is_primary_company_for_contact:
            for company_id in self._by_contact.get(area.contact_id, ()):
                other = self._areas[(area.contact_id, company_id)]
                if other.key != area.key and other.is_primary_company_for_contact:
                    updates[other.key] = replace(other, is_primary_company_for_contact=False)
        if area.is_primary_contact_for_company:
            for contact_id in self._by_company.get(area.company_id, ()):
                other = updates.get((contact_id, area.company_id)) or self._areas[(contact_id, area.company_id)]
                if other.key != area.key and other.is_primary_contact_for_company:
                    updates[other.key] = replace(other, is_primary_contact_for_company=False)
        return updates

    @contextmanager
    def transaction(self) -> Iterator["RelationshipGraph"]:
        """Undo every change made in the block if it raises."""
        saved = (
            set(self._contacts),
            set(self._companies),
            dict(self._areas),
            {k: set(v) for k, v in self._by_contact.items()},
            {k: set(v) for k, v in self._by_company.items()},
            dict(self._parents),
            len(self._pending),
        )
        try:
            yield self
        except BaseException:
            (
                self._contacts,
                self._companies,
                self._areas,
                self._by_contact,
                self._by_company,
                self._parents,
                pending_len,
            ) = saved
            del self._pending[pending_len:]
            raise

    # -- entities ---------------------------------------------------------

    def add_contact(self, contact_id: int) -> None:
        self._contacts.add(contact_id)

    def add_company(self, company_id: int) -> None:
        self._companies.add(company_id)

    def has_contact(self, contact_id: int) -> bool:
        return contact_id in self._contacts

    def has_company(self, company_id: int) -> bool:
        return company_id in self._companies

    def remove_contact(self, contact_id: int) -> None:
        """Delete a contact together with all of its links."""
        self._require_contact(contact_id)
        for company_id in sorted(self._by_contact.get(contact_id, ())):
            self._drop((contact_id, company_id))
            self._emit(DELETE_LINK, LINK, (contact_id, company_id))
        self._by_contact.pop(contact_id, None)
        self._contacts.discard(contact_id)
        self._emit(DELETE_ENTITY, CONTACT, contact_id)

    def remove_company(self, company_id: int) -> None:
        """Delete a company, its links and its hierarchy edges; its children become roots."""
        self._require_company(company_id)
        for contact_id in sorted(self._by_company.get(company_id, ())):
            self._drop((contact_id, company_id))
            self._emit(DELETE_LINK, LINK, (contact_id, company_id))
        self._by_company.pop(company_id, None)
        for child in sorted(c for c, p in self._parents.items() if p == company_id):
            del self._parents[child]
            self._emit(CLEAR_PARENT, HIERARCHY, child, {"previous_parent_id": company_id})
        if company_id in self._parents:
            previous = self._parents.pop(company_id)
            self._emit(CLEAR_PARENT, HIERARCHY, company_id, {"previous_parent_id": previous})
        self._companies.discard(company_id)
        self._emit(DELETE_ENTITY, COMPANY, company_id)

    # -- areas of activity ------------------------------------------------

    def link(
        self,
        contact_id: int,
        company_id: int,
        role: Optional[str] = None,
        make_primary: bool = False,
        job_description: Optional[str] = None,
    ) -> AreaOfActivity:
        """
        Create or update the area of activity for a contact/company pair.

        Linking an already linked pair updates it in place. make_primary
        sets both primary flags on this link and clears them from the
        contact's and the company's other links in the same step; without
        it, existing flags are left as they are.
        """
        self._require_contact(contact_id)
        self._require_company(company_id)

        existing = self._areas.get((contact_id, company_id))
        if existing is not None:
            area = replace(
                existing,
                role=role if role is not None else existing.role,
                job_description=job_description if job_description is not None else existing.job_description,
            )
        else:
            first_link = not self._by_contact.get(contact_id)
            area = AreaOfActivity(
                contact_id=contact_id,
                company_id=company_id,
                is_primary_company_for_contact=first_link and self.config.auto_primary_first_link,
                role=role,
                job_description=job_description,
            )

        if make_primary:
            area = replace(area, is_primary_company_for_contact=True, is_primary_contact_for_company=True)

        self._commit_areas(self._exclusive_updates(area))
        return self._areas[area.key]

    def unlink(self, contact_id: int, company_id: int) -> bool:
        """
        Remove a link. Returns False when the pair was not linked.

        A removed primary link leaves its contact/company without a primary;
        nothing is promoted automatically.
        """
        key = (contact_id, company_id)
        if key not in self._areas:
            return False
        self._drop(key)
        self._emit(DELETE_LINK, LINK, key)
        return True

    def set_primary_company(self, contact_id: int, company_id: int) -> AreaOfActivity:
        area = self._areas.get((contact_id, company_id))
        if area is None:
            raise LinkNotFoundError(contact_id, company_id)
        area = replace(area, is_primary_company_for_contact=True)
        self._commit_areas(self._exclusive_updates(area))
        return area

    def set_primary_contact(self, company_id: int, contact_id: int) -> AreaOfActivity:
        area = self._areas.get((contact_id, company_id))
        if area is None:
            raise LinkNotFoundError(contact_id, company_id)
        area = replace(area, is_primary_contact_for_company=True)
        self._commit_areas(self._exclusive_updates(area))
        return area

    # -- hierarchy --------------------------------------------------------

    def set_parent(self, child_company_id: int, parent_company_id: int, replace: bool = False) -> None:
        self._require_company(child_company_id)
        self._require_company(parent_company_id)
        if would_create_cycle(self._parents, child_company_id, parent_company_id):
            raise CycleError(child_company_id, parent_company_id)

        current = self._parents.get(child_company_id)
        if current == parent_company_id:
            return
        if current is not None and not replace:
            raise MultipleParentError(child_company_id, current, parent_company_id)

        self._parents[child_company_id] = parent_company_id
        self._emit(
            SET_PARENT,
            HIERARCHY,
            child_company_id,
            {"parent_company_id": parent_company_id, "previous_parent_id": current},
        )

    def clear_parent(self, child_company_id: int) -> bool:
        if child_company_id not in self._parents:
            return False
        previous = self._parents.pop(child_company_id)
        self._emit(CLEAR_PARENT, HIERARCHY, child_company_id, {"previous_parent_id": previous})
        return True

    # -- queries ----------------------------------------------------------

    def link_for(self, contact_id: int, company_id: int) -> Optional[AreaOfActivity]:
        return self._areas.get((contact_id, company_id))

    def contacts_of_company(self, company_id: int) -> List[AreaOfActivity]:
        """Links of a company, primary contact first, then by contact id."""
        areas = [self._areas[(c, company_id)] for c in self._by_company.get(company_id, ())]
        return sorted(areas, key=lambda a: (not a.is_primary_contact_for_company, a.contact_id))

    def companies_of_contact(self, contact_id: int) -> List[AreaOfActivity]:
        """Links of a contact, primary company first, then by company id."""
        areas = [self._areas[(contact_id, c)] for c in self._by_contact.get(contact_id, ())]
        return sorted(areas, key=lambda a: (not a.is_primary_company_for_contact, a.company_id))

    def primary_company_of(self, contact_id: int) -> Optional[int]:
        for area in self.companies_of_contact(contact_id):
            if area.is_primary_company_for_contact:
                return area.company_id
        return None

    def primary_contact_of(self, company_id: int) -> Optional[int]:
        for area in self.contacts_of_company(company_id):
            if area.is_primary_contact_for_company:
                return area.contact_id
        return None

    def parent_of(self, company_id: int) -> Optional[int]:
        return self._parents.get(company_id)

    def ancestors_of(self, company_id: int) -> List[int]:
        return ancestors(self._parents, company_id)

    def descendants_of(self, company_id: int) -> List[int]:
        return descendants(self._parents, company_id)

    # -- output -----------------------------------------------------------

    def to_snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(
            contact_ids=frozenset(self._contacts),
            company_ids=frozenset(self._companies),
            areas=dict(self._areas),
            parents=dict(self._parents),
            version=self.base_version,
        )

    def pending_mutations(self) -> List[Mutation]:
        return list(self._pending)

    def plan(self) -> MutationPlan:
        return MutationPlan(mutations=self.pending_mutations(), graph_version=self.base_version)


def check_invariants(snapshot: GraphSnapshot) -> List[str]:
    """
    Validate a (freshly re-read) snapshot.

    Returns:
        Human-readable violations; an empty list means the snapshot is sound.
    """
    problems: List[str] = []
    primary_company: Dict[int, List[int]] = {}
    primary_contact: Dict[int, List[int]] = {}

    for key, area in sorted(snapshot.areas.items()):
        if key != area.key:
            problems.append(f"Link stored under {key} describes {area.key}")
        if area.contact_id not in snapshot.contact_ids:
            problems.append(f"Link {area.key} references unknown contact {area.contact_id}")
        if area.company_id not in snapshot.company_ids:
            problems.append(f"Link {area.key} references unknown company {area.company_id}")
        if area.is_primary_company_for_contact:
            primary_company.setdefault(area.contact_id, []).append(area.company_id)
        if area.is_primary_contact_for_company:
            primary_contact.setdefault(area.company_id, []).append(area.contact_id)

    for contact_id, companies in sorted(primary_company.items()):
        if len(companies) > 1:
            problems.append(f"Contact {contact_id} has {len(companies)} primary companies: {sorted(companies)}")
    for company_id, contacts in sorted(primary_contact.items()):
        if len(contacts) > 1:
            problems.append(f"Company {company_id} has {len(contacts)} primary contacts: {sorted(contacts)}")

    for child, parent in sorted(snapshot.parents.items()):
        if child == parent:
            problems.append(f"Company {child} is its own parent")
        for company_id in (child, parent):
            if company_id not in snapshot.company_ids:
                problems.append(f"Hierarchy edge {child}->{parent} references unknown company {company_id}")
    cycle = [c for c in find_cycle_members(snapshot.parents) if snapshot.parents.get(c) != c]
    if cycle:
        problems.append(f"Company hierarchy has a cycle through {cycle}")

    return problems
