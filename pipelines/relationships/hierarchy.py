"""
Company Hierarchy Walks.

Responsibilities:
- Walk the parent map upward (ancestors) and downward (descendants).
- Detect edges that would close a cycle.

Non-Responsibilities:
- No mutation; callers own the parent map.
- No existence checks on company ids.

Invariant:
Each company has at most one parent and the parent map is acyclic.
Walks stop on a repeated node so a corrupted snapshot cannot loop forever.
"""

from collections import defaultdict, deque
from typing import Dict, List, Mapping


def ancestors(parents: Mapping[int, int], company_id: int) -> List[int]:
    """Parent chain of company_id, nearest first."""
    chain: List[int] = []
    seen = {company_id}
    current = parents.get(company_id)
    while current is not None and current not in seen:
        chain.append(current)
        seen.add(current)
        current = parents.get(current)
    return chain


def children_index(parents: Mapping[int, int]) -> Dict[int, List[int]]:
    index: Dict[int, List[int]] = defaultdict(list)
    for child, parent in parents.items():
        index[parent].append(child)
    for kids in index.values():
        kids.sort()
    return index


def descendants(parents: Mapping[int, int], company_id: int) -> List[int]:
    """All companies below company_id, breadth-first, siblings by id."""
    index = children_index(parents)
    found: List[int] = []
    seen = {company_id}
    queue = deque(index.get(company_id, []))
    while queue:
        node = queue.popleft()
        if node in seen:
            continue
        seen.add(node)
        found.append(node)
        queue.extend(index.get(node, []))
    return found


def would_create_cycle(parents: Mapping[int, int], child_id: int, parent_id: int) -> bool:
    if child_id == parent_id:
        return True
    # Walk up from the proposed parent; meeting the child closes a loop
    current = parent_id
    seen = set()
    while current is not None and current not in seen:
        if current == child_id:
            return True
        seen.add(current)
        current = parents.get(current)
    return False


def find_cycle_members(parents: Mapping[int, int]) -> List[int]:
    """Companies that sit on a cycle of the parent map, sorted."""
    on_cycle = set()
    for start in parents:
        path = []
        position = {}
        current = start
        while current is not None and current not in position:
            if current in on_cycle:
                break
            position[current] = len(path)
            path.append(current)
            current = parents.get(current)
        if current is not None and current in position:
            on_cycle.update(path[position[current]:])
    return sorted(on_cycle)
