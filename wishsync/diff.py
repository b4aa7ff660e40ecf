# wishsync/diff.py
from typing import Dict, List, Tuple

from .models import Entity


def diff_entities(
    previous: Dict[str, Entity], current: List[Entity]
) -> tuple[List[Entity], List[Entity], List[Tuple[Entity, List[str]]]]:
    """
    Compute added, removed and changed entities between a cached subset and a
    freshly fetched one.
    - previous: mapping entity id -> cached entity
    - current: entities returned by the remote source
    Returns:
      (added, removed, changed[(entity_after, changed_field_names)])
    """
    new_map = {e.id: e for e in current}
    old_ids = set(previous.keys())
    new_ids = set(new_map.keys())

    added = [new_map[eid] for eid in new_ids - old_ids]
    removed = [previous[eid] for eid in old_ids - new_ids]

    changed: List[Tuple[Entity, List[str]]] = []

    for eid in old_ids & new_ids:
        before = previous[eid].to_dict()
        after = new_map[eid].to_dict()
        names = sorted(k for k in after if before.get(k) != after[k])
        if names:
            changed.append((new_map[eid], names))

    return added, removed, changed
