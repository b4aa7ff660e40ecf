# wishsync/stores.py
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

from .diff import diff_entities
from .errors import NetworkError, NoSessionError, RemoteError
from .logger import get_logger
from .models import Entity, Wish, WishList
from .session import has_active_session, is_remote_backed
from .storage import now_ms, now_utc_iso

logger = get_logger(__name__)

# (event, entity) where event is "upsert" or "delete"
StoreListener = Callable[[str, Entity], None]


class EntityStore:
    """
    Local cache of one entity type, persisted to local storage and mirrored to
    the remote table while the session is remote-backed.

    Local state always wins: update/delete are applied locally first and a
    failing remote call is logged, never rolled back.
    """

    model: Type[Entity] = Entity
    kind = "entity"
    storage_key = ""

    def __init__(self, session, adapter, local_storage):
        self.session = session
        self.adapter = adapter
        self.local = local_storage
        self._items: Dict[str, Entity] = {}
        self._listeners: List[StoreListener] = []
        self._load()

    # -- cache plumbing ------------------------------------------------

    def _load(self) -> None:
        rows = self.local.get_item(self.storage_key) or []
        for data in rows:
            try:
                entity = self.model.from_dict(data)
            except TypeError as e:
                logger.warning("Dropping unreadable cached %s %s: %s", self.kind, data, e)
                continue
            self._items[entity.id] = entity
        logger.debug("Loaded %d cached %s(s).", len(self._items), self.kind)

    def _persist(self) -> None:
        self.local.set_item(self.storage_key, [e.to_dict() for e in self._items.values()])

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, entity: Entity) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, entity)
            except Exception as e:
                logger.exception("%s listener failed on %s %s: %s", self.kind, event, entity.id, e)

    def _local_id(self) -> str:
        prefix = "guest" if self.session.is_guest_mode else "placeholder"
        return f"{prefix}-{self.kind}-{now_ms()}-{uuid.uuid4().hex[:6]}"

    def get(self, entity_id: str) -> Optional[Entity]:
        return self._items.get(entity_id)

    def all(self) -> List[Entity]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._items

    # -- operations ------------------------------------------------------

    def add(self, fields: Dict[str, Any]) -> Entity:
        if not has_active_session(self.session):
            raise NoSessionError(
                f"User must be logged in or in guest mode to create a {self.kind}."
            )
        data = self.model.validate(
            {k: v for k, v in fields.items() if k not in self.model.SERVER_FIELDS}
        )
        data["user_id"] = self.session.user.id

        if not is_remote_backed(self.session):
            entity = self.model.from_dict(
                {**data, "id": self._local_id(), "created_at": now_utc_iso()}
            )
            logger.info("Created local-only %s %s (%s).", self.kind, entity.id, self.session.state.kind)
        else:
            draft = self.model.from_dict({**data, "id": ""})
            # Remote errors propagate; nothing is cached until the row exists
            entity = self.adapter.insert(draft)
            logger.info("Created %s %s remotely.", self.kind, entity.id)

        self._items[entity.id] = entity
        self._persist()
        self._notify("upsert", entity)
        return entity

    def _stamp(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        return patch

    def update(self, entity_id: str, fields: Dict[str, Any]) -> Optional[Entity]:
        patch = self.model.validate(
            {k: v for k, v in fields.items() if k != "id"}, partial=True
        )
        current = self._items.get(entity_id)
        if current is None:
            logger.warning("Update for unknown %s %s ignored.", self.kind, entity_id)
            return None
        if not patch:
            return current

        patch = self._stamp(patch)
        updated = current.merged(patch)
        self._items[entity_id] = updated
        self._persist()
        self._notify("upsert", updated)

        if is_remote_backed(self.session):
            try:
                self.adapter.update(entity_id, patch)
            except (RemoteError, NetworkError) as e:
                logger.error(
                    "Remote update of %s %s failed; keeping local change: %s",
                    self.kind, entity_id, e,
                )
        return updated

    def delete(self, entity_id: str) -> bool:
        removed = self._items.pop(entity_id, None)
        if removed is not None:
            self._persist()
            self._notify("delete", removed)

        if is_remote_backed(self.session):
            try:
                self.adapter.delete(entity_id)
            except (RemoteError, NetworkError) as e:
                logger.error(
                    "Remote delete of %s %s failed; local copy stays deleted: %s",
                    self.kind, entity_id, e,
                )
        return removed is not None

    def _query(self, field: str, value: Any) -> List[Entity]:
        cached = {e.id: e for e in self._items.values() if getattr(e, field) == value}

        if not is_remote_backed(self.session):
            return list(cached.values())

        try:
            fetched = self.adapter.select(**{field: value})
        except (RemoteError, NetworkError) as e:
            logger.error(
                "Fetching %ss where %s=%s failed; serving cached copy: %s",
                self.kind, field, value, e,
            )
            return list(cached.values())

        added, removed, changed = diff_entities(cached, fetched)
        if added or removed or changed:
            logger.info(
                "Merged %ss for %s=%s: %d added, %d removed, %d changed.",
                self.kind, field, value, len(added), len(removed), len(changed),
            )

        # Replace only the subset matching this key
        for entity_id in cached:
            self._items.pop(entity_id, None)
        for entity in fetched:
            self._items[entity.id] = entity
        self._persist()
        return fetched

    # -- inbound collaboration patches -----------------------------------

    def apply_remote_upsert(self, entity_id: str, fields: Dict[str, Any]) -> Entity:
        """Merge a peer's patch into the cache. Never written back or re-broadcast."""
        known = {k: v for k, v in fields.items() if k in self.model.field_names() and k != "id"}
        current = self._items.get(entity_id)
        if current is None:
            entity = self.model.from_dict({**known, "id": entity_id})
        else:
            entity = current.merged(known)
        self._items[entity_id] = entity
        self._persist()
        return entity

    def apply_remote_delete(self, entity_id: str) -> bool:
        removed = self._items.pop(entity_id, None)
        if removed is None:
            return False
        self._persist()
        return True

    def purge_owner(self, predicate: Callable[[str], bool]) -> int:
        """Drop cached entities whose owner id matches ``predicate``."""
        doomed = [e.id for e in self._items.values() if predicate(e.user_id)]
        for entity_id in doomed:
            del self._items[entity_id]
        if doomed:
            self._persist()
            logger.info("Purged %d %s(s).", len(doomed), self.kind)
        return len(doomed)


class ListStore(EntityStore):
    model = WishList
    kind = "list"
    storage_key = "list-storage"

    def _stamp(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        user = self.session.user
        return {
            **patch,
            "last_modified": now_utc_iso(),
            "modified_by": user.id if user else None,
        }

    def query_by_user(self, user_id: str) -> List[WishList]:
        user = self.session.user
        if user is not None and user.is_placeholder and user_id != user.id:
            logger.warning(
                "Placeholder session asked for lists of %s; returning none.", user_id
            )
            return []
        return self._query("user_id", user_id)


class WishStore(EntityStore):
    model = Wish
    kind = "wish"
    storage_key = "wish-storage"

    def query(self, list_id: Optional[str]) -> List[Wish]:
        return self._query("list_id", list_id)

    def move_wish(self, wish_id: str, target_list_id: Optional[str]) -> Optional[Wish]:
        return self.update(wish_id, {"list_id": target_list_id})

    def toggle_favorite(self, wish_id: str) -> Optional[Wish]:
        wish = self._items.get(wish_id)
        if wish is None:
            logger.warning("toggle_favorite for unknown wish %s ignored.", wish_id)
            return None
        return self.update(wish_id, {"is_favorite": not wish.is_favorite})

    def favorites(self) -> List[Wish]:
        return [w for w in self._items.values() if w.is_favorite]

    def unassigned(self, known_list_ids: Iterable[str]) -> List[Wish]:
        """Wishes without a list, including those pointing at a list that no longer exists."""
        known = set(known_list_ids)
        return [w for w in self._items.values() if not w.list_id or w.list_id not in known]
