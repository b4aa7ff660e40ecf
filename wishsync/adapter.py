# wishsync/adapter.py
from typing import Any, Dict, List, Type

from .errors import RemoteWriteError
from .logger import get_logger
from .models import Entity

logger = get_logger(__name__)


class RemoteSyncAdapter:
    """
    Translates entity-store operations into row operations on one remote table.
    """

    def __init__(self, client, table: str, model: Type[Entity]):
        self.client = client
        self.table = table
        self.model = model

    def insert(self, entity: Entity) -> Entity:
        row = entity.to_row(exclude=self.model.SERVER_FIELDS)
        logger.debug("Inserting into %s: %s", self.table, row)
        data = self.client.insert(self.table, row)
        if not data:
            # Row-level policies can accept an insert yet hide the row
            raise RemoteWriteError(
                f"No data returned after creating a row in '{self.table}'; check access policies."
            )
        return self.model.from_row(data)

    def update(self, entity_id: str, fields: Dict[str, Any]) -> None:
        self.client.update(self.table, self.model.row_from_fields(fields), id=entity_id)

    def delete(self, entity_id: str) -> None:
        self.client.delete(self.table, id=entity_id)

    def select(self, **filters) -> List[Entity]:
        """Select entities by attribute equality, e.g. ``select(list_id="l1")``."""
        rows = self.client.select(self.table, **self.model.row_from_fields(filters))
        return [self.model.from_row(row) for row in rows]
