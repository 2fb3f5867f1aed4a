import logging
import typing

from norm.connection import Connection
from norm.errors import (
    AlreadyPersistedError,
    AmbiguousResultError,
    ConcurrentModificationError,
    MissingIdentityError,
)
from norm.query import OrderBy, Query, is_scalar_selector


if typing.TYPE_CHECKING:
    from norm.entity import Entity


logger = logging.getLogger(__name__)

UNIQUE_ID_SEPARATOR = "-"

Entities = typing.Union[typing.List["Entity"], typing.Dict[typing.Any, "Entity"]]


class Store:
    """Queries, caches and persists the entities of one type.

    Every row fetched or saved is kept in an identity map keyed by its local unique id, so a
    row is represented by at most one live entity. Once every row has been loaded, unfiltered
    reads are answered from that map.

    A store is not thread safe; use one per unit of work.
    """

    def __init__(self, entity_cls: typing.Type["Entity"], connection: Connection) -> None:
        self._entity_cls = entity_cls
        self._descriptor = entity_cls.descriptor
        self._connection = connection
        self._identity_map: typing.Dict[str, "Entity"] = {}
        self._new_entities: typing.List["Entity"] = []
        self._fully_loaded = False
        self.connect()

    @property
    def connection(self) -> Connection:
        return self._connection

    def connect(self) -> None:
        self._connection.connect()

    def disconnect(self) -> None:
        self._connection.disconnect()

    def begin_transaction(self) -> None:
        self._connection.begin_transaction()

    def commit(self) -> None:
        self._connection.commit()

    def rollback(self) -> None:
        self._connection.rollback()

    # reading

    def get(self, selector: typing.Any) -> typing.Optional["Entity"]:
        local_id = self._local_id_of(selector)
        if local_id is not None and local_id in self._identity_map:
            logger.debug("%s %s served from the identity map", self._descriptor.name, local_id)
            return self._identity_map[local_id]

        entities = self._query(selector)
        if len(entities) > 1:
            raise AmbiguousResultError(
                f"get on {self._descriptor.name} with selector {selector!r} returned {len(entities)} records"
            )
        return entities[0] if entities else None

    def get_all(
        self, selector: typing.Any = None, order_by: OrderBy = None, indexed_by: typing.Optional[str] = None
    ) -> Entities:
        if selector is None and order_by is None and self._fully_loaded:
            logger.debug("All %s rows served from the identity map", self._descriptor.name)
            entities = list(self._identity_map.values())
            entities.extend(entity for entity in self._new_entities if not entity.is_marked_for_deletion)
        else:
            entities = self._query(selector, order_by)
            if selector is None:
                self._fully_loaded = True
        return self._index(entities, indexed_by)

    def first(self, selector: typing.Any = None, order_by: OrderBy = None) -> typing.Optional["Entity"]:
        entities = self._query(selector, order_by, max_records=1)
        return entities[0] if entities else None

    def get_paginated(
        self,
        selector: typing.Any = None,
        order_by: OrderBy = None,
        max_records: typing.Optional[int] = None,
        offset: typing.Optional[int] = None,
    ) -> typing.List["Entity"]:
        return self._query(selector, order_by, max_records, offset)

    def count_all(self, selector: typing.Any = None) -> int:
        sql = Query(self._descriptor, {"row_count": "COUNT(*)"}, selector).generate_sql(self._connection)
        result = self._connection.query(sql)
        try:
            row = self._connection.fetch_row(result)
        finally:
            self._connection.free_result(result)
        return int(row["row_count"]) if row else 0

    def fetch_row(self, entity: "Entity") -> typing.Optional[typing.Dict[str, typing.Any]]:
        """Reads the row behind ``entity`` without touching the identity map."""
        sql = Query(self._descriptor, None, entity.get_stored_id()).generate_sql(self._connection)
        result = self._connection.query(sql)
        try:
            rows = []
            row = self._connection.fetch_row(result)
            while row is not None:
                rows.append(row)
                row = self._connection.fetch_row(result)
        finally:
            self._connection.free_result(result)
        if len(rows) > 1:
            raise AmbiguousResultError(f"{entity.get_global_unique_id()} matches {len(rows)} records: {sql}")
        return rows[0] if rows else None

    # cache control

    def cache(self, selector: typing.Any = None, indexed_by: typing.Optional[str] = None) -> Entities:
        entities = self._query(selector)
        if selector is None:
            self._fully_loaded = True
        return self._index(entities, indexed_by)

    def clear_cache(self) -> None:
        self._identity_map = {}
        self._fully_loaded = False

    def cached(self, local_id: str) -> typing.Optional["Entity"]:
        return self._identity_map.get(local_id)

    def add_new(self, entity: "Entity") -> None:
        if not any(existing is entity for existing in self._new_entities):
            self._new_entities.append(entity)

    def forget(self, entity: "Entity") -> None:
        self._new_entities = [existing for existing in self._new_entities if existing is not entity]

    def evict(self, entity: "Entity") -> None:
        for local_id in (entity.get_stored_local_unique_id(), entity.get_local_unique_id()):
            if local_id is not None and self._identity_map.get(local_id) is entity:
                del self._identity_map[local_id]

    # writing

    def save(self, entity: "Entity") -> bool:
        if entity.is_persisted:
            return self._update(entity)
        return self._insert(entity)

    def _update(self, entity: "Entity") -> bool:
        fields = entity.get_dirty_fields()
        if not fields:
            return False
        previous_id = entity.get_stored_local_unique_id()
        rows = self._connection.update(self._descriptor, fields, entity.get_stored_id())
        if rows > 1:
            raise ConcurrentModificationError(
                f"{rows} rows of {self._descriptor.table_name} were affected updating {entity.get_global_unique_id()}"
            )
        current_id = entity.get_local_unique_id()
        if current_id != previous_id:
            self._identity_map.pop(previous_id, None)
            if current_id is not None:
                self._identity_map[current_id] = entity
        return rows == 1

    def _insert(self, entity: "Entity") -> bool:
        local_id = entity.get_local_unique_id()
        if entity.is_persisted or (local_id is not None and local_id in self._identity_map):
            raise AlreadyPersistedError(f"cannot insert {self._descriptor.name} {local_id}: it is already persisted")

        generated = self._connection.insert(self._descriptor, entity.get_dirty_fields())
        if generated is not True and not self._descriptor.is_composite and entity.get_id() is None:
            entity.set_id(generated)
        entity._persisted = True
        self.forget(entity)

        local_id = entity.get_local_unique_id()
        if local_id is None:
            logger.warning("Inserted %s has no identity and will not be tracked", self._descriptor.name)
        else:
            self._identity_map[local_id] = entity
        return True

    def delete(self, entity: "Entity") -> bool:
        local_id = entity.get_stored_local_unique_id()
        if local_id is None:
            raise MissingIdentityError(f"cannot delete {self._descriptor.name} without an identity")
        rows = self._connection.delete(self._descriptor, entity.get_stored_id())
        self.evict(entity)
        if rows > 1:
            raise ConcurrentModificationError(
                f"{rows} rows of {self._descriptor.table_name} were affected deleting {self._descriptor.name}:{local_id}"
            )
        entity._persisted = False
        entity.mark_for_deletion()
        return rows == 1

    def save_all(self) -> int:
        written = 0
        for entity in list(self._identity_map.values()) + list(self._new_entities):
            if entity.save():
                written += 1
        return written

    def refresh_all(self) -> None:
        for entity in list(self._identity_map.values()):
            entity.refresh(cascade=False)

    # helpers

    def _query(
        self,
        selector: typing.Any,
        order_by: OrderBy = None,
        max_records: typing.Optional[int] = None,
        offset: typing.Optional[int] = None,
    ) -> typing.List["Entity"]:
        sql = Query(self._descriptor, None, selector, order_by, max_records, offset).generate_sql(self._connection)
        return self._materialize(self._connection.query(sql))

    def _materialize(self, result: typing.Any) -> typing.List["Entity"]:
        entities = []
        try:
            row = self._connection.fetch_row(result)
            while row is not None:
                entities.append(self._track(row))
                row = self._connection.fetch_row(result)
        finally:
            self._connection.free_result(result)
        return entities

    def _track(self, row: typing.Dict[str, typing.Any]) -> "Entity":
        entity = self._entity_cls._from_row(row)
        local_id = entity.get_local_unique_id()
        if local_id is None:
            raise MissingIdentityError(
                f"row of {self._descriptor.table_name} has no value for {list(self._descriptor.id_fields)}: {row!r}"
            )
        cached = self._identity_map.get(local_id)
        if cached is not None:
            return cached
        self._identity_map[local_id] = entity
        return entity

    def _index(self, entities: typing.List["Entity"], indexed_by: typing.Optional[str]) -> Entities:
        if indexed_by is None:
            return entities
        return {entity.get_value(indexed_by): entity for entity in entities}

    def _local_id_of(self, selector: typing.Any) -> typing.Optional[str]:
        if is_scalar_selector(selector):
            if self._descriptor.is_composite:
                return None
            return str(selector)
        if isinstance(selector, dict) and set(selector) == set(self._descriptor.id_fields):
            values = [selector[field] for field in self._descriptor.id_fields]
            if all(is_scalar_selector(value) for value in values):
                return UNIQUE_ID_SEPARATOR.join(str(value) for value in values)
        return None
