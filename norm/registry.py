import typing

import attr

from norm.backends.sqlalchemy import create_connection
from norm.connection import Connection, ConnectionConfig
from norm.errors import (
    DuplicateConnectionError,
    DuplicateEntityError,
    DuplicateKeyError,
    InvalidForeignKeyError,
    UnknownConnectionError,
    UnknownEntityError,
    UnknownFieldError,
    UnknownKeyError,
)
from norm.foreign_key import ForeignKey
from norm.store import Store


@attr.s(auto_attribs=True)
class Registry:
    """Connections, entity types, foreign keys and stores of one application.

    Declarations happen once at start-up; stores are created lazily, one per entity type.
    """

    connections: typing.Dict[str, Connection] = attr.Factory(dict)
    entities: typing.Dict[str, typing.Type] = attr.Factory(dict)
    foreign_keys: typing.Dict[str, ForeignKey] = attr.Factory(dict)
    owned_keys: typing.Dict[str, typing.List[str]] = attr.Factory(dict)
    stores: typing.Dict[str, Store] = attr.Factory(dict)

    def configure(self, databases: typing.Mapping[str, typing.Mapping[str, typing.Any]]) -> None:
        for name, options in databases.items():
            self.register_connection(name, create_connection(ConnectionConfig.from_mapping(options)))

    def register_connection(self, name: str, connection: Connection) -> None:
        if name in self.connections:
            raise DuplicateConnectionError(f"Connection {name} is already registered")
        self.connections[name] = connection

    def connection(self, name: str) -> Connection:
        try:
            return self.connections[name]
        except KeyError:
            raise UnknownConnectionError(f"Connection {name} was not registered")

    def register_entity(self, entity_cls: typing.Type) -> None:
        name = entity_cls.descriptor.name
        if name in self.entities:
            raise DuplicateEntityError(f"Entity {name} is already registered")
        self.entities[name] = entity_cls

    def entity(self, name: str) -> typing.Type:
        try:
            return self.entities[name]
        except KeyError:
            raise UnknownEntityError(f"Entity {name} was not registered")

    def declare_foreign_key(
        self,
        name: str,
        foreign_entity: typing.Type,
        foreign_columns: typing.Union[str, typing.Sequence[str]],
        primary_entity: typing.Union[str, typing.Type],
        owned: bool = False,
    ) -> ForeignKey:
        if not isinstance(name, str):
            raise InvalidForeignKeyError(f"Foreign key name must be a string, got {name!r}")
        if name in self.foreign_keys:
            raise DuplicateKeyError(f"Foreign key {name} is already declared")
        if isinstance(primary_entity, str):
            primary_entity = self.entity(primary_entity)
        if isinstance(foreign_columns, str):
            foreign_columns = (foreign_columns,)
        foreign_columns = tuple(foreign_columns)

        primary_columns = primary_entity.descriptor.id_fields
        if len(primary_columns) != len(foreign_columns):
            raise InvalidForeignKeyError(
                f"Foreign key {name} maps {list(foreign_columns)} of {foreign_entity.descriptor.name} "
                f"onto {list(primary_columns)} of {primary_entity.descriptor.name}"
            )
        for column in foreign_columns:
            if column not in foreign_entity.descriptor.codecs:
                raise UnknownFieldError(f"Foreign key {name}: {foreign_entity.descriptor.name} has no field {column}")

        foreign_key = ForeignKey(name, primary_entity, primary_columns, foreign_entity, foreign_columns, owned)
        self.foreign_keys[name] = foreign_key
        if owned:
            self.owned_keys.setdefault(primary_entity.descriptor.name, []).append(name)
        return foreign_key

    def foreign_key(self, name: str) -> ForeignKey:
        if not isinstance(name, str) or name not in self.foreign_keys:
            raise UnknownKeyError(f"Foreign key {name!r} was not declared")
        return self.foreign_keys[name]

    def owned_key_names(self, entity_cls: typing.Type) -> typing.List[str]:
        return list(self.owned_keys.get(entity_cls.descriptor.name, []))

    def store(self, entity_cls: typing.Type) -> Store:
        name = entity_cls.descriptor.name
        if name not in self.stores:
            self.stores[name] = Store(entity_cls, self.connection(entity_cls.descriptor.database))
        return self.stores[name]

    def clear_caches(self) -> None:
        for store in self.stores.values():
            store.clear_cache()

    def disconnect(self) -> None:
        for connection in self.connections.values():
            connection.disconnect()
