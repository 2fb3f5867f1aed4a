import abc
import types
import typing

import attr
import inflection

from norm.errors import (
    ConfigurationError,
    EntityWithoutIdentity,
    InvalidFieldValueError,
    InvalidSelectorError,
    MissingIdentityError,
    MultiColumnKeyError,
    UndeclaredRelationError,
    UnknownFieldError,
    UnsupportedOperationError,
)
from norm.fields import NULL, STRING, FieldCodec, codec_for_type, is_composite
from norm.foreign_key import ForeignKey
from norm.query import Fields, OrderBy, Query
from norm.registry import Registry
from norm.store import UNIQUE_ID_SEPARATOR


if typing.TYPE_CHECKING:
    from norm.store import Store


T = typing.TypeVar("T")

_UNION_TYPES = tuple(t for t in (typing.Union, getattr(types, "UnionType", None)) if t is not None)


class Identity(typing.Generic[T]):
    @classmethod
    def is_identity(cls, field_type: typing.Type) -> bool:
        return getattr(field_type, "__origin__", None) is cls


def _get_wrapped_type(wrapped_type: typing.Type) -> typing.Type:
    return typing.get_args(wrapped_type)[0]


def _unwrap_optional(field_type: typing.Type) -> typing.Type:
    if typing.get_origin(field_type) in _UNION_TYPES:
        args = [arg for arg in typing.get_args(field_type) if arg is not type(None)]
        if len(args) != 1:
            raise ConfigurationError(f"Unhandled union type - {field_type}")
        return args[0]
    return field_type


@attr.s(auto_attribs=True, frozen=True)
class EntityDescriptor:
    name: str
    database: str
    table_name: str
    id_fields: typing.Tuple[str, ...]
    codecs: typing.Dict[str, FieldCodec] = attr.Factory(dict)

    @property
    def is_composite(self) -> bool:
        return len(self.id_fields) > 1

    @property
    def id_field(self) -> str:
        if self.is_composite:
            raise MultiColumnKeyError(f"{self.name} is identified by multiple fields {list(self.id_fields)}")
        return self.id_fields[0]

    @property
    def numeric_id(self) -> bool:
        return not self.is_composite and self.codec(self.id_field).numeric

    def codec(self, field: str) -> FieldCodec:
        return self.codecs.get(field, STRING)

    def requires_quoting(self, field: str) -> bool:
        return self.codec(field).requires_quoting


class FieldAccessor:
    def __init__(self, name: str) -> None:
        self.name = name

    def __get__(self, instance: typing.Optional["Entity"], owner: typing.Type["Entity"]) -> typing.Any:
        if instance is None:
            return self
        return instance.get_value(self.name)

    def __set__(self, instance: "Entity", value: typing.Any) -> None:
        instance.set_value(self.name, value)


class EntityMeta(abc.ABCMeta):
    def __new__(mcs, name: str, bases: tuple, namespace: dict):
        cls = super().__new__(mcs, name, bases, namespace)
        if not any(isinstance(base, EntityMeta) for base in bases) or namespace.get("__abstract__", False):
            return cls

        registry = getattr(cls, "registry", None)
        if not isinstance(registry, Registry):
            raise ConfigurationError(f"{name} must set registry to an instance of Registry")
        database = getattr(cls, "database", None)
        if not database:
            raise ConfigurationError(f"{name} must name the database it is stored in")

        id_fields, codecs = _parse_fields(cls)
        if not id_fields:
            raise EntityWithoutIdentity(f"{name} declares no Identity field")

        cls.descriptor = EntityDescriptor(
            name=name,
            database=database,
            table_name=namespace.get("table_name") or inflection.underscore(name),
            id_fields=tuple(id_fields),
            codecs=codecs,
        )
        for field_name in codecs:
            setattr(cls, field_name, FieldAccessor(field_name))
        registry.register_entity(cls)
        return cls


def _parse_fields(cls: type) -> typing.Tuple[typing.List[str], typing.Dict[str, FieldCodec]]:
    id_fields: typing.List[str] = []
    codecs: typing.Dict[str, FieldCodec] = {}
    for field_name, field_type in typing.get_type_hints(cls).items():
        if field_name.startswith("_"):
            continue
        if hasattr(Entity, field_name):
            raise ConfigurationError(f"{cls.__name__}.{field_name} shadows an Entity attribute")
        if Identity.is_identity(field_type):
            field_type = _get_wrapped_type(field_type)
            id_fields.append(field_name)
        codecs[field_name] = codec_for_type(_unwrap_optional(field_type))
    return id_fields, codecs


class Entity(metaclass=EntityMeta):
    """One row of a table.

    Values read from the database are kept apart from values changed since the last save,
    so a save only writes what changed. ``NULL`` marks an explicit assignment of None.
    """

    registry = None
    database = None
    descriptor = None

    def __init__(self, properties: typing.Optional[typing.Mapping[str, typing.Any]] = None) -> None:
        self._stored: typing.Dict[str, typing.Any] = dict(properties or {})
        self._pending: typing.Dict[str, typing.Any] = {}
        self._owned_cache: typing.Dict[str, typing.List["Entity"]] = {}
        self._persisted = False
        self._marked_for_deletion = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.get_local_unique_id() or 'new'}>"

    # class level access

    @classmethod
    def store(cls) -> "Store":
        return cls.registry.store(cls)

    @classmethod
    def get(cls, selector: typing.Any) -> typing.Optional["Entity"]:
        return cls.store().get(selector)

    @classmethod
    def get_all(
        cls, selector: typing.Any = None, order_by: OrderBy = None, indexed_by: typing.Optional[str] = None
    ) -> typing.Union[typing.List["Entity"], typing.Dict[typing.Any, "Entity"]]:
        return cls.store().get_all(selector, order_by, indexed_by)

    @classmethod
    def first(cls, selector: typing.Any = None, order_by: OrderBy = None) -> typing.Optional["Entity"]:
        return cls.store().first(selector, order_by)

    @classmethod
    def get_paginated(
        cls,
        selector: typing.Any = None,
        order_by: OrderBy = None,
        max_records: typing.Optional[int] = None,
        offset: typing.Optional[int] = None,
    ) -> typing.List["Entity"]:
        return cls.store().get_paginated(selector, order_by, max_records, offset)

    @classmethod
    def count_all(cls, selector: typing.Any = None) -> int:
        return cls.store().count_all(selector)

    @classmethod
    def query(cls, fields: Fields = None, selector: typing.Any = None, order_by: OrderBy = None) -> Query:
        return Query(cls.descriptor, fields, selector, order_by)

    @classmethod
    def create(cls, **values: typing.Any) -> "Entity":
        entity = cls()
        entity._set_default_values()
        for field, value in values.items():
            entity.set_value(field, value)
        cls.store().add_new(entity)
        return entity

    @classmethod
    def declare_foreign_key(
        cls,
        name: str,
        foreign_columns: typing.Union[str, typing.Sequence[str]],
        primary_entity: typing.Union[str, typing.Type["Entity"]],
        owned: bool = False,
    ) -> ForeignKey:
        return cls.registry.declare_foreign_key(name, cls, foreign_columns, primary_entity, owned)

    @classmethod
    def load_foreign(
        cls,
        relations: typing.Union[str, typing.Sequence[str], typing.Mapping[str, typing.Any]],
        selector: typing.Any = None,
    ) -> None:
        """Eagerly load related rows for every entity matching ``selector``.

        ``relations`` names foreign keys; a mapping's values name keys to load transitively
        from the related type. Owned children are attached to their parents' owned caches.
        """
        if isinstance(relations, str):
            relations = [relations]
        if isinstance(relations, typing.Mapping):
            items = list(relations.items())
        else:
            items = [(key_name, None) for key_name in relations]

        for key_name, nested in items:
            foreign_key = cls.registry.foreign_key(key_name)
            if foreign_key.owned and issubclass(cls, foreign_key.primary_entity):
                cls._load_owned_children(foreign_key, selector, nested)
            elif issubclass(cls, foreign_key.foreign_entity):
                cls._load_primaries(foreign_key, selector, nested)
            else:
                raise UndeclaredRelationError(
                    f"{key_name} is not an owned or foreign relation of {cls.descriptor.name}"
                )

    @classmethod
    def _load_owned_children(cls, foreign_key: ForeignKey, selector: typing.Any, nested: typing.Any) -> None:
        primary_column, foreign_column = foreign_key.primary_column, foreign_key.foreign_column
        child_cls = foreign_key.foreign_entity
        parents_query = Query(cls.descriptor, [primary_column], selector)

        for parent in cls.store().get_all(selector):
            parent._owned_cache.setdefault(foreign_key.name, [])
        for child in child_cls.store().get_all({foreign_column: parents_query}):
            parent_id = child.get_value(foreign_column)
            parent = cls.get(parent_id) if parent_id is not None else None
            if parent is not None:
                parent._attach_owned(foreign_key.name, child)

        if nested:
            child_cls.load_foreign(nested, {foreign_column: parents_query})

    @classmethod
    def _load_primaries(cls, foreign_key: ForeignKey, selector: typing.Any, nested: typing.Any) -> None:
        primary_column, foreign_column = foreign_key.primary_column, foreign_key.foreign_column
        primary_cls = foreign_key.primary_entity
        children_query = Query(cls.descriptor, [foreign_column], selector)

        parents = primary_cls.store().get_all({primary_column: children_query})
        if foreign_key.owned:
            for parent in parents:
                parent._owned_cache.setdefault(foreign_key.name, [])
            for child in cls.store().get_all({foreign_column: children_query}):
                parent_id = child.get_value(foreign_column)
                parent = primary_cls.get(parent_id) if parent_id is not None else None
                if parent is not None:
                    parent._attach_owned(foreign_key.name, child)

        if nested:
            primary_cls.load_foreign(nested, {primary_column: children_query})

    @classmethod
    def _from_row(cls, row: typing.Mapping[str, typing.Any]) -> "Entity":
        entity = cls(row)
        entity._persisted = True
        return entity

    def _set_default_values(self) -> None:
        pass

    # field access

    def get_value(self, field: str) -> typing.Any:
        if field in self._pending:
            value = self._pending[field]
        else:
            value = self._stored.get(field)
        return self.descriptor.codec(field).convert_from_database(value)

    def set_value(self, field: str, value: typing.Any) -> None:
        if is_composite(value):
            raise InvalidFieldValueError(
                f"{self.descriptor.name}.{field} cannot be set to a composite value {value!r}"
            )
        if field not in self.descriptor.codecs:
            raise UnknownFieldError(f"{self.descriptor.name} has no field {field}")
        codec = self.descriptor.codec(field)
        new_value = NULL if value is None else codec.convert_to_database(value)
        if field in self._stored and self._same_value(codec, self._stored[field], new_value):
            self._pending.pop(field, None)
        else:
            self._pending[field] = new_value

    @staticmethod
    def _same_value(codec: FieldCodec, stored: typing.Any, new: typing.Any) -> bool:
        stored_missing = stored is None or stored is NULL
        new_missing = new is None or new is NULL
        if stored_missing or new_missing:
            return stored_missing and new_missing
        return codec.convert_from_database(stored) == codec.convert_from_database(new)

    def get_present_fields(self) -> typing.List[str]:
        present = [field for field in self.descriptor.codecs if field in self._stored or field in self._pending]
        present.extend(field for field in self._stored if field not in self.descriptor.codecs)
        return present

    def is_dirty(self) -> bool:
        return bool(self._pending)

    def get_dirty_fields(self) -> typing.Dict[str, typing.Any]:
        return {field: None if value is NULL else value for field, value in self._pending.items()}

    def clear_dirty(self) -> None:
        self._stored.update(self.get_dirty_fields())
        self._pending = {}

    # identity

    def get_id(self) -> typing.Any:
        if not self.descriptor.is_composite:
            return self.get_value(self.descriptor.id_field)
        id_values = {}
        for field in self.descriptor.id_fields:
            value = self.get_value(field)
            if value is not None:
                id_values[field] = value
        return id_values

    def set_id(self, value: typing.Any) -> None:
        if self.descriptor.is_composite:
            raise UnsupportedOperationError(
                f"{self.descriptor.name} has a composite key {list(self.descriptor.id_fields)}; "
                "set its fields individually"
            )
        field = self.descriptor.id_field
        self._stored[field] = self.descriptor.codec(field).convert_to_database(value)
        self._pending.pop(field, None)

    def get_stored_id(self) -> typing.Dict[str, typing.Any]:
        """Identity as last synced with the database, falling back to pending values for new rows."""
        id_values = {}
        for field in self.descriptor.id_fields:
            value = self._stored[field] if field in self._stored else self._pending.get(field)
            id_values[field] = None if value is NULL else value
        return id_values

    def get_local_unique_id(self) -> typing.Optional[str]:
        return self._local_id_from([self.get_value(field) for field in self.descriptor.id_fields])

    def get_stored_local_unique_id(self) -> typing.Optional[str]:
        stored = self.get_stored_id()
        return self._local_id_from(
            [self.descriptor.codec(field).convert_from_database(stored[field]) for field in self.descriptor.id_fields]
        )

    def get_global_unique_id(self) -> typing.Optional[str]:
        local_id = self.get_local_unique_id()
        if local_id is None:
            return None
        return f"{self.descriptor.name}:{local_id}"

    @staticmethod
    def _local_id_from(values: typing.List[typing.Any]) -> typing.Optional[str]:
        if any(value is None or value == "" for value in values):
            return None
        return UNIQUE_ID_SEPARATOR.join(str(value) for value in values)

    # persistence

    @property
    def is_persisted(self) -> bool:
        return self._persisted

    @property
    def is_marked_for_deletion(self) -> bool:
        return self._marked_for_deletion

    def mark_for_deletion(self) -> None:
        self._marked_for_deletion = True

    def save(self) -> bool:
        if self._marked_for_deletion:
            return self.delete()
        written = False
        if self.is_dirty():
            written = self.store().save(self)
            self.clear_dirty()
        self._save_owned()
        return written

    def _save_owned(self) -> None:
        for key_name, children in list(self._owned_cache.items()):
            foreign_key = self.registry.foreign_key(key_name)
            for child in list(children):
                if child.is_marked_for_deletion:
                    child.delete()
                    children.remove(child)
                    continue
                self._stamp(foreign_key, child)
                child.save()

    def _stamp(self, foreign_key: ForeignKey, child: "Entity") -> None:
        for primary_column, foreign_column in foreign_key.column_pairs():
            child.set_value(foreign_column, self.get_value(primary_column))

    def delete(self) -> bool:
        for children in self._owned_cache.values():
            for child in list(children):
                child.delete()
                children.remove(child)
        if self._persisted:
            deleted = self.store().delete(self)
        else:
            self.store().forget(self)
            deleted = False
        self._owned_cache = {}
        self._marked_for_deletion = True
        return deleted

    def refresh(self, cascade: bool = True) -> bool:
        if self.get_stored_local_unique_id() is None:
            raise MissingIdentityError(f"cannot refresh {self!r}: it has no identity")
        store = self.store()
        row = store.fetch_row(self)
        if row is None:
            self.mark_for_deletion()
            store.evict(self)
            return False
        self._stored = dict(row)
        self._pending = {}
        self._persisted = True
        if cascade:
            for children in self._owned_cache.values():
                for child in list(children):
                    if child.is_persisted:
                        child.refresh(cascade)
        return True

    # owned relationships

    def _owned_key(self, key_name: str) -> ForeignKey:
        foreign_key = self.registry.foreign_key(key_name)
        if not foreign_key.owned or not isinstance(self, foreign_key.primary_entity):
            raise UndeclaredRelationError(f"{key_name} is not an owned relation of {self.descriptor.name}")
        return foreign_key

    def _load_owned(self, key_name: str) -> typing.List["Entity"]:
        if key_name not in self._owned_cache:
            foreign_key = self._owned_key(key_name)
            children = []
            if self.get_local_unique_id() is not None:
                selector = {
                    foreign_column: self.get_value(primary_column)
                    for primary_column, foreign_column in foreign_key.column_pairs()
                }
                children = foreign_key.foreign_entity.store().get_all(selector)
            self._owned_cache[key_name] = list(children)
        return self._owned_cache[key_name]

    def _attach_owned(self, key_name: str, child: "Entity") -> None:
        children = self._owned_cache.setdefault(key_name, [])
        if not any(existing is child for existing in children):
            children.append(child)

    def get_owned_instances(self, key_name: str) -> typing.List["Entity"]:
        return [child for child in self._load_owned(key_name) if not child.is_marked_for_deletion]

    def get_owned_instance(self, key_name: str, selector: typing.Any) -> typing.Optional["Entity"]:
        # linear scan, owned collections are expected to stay small
        for child in self.get_owned_instances(key_name):
            if child._matches(selector):
                return child
        return None

    def _matches(self, selector: typing.Any) -> bool:
        if isinstance(selector, typing.Mapping):
            for field, expected in selector.items():
                value = self.get_value(field)
                if isinstance(expected, (list, tuple)):
                    if value not in expected:
                        return False
                elif isinstance(expected, typing.Mapping) or isinstance(expected, Query):
                    raise InvalidSelectorError(f"cached {self.descriptor.name} rows only match plain values")
                elif value != expected:
                    return False
            return True
        return self.get_local_unique_id() == str(selector)

    def add_owned_instance(self, key_name: str, child: "Entity") -> "Entity":
        foreign_key = self._owned_key(key_name)
        if not isinstance(child, foreign_key.foreign_entity):
            raise UndeclaredRelationError(
                f"{key_name} owns {foreign_key.foreign_entity.__name__} entities, not {type(child).__name__}"
            )
        children = self._load_owned(key_name)
        if self.get_local_unique_id() is not None:
            self._stamp(foreign_key, child)
        if not any(existing is child for existing in children):
            children.append(child)
        return child

    def cache_owned_instances(self, key_name: str, children: typing.Iterable["Entity"]) -> None:
        """Replaces the owned cache for ``key_name`` without reading the database."""
        foreign_key = self._owned_key(key_name)
        children = list(children)
        for child in children:
            if not isinstance(child, foreign_key.foreign_entity):
                raise UndeclaredRelationError(
                    f"{key_name} owns {foreign_key.foreign_entity.__name__} entities, not {type(child).__name__}"
                )
            if self.get_local_unique_id() is not None:
                self._stamp(foreign_key, child)
        self._owned_cache[key_name] = children

    def get_cached_owned_instances(self) -> typing.Dict[str, typing.List["Entity"]]:
        return {
            key_name: [child for child in children if not child.is_marked_for_deletion]
            for key_name, children in self._owned_cache.items()
        }

    def remove_owned_instance(self, key_name: str, child: "Entity") -> None:
        self._owned_key(key_name)
        child.delete()
        self.uncache_owned_instance(key_name, child)

    def uncache_owned_instance(self, key_name: str, child: "Entity") -> None:
        self._owned_key(key_name)
        children = self._owned_cache.get(key_name, [])
        self._owned_cache[key_name] = [existing for existing in children if existing is not child]
