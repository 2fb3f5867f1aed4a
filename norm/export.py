"""Conversion of entity graphs to and from plain nested mappings and JSON.

The exported shape is::

    {"type": "Animal", "id": 3, "fields": {...}, "children": {"<foreign key>": [...]}}

Children are taken from the owned caches only; nothing is read from the database.
"""
import json
import typing

from norm.entity import Entity
from norm.errors import ValidationError


def to_dict(entity: Entity) -> typing.Dict[str, typing.Any]:
    return {
        "type": entity.descriptor.name,
        "id": entity.get_id(),
        "fields": {field: entity.get_value(field) for field in entity.get_present_fields()},
        "children": {
            key_name: [to_dict(child) for child in children]
            for key_name, children in entity.get_cached_owned_instances().items()
        },
    }


def from_dict(entity_cls: typing.Type[Entity], data: typing.Mapping[str, typing.Any]) -> Entity:
    entity_type = data.get("type")
    if entity_type is not None and entity_type != entity_cls.descriptor.name:
        raise ValidationError(f"cannot import {entity_type} data as {entity_cls.descriptor.name}")

    fields = {
        field: value for field, value in data.get("fields", {}).items() if field in entity_cls.descriptor.codecs
    }
    entity = entity_cls.create(**fields)

    for key_name, children_data in data.get("children", {}).items():
        foreign_key = entity_cls.registry.foreign_key(key_name)
        children = [from_dict(foreign_key.foreign_entity, child_data) for child_data in children_data]
        entity.cache_owned_instances(key_name, children)
    return entity


def dumps(entity: Entity, **kwargs: typing.Any) -> str:
    kwargs.setdefault("default", str)
    return json.dumps(to_dict(entity), **kwargs)


def loads(entity_cls: typing.Type[Entity], text: str) -> Entity:
    return from_dict(entity_cls, json.loads(text))
