from norm.connection import Connection, ConnectionConfig
from norm.entity import Entity, EntityDescriptor, Identity
from norm.fields import BIT, DATE, DATETIME, NULL, NUMERIC, STRING, FieldCodec
from norm.foreign_key import ForeignKey
from norm.query import Query, between, compare
from norm.registry import Registry
from norm.store import Store
