from typing import Generator, List

import pytest
from _pytest.config.argparsing import Parser
from _pytest.fixtures import SubRequest
from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine
from sqlalchemy.engine import CursorResult, Engine
from sqlalchemy.pool import StaticPool

from norm.backends.sqlalchemy import LimitOffsetConnection
from norm.registry import Registry
from norm.tests.models import AnimalModels, define_animal_models


def pytest_addoption(parser: Parser) -> None:
    parser.addoption("--norm-database-url", action="store", default="sqlite://")


metadata = MetaData()

Table(
    "animal",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(64)),
    Column("legs", Integer),
    Column("sound", String(64)),
    Column("description", String(255)),
    Column("tame", Integer),
    Column("born_on", String(19)),
)
Table(
    "animal_inventory",
    metadata,
    Column("animal_id", Integer, primary_key=True, autoincrement=False),
    Column("qoh", Integer),
    Column("last_into_stock", String(19)),
)
Table(
    "animal_property_type",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(64)),
)
Table(
    "animal_property",
    metadata,
    Column("animal_id", Integer, primary_key=True, autoincrement=False),
    Column("property_type_id", Integer, primary_key=True, autoincrement=False),
    Column("set_on_date", String(19)),
    Column("comment", String(255)),
)
# no primary key, one id may match several rows
Table("duplicated_row", metadata, Column("id", Integer), Column("label", String(64)))


class RecordingConnection(LimitOffsetConnection):
    def __init__(self, engine: Engine) -> None:
        super().__init__(engine)
        self.statements: List[str] = []

    def _run(self, sql: str) -> CursorResult:
        self.statements.append(sql)
        return super()._run(sql)


@pytest.fixture()
def engine(request: SubRequest) -> Engine:
    connection_url = request.config.getoption("--norm-database-url")
    if connection_url.startswith("sqlite"):
        return create_engine(connection_url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    return create_engine(connection_url)


@pytest.fixture()
def schema(engine: Engine) -> Generator[MetaData, None, None]:
    metadata.drop_all(engine)
    metadata.create_all(engine)
    yield metadata
    metadata.drop_all(engine)


@pytest.fixture()
def connection(engine: Engine, schema: MetaData) -> Generator[RecordingConnection, None, None]:
    connection = RecordingConnection(engine)
    connection.connect()
    yield connection
    connection.disconnect()


@pytest.fixture()
def registry(connection: RecordingConnection) -> Registry:
    registry = Registry()
    registry.register_connection("norm", connection)
    return registry


@pytest.fixture()
def models(registry: Registry) -> AnimalModels:
    return define_animal_models(registry)


@pytest.fixture()
def animals(models: AnimalModels, connection: RecordingConnection) -> AnimalModels:
    for sql in (
        "INSERT INTO animal(id, name, legs, sound, tame) VALUES (1, 'cat', 4, 'meow', 1)",
        "INSERT INTO animal(id, name, legs, sound, tame) VALUES (2, 'bird', 2, 'tweet', 0)",
        "INSERT INTO animal(id, name, legs, sound, tame) VALUES (3, 'snake', 0, 'hiss', 0)",
        "INSERT INTO animal(id, name, legs, sound, tame) VALUES (4, 'dog', 4, 'woof', 1)",
        "INSERT INTO animal_property_type(id, name) VALUES (1, 'color')",
        "INSERT INTO animal_property_type(id, name) VALUES (2, 'size')",
        "INSERT INTO animal_property_type(id, name) VALUES (3, 'mood')",
        "INSERT INTO animal_property(animal_id, property_type_id, comment) VALUES (1, 1, 'black')",
        "INSERT INTO animal_property(animal_id, property_type_id, comment) VALUES (1, 2, 'small')",
        "INSERT INTO animal_property(animal_id, property_type_id, comment) VALUES (2, 1, 'blue')",
        "INSERT INTO animal_inventory(animal_id, qoh) VALUES (1, 3)",
    ):
        connection.execute(sql)
    connection.statements.clear()
    return models
