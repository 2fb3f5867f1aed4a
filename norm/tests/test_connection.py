import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

from norm import NULL, ConnectionConfig, Registry
from norm.backends.sqlalchemy import LimitOffsetConnection, TopConnection, create_connection
from norm.backends.sqlalchemy.dialects import drivers
from norm.errors import (
    BackendError,
    ConfigurationError,
    ConversionError,
    DuplicateConnectionError,
    UnknownConnectionError,
)


def count_rows(connection, table: str) -> int:
    result = connection.query(f"SELECT COUNT(*) AS total FROM {table}")
    try:
        return connection.fetch_row(result)["total"]
    finally:
        connection.free_result(result)


def test_quote(connection):
    assert connection.quote("it's") == "'it''s'"
    assert connection.quote(5) == "'5'"
    assert connection.quote(5, requires_quoting=False) == "5"
    assert connection.quote(" 2.50 ", requires_quoting=False) == "2.50"
    assert connection.quote(None) == "null"
    assert connection.quote(NULL, requires_quoting=False) == "null"
    assert connection.quote("", requires_quoting=False) == "null"
    assert connection.quote(True) == "1"
    assert connection.quote(False, requires_quoting=False) == "0"


def test_quote_rejects_unsafe_values(connection):
    with pytest.raises(ConversionError):
        connection.quote("1; DROP TABLE animal", requires_quoting=False)
    with pytest.raises(ConversionError):
        connection.quote([1, 2])


def test_insert_update_delete(connection, models):
    descriptor = models.animal.descriptor

    generated = connection.insert(descriptor, {"name": "cat", "legs": 4})
    assert generated == 1
    assert connection.statements[-1] == "INSERT INTO animal(name,legs) VALUES ('cat',4);"

    assert connection.update(descriptor, {"sound": "meow", "legs": None}, {"id": 1}) == 1
    assert connection.statements[-1] == "UPDATE animal SET sound = 'meow', legs = null WHERE id = 1;"

    assert connection.update(descriptor, {}, {"id": 1}) == 0
    assert connection.delete(descriptor, {"id": 1}) == 1
    assert connection.statements[-1] == "DELETE FROM animal WHERE id = 1;"
    assert count_rows(connection, "animal") == 0


def test_insert_without_fields(connection, models):
    assert connection.insert(models.animal.descriptor, {}) == 1
    assert connection.statements[-1] == "INSERT INTO animal DEFAULT VALUES;"


def test_composite_match(connection, models):
    connection.execute("INSERT INTO animal_property(animal_id, property_type_id) VALUES (3, 7)")

    rows = connection.delete(models.property.descriptor, {"animal_id": 3, "property_type_id": 7})

    assert rows == 1
    assert connection.statements[-1] == "DELETE FROM animal_property WHERE animal_id = 3 AND property_type_id = 7;"


def test_query_and_fetch_row(connection):
    connection.execute("INSERT INTO animal(id, name) VALUES (1, 'cat')")

    result = connection.query("SELECT id, name FROM animal")
    assert connection.fetch_row(result) == {"id": 1, "name": "cat"}
    assert connection.fetch_row(result) is None
    connection.free_result(result)


def test_query_without_resultset(connection):
    with pytest.raises(BackendError) as error:
        connection.query("DELETE FROM animal")

    assert error.value.sql == "DELETE FROM animal"


def test_backend_error_carries_statement(connection):
    with pytest.raises(BackendError) as error:
        connection.execute("SELECT * FROM no_such_table")

    assert error.value.sql == "SELECT * FROM no_such_table"
    assert str(error.value).endswith(": SELECT * FROM no_such_table")


def test_disconnected(connection):
    connection.disconnect()

    assert not connection.connected
    assert not connection.ping()
    with pytest.raises(BackendError, match="not connected"):
        connection.query("SELECT 1")

    connection.connect()
    assert connection.ping()


def test_rollback(connection):
    connection.begin_transaction()
    connection.execute("INSERT INTO animal(id, name) VALUES (1, 'cat')")
    connection.rollback()

    assert count_rows(connection, "animal") == 0


def test_commit(connection):
    connection.begin_transaction()
    connection.execute("INSERT INTO animal(id, name) VALUES (1, 'cat')")
    connection.commit()
    connection.begin_transaction()
    connection.rollback()

    assert count_rows(connection, "animal") == 1


def test_statements_commit_outside_of_transactions(connection):
    connection.execute("INSERT INTO animal(id, name) VALUES (1, 'cat')")
    connection.begin_transaction()
    connection.rollback()

    assert count_rows(connection, "animal") == 1


def test_connection_config_from_mapping():
    config = ConnectionConfig.from_mapping({"type": "mysql", "host": "db", "port": "3306", "catalog": "zoo"})

    assert config == ConnectionConfig(type="mysql", host="db", port=3306, catalog="zoo")
    with pytest.raises(ConfigurationError):
        ConnectionConfig.from_mapping({"host": "db"})
    with pytest.raises(ConfigurationError):
        ConnectionConfig.from_mapping({"type": "mysql", "hostname": "db"})


def test_create_connection(tmp_path):
    catalog = str(tmp_path / "zoo.db")
    unpooled = create_connection(ConnectionConfig(type="sqlite", catalog=catalog))
    pooled = create_connection(ConnectionConfig(type="sqlite", url="sqlite://", pooling=True))

    assert isinstance(unpooled, LimitOffsetConnection)
    assert unpooled.engine.url.database == catalog
    assert isinstance(unpooled.engine.pool, NullPool)
    assert not isinstance(pooled.engine.pool, NullPool)
    assert drivers["mssql"] == ("mssql+pyodbc", TopConnection)
    with pytest.raises(ConfigurationError):
        create_connection(ConnectionConfig(type="oracle"))


def test_registry_configure():
    registry = Registry()
    registry.configure({"norm": {"type": "sqlite", "url": "sqlite://"}})

    assert isinstance(registry.connection("norm"), LimitOffsetConnection)
    with pytest.raises(UnknownConnectionError):
        registry.connection("other")
    with pytest.raises(DuplicateConnectionError):
        registry.register_connection("norm", LimitOffsetConnection(create_engine("sqlite://")))


@pytest.mark.parametrize("value", ["NaN", "Infinity", "sNaN", "1_000", "1e"])
def test_quote_rejects_non_finite_literals(connection, value):
    with pytest.raises(ConversionError):
        connection.quote(value, requires_quoting=False)
