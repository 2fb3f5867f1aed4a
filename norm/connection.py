import abc
import typing

import attr

from norm.errors import ConfigurationError


if typing.TYPE_CHECKING:
    from norm.entity import EntityDescriptor


TYPE_MYSQL = "mysql"
TYPE_MSSQL = "mssql"
TYPE_SQLITE = "sqlite"
TYPE_POSTGRESQL = "postgresql"


@attr.s(auto_attribs=True, frozen=True)
class ConnectionConfig:
    type: str
    host: typing.Optional[str] = None
    username: typing.Optional[str] = None
    password: typing.Optional[str] = None
    port: typing.Optional[int] = None
    catalog: str = ""
    pooling: bool = False
    url: typing.Optional[str] = None

    @classmethod
    def from_mapping(cls, mapping: typing.Mapping[str, typing.Any]) -> "ConnectionConfig":
        known = {field.name for field in attr.fields(cls)}
        unknown = set(mapping) - known
        if unknown:
            raise ConfigurationError(f"Unknown connection options - {sorted(unknown)}")
        if not mapping.get("type"):
            raise ConfigurationError("Connection configuration requires a type")
        values = dict(mapping)
        if values.get("port") is not None:
            values["port"] = int(values["port"])
        return cls(**values)


class Connection(abc.ABC):
    """Database access used by stores and queries.

    Statement text for inserts, updates and deletes is assembled here from a descriptor's
    table name and quoting rules; executing it and escaping values is left to the backend.
    """

    @abc.abstractmethod
    def connect(self) -> None:
        pass

    @abc.abstractmethod
    def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    def query(self, sql: str) -> typing.Any:
        pass

    @abc.abstractmethod
    def fetch_row(self, result: typing.Any) -> typing.Optional[typing.Dict[str, typing.Any]]:
        pass

    @abc.abstractmethod
    def free_result(self, result: typing.Any) -> None:
        pass

    @abc.abstractmethod
    def execute(self, sql: str) -> int:
        pass

    @abc.abstractmethod
    def execute_insert(self, sql: str) -> typing.Any:
        pass

    @abc.abstractmethod
    def quote(self, value: typing.Any, requires_quoting: bool = True) -> str:
        pass

    @abc.abstractmethod
    def pagination_clause_after_select(self, max_records: typing.Optional[int], offset: typing.Optional[int]) -> str:
        pass

    @abc.abstractmethod
    def pagination_clause_after_statement(
        self, max_records: typing.Optional[int], offset: typing.Optional[int]
    ) -> str:
        pass

    @abc.abstractmethod
    def ping(self) -> bool:
        pass

    @abc.abstractmethod
    def begin_transaction(self) -> None:
        pass

    @abc.abstractmethod
    def commit(self) -> None:
        pass

    @abc.abstractmethod
    def rollback(self) -> None:
        pass

    def insert(self, descriptor: "EntityDescriptor", fields: typing.Mapping[str, typing.Any]) -> typing.Any:
        if fields:
            columns = ",".join(fields)
            values = ",".join(self.quote(value, descriptor.requires_quoting(key)) for key, value in fields.items())
            sql = f"INSERT INTO {descriptor.table_name}({columns}) VALUES ({values});"
        else:
            sql = f"INSERT INTO {descriptor.table_name} DEFAULT VALUES;"
        return self.execute_insert(sql)

    def update(
        self,
        descriptor: "EntityDescriptor",
        fields: typing.Mapping[str, typing.Any],
        id_mapping: typing.Mapping[str, typing.Any],
    ) -> int:
        if not fields:
            return 0
        assignments = ", ".join(
            f"{key} = {self.quote(value, descriptor.requires_quoting(key))}" for key, value in fields.items()
        )
        return self.execute(f"UPDATE {descriptor.table_name} SET {assignments} WHERE {self._match(descriptor, id_mapping)};")

    def delete(self, descriptor: "EntityDescriptor", id_mapping: typing.Mapping[str, typing.Any]) -> int:
        return self.execute(f"DELETE FROM {descriptor.table_name} WHERE {self._match(descriptor, id_mapping)};")

    def _match(self, descriptor: "EntityDescriptor", id_mapping: typing.Mapping[str, typing.Any]) -> str:
        return " AND ".join(
            f"{key} = {self.quote(value, descriptor.requires_quoting(key))}" for key, value in id_mapping.items()
        )
