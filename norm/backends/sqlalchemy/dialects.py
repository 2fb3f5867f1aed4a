import typing

from sqlalchemy import create_engine
from sqlalchemy.engine import CursorResult, URL
from sqlalchemy.pool import NullPool

from norm.backends.sqlalchemy.connection import SqlAlchemyConnection
from norm.connection import ConnectionConfig, TYPE_MSSQL, TYPE_MYSQL, TYPE_POSTGRESQL, TYPE_SQLITE
from norm.errors import ConfigurationError, PaginationError


class LimitOffsetConnection(SqlAlchemyConnection):
    """Backends paginating with ``LIMIT n OFFSET m`` after the statement (MySQL, SQLite, PostgreSQL)."""

    def pagination_clause_after_select(self, max_records: typing.Optional[int], offset: typing.Optional[int]) -> str:
        return ""

    def pagination_clause_after_statement(
        self, max_records: typing.Optional[int], offset: typing.Optional[int]
    ) -> str:
        if offset and not max_records:
            raise PaginationError("specifying an offset requires a max records value")
        clause = f"LIMIT {int(max_records)}" if max_records else ""
        if offset:
            clause += f" OFFSET {int(offset)}"
        return clause


class TopConnection(SqlAlchemyConnection):
    """Backends paginating with ``TOP n`` right after SELECT (Microsoft SQL Server). Offsets are unsupported."""

    def pagination_clause_after_select(self, max_records: typing.Optional[int], offset: typing.Optional[int]) -> str:
        if offset:
            raise PaginationError(f"{type(self).__name__} does not support an offset (requested {offset})")
        return f"TOP {int(max_records)}" if max_records else ""

    def pagination_clause_after_statement(
        self, max_records: typing.Optional[int], offset: typing.Optional[int]
    ) -> str:
        return ""

    def _generated_id(self, result: CursorResult) -> typing.Any:
        identity = self._require_connection("SELECT @@IDENTITY").exec_driver_sql("SELECT @@IDENTITY AS last_insert_id")
        return identity.scalar()


drivers = {
    TYPE_MYSQL: ("mysql+pymysql", LimitOffsetConnection),
    TYPE_SQLITE: ("sqlite", LimitOffsetConnection),
    TYPE_POSTGRESQL: ("postgresql", LimitOffsetConnection),
    TYPE_MSSQL: ("mssql+pyodbc", TopConnection),
}


def create_connection(config: ConnectionConfig) -> SqlAlchemyConnection:
    try:
        drivername, connection_cls = drivers[config.type]
    except KeyError:
        raise ConfigurationError(f"Unsupported database type - {config.type}")

    if config.url:
        url = config.url
    else:
        url = URL.create(
            drivername,
            username=config.username,
            password=config.password,
            host=config.host,
            port=config.port,
            database=config.catalog or None,
        )
    kwargs = {} if config.pooling else {"poolclass": NullPool}
    return connection_cls(create_engine(url, **kwargs))
