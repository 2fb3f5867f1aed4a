import logging
import time
import typing

from sqlalchemy import String
from sqlalchemy.engine import Connection as SaConnection, CursorResult, Engine
from sqlalchemy.exc import DBAPIError

from norm.connection import Connection
from norm.errors import BackendError, ConversionError
from norm.fields import NULL, is_composite, parse_number


logger = logging.getLogger(__name__)


class SqlAlchemyConnection(Connection):
    """Runs raw statements through a SQLAlchemy engine.

    Statements outside of an explicit transaction are committed as soon as they run.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._connection: typing.Optional[SaConnection] = None
        self._in_transaction = False
        self._string_literal = String().literal_processor(dialect=engine.dialect)

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def connected(self) -> bool:
        return self._connection is not None and not self._connection.closed

    def connect(self) -> None:
        if self.connected:
            return
        logger.debug("Connecting to %s", self._engine.url.render_as_string(hide_password=True))
        try:
            self._connection = self._engine.connect()
        except DBAPIError as exc:
            raise BackendError(f"database could not be connected: {exc.orig}") from exc

    def disconnect(self) -> None:
        if self._connection is not None:
            self._connection.close()
        self._connection = None
        self._in_transaction = False

    def query(self, sql: str) -> typing.Any:
        result = self._run(sql)
        if not result.returns_rows:
            result.close()
            raise BackendError("no resultset returned", sql)
        return result.mappings()

    def fetch_row(self, result: typing.Any) -> typing.Optional[typing.Dict[str, typing.Any]]:
        row = result.fetchone()
        if row is None:
            return None
        return dict(row)

    def free_result(self, result: typing.Any) -> None:
        result.close()

    def execute(self, sql: str) -> int:
        result = self._run(sql)
        rows = result.rowcount
        result.close()
        logger.debug("%d row(s) affected", rows)
        self._commit_unless_in_transaction()
        return rows

    def execute_insert(self, sql: str) -> typing.Any:
        result = self._run(sql)
        generated = self._generated_id(result)
        result.close()
        self._commit_unless_in_transaction()
        return generated if generated else True

    def quote(self, value: typing.Any, requires_quoting: bool = True) -> str:
        if is_composite(value):
            raise ConversionError(f"cannot quote a composite value - {value!r}")
        if value is None or value is NULL:
            return "null"
        if isinstance(value, bool):
            return "1" if value else "0"
        if requires_quoting:
            return self._string_literal(str(value))
        literal = str(value).strip()
        if literal == "" or literal.lower() == "null":
            return "null"
        try:
            parse_number(literal)
        except ConversionError:
            raise ConversionError(f"unquoted value is not numeric - {value!r}")
        return literal

    def ping(self) -> bool:
        if not self.connected:
            return False
        try:
            self._connection.exec_driver_sql("SELECT 1").close()
        except DBAPIError as exc:
            logger.warning("Ping failed: %s", exc.orig)
            return False
        return True

    def begin_transaction(self) -> None:
        connection = self._require_connection("BEGIN")
        if connection.in_transaction():
            connection.commit()
        self._in_transaction = True
        logger.debug("Transaction started")

    def commit(self) -> None:
        self._require_connection("COMMIT").commit()
        self._in_transaction = False
        logger.debug("Transaction committed")

    def rollback(self) -> None:
        self._require_connection("ROLLBACK").rollback()
        self._in_transaction = False
        logger.debug("Transaction rolled back")

    def _generated_id(self, result: CursorResult) -> typing.Any:
        return result.lastrowid

    def _require_connection(self, sql: str) -> SaConnection:
        if not self.connected:
            raise BackendError("cannot query when database is not connected", sql)
        return self._connection

    def _run(self, sql: str) -> CursorResult:
        connection = self._require_connection(sql)
        started = time.perf_counter()
        try:
            result = connection.exec_driver_sql(sql)
        except DBAPIError as exc:
            logger.error("Query failed: %s: %s", exc.orig, sql)
            raise BackendError(str(exc.orig), sql) from exc
        logger.debug("%s - completed in %.2fms", sql, (time.perf_counter() - started) * 1000.0)
        return result

    def _commit_unless_in_transaction(self) -> None:
        if not self._in_transaction:
            self._connection.commit()
