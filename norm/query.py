"""Translation of selectors into SELECT statements.

A selector is one of:

- ``None`` - every row,
- a scalar - shorthand for equality on the (single column) identity,
- a mapping of column to condition, joined with AND in insertion order, where a condition is

  - a scalar: ``col = value``
  - ``None``: ``col IS NULL``
  - a list or tuple: ``col IN (v1,v2)``
  - a :class:`Query`: ``col IN (SELECT ...)``
  - a comparison mapping ``{"compare": op, "value": v, "not": bool}`` or
    ``{"compare": "between", "low": a, "high": b}``.
"""
import re
import typing

import attr

from norm.errors import InvalidSelectorError, MultiColumnKeyError
from norm.fields import NULL, is_composite


if typing.TYPE_CHECKING:
    from norm.connection import Connection
    from norm.entity import EntityDescriptor


OPERATORS = {"=", "!=", "<>", "<", "<=", ">", ">=", "like", "between"}

_COLUMN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

Fields = typing.Union[None, str, typing.Sequence[str], typing.Mapping[str, str]]
OrderBy = typing.Union[None, str, typing.Sequence[str]]


def compare(operator: str, value: typing.Any, negate: bool = False) -> typing.Dict[str, typing.Any]:
    return {"compare": operator, "value": value, "not": negate}


def between(low: typing.Any, high: typing.Any, negate: bool = False) -> typing.Dict[str, typing.Any]:
    return {"compare": "between", "low": low, "high": high, "not": negate}


def is_scalar_selector(selector: typing.Any) -> bool:
    return selector is not None and not isinstance(selector, (dict, Query)) and not is_composite(selector)


@attr.s(auto_attribs=True)
class Query:
    descriptor: "EntityDescriptor"
    fields: Fields = None
    selector: typing.Any = None
    order_by: OrderBy = None
    max_records: typing.Optional[int] = None
    offset: typing.Optional[int] = None

    def generate_sql(self, connection: "Connection") -> str:
        parts = ["SELECT"]
        parts.append(connection.pagination_clause_after_select(self.max_records, self.offset))
        parts.append(self._generate_select())
        parts.append(f"FROM {self.descriptor.table_name}")
        where = self._generate_where(connection)
        if where:
            parts.append(f"WHERE {where}")
        order = self._generate_order()
        if order:
            parts.append(f"ORDER BY {order}")
        parts.append(connection.pagination_clause_after_statement(self.max_records, self.offset))
        return " ".join(part for part in parts if part)

    def _generate_select(self) -> str:
        if self.fields is None:
            return "*"
        if isinstance(self.fields, str):
            return self.fields
        if isinstance(self.fields, typing.Mapping):
            return ", ".join(f"{expression} AS {alias}" for alias, expression in self.fields.items())
        return ", ".join(self.fields)

    def _generate_order(self) -> str:
        if self.order_by is None:
            return ""
        if isinstance(self.order_by, str):
            return self.order_by
        return ", ".join(self.order_by)

    def _generate_where(self, connection: "Connection") -> str:
        if self.selector is None:
            return ""
        if isinstance(self.selector, dict):
            return " AND ".join(
                self._predicate(column, value, connection) for column, value in self.selector.items()
            )
        if isinstance(self.selector, Query) or is_composite(self.selector):
            raise InvalidSelectorError(
                f"Selector for {self.descriptor.name} must be a scalar or a mapping, got {self.selector!r}"
            )
        if self.descriptor.is_composite:
            raise MultiColumnKeyError(
                f"{self.descriptor.name} has key {list(self.descriptor.id_fields)}; "
                "a key with multiple fields requires a mapping selector"
            )
        column = self.descriptor.id_field
        return f"{column} = {self._quote(column, self.selector, connection)}"

    def _predicate(self, column: str, value: typing.Any, connection: "Connection") -> str:
        if not isinstance(column, str) or not _COLUMN.match(column):
            raise InvalidSelectorError(f"Invalid column {column!r} in selector for {self.descriptor.name}")
        if isinstance(value, Query):
            return f"{column} IN ({value.generate_sql(connection)})"
        if value is None or value is NULL:
            return f"{column} IS NULL"
        if isinstance(value, (list, tuple)):
            if not value:
                return f"{column} IN (null)"
            return f"{column} IN ({','.join(self._quote(column, item, connection) for item in value)})"
        if isinstance(value, dict):
            return self._comparison(column, value, connection)
        return f"{column} = {self._quote(column, value, connection)}"

    def _comparison(self, column: str, condition: typing.Dict[str, typing.Any], connection: "Connection") -> str:
        if "compare" not in condition:
            raise InvalidSelectorError(f"Condition for {self.descriptor.name}.{column} lacks 'compare': {condition!r}")
        operator = str(condition["compare"]).strip().lower()
        if operator not in OPERATORS:
            raise InvalidSelectorError(f"Unsupported operator {condition['compare']!r} for {self.descriptor.name}.{column}")
        negation = "NOT " if condition.get("not") else ""

        if operator == "between":
            bounds = []
            for bound in ("low", "high"):
                if bound not in condition or condition[bound] is None or is_composite(condition[bound]):
                    raise InvalidSelectorError(
                        f"'between' on {self.descriptor.name}.{column} requires scalar '{bound}', got {condition!r}"
                    )
                bounds.append(self._quote(column, condition[bound], connection))
            return f"{negation}{column} BETWEEN {bounds[0]} AND {bounds[1]}"

        if "value" not in condition:
            raise InvalidSelectorError(f"Condition for {self.descriptor.name}.{column} lacks 'value': {condition!r}")
        value = condition["value"]
        if is_composite(value) or isinstance(value, Query):
            raise InvalidSelectorError(f"Comparison on {self.descriptor.name}.{column} requires a scalar value")
        if value is None or value is NULL:
            if operator == "=":
                return f"{negation}{column} IS NULL"
            if operator in ("!=", "<>"):
                return f"{negation}{column} IS NOT NULL"
            raise InvalidSelectorError(f"Operator {operator!r} cannot compare {self.descriptor.name}.{column} to NULL")
        return f"{negation}{column} {operator.upper()} {self._quote(column, value, connection)}"

    def _quote(self, column: str, value: typing.Any, connection: "Connection") -> str:
        codec = self.descriptor.codec(column)
        return connection.quote(codec.convert_to_database(value), codec.requires_quoting)
