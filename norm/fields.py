import calendar
import decimal
import math
import numbers
import re
import typing
from datetime import date, datetime, timezone

import attr

from norm.errors import ConversionError, ConfigurationError


class _Null:
    """Explicit NULL assignment, kept apart from a field that was never set."""

    _instance: typing.Optional["_Null"] = None

    def __new__(cls) -> "_Null":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NULL"

    def __bool__(self) -> bool:
        return False


NULL = _Null()

COMPOSITE_TYPES = (list, tuple, dict, set, frozenset)


def is_composite(value: typing.Any) -> bool:
    return isinstance(value, COMPOSITE_TYPES)


_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$", re.ASCII)
_INTEGER = re.compile(r"^[+-]?\d+$", re.ASCII)


def parse_number(text: str) -> typing.Union[int, decimal.Decimal]:
    """Parses a plain decimal literal; NaN, infinities and digit separators are rejected."""
    literal = text.strip()
    if not _NUMBER.match(literal):
        raise ConversionError(f"invalid numeric value - {text!r}")
    if _INTEGER.match(literal):
        return int(literal)
    return decimal.Decimal(literal)


@attr.s(auto_attribs=True, frozen=True)
class FieldCodec:
    requires_quoting: bool = True
    numeric: bool = False
    binary_only: bool = False
    date_format: typing.Optional[str] = None

    def convert_to_database(self, value: typing.Any) -> typing.Any:
        if is_composite(value):
            raise ConversionError(f"cannot store composite value {value!r} in a single column")
        if value is None or value is NULL:
            return value
        if self.binary_only:
            return 1 if value else 0
        if self.date_format:
            return self._format_date(value)
        if self.numeric:
            return self._as_number(value)
        if isinstance(value, str):
            return value
        return str(value)

    def convert_from_database(self, value: typing.Any) -> typing.Any:
        if value is None or value is NULL:
            return None
        if self.binary_only:
            if isinstance(value, str):
                return value.strip().lower() not in ("", "0", "false")
            return bool(value)
        if self.date_format and value != "":
            return self._parse_date(value)
        return value

    def _as_number(self, value: typing.Any) -> typing.Any:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, numbers.Integral):
            return value
        if isinstance(value, (numbers.Real, decimal.Decimal)):
            finite = value.is_finite() if isinstance(value, decimal.Decimal) else math.isfinite(value)
            if not finite:
                raise ConversionError(f"invalid numeric value - {value!r}")
            return value
        if isinstance(value, str):
            return parse_number(value)
        raise ConversionError(f"invalid numeric value - {value!r}")

    def _format_date(self, value: typing.Any) -> str:
        if isinstance(value, bool) or not isinstance(value, (numbers.Real, decimal.Decimal)):
            raise ConversionError(f"invalid date value (expecting numeric epoch time) - {value!r}")
        return datetime.fromtimestamp(float(value), tz=timezone.utc).strftime(self.date_format)

    def _parse_date(self, value: typing.Any) -> int:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return calendar.timegm(value.timetuple())
            return calendar.timegm(value.utctimetuple())
        if isinstance(value, date):
            return calendar.timegm(value.timetuple())
        if isinstance(value, (numbers.Real, decimal.Decimal)) and not isinstance(value, bool):
            return int(value)
        try:
            parsed = datetime.strptime(str(value).strip(), self.date_format)
        except ValueError:
            raise ConversionError(f"stored value {value!r} does not match date format {self.date_format!r}")
        return calendar.timegm(parsed.timetuple())


STRING = FieldCodec()
NUMERIC = FieldCodec(requires_quoting=False, numeric=True)
BIT = FieldCodec(requires_quoting=False, binary_only=True)
DATETIME = FieldCodec(date_format="%Y-%m-%d %H:%M:%S")
DATE = FieldCodec(date_format="%Y-%m-%d")


mapping = {
    str: STRING,
    int: NUMERIC,
    float: NUMERIC,
    decimal.Decimal: NUMERIC,
    bool: BIT,
    datetime: DATETIME,
    date: DATE,
}


def codec_for_type(field_type: typing.Type) -> FieldCodec:
    try:
        return mapping[field_type]
    except KeyError:
        raise ConfigurationError(f"Unsupported field type - {field_type}")
