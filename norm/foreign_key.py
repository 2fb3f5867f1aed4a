import typing

import attr

from norm.errors import MultiColumnTraversalError


@attr.s(auto_attribs=True, frozen=True)
class ForeignKey:
    name: str
    primary_entity: typing.Type
    primary_columns: typing.Tuple[str, ...]
    foreign_entity: typing.Type
    foreign_columns: typing.Tuple[str, ...]
    owned: bool = False

    @property
    def primary_column(self) -> str:
        return self._single(self.primary_columns, self.primary_entity)

    @property
    def foreign_column(self) -> str:
        return self._single(self.foreign_columns, self.foreign_entity)

    def column_pairs(self) -> typing.List[typing.Tuple[str, str]]:
        return list(zip(self.primary_columns, self.foreign_columns))

    def _single(self, columns: typing.Tuple[str, ...], entity: typing.Type) -> str:
        if len(columns) != 1:
            raise MultiColumnTraversalError(
                f"Foreign key {self.name} spans columns {list(columns)} of {entity.__name__}; "
                "only single column keys can be traversed"
            )
        return columns[0]
