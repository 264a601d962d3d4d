# Copyright 2024 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
"""Read results: a Row is an immutable, ordered collection of Cells."""
from __future__ import annotations

from functools import total_ordering
from typing import Any, Sequence


def _as_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


class Row(Sequence["Cell"]):
    """
    The cells returned for one row key, in the order the server sent them.

    Besides positional access, cells can be looked up by column:
      row["family"] -> cells of a family
      row["family", b"qualifier"] -> cells of a column
    """

    __slots__ = ("row_key", "_cells", "_columns")

    def __init__(self, key: bytes, cells: list[Cell]):
        self.row_key = key
        self._cells: tuple[Cell, ...] = tuple(cells)
        # family -> qualifier -> cells, both levels in arrival order
        self._columns: dict[str, dict[bytes, list[Cell]]] = {}
        for cell in self._cells:
            by_qualifier = self._columns.setdefault(cell.family, {})
            by_qualifier.setdefault(cell.qualifier, []).append(cell)

    @property
    def cells(self) -> list[Cell]:
        return list(self._cells)

    def get_cells(
        self, family: str | None = None, qualifier: bytes | str | None = None
    ) -> list[Cell]:
        """
        Return the cells of a family, or of a single column.

        Raises:
          - ValueError if the family or column has no cells in this row, or if
              a qualifier is passed without a family
        """
        if family is None:
            if qualifier is not None:
                raise ValueError("a qualifier requires a family")
            return list(self._cells)
        by_qualifier = self._columns.get(family)
        if by_qualifier is None:
            raise ValueError(f"no family {family!r} in row {self.row_key!r}")
        if qualifier is None:
            return [cell for column in by_qualifier.values() for cell in column]
        column = by_qualifier.get(_as_bytes(qualifier))
        if column is None:
            raise ValueError(
                f"no column {family}:{_as_bytes(qualifier)!r} in row {self.row_key!r}"
            )
        return list(column)

    def get_column_components(self) -> list[tuple[str, bytes]]:
        """(family, qualifier) of every column with at least one cell"""
        return [
            (family, qual)
            for family, by_qualifier in self._columns.items()
            for qual in by_qualifier
        ]

    def to_dict(self) -> dict[str, Any]:
        """Nested dict in the wire Row layout: key, then families of columns"""
        return {
            "key": self.row_key,
            "families": [
                {
                    "name": family,
                    "columns": [
                        {"qualifier": qual, "cells": [c.to_dict() for c in column]}
                        for qual, column in by_qualifier.items()
                    ],
                }
                for family, by_qualifier in self._columns.items()
            ],
        }

    @staticmethod
    def _column_key(item) -> tuple[str, bytes | None] | None:
        if isinstance(item, str):
            return item, None
        if (
            isinstance(item, tuple)
            and len(item) == 2
            and isinstance(item[0], str)
            and isinstance(item[1], (bytes, str))
        ):
            return item[0], _as_bytes(item[1])
        return None

    def __contains__(self, item) -> bool:
        key = self._column_key(item)
        if key is None:
            return item in self._cells
        family, qual = key
        if family not in self._columns:
            return False
        return qual is None or qual in self._columns[family]

    def __getitem__(self, index):
        key = self._column_key(index)
        if key is not None:
            return self.get_cells(*key)
        if isinstance(index, int):
            return self._cells[index]
        if isinstance(index, slice):
            return list(self._cells[index])
        raise TypeError("index must be an int, a slice, a family, or (family, qualifier)")

    def __iter__(self):
        return iter(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Row):
            return False
        return self.row_key == other.row_key and self._cells == other._cells

    def __ne__(self, other) -> bool:
        return not self == other

    def __hash__(self):
        return hash((self.row_key, self._cells))

    def __repr__(self):
        return f"Row(key={self.row_key!r}, cells={list(self._cells)!r})"


@total_ordering
class Cell:
    """
    A single timestamped value in a column of a row.

    Cells compare in server order: by family, then qualifier, newest first.
    """

    __slots__ = ("value", "row_key", "family", "qualifier", "timestamp_micros", "labels")

    def __init__(
        self,
        value: bytes,
        row_key: bytes,
        family: str,
        qualifier: bytes | str,
        timestamp_micros: int,
        labels: list[str] | None = None,
    ):
        self.value = value
        self.row_key = row_key
        self.family = family
        self.qualifier = _as_bytes(qualifier)
        self.timestamp_micros = timestamp_micros
        self.labels: tuple[str, ...] = tuple(labels or ())

    def __int__(self) -> int:
        """The value decoded as a big-endian signed 64-bit integer"""
        return int.from_bytes(self.value, byteorder="big", signed=True)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "value": self.value,
            "timestamp_micros": self.timestamp_micros,
        }
        if self.labels:
            result["labels"] = list(self.labels)
        return result

    def _sort_key(self) -> tuple:
        return (
            self.family,
            self.qualifier,
            -self.timestamp_micros,
            self.value,
            self.labels,
        )

    def __lt__(self, other) -> bool:
        if not isinstance(other, Cell):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Cell):
            return NotImplemented
        return self.row_key == other.row_key and self._sort_key() == other._sort_key()

    def __hash__(self):
        return hash((self.row_key, self._sort_key()))

    def __str__(self) -> str:
        return str(self.value)

    def __repr__(self):
        return (
            f"Cell(value={self.value!r}, row_key={self.row_key!r}, "
            f"family={self.family!r}, qualifier={self.qualifier!r}, "
            f"timestamp_micros={self.timestamp_micros}, labels={list(self.labels)})"
        )
