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
from __future__ import annotations

from typing import Any
from dataclasses import dataclass

from rowstore.exceptions import _RowSetComplete


def _key_bytes(key: str | bytes, arg_name: str) -> bytes:
    if isinstance(key, str):
        return key.encode()
    if isinstance(key, bytes):
        return key
    raise ValueError(f"{arg_name} must be a string or bytes")


@dataclass(frozen=True)
class _RangePoint:
    """One bound of a RowRange"""

    key: bytes
    is_inclusive: bool

    def _to_dict(self, side: str) -> dict[str, bytes]:
        suffix = "closed" if self.is_inclusive else "open"
        return {f"{side}_key_{suffix}": self.key}


@dataclass(frozen=True, init=False)
class RowRange:
    """
    A contiguous range of row keys.

    By default the start bound is closed and the end bound is open. A missing
    bound leaves that side of the range unlimited.
    """

    start: _RangePoint | None
    end: _RangePoint | None

    def __init__(
        self,
        start_key: str | bytes | None = None,
        end_key: str | bytes | None = None,
        start_is_inclusive: bool | None = None,
        end_is_inclusive: bool | None = None,
    ):
        start = end = None
        if start_key is not None:
            start = _RangePoint(
                _key_bytes(start_key, "start_key"),
                True if start_is_inclusive is None else start_is_inclusive,
            )
        elif start_is_inclusive is not None:
            raise ValueError("start_is_inclusive must be set with start_key")
        if end_key is not None:
            end = _RangePoint(
                _key_bytes(end_key, "end_key"),
                bool(end_is_inclusive),
            )
        elif end_is_inclusive is not None:
            raise ValueError("end_is_inclusive must be set with end_key")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @classmethod
    def _from_points(
        cls, start: _RangePoint | None, end: _RangePoint | None
    ) -> RowRange:
        new_range = cls()
        object.__setattr__(new_range, "start", start)
        object.__setattr__(new_range, "end", end)
        return new_range

    def _to_dict(self) -> dict[str, bytes]:
        output: dict[str, bytes] = {}
        if self.start is not None:
            output.update(self.start._to_dict("start"))
        if self.end is not None:
            output.update(self.end._to_dict("end"))
        return output

    def _ends_after(self, row_key: bytes) -> bool:
        """True if the range can contain keys strictly greater than row_key"""
        return self.end is None or self.end.key > row_key

    def __bool__(self) -> bool:
        # an unbounded range selects the whole table, same as no range
        return self.start is not None or self.end is not None


class RowSet:
    """
    Selection of rows to read: a set of row keys and row ranges

    An empty RowSet selects the whole table.
    """

    def __init__(
        self,
        row_keys: list[str | bytes] | str | bytes | None = None,
        row_ranges: list[RowRange] | RowRange | None = None,
    ):
        self.row_keys: set[bytes] = set()
        self.row_ranges: list[RowRange] = []
        if row_keys is not None:
            if not isinstance(row_keys, list):
                row_keys = [row_keys]
            for k in row_keys:
                self.add_key(k)
        if row_ranges is not None:
            if isinstance(row_ranges, RowRange):
                row_ranges = [row_ranges]
            for r in row_ranges:
                self.add_range(r)

    def add_key(self, row_key: str | bytes) -> None:
        """
        Add a row key to this row set

        Raises:
          - ValueError if an input is not a string or bytes
        """
        self.row_keys.add(_key_bytes(row_key, "row_key"))

    def add_range(self, row_range: RowRange) -> None:
        if not isinstance(row_range, RowRange):
            raise ValueError("row_range must be a RowRange")
        if row_range not in self.row_ranges:
            self.row_ranges.append(row_range)

    def is_full_scan(self) -> bool:
        return not self.row_keys and all(not r for r in self.row_ranges)

    def _revise(self, last_seen_row_key: bytes) -> RowSet:
        """
        Build the row set that remains to be read once every row up to and
        including last_seen_row_key has been processed.

        Args:
          - last_seen_row_key: the last row key encountered
        Raises:
          - _RowSetComplete: if there are no rows left to process after the revision
        """
        # a whole table scan resumes as an open range after the last seen key
        if self.is_full_scan():
            return RowSet(
                row_ranges=RowRange(start_key=last_seen_row_key, start_is_inclusive=False)
            )
        revised = RowSet()
        # remove seen keys from user-specific key list
        revised.row_keys = {k for k in self.row_keys if k > last_seen_row_key}
        # adjust ranges to ignore keys before last seen
        for row_range in self.row_ranges:
            if not row_range._ends_after(last_seen_row_key):
                continue
            start = row_range.start
            if start is None or start.key <= last_seen_row_key:
                start = _RangePoint(last_seen_row_key, is_inclusive=False)
            revised.add_range(RowRange._from_points(start, row_range.end))
        if not revised.row_keys and not revised.row_ranges:
            # an empty set would turn into a full table scan
            raise _RowSetComplete()
        return revised

    def _to_dict(self) -> dict[str, Any]:
        return {
            "row_keys": sorted(self.row_keys),
            "row_ranges": [r._to_dict() for r in self.row_ranges],
        }

    def __eq__(self, other):
        if not isinstance(other, RowSet):
            return NotImplemented
        return self.row_keys == other.row_keys and set(self.row_ranges) == set(
            other.row_ranges
        )

    def __repr__(self):
        return f"RowSet(row_keys={sorted(self.row_keys)!r}, row_ranges={self.row_ranges!r})"
