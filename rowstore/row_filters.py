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
"""Filters for rowstore reads and conditional mutations.

Filters are selection criteria evaluated by the server. The client never
interprets them; it only serializes them into requests with ``_to_dict``.
"""
from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from typing import Any, Sequence

_PACK_I64 = struct.Struct(">q").pack


class RowFilter(ABC):
    """Basic filter to apply to cells in a row.

    These values can be combined via :class:`RowFilterChain`,
    :class:`RowFilterUnion`, and :class:`ConditionalRowFilter`.
    """

    @abstractmethod
    def _to_dict(self) -> dict[str, Any]:
        """Converts the filter to a dict in the RowFilter wire format"""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"

    def __eq__(self, other):
        if not isinstance(other, RowFilter):
            return NotImplemented
        return type(self) is type(other) and self._to_dict() == other._to_dict()

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash(repr(self._to_dict()))


class _BoolFilter(RowFilter, ABC):
    """Row filter that uses a boolean flag.

    :type flag: bool
    :param flag: An indicator if a setting is turned on or off.
    """

    def __init__(self, flag: bool):
        self.flag = flag

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(flag={self.flag})"


class SinkFilter(_BoolFilter):
    """Advanced row filter to skip parent filters.

    Outputs all cells directly to the output of the read rather than to
    any parent filter.
    """

    def _to_dict(self) -> dict[str, Any]:
        return {"sink": self.flag}


class PassAllFilter(_BoolFilter):
    """Row filter equivalent to not filtering at all."""

    def _to_dict(self) -> dict[str, Any]:
        return {"pass_all_filter": self.flag}


class BlockAllFilter(_BoolFilter):
    """Row filter that doesn't match any cells."""

    def _to_dict(self) -> dict[str, Any]:
        return {"block_all_filter": self.flag}


class _RegexFilter(RowFilter, ABC):
    """Row filter that uses a regular expression.

    The ``regex`` must be a valid RE2 pattern. String values will be
    encoded as UTF-8.
    """

    def __init__(self, regex: str | bytes):
        self.regex: bytes = regex.encode() if isinstance(regex, str) else regex
        if not isinstance(self.regex, bytes):
            raise ValueError("regex must be bytes or str")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(regex={self.regex!r})"


class RowKeyRegexFilter(_RegexFilter):
    """Row filter for a row key regular expression."""

    def _to_dict(self) -> dict[str, Any]:
        return {"row_key_regex_filter": self.regex}


class FamilyNameRegexFilter(_RegexFilter):
    """Row filter for a family name regular expression."""

    def _to_dict(self) -> dict[str, Any]:
        return {"family_name_regex_filter": self.regex.decode()}


class ColumnQualifierRegexFilter(_RegexFilter):
    """Row filter for a column qualifier regular expression."""

    def _to_dict(self) -> dict[str, Any]:
        return {"column_qualifier_regex_filter": self.regex}


class ValueRegexFilter(_RegexFilter):
    """Row filter for a value regular expression."""

    def _to_dict(self) -> dict[str, Any]:
        return {"value_regex_filter": self.regex}


class ExactValueFilter(ValueRegexFilter):
    """Row filter for an exact value.

    :type value: bytes or str or int
    :param value:
        a literal string, or the equivalent bytes, or an integer (which
        will be packed into 8-bytes).
    """

    def __init__(self, value: bytes | str | int):
        if isinstance(value, int):
            value = _PACK_I64(value)
        super(ExactValueFilter, self).__init__(value)


class TimestampRange:
    """Range of time with inclusive lower and exclusive upper bounds.

    :type start: int
    :param start: (Optional) The (inclusive) lower bound, in microseconds.
    :type end: int
    :param end: (Optional) The (exclusive) upper bound, in microseconds.
    """

    def __init__(self, start: int | None = None, end: int | None = None):
        self.start = start
        self.end = end

    def _to_dict(self) -> dict[str, int]:
        timestamp_range_kwargs = {}
        if self.start is not None:
            timestamp_range_kwargs["start_timestamp_micros"] = self.start
        if self.end is not None:
            timestamp_range_kwargs["end_timestamp_micros"] = self.end
        return timestamp_range_kwargs

    def __eq__(self, other):
        if not isinstance(other, self.__class__):
            return NotImplemented
        return self.start == other.start and self.end == other.end

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(start={self.start}, end={self.end})"


class TimestampRangeFilter(RowFilter):
    """Row filter that limits cells to a range of time."""

    def __init__(self, start: int | None = None, end: int | None = None):
        self.range_ = TimestampRange(start, end)

    def _to_dict(self) -> dict[str, Any]:
        return {"timestamp_range_filter": self.range_._to_dict()}


class _CellCountFilter(RowFilter, ABC):
    """Row filter that uses an integer count of cells."""

    def __init__(self, num_cells: int):
        self.num_cells = num_cells

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(num_cells={self.num_cells})"


class CellsRowOffsetFilter(_CellCountFilter):
    """Row filter to skip cells in a row."""

    def _to_dict(self) -> dict[str, Any]:
        return {"cells_per_row_offset_filter": self.num_cells}


class CellsRowLimitFilter(_CellCountFilter):
    """Row filter to limit cells in a row."""

    def _to_dict(self) -> dict[str, Any]:
        return {"cells_per_row_limit_filter": self.num_cells}


class CellsColumnLimitFilter(_CellCountFilter):
    """Row filter to limit cells in a column."""

    def _to_dict(self) -> dict[str, Any]:
        return {"cells_per_column_limit_filter": self.num_cells}


class StripValueTransformerFilter(_BoolFilter):
    """Row filter that transforms cells into empty string (0 bytes)."""

    def _to_dict(self) -> dict[str, Any]:
        return {"strip_value_transformer": self.flag}


class ApplyLabelFilter(RowFilter):
    """Filter to apply labels to cells.

    :type label: str
    :param label: Label to apply to cells in the output row.
    """

    def __init__(self, label: str):
        self.label = label

    def _to_dict(self) -> dict[str, Any]:
        return {"apply_label_transformer": self.label}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(label={self.label})"


class _FilterCombination(RowFilter, Sequence[RowFilter], ABC):
    """Chain of row filters."""

    def __init__(self, filters: list[RowFilter] | None = None):
        if filters is None:
            filters = []
        self.filters: list[RowFilter] = filters

    def __len__(self) -> int:
        return len(self.filters)

    def __getitem__(self, index):
        return self.filters[index]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(filters={self.filters})"


class RowFilterChain(_FilterCombination):
    """Chain of row filters applied in sequence."""

    def _to_dict(self) -> dict[str, Any]:
        return {"chain": {"filters": [f._to_dict() for f in self.filters]}}


class RowFilterUnion(_FilterCombination):
    """Union of row filters; output is the union of each filter's output."""

    def _to_dict(self) -> dict[str, Any]:
        return {"interleave": {"filters": [f._to_dict() for f in self.filters]}}


class ConditionalRowFilter(RowFilter):
    """Conditional row filter which exhibits ternary behavior.

    If ``predicate_filter`` outputs any cells, then ``true_filter`` is
    executed. If not, then ``false_filter`` is executed.
    """

    def __init__(
        self,
        predicate_filter: RowFilter,
        true_filter: RowFilter | None = None,
        false_filter: RowFilter | None = None,
    ):
        self.predicate_filter = predicate_filter
        self.true_filter = true_filter
        self.false_filter = false_filter

    def _to_dict(self) -> dict[str, Any]:
        condition_kwargs = {"predicate_filter": self.predicate_filter._to_dict()}
        if self.true_filter is not None:
            condition_kwargs["true_filter"] = self.true_filter._to_dict()
        if self.false_filter is not None:
            condition_kwargs["false_filter"] = self.false_filter._to_dict()
        return {"condition": condition_kwargs}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(predicate_filter={self.predicate_filter!r}, true_filter={self.true_filter!r}, false_filter={self.false_filter!r})"
