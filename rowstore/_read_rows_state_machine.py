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
"""
Reassembly of read_rows chunks into Rows.

_StateMachine validates the chunk sequence and drives a _RowBuilder. A single
machine is kept for the whole read, across retried streams, so that
last_seen_row_key can be used to resume a broken stream.
"""
from __future__ import annotations

from rowstore.types import CellChunk
from rowstore.row import Row, Cell
from rowstore.exceptions import InvalidChunk

# Between rows. The only state in which a stream may end cleanly.
AWAITING_NEW_ROW = "AWAITING_NEW_ROW"
# Inside a row, at a cell boundary.
AWAITING_NEW_CELL = "AWAITING_NEW_CELL"
# Inside a cell whose value is split over several chunks.
AWAITING_CELL_VALUE = "AWAITING_CELL_VALUE"

# chunk fields that must be unset on a reset_row chunk, with their labels
_RESET_FORBIDDEN = (
    ("row_key", "a row key"),
    ("family_name", "a family name"),
    ("qualifier", "a qualifier"),
    ("timestamp_micros", "a timestamp"),
    ("labels", "labels"),
    ("value", "a value"),
    ("commit_row", "commit_row"),
)

# chunk fields that must be unset on the continuation of a split value
_CONTINUATION_FORBIDDEN = _RESET_FORBIDDEN[:5]


def _first_set_field(chunk: CellChunk, fields) -> str | None:
    for attr, label in fields:
        value = getattr(chunk, attr)
        # family_name and qualifier may legitimately be empty strings
        if value is not None and (value or attr in ("family_name", "qualifier")):
            return label
    return None


class _StateMachine:
    """
    Turns a sequence of CellChunks into complete Rows.

    handle_chunk returns a Row when a chunk commits one, and None otherwise.
    Any chunk that is not valid in the current state raises InvalidChunk.
    Keys of committed rows, and of scan heartbeats passed to
    handle_last_scanned_row, must be strictly increasing.
    """

    __slots__ = (
        "current_state",
        "current_family",
        "current_qualifier",
        "last_seen_row_key",
        "_builder",
    )

    def __init__(self):
        # key of the last committed row or heartbeat; None before either
        self.last_seen_row_key: bytes | None = None
        self._builder = _RowBuilder()
        self._drop_row()

    def _drop_row(self) -> None:
        self.current_state = AWAITING_NEW_ROW
        self.current_family: str | None = None
        self.current_qualifier: bytes | None = None
        self._builder.reset()

    def is_terminal_state(self) -> bool:
        """True when no row is partially assembled"""
        return self.current_state == AWAITING_NEW_ROW

    def handle_stream_break(self) -> None:
        """
        Forget the row in progress before a stream is resumed.

        The resumed stream starts after last_seen_row_key, so a partial row
        will be sent again from its first chunk.
        """
        self._drop_row()

    def handle_last_scanned_row(self, last_scanned_row_key: bytes) -> None:
        """Record a heartbeat: the server has scanned up to this key"""
        if (
            self.last_seen_row_key is not None
            and last_scanned_row_key <= self.last_seen_row_key
        ):
            raise InvalidChunk("Last scanned row key is out of order")
        if self.current_state != AWAITING_NEW_ROW:
            raise InvalidChunk("Last scanned row key received in invalid state")
        self.last_seen_row_key = last_scanned_row_key

    def handle_chunk(self, chunk: CellChunk) -> Row | None:
        if (
            chunk.row_key
            and self.last_seen_row_key is not None
            and chunk.row_key <= self.last_seen_row_key
        ):
            raise InvalidChunk("row keys should be strictly increasing")

        if chunk.reset_row:
            if self.current_state == AWAITING_NEW_ROW:
                raise InvalidChunk("Reset chunk received when not processing row")
            offending = _first_set_field(chunk, _RESET_FORBIDDEN)
            if offending:
                raise InvalidChunk(f"Reset chunk has {offending}")
            self._drop_row()
            return None

        if self.current_state == AWAITING_NEW_ROW:
            self._begin_row(chunk)
        elif self.current_state == AWAITING_NEW_CELL:
            self._begin_cell(chunk)
        else:
            self._continue_value(chunk)

        if not chunk.commit_row:
            return None
        if self.current_state != AWAITING_NEW_CELL:
            raise InvalidChunk("Commit chunk received in invalid state")
        row = self._builder.finish_row()
        self.last_seen_row_key = row.row_key
        self._drop_row()
        return row

    def _begin_row(self, chunk: CellChunk) -> None:
        if not chunk.row_key:
            raise InvalidChunk("New row is missing a row key")
        self._builder.start_row(chunk.row_key)
        # the first chunk of a row also carries its first cell
        self._begin_cell(chunk)

    def _begin_cell(self, chunk: CellChunk) -> None:
        if chunk.row_key and chunk.row_key != self._builder.current_key:
            raise InvalidChunk("Row key changed mid row")
        # family and qualifier are only sent when they change
        if chunk.family_name is not None:
            if chunk.qualifier is None:
                raise InvalidChunk("New family must specify qualifier")
            self.current_family = chunk.family_name
        if chunk.qualifier is not None:
            if self.current_family is None:
                raise InvalidChunk("Family not found")
            self.current_qualifier = chunk.qualifier
        if self.current_family is None or self.current_qualifier is None:
            raise InvalidChunk("Missing family or qualifier for cell")

        self._builder.start_cell(
            self.current_family,
            self.current_qualifier,
            chunk.timestamp_micros,
            list(chunk.labels),
        )
        self._append_value(chunk)

    def _continue_value(self, chunk: CellChunk) -> None:
        offending = _first_set_field(chunk, _CONTINUATION_FORBIDDEN)
        if offending:
            raise InvalidChunk(f"In progress cell had {offending}")
        self._append_value(chunk)

    def _append_value(self, chunk: CellChunk) -> None:
        self._builder.cell_value(chunk.value)
        if chunk.value_size > 0:
            self.current_state = AWAITING_CELL_VALUE
        else:
            self._builder.finish_cell()
            self.current_state = AWAITING_NEW_CELL


class _RowBuilder:
    """
    Accumulates cells for the row in progress.

    Calls arrive as start_row, then for each cell start_cell, one or more
    cell_value, finish_cell, and finally finish_row. reset may come at any
    point. Calls out of that order raise InvalidChunk.
    """

    __slots__ = ("current_key", "_cell_args", "_value", "_cells")

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.current_key: bytes | None = None
        self._cell_args: tuple | None = None
        self._value: bytearray | None = None
        self._cells: list[Cell] = []

    def start_row(self, key: bytes) -> None:
        self.current_key = key

    def start_cell(
        self,
        family: str,
        qualifier: bytes,
        timestamp_micros: int,
        labels: list[str],
    ) -> None:
        if self.current_key is None:
            raise InvalidChunk("start_cell called without a row")
        self._cell_args = (family, qualifier, timestamp_micros, labels)
        self._value = bytearray()

    def cell_value(self, value: bytes) -> None:
        if self._value is None:
            raise InvalidChunk("Cell value received before start_cell")
        self._value += value

    def finish_cell(self) -> None:
        if self._cell_args is None or self._value is None:
            raise InvalidChunk("finish_cell called before start_cell")
        family, qualifier, timestamp_micros, labels = self._cell_args
        self._cells.append(
            Cell(
                bytes(self._value),
                self.current_key,
                family,
                qualifier,
                timestamp_micros,
                labels,
            )
        )
        self._cell_args = None
        self._value = None

    def finish_row(self) -> Row:
        if self.current_key is None:
            raise InvalidChunk("No row in progress")
        row = Row(self.current_key, self._cells)
        self.reset()
        return row
