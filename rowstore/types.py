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
Response messages produced by a DataTransport.

Requests are plain dicts in the request message layout. Responses only model
the fields the client logic reads.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from google.rpc import status_pb2


@dataclass
class MutateRowResponse:
    pass


@dataclass
class MutateRowsEntry:
    """Outcome of the entry at `index` of the request that produced it"""

    index: int
    status: status_pb2.Status = field(default_factory=status_pb2.Status)


@dataclass
class MutateRowsResponse:
    entries: list[MutateRowsEntry] = field(default_factory=list)


@dataclass
class CellChunk:
    """
    A piece of a row, as streamed by read_rows.

    Unset optional fields are None. A cell value may be split across several
    chunks; value_size is non-zero on every piece except the last.
    """

    row_key: bytes = b""
    family_name: str | None = None
    qualifier: bytes | None = None
    timestamp_micros: int = 0
    labels: list[str] = field(default_factory=list)
    value: bytes = b""
    value_size: int = 0
    reset_row: bool = False
    commit_row: bool = False


@dataclass
class ReadRowsResponse:
    chunks: list[CellChunk] = field(default_factory=list)
    last_scanned_row_key: bytes = b""


@dataclass
class CheckAndMutateRowResponse:
    predicate_matched: bool = False
