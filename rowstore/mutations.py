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

from typing import Any, Iterator
import time
from dataclasses import dataclass
from abc import ABC, abstractmethod

from google.api_core import exceptions as core_exceptions

# special value for SetCell mutation timestamps. If set, server will assign a timestamp
_SERVER_SIDE_TIMESTAMP = -1

# mutation entries above this should be rejected
_MUTATE_ROWS_REQUEST_MUTATION_LIMIT = 100_000

# value must fit in 64-bit signed integer
_MAX_INCREMENT_VALUE = (1 << 63) - 1


class Mutation(ABC):
    """
    Model class for mutations. Mutations are immutable once constructed; a
    fresh wire representation is built by _to_dict for every request.
    """

    @abstractmethod
    def _to_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    def is_idempotent(self) -> bool:
        """
        Check if the mutation is idempotent
        If false, the mutation will not be retried
        """
        return True

    def __str__(self) -> str:
        return str(self._to_dict())

    def size(self) -> int:
        """
        Get the size of the mutation in bytes
        """
        return len(str(self._to_dict()).encode())

    def __setattr__(self, name, value):
        if hasattr(self, "_frozen") and self._frozen:
            raise AttributeError(f"{type(self).__name__} is immutable")
        object.__setattr__(self, name, value)

    def _freeze(self):
        object.__setattr__(self, "_frozen", True)

    def __eq__(self, other):
        if not isinstance(other, Mutation):
            return NotImplemented
        return type(self) is type(other) and self._to_dict() == other._to_dict()

    def __hash__(self):
        return hash(str(self._to_dict()))

    def __repr__(self):
        return f"{type(self).__name__}({self._to_dict()!r})"


def _encode_qualifier(qualifier: bytes | str) -> bytes:
    if isinstance(qualifier, str):
        qualifier = qualifier.encode()
    if not isinstance(qualifier, bytes):
        raise TypeError("qualifier must be bytes or str")
    return qualifier


class SetCell(Mutation):
    """
    Mutation to set the value of a cell

    Args:
      - family: The name of the column family to which the new cell belongs.
      - qualifier: The column qualifier of the new cell.
      - new_value: The value of the new cell. str or int input will be converted to bytes
      - timestamp_micros: The timestamp of the new cell. If None, the current timestamp
          will be used. Timestamps will have millisecond precision (last 3 digits of
          the timestamp are truncated). If -1, the server will assign a timestamp.
          Note that SetCell mutations with server-side timestamps are non-idempotent
          operations and will not be retried.
    """

    def __init__(
        self,
        family: str,
        qualifier: bytes | str,
        new_value: bytes | str | int,
        timestamp_micros: int | None = None,
    ):
        qualifier = _encode_qualifier(qualifier)
        if isinstance(new_value, str):
            new_value = new_value.encode()
        elif isinstance(new_value, int):
            if abs(new_value) > _MAX_INCREMENT_VALUE:
                raise ValueError(
                    "int values must be between -2**63 and 2**63 (64-bit signed int)"
                )
            new_value = new_value.to_bytes(8, "big", signed=True)
        if not isinstance(new_value, bytes):
            raise TypeError("new_value must be bytes, str, or int")
        if timestamp_micros is None:
            # use current timestamp, with millisecond precision
            timestamp_micros = time.time_ns() // 1000
            timestamp_micros = timestamp_micros - (timestamp_micros % 1000)
        if timestamp_micros < _SERVER_SIDE_TIMESTAMP:
            raise ValueError(
                f"timestamp_micros must be positive (or {_SERVER_SIDE_TIMESTAMP} for server-side timestamp)"
            )
        self.family = family
        self.qualifier = qualifier
        self.new_value = new_value
        self.timestamp_micros = timestamp_micros
        self._freeze()

    def _to_dict(self) -> dict[str, Any]:
        """Convert the mutation to a dictionary representation"""
        return {
            "set_cell": {
                "family_name": self.family,
                "column_qualifier": self.qualifier,
                "timestamp_micros": self.timestamp_micros,
                "value": self.new_value,
            }
        }

    def is_idempotent(self) -> bool:
        """Check if the mutation is idempotent"""
        return self.timestamp_micros != _SERVER_SIDE_TIMESTAMP


class AddToCell(Mutation):
    """
    Mutation to increment the value of an aggregate cell

    Increments are applied by the server relative to the current value, so
    they are never safe to retry.

    Args:
      - family: The name of the aggregate column family
      - qualifier: The column qualifier of the cell
      - value: The amount to add to the cell
      - timestamp_micros: The timestamp of the cell to increment. If None,
          the current timestamp will be used.
    """

    def __init__(
        self,
        family: str,
        qualifier: bytes | str,
        value: int,
        timestamp_micros: int | None = None,
    ):
        qualifier = _encode_qualifier(qualifier)
        if not isinstance(value, int):
            raise TypeError("value must be int")
        if abs(value) > _MAX_INCREMENT_VALUE:
            raise ValueError(
                "int values must be between -2**63 and 2**63 (64-bit signed int)"
            )
        if timestamp_micros is None:
            timestamp_micros = time.time_ns() // 1000
        if timestamp_micros < 0:
            raise ValueError("timestamp_micros must be non-negative")
        self.family = family
        self.qualifier = qualifier
        self.value = value
        self.timestamp_micros = timestamp_micros
        self._freeze()

    def _to_dict(self) -> dict[str, Any]:
        return {
            "add_to_cell": {
                "family_name": self.family,
                "column_qualifier": {"raw_value": self.qualifier},
                "timestamp": {"raw_timestamp_micros": self.timestamp_micros},
                "input": {"int_value": self.value},
            }
        }

    def is_idempotent(self) -> bool:
        return False


class DeleteRangeFromColumn(Mutation):
    """
    Mutation to delete a range of cells from a column

    Args:
      - family: The name of the column family
      - qualifier: The column qualifier
      - start_timestamp_micros: start of the range to delete, inclusive.
          None means no lower bound
      - end_timestamp_micros: end of the range to delete, exclusive.
          None means no upper bound
    """

    def __init__(
        self,
        family: str,
        qualifier: bytes | str,
        start_timestamp_micros: int | None = None,
        end_timestamp_micros: int | None = None,
    ):
        qualifier = _encode_qualifier(qualifier)
        if (
            start_timestamp_micros is not None
            and end_timestamp_micros is not None
            and start_timestamp_micros > end_timestamp_micros
        ):
            raise ValueError("start_timestamp_micros must be <= end_timestamp_micros")
        self.family = family
        self.qualifier = qualifier
        self.start_timestamp_micros = start_timestamp_micros
        self.end_timestamp_micros = end_timestamp_micros
        self._freeze()

    def _to_dict(self) -> dict[str, Any]:
        timestamp_range = {}
        if self.start_timestamp_micros is not None:
            timestamp_range["start_timestamp_micros"] = self.start_timestamp_micros
        if self.end_timestamp_micros is not None:
            timestamp_range["end_timestamp_micros"] = self.end_timestamp_micros
        return {
            "delete_from_column": {
                "family_name": self.family,
                "column_qualifier": self.qualifier,
                "time_range": timestamp_range,
            }
        }


class DeleteAllFromFamily(Mutation):
    def __init__(self, family_to_delete: str):
        self.family_to_delete = family_to_delete
        self._freeze()

    def _to_dict(self) -> dict[str, Any]:
        return {
            "delete_from_family": {"family_name": self.family_to_delete},
        }


class DeleteAllFromRow(Mutation):
    def __init__(self):
        self._freeze()

    def _to_dict(self) -> dict[str, Any]:
        return {
            "delete_from_row": {},
        }


class RowMutationEntry:
    """
    A single row key associated with one or more mutations, applied
    atomically by the server.

    Args:
      - row_key: the key of the row to mutate
      - mutations: the mutation or list of mutations to apply to the row
    Raises:
      - ValueError if no mutations are passed, or too many are passed
    """

    def __init__(self, row_key: bytes | str, mutations: Mutation | list[Mutation]):
        if isinstance(row_key, str):
            row_key = row_key.encode("utf-8")
        if isinstance(mutations, Mutation):
            mutations = [mutations]
        if len(mutations) == 0:
            raise ValueError("mutations must not be empty")
        elif len(mutations) > _MUTATE_ROWS_REQUEST_MUTATION_LIMIT:
            raise ValueError(
                f"entries must have <= {_MUTATE_ROWS_REQUEST_MUTATION_LIMIT} mutations"
            )
        self.row_key = row_key
        self.mutations = tuple(mutations)

    def _to_dict(self) -> dict[str, Any]:
        return {
            "row_key": self.row_key,
            "mutations": [mutation._to_dict() for mutation in self.mutations],
        }

    def is_idempotent(self) -> bool:
        """Check if all mutations in the entry are idempotent"""
        return all(mutation.is_idempotent() for mutation in self.mutations)

    def size(self) -> int:
        """
        Get the size of the mutation entry in bytes
        """
        return len(str(self._to_dict()).encode())

    def __repr__(self):
        return f"RowMutationEntry(row_key={self.row_key!r}, mutations={list(self.mutations)!r})"


class BulkMutation:
    """
    An ordered batch of independent RowMutationEntry objects

    Each entry succeeds or fails on its own. Positions in the batch are the
    indices reported back in FailedMutation.
    """

    def __init__(self, entries: list[RowMutationEntry] | None = None):
        self._entries: list[RowMutationEntry] = []
        self._mutation_count = 0
        for entry in entries or []:
            self.append(entry)

    def append(self, entry: RowMutationEntry) -> None:
        """
        Add an entry to the end of the batch

        Raises:
          - ValueError if the batch would exceed the per-request mutation limit
        """
        if not isinstance(entry, RowMutationEntry):
            raise TypeError("entry must be a RowMutationEntry")
        new_count = self._mutation_count + len(entry.mutations)
        if new_count > _MUTATE_ROWS_REQUEST_MUTATION_LIMIT:
            raise ValueError(
                f"bulk mutations must have <= {_MUTATE_ROWS_REQUEST_MUTATION_LIMIT} mutations"
            )
        self._entries.append(entry)
        self._mutation_count = new_count

    @property
    def entries(self) -> list[RowMutationEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RowMutationEntry]:
        return iter(self._entries)


@dataclass(frozen=True)
class FailedMutation:
    """
    Records that the entry at `index` of a BulkMutation did not succeed

    Entries that succeeded never produce a FailedMutation.
    """

    index: int
    entry: RowMutationEntry
    error: core_exceptions.GoogleAPICallError | Exception

    @property
    def code(self):
        """The grpc.StatusCode of the terminal error, if known"""
        return getattr(self.error, "grpc_status_code", None)
