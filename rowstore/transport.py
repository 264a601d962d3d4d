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

from typing import Any, Iterator, Protocol, Sequence

from rowstore.types import CheckAndMutateRowResponse
from rowstore.types import MutateRowResponse
from rowstore.types import MutateRowsResponse
from rowstore.types import ReadRowsResponse


class ServerStream(Protocol):
    """
    A server-streaming call in progress. Iterating yields responses;
    cancel() abandons the call.
    """

    def __iter__(self) -> Iterator[Any]:
        ...

    def cancel(self) -> bool:
        ...


class DataTransport(Protocol):
    """
    The RPC surface the table operations run against.

    Every method takes a request dict plus the per-call timeout (seconds) and
    metadata, and raises google.api_core.exceptions.GoogleAPICallError when
    the call fails. Implementations are shared between concurrent operations
    and must be safe to call from several threads.
    """

    def mutate_row(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Sequence[tuple[str, str]] = (),
    ) -> MutateRowResponse:
        ...

    def mutate_rows(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Sequence[tuple[str, str]] = (),
    ) -> Iterator[MutateRowsResponse]:
        ...

    def read_rows(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Sequence[tuple[str, str]] = (),
    ) -> ServerStream:
        """Returns a ServerStream of ReadRowsResponse messages"""
        ...

    def check_and_mutate_row(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Sequence[tuple[str, str]] = (),
    ) -> CheckAndMutateRowResponse:
        ...


__all__ = (
    "DataTransport",
    "ServerStream",
    "ReadRowsResponse",
)
