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

from typing import Any, TYPE_CHECKING
import logging

from google.api_core import exceptions as core_exceptions

from rowstore._helpers import _is_retryable
from rowstore.mutations import FailedMutation

if TYPE_CHECKING:
    from rowstore._helpers import CallContext
    from rowstore.idempotent_mutation_policy import IdempotentMutationPolicy
    from rowstore.mutations import BulkMutation
    from rowstore.transport import DataTransport

_LOGGER = logging.getLogger(__name__)


class _BulkMutator:
    """
    _BulkMutator tracks the entries of a BulkMutation across mutate_rows
    rounds. Each call to make_one_request sends every entry that is still
    pending, and sorts the per-entry results into successes, entries to
    retry, and final failures.

    The mutator never sleeps or consults a retry policy: the caller owns the
    loop, and decides when to stop calling make_one_request.
    """

    def __init__(
        self,
        table_name: str,
        app_profile_id: str | None,
        idempotent_policy: "IdempotentMutationPolicy",
        mutations: "BulkMutation",
    ):
        """
        Args:
          - table_name: the fully qualified name of the table to mutate
          - app_profile_id: the app profile to send requests on, if any
          - idempotent_policy: classifies each mutation. Consulted once per
              entry here, and never again on later rounds
          - mutations: the entries to apply
        """
        self._table_name = table_name
        self._app_profile_id = app_profile_id
        self.mutations = mutations.entries
        self.is_idempotent: list[bool] = [
            all(idempotent_policy.is_idempotent(m) for m in entry.mutations)
            for entry in self.mutations
        ]
        self.remaining_indices: set[int] = set(range(len(self.mutations)))
        self.errors: dict[int, list[Exception]] = {}
        self.request_count = 0

    def has_pending_mutations(self) -> bool:
        return bool(self.remaining_indices)

    def _build_request(self, indices: list[int]) -> dict[str, Any]:
        # a fresh request is built every round; entries are never shared
        request: dict[str, Any] = {
            "table_name": self._table_name,
            "entries": [self.mutations[idx]._to_dict() for idx in indices],
        }
        if self._app_profile_id is not None:
            request["app_profile_id"] = self._app_profile_id
        return request

    def make_one_request(
        self, transport: "DataTransport", context: "CallContext"
    ) -> None:
        """
        Send one mutate_rows request containing every pending entry.

        Raises:
          - GoogleAPICallError: if the stream itself fails. Entries without a
              result at that point have the error recorded against them first
        """
        request_indices = sorted(self.remaining_indices)
        # track mutations in this request that have not been finalized yet
        active_request_indices = {
            req_idx: orig_idx for req_idx, orig_idx in enumerate(request_indices)
        }
        self.remaining_indices = set()
        if not request_indices:
            return
        self.request_count += 1
        request = self._build_request(request_indices)
        try:
            for response in transport.mutate_rows(request, **context.as_kwargs()):
                for result in response.entries:
                    # convert sub-request index to global index
                    orig_idx = active_request_indices.pop(result.index, None)
                    if orig_idx is None:
                        _LOGGER.warning(
                            "mutate_rows returned an unexpected index %d; ignoring",
                            result.index,
                        )
                        continue
                    if result.status.code == 0:
                        self._handle_entry_success(orig_idx)
                    else:
                        entry_error = core_exceptions.from_grpc_status(
                            result.status.code,
                            result.status.message,
                            details=list(result.status.details),
                        )
                        self._handle_entry_error(orig_idx, entry_error)
        except core_exceptions.GoogleAPICallError as exc:
            # add this exception to list for each mutation that wasn't
            # already handled
            for idx in active_request_indices.values():
                self._handle_entry_error(idx, exc)
            raise
        for idx in active_request_indices.values():
            self._handle_entry_error(
                idx,
                core_exceptions.ServiceUnavailable(
                    "mutate_rows stream ended without a result for this entry"
                ),
            )
        _LOGGER.debug(
            "mutate_rows round %d: %d entries sent, %d pending",
            self.request_count,
            len(request_indices),
            len(self.remaining_indices),
        )

    def _handle_entry_success(self, idx: int) -> None:
        self.errors.pop(idx, None)

    def _handle_entry_error(self, idx: int, exc: Exception) -> None:
        """
        Add an exception to the list of exceptions for a given mutation index,
        and add the index to the set of remaining indices if the exception is
        retryable and the entry is idempotent.

        Args:
          - idx: the index of the mutation that failed
          - exc: the exception to add to the list
        """
        self.errors.setdefault(idx, []).append(exc)
        if self.is_idempotent[idx] and _is_retryable(exc):
            self.remaining_indices.add(idx)

    def extract_final_failures(self) -> list[FailedMutation]:
        """
        Finish the operation and report every entry that did not succeed.

        Entries still pending are reported with the last error seen for them.

        Returns:
          - FailedMutation objects, sorted by index in the original batch
        """
        self.remaining_indices = set()
        failures: list[FailedMutation] = []
        for idx in sorted(self.errors):
            exc_list = self.errors[idx]
            if exc_list:
                cause: Exception = exc_list[-1]
            else:
                cause = core_exceptions.Unknown(
                    f"Mutation {idx} failed with no associated errors"
                )
            failures.append(FailedMutation(idx, self.mutations[idx], cause))
        return failures
