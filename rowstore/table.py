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

from typing import Any, Sequence, TYPE_CHECKING
import concurrent.futures
import logging
import time

from google.api_core import exceptions as core_exceptions

from rowstore._async_future import _FutureCallback
from rowstore._async_operations import _AsyncBulkMutateOperation
from rowstore._async_operations import _AsyncRetryUnaryCall
from rowstore._bulk_mutator import _BulkMutator
from rowstore._helpers import CallContext
from rowstore._helpers import _make_metadata
from rowstore._helpers import _make_unary_call
from rowstore._read_rows import RowReader
from rowstore.exceptions import _MutateRowsIncomplete
from rowstore.exceptions import _terminal_error
from rowstore.idempotent_mutation_policy import IdempotentMutationPolicy
from rowstore.idempotent_mutation_policy import SafeIdempotentMutationPolicy
from rowstore.mutations import BulkMutation
from rowstore.mutations import FailedMutation
from rowstore.mutations import Mutation
from rowstore.mutations import RowMutationEntry
from rowstore.read_rows_query import RowSet
from rowstore.rpc_backoff_policy import ExponentialBackoffPolicy
from rowstore.rpc_backoff_policy import RPCBackoffPolicy
from rowstore.rpc_retry_policy import LimitedTimeRetryPolicy
from rowstore.rpc_retry_policy import RPCRetryPolicy

if TYPE_CHECKING:
    from rowstore.completion_queue import CompletionQueue
    from rowstore.row import Row
    from rowstore.row_filters import RowFilter
    from rowstore.transport import DataTransport

_LOGGER = logging.getLogger(__name__)

_APPLY_ERROR_MESSAGE = "Permanent (or too many transient) errors in Table.apply()"
_CHECK_AND_MUTATE_ERROR_MESSAGE = (
    "Permanent (or too many transient) errors in Table.check_and_mutate_row()"
)


class Table:
    """
    Main Data API surface for a single table.

    A Table holds prototypes of its retry, backoff and idempotency policies.
    Every operation clones them once, so operations never share retry state,
    and a Table may be used from several threads at once.
    """

    def __init__(
        self,
        transport: "DataTransport",
        table_name: str,
        *,
        app_profile_id: str | None = None,
        retry_policy: RPCRetryPolicy | None = None,
        backoff_policy: RPCBackoffPolicy | None = None,
        idempotent_policy: IdempotentMutationPolicy | None = None,
    ):
        """
        Args:
          - transport: the transport requests are sent on. Shared, not owned
          - table_name: the fully qualified table name, in the form
              projects/{project}/instances/{instance}/tables/{table}
          - app_profile_id: the app profile to route requests through
          - retry_policy: prototype retry policy. Defaults to retrying
              transient errors for up to 10 minutes
          - backoff_policy: prototype backoff policy. Defaults to jittered
              exponential backoff from 10ms up to 60s
          - idempotent_policy: decides which mutations may be retried.
              Defaults to SafeIdempotentMutationPolicy
        Raises:
          - ValueError if table_name is empty
        """
        if not table_name:
            raise ValueError("table_name must not be empty")
        self._transport = transport
        self.table_name = table_name
        self.app_profile_id = app_profile_id
        self._retry_policy = retry_policy or LimitedTimeRetryPolicy()
        self._backoff_policy = backoff_policy or ExponentialBackoffPolicy()
        self._idempotent_policy = idempotent_policy or SafeIdempotentMutationPolicy()
        self._metadata = _make_metadata(table_name, app_profile_id)

    def _clone_policies(self) -> tuple[RPCRetryPolicy, RPCBackoffPolicy]:
        return self._retry_policy.clone(), self._backoff_policy.clone()

    def _mutate_row_request(self, entry: RowMutationEntry) -> dict[str, Any]:
        request = {"table_name": self.table_name, **entry._to_dict()}
        if self.app_profile_id is not None:
            request["app_profile_id"] = self.app_profile_id
        return request

    def _entry_is_idempotent(
        self, policy: IdempotentMutationPolicy, entry: RowMutationEntry
    ) -> bool:
        return all(policy.is_idempotent(m) for m in entry.mutations)

    def apply(self, entry: RowMutationEntry) -> None:
        """
        Apply all mutations of a single row atomically.

        Transient failures are retried while the retry policy allows it, but
        only if every mutation in the entry is idempotent.

        Args:
          - entry: the row key and the mutations to apply to it
        Raises:
          - GoogleAPICallError: if the mutation failed permanently, or the
              retry budget was spent. The code is the last attempt's code
        """
        retry_policy, backoff_policy = self._clone_policies()
        is_idempotent = self._entry_is_idempotent(
            self._idempotent_policy.clone(), entry
        )
        request = self._mutate_row_request(entry)
        errors: list[Exception] = []
        while True:
            context = CallContext(self._metadata)
            retry_policy.setup(context)
            backoff_policy.setup(context)
            try:
                self._transport.mutate_row(request, **context.as_kwargs())
                return
            except core_exceptions.GoogleAPICallError as exc:
                errors.append(exc)
                if not retry_policy.on_failure(exc):
                    _LOGGER.debug("apply(%r) gave up: %r", entry.row_key, exc)
                    raise _terminal_error(errors, _APPLY_ERROR_MESSAGE)
                if not is_idempotent:
                    _LOGGER.debug(
                        "apply(%r) failed with %r; entry is not idempotent, not retrying",
                        entry.row_key,
                        exc,
                    )
                    raise _terminal_error(errors, _APPLY_ERROR_MESSAGE)
                delay = backoff_policy.on_completion(exc)
                _LOGGER.debug(
                    "apply(%r) attempt %d failed with %r; retrying in %.3fs",
                    entry.row_key,
                    len(errors),
                    exc,
                    delay,
                )
                time.sleep(delay)

    def async_apply(
        self, entry: RowMutationEntry, cq: "CompletionQueue"
    ) -> "concurrent.futures.Future[None]":
        """
        Asynchronous version of apply, run on the given completion queue.

        Returns:
          - a Future that resolves to None, or to the error apply would raise.
              Cancelling it stops any further attempts
        """
        retry_policy, backoff_policy = self._clone_policies()
        is_idempotent = self._entry_is_idempotent(
            self._idempotent_policy.clone(), entry
        )
        callback: _FutureCallback[None] = _FutureCallback(
            "async_apply", transform=lambda response: None
        )
        operation = _AsyncRetryUnaryCall(
            cq,
            self._transport.mutate_row,
            self._mutate_row_request(entry),
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
            metadata=self._metadata,
            is_idempotent=is_idempotent,
            error_message=_APPLY_ERROR_MESSAGE,
            callback=callback,
        )
        operation.start()
        return callback.future

    def _make_mutator(
        self, bulk: BulkMutation | Sequence[RowMutationEntry]
    ) -> _BulkMutator:
        if not isinstance(bulk, BulkMutation):
            bulk = BulkMutation(list(bulk))
        return _BulkMutator(
            self.table_name,
            self.app_profile_id,
            self._idempotent_policy.clone(),
            bulk,
        )

    def bulk_apply(
        self, bulk: BulkMutation | Sequence[RowMutationEntry]
    ) -> list[FailedMutation]:
        """
        Apply mutations to many rows. Each entry is applied atomically, but
        the batch as a whole is not.

        Entries that fail with a transient error are sent again in later
        rounds, if all their mutations are idempotent, while the retry policy
        allows it.

        Args:
          - bulk: the entries to apply
        Returns:
          - the entries that did not succeed, sorted by their index in `bulk`.
              An empty list means every entry was applied
        """
        retry_policy, backoff_policy = self._clone_policies()
        mutator = self._make_mutator(bulk)
        while mutator.has_pending_mutations():
            context = CallContext(self._metadata)
            backoff_policy.setup(context)
            retry_policy.setup(context)
            exc: Exception | None = None
            try:
                mutator.make_one_request(self._transport, context)
            except core_exceptions.GoogleAPICallError as e:
                exc = e
            if not mutator.has_pending_mutations():
                break
            if exc is None:
                exc = _MutateRowsIncomplete(
                    "retryable entries remain after mutate_rows round"
                )
            if not retry_policy.on_failure(exc):
                _LOGGER.debug(
                    "bulk_apply gave up with %d entries pending: %r",
                    len(mutator.remaining_indices),
                    exc,
                )
                break
            delay = backoff_policy.on_completion(exc)
            _LOGGER.debug(
                "bulk_apply: %d entries pending; next round in %.3fs",
                len(mutator.remaining_indices),
                delay,
            )
            time.sleep(delay)
        return mutator.extract_final_failures()

    def async_bulk_apply(
        self, bulk: BulkMutation | Sequence[RowMutationEntry], cq: "CompletionQueue"
    ) -> "concurrent.futures.Future[list[FailedMutation]]":
        """
        Asynchronous version of bulk_apply, run on the given completion queue.

        Returns:
          - a Future that resolves to the list of failed entries
        """
        retry_policy, backoff_policy = self._clone_policies()
        callback: _FutureCallback[list[FailedMutation]] = _FutureCallback(
            "async_bulk_apply"
        )
        operation = _AsyncBulkMutateOperation(
            cq,
            self._transport,
            self._make_mutator(bulk),
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
            metadata=self._metadata,
            callback=callback,
        )
        operation.start()
        return callback.future

    def read_rows(
        self,
        row_set: RowSet | None = None,
        rows_limit: int | None = None,
        row_filter: "RowFilter" | None = None,
    ) -> RowReader:
        """
        Read a set of rows, resuming transparently after transient failures.

        Args:
          - row_set: the rows to read. None or an empty RowSet reads the whole table
          - rows_limit: the maximum number of rows to return. None means no limit
          - row_filter: filter applied by the server to each row
        Returns:
          - a RowReader. The read starts when the reader is first iterated
        Raises:
          - ValueError if rows_limit is negative
        """
        retry_policy, backoff_policy = self._clone_policies()
        return RowReader(
            self._transport,
            self.table_name,
            self.app_profile_id,
            row_set if row_set is not None else RowSet(),
            rows_limit,
            row_filter,
            retry_policy,
            backoff_policy,
            metadata=self._metadata,
        )

    def read_row(
        self, row_key: str | bytes, row_filter: "RowFilter" | None = None
    ) -> tuple[bool, "Row" | None]:
        """
        Read a single row by key.

        Returns:
          - (True, row) if the row exists, (False, None) otherwise
        Raises:
          - GoogleAPICallError: if the read failed
        """
        with self.read_rows(RowSet(row_keys=[row_key]), 1, row_filter) as reader:
            rows = iter(reader)
            row = next(rows, None)
            if row is None:
                return False, None
            if next(rows, None) is not None:
                raise core_exceptions.InternalServerError(
                    "internal error - RowReader returned 2 rows in read_row()"
                )
            return True, row

    def check_and_mutate_row(
        self,
        row_key: str | bytes,
        predicate: "RowFilter" | None,
        true_mutations: Mutation | Sequence[Mutation] | None = None,
        false_mutations: Mutation | Sequence[Mutation] | None = None,
    ) -> bool:
        """
        Mutate a row atomically, choosing the mutations by whether the
        predicate filter matches any cell of the row.

        Conditional mutations are not retried unless the idempotency policy
        says so.

        Args:
          - row_key: the key of the row to mutate
          - predicate: the filter to check. None matches if the row has any cells
          - true_mutations: applied if the predicate matches
          - false_mutations: applied if the predicate does not match
        Returns:
          - True if the predicate matched
        Raises:
          - ValueError if both mutation lists are empty
          - GoogleAPICallError: if the request failed
        """
        if isinstance(row_key, str):
            row_key = row_key.encode("utf-8")
        if isinstance(true_mutations, Mutation):
            true_mutations = [true_mutations]
        if isinstance(false_mutations, Mutation):
            false_mutations = [false_mutations]
        true_mutations = list(true_mutations or [])
        false_mutations = list(false_mutations or [])
        if not true_mutations and not false_mutations:
            raise ValueError(
                "at least one of true_mutations or false_mutations must be set"
            )
        request: dict[str, Any] = {
            "table_name": self.table_name,
            "row_key": row_key,
            "true_mutations": [m._to_dict() for m in true_mutations],
            "false_mutations": [m._to_dict() for m in false_mutations],
        }
        if predicate is not None:
            request["predicate_filter"] = predicate._to_dict()
        if self.app_profile_id is not None:
            request["app_profile_id"] = self.app_profile_id
        retry_policy, backoff_policy = self._clone_policies()
        is_idempotent = self._idempotent_policy.clone().is_conditional_mutation_idempotent(
            request
        )
        response = _make_unary_call(
            self._transport.check_and_mutate_row,
            request,
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
            metadata=self._metadata,
            is_idempotent=is_idempotent,
            error_message=_CHECK_AND_MUTATE_ERROR_MESSAGE,
        )
        return response.predicate_matched

    def __repr__(self):
        return f"Table(table_name={self.table_name!r}, app_profile_id={self.app_profile_id!r})"
