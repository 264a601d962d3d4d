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
Retry loops that run on a CompletionQueue instead of the calling thread.

Each attempt runs as a task on the queue's executor. Between attempts the
operation schedules a timer rather than sleeping, and the outcome is delivered
through a _FutureCallback exactly once.
"""
from __future__ import annotations

from typing import Any, Callable, Sequence, TYPE_CHECKING
import logging

from google.api_core import exceptions as core_exceptions

from rowstore._helpers import CallContext
from rowstore.exceptions import _MutateRowsIncomplete
from rowstore.exceptions import _terminal_error

if TYPE_CHECKING:
    from rowstore._async_future import _FutureCallback
    from rowstore._bulk_mutator import _BulkMutator
    from rowstore.completion_queue import CompletionQueue
    from rowstore.rpc_backoff_policy import RPCBackoffPolicy
    from rowstore.rpc_retry_policy import RPCRetryPolicy
    from rowstore.transport import DataTransport

_LOGGER = logging.getLogger(__name__)


class _AsyncRetryUnaryCall:
    """
    Asynchronous counterpart of _helpers._make_unary_call.

    The decision rules are the same: a failure ends the operation if the
    retry policy refuses another attempt or the request is not idempotent.
    """

    def __init__(
        self,
        cq: "CompletionQueue",
        rpc: Callable[..., Any],
        request: dict[str, Any],
        *,
        retry_policy: "RPCRetryPolicy",
        backoff_policy: "RPCBackoffPolicy",
        metadata: Sequence[tuple[str, str]],
        is_idempotent: bool,
        error_message: str,
        callback: "_FutureCallback",
    ):
        self._cq = cq
        self._rpc = rpc
        self._request = request
        self._retry_policy = retry_policy
        self._backoff_policy = backoff_policy
        self._metadata = list(metadata)
        self._is_idempotent = is_idempotent
        self._error_message = error_message
        self._callback = callback
        self._errors: list[Exception] = []

    def start(self) -> None:
        try:
            self._cq.submit(self._attempt)
        except RuntimeError:
            self._on_cancel()

    def _attempt(self) -> None:
        if self._callback.cancelled:
            _LOGGER.debug("%s: abandoned by caller, no further attempts", self._error_message)
            return
        context = CallContext(self._metadata)
        self._retry_policy.setup(context)
        self._backoff_policy.setup(context)
        try:
            response = self._rpc(self._request, **context.as_kwargs())
        except core_exceptions.GoogleAPICallError as exc:
            self._errors.append(exc)
            if not self._retry_policy.on_failure(exc) or not self._is_idempotent:
                self._callback(error=_terminal_error(self._errors, self._error_message))
                return
            delay = self._backoff_policy.on_completion(exc)
            _LOGGER.debug(
                "%s: attempt %d failed with %r; retrying in %.3fs",
                self._error_message,
                len(self._errors),
                exc,
                delay,
            )
            self._schedule(delay)
            return
        except Exception as exc:
            # not a transport failure; surface it through the future
            self._callback(error=exc)
            return
        self._callback(response)

    def _schedule(self, delay: float) -> None:
        try:
            self._cq.run_after(delay, self._attempt, on_cancel=self._on_cancel)
        except RuntimeError:
            self._on_cancel()

    def _on_cancel(self) -> None:
        self._callback(
            error=core_exceptions.Cancelled(
                f"{self._error_message}: completion queue shut down"
            )
        )


class _AsyncBulkMutateOperation:
    """
    Asynchronous counterpart of the Table.bulk_apply loop.

    Rounds of mutate_rows run on the queue until no entry is pending or the
    retry policy refuses another round. The future always resolves with the
    list of FailedMutation objects.
    """

    def __init__(
        self,
        cq: "CompletionQueue",
        transport: "DataTransport",
        mutator: "_BulkMutator",
        *,
        retry_policy: "RPCRetryPolicy",
        backoff_policy: "RPCBackoffPolicy",
        metadata: Sequence[tuple[str, str]],
        callback: "_FutureCallback",
    ):
        self._cq = cq
        self._transport = transport
        self._mutator = mutator
        self._retry_policy = retry_policy
        self._backoff_policy = backoff_policy
        self._metadata = list(metadata)
        self._callback = callback

    def start(self) -> None:
        try:
            self._cq.submit(self._round)
        except RuntimeError:
            # nothing was sent; report every entry as cancelled
            exc = core_exceptions.Cancelled(
                "async bulk_apply: completion queue shut down"
            )
            for idx in sorted(self._mutator.remaining_indices):
                self._mutator._handle_entry_error(idx, exc)
            self._finish()

    def _round(self) -> None:
        if self._callback.cancelled:
            _LOGGER.debug("async bulk_apply abandoned by caller")
            return
        context = CallContext(self._metadata)
        self._backoff_policy.setup(context)
        self._retry_policy.setup(context)
        exc: Exception | None = None
        try:
            self._mutator.make_one_request(self._transport, context)
        except core_exceptions.GoogleAPICallError as e:
            exc = e
        except Exception as e:
            self._callback(error=e)
            return
        if not self._mutator.has_pending_mutations():
            self._finish()
            return
        if exc is None:
            exc = _MutateRowsIncomplete("retryable entries remain after mutate_rows round")
        if not self._retry_policy.on_failure(exc):
            self._finish()
            return
        delay = self._backoff_policy.on_completion(exc)
        _LOGGER.debug(
            "async bulk_apply: %d entries pending; next round in %.3fs",
            len(self._mutator.remaining_indices),
            delay,
        )
        try:
            self._cq.run_after(delay, self._round, on_cancel=self._finish)
        except RuntimeError:
            self._finish()

    def _finish(self) -> None:
        self._callback(self._mutator.extract_final_failures())
