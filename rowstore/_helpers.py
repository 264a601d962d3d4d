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

from typing import Any, Callable, Sequence, TypeVar, TYPE_CHECKING
import logging
import time

from google.api_core import exceptions as core_exceptions
from google.api_core import retry as retries

from rowstore.exceptions import _MutateRowsIncomplete
from rowstore.exceptions import _terminal_error

if TYPE_CHECKING:
    from rowstore.rpc_retry_policy import RPCRetryPolicy
    from rowstore.rpc_backoff_policy import RPCBackoffPolicy

"""
Helper functions used in various places in the library.
"""

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# status codes that indicate a transient failure
_RETRYABLE_ERRORS = (
    core_exceptions.DeadlineExceeded,
    core_exceptions.ServiceUnavailable,
    core_exceptions.Aborted,
    _MutateRowsIncomplete,
)

_is_retryable = retries.if_exception_type(*_RETRYABLE_ERRORS)


class CallContext:
    """
    Per-attempt call settings: the attempt timeout, set by the retry policy,
    and the routing metadata attached to the request.
    """

    __slots__ = ("timeout", "metadata")

    def __init__(self, metadata: Sequence[tuple[str, str]] = ()):
        self.timeout: float | None = None
        self.metadata: list[tuple[str, str]] = list(metadata)

    def as_kwargs(self) -> dict[str, Any]:
        return {"timeout": self.timeout, "metadata": self.metadata}

    def __repr__(self):
        return f"CallContext(timeout={self.timeout!r}, metadata={self.metadata!r})"


def _make_metadata(
    table_name: str, app_profile_id: str | None
) -> list[tuple[str, str]]:
    """Routing header sent with every request against a table"""
    params = f"table_name={table_name}"
    if app_profile_id is not None:
        params += f"&app_profile_id={app_profile_id}"
    return [("x-goog-request-params", params)]


def _make_unary_call(
    rpc: Callable[..., T],
    request: dict[str, Any],
    *,
    retry_policy: "RPCRetryPolicy",
    backoff_policy: "RPCBackoffPolicy",
    metadata: Sequence[tuple[str, str]],
    is_idempotent: bool,
    error_message: str,
) -> T:
    """
    Make a unary rpc, retrying transient failures while the policies allow it.

    The policies must be fresh clones owned by the calling operation.

    Args:
      - rpc: the transport method to call
      - request: the request dict to send on every attempt
      - retry_policy: decides if another attempt is allowed
      - backoff_policy: decides how long to wait between attempts
      - metadata: metadata to attach to each attempt
      - is_idempotent: if False, the first failure is final
      - error_message: prefix for the error raised when the call gives up
    Returns:
      - the response of the first successful attempt
    Raises:
      - GoogleAPICallError: with the last attempt's status code, once the
          call failed permanently or the retry budget is spent
    """
    errors: list[Exception] = []
    while True:
        context = CallContext(metadata)
        retry_policy.setup(context)
        backoff_policy.setup(context)
        try:
            return rpc(request, **context.as_kwargs())
        except core_exceptions.GoogleAPICallError as exc:
            errors.append(exc)
            # it is up to the policy to terminate this loop
            if not retry_policy.on_failure(exc) or not is_idempotent:
                _LOGGER.debug(
                    "%s failed after %d attempt(s): %r", error_message, len(errors), exc
                )
                raise _terminal_error(errors, error_message)
            delay = backoff_policy.on_completion(exc)
            _LOGGER.debug(
                "attempt %d failed with %r; retrying in %.3fs", len(errors), exc, delay
            )
            time.sleep(delay)


def _validate_timeouts(
    operation_timeout: float, attempt_timeout: float | None, allow_none: bool = False
):
    """
    Raise ValueError unless both timeouts are positive numbers of seconds.

    attempt_timeout may be None only when allow_none is set.
    """
    if operation_timeout is None or operation_timeout <= 0:
        raise ValueError(
            f"operation_timeout must be greater than 0, got {operation_timeout!r}"
        )
    if attempt_timeout is None:
        if not allow_none:
            raise ValueError("attempt_timeout must not be None")
    elif attempt_timeout <= 0:
        raise ValueError(f"attempt_timeout must be greater than 0, got {attempt_timeout!r}")
