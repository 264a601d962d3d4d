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
Retry policies decide whether a failed attempt may be retried.

Policies are stateful: they count failures or track a deadline. A table keeps
one prototype of each policy and every operation works on its own clone, so
attempts within an operation share state while unrelated operations never do.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
import time

from rowstore._helpers import CallContext
from rowstore._helpers import _is_retryable
from rowstore._helpers import _validate_timeouts

# default budget for an operation's retries, in seconds
DEFAULT_MAXIMUM_RETRY_PERIOD = 600.0


class RPCRetryPolicy(ABC):
    """
    Base class for retry policies.

    Args:
      - attempt_timeout: the time budget for each individual attempt, in
          seconds. None means attempts are only bounded by the policy itself.
    """

    def __init__(self, attempt_timeout: float | None = None):
        if attempt_timeout is not None and attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be greater than 0")
        self._attempt_timeout = attempt_timeout

    @abstractmethod
    def clone(self) -> RPCRetryPolicy:
        """Return a fresh instance with the same configuration and no history"""
        raise NotImplementedError

    def setup(self, context: CallContext) -> None:
        """Configure the deadline of the next attempt"""
        if self._attempt_timeout is not None:
            context.timeout = self._attempt_timeout

    @abstractmethod
    def on_failure(self, exc: Exception) -> bool:
        """
        Record a failed attempt.

        Returns:
          - True if another attempt is allowed
        """
        raise NotImplementedError

    @abstractmethod
    def is_exhausted(self) -> bool:
        raise NotImplementedError

    @staticmethod
    def is_permanent_failure(exc: Exception) -> bool:
        """True if the error should never be retried, whatever the budget"""
        return not _is_retryable(exc)


class LimitedErrorCountRetryPolicy(RPCRetryPolicy):
    """
    Retry transient failures until more than `maximum_failures` occurred.

    A policy with maximum_failures=N allows N+1 attempts in total.
    """

    def __init__(self, maximum_failures: int, attempt_timeout: float | None = None):
        super().__init__(attempt_timeout)
        if maximum_failures < 0:
            raise ValueError("maximum_failures must be >= 0")
        self._maximum_failures = maximum_failures
        self._failure_count = 0

    def clone(self) -> LimitedErrorCountRetryPolicy:
        return LimitedErrorCountRetryPolicy(
            self._maximum_failures, attempt_timeout=self._attempt_timeout
        )

    def on_failure(self, exc: Exception) -> bool:
        if self.is_permanent_failure(exc):
            return False
        self._failure_count += 1
        return not self.is_exhausted()

    def is_exhausted(self) -> bool:
        return self._failure_count > self._maximum_failures

    def __repr__(self):
        return f"LimitedErrorCountRetryPolicy(maximum_failures={self._maximum_failures})"


class LimitedTimeRetryPolicy(RPCRetryPolicy):
    """
    Retry transient failures until `maximum_duration` seconds have passed
    since the policy was created (or cloned).

    Attempt deadlines never extend past the end of the budget.
    """

    def __init__(
        self,
        maximum_duration: float = DEFAULT_MAXIMUM_RETRY_PERIOD,
        attempt_timeout: float | None = None,
    ):
        _validate_timeouts(maximum_duration, attempt_timeout, allow_none=True)
        super().__init__(attempt_timeout)
        self._maximum_duration = maximum_duration
        self._deadline = time.monotonic() + maximum_duration

    def clone(self) -> LimitedTimeRetryPolicy:
        return LimitedTimeRetryPolicy(
            self._maximum_duration, attempt_timeout=self._attempt_timeout
        )

    def setup(self, context: CallContext) -> None:
        remaining = max(0.0, self._deadline - time.monotonic())
        if self._attempt_timeout is None:
            context.timeout = remaining
        else:
            context.timeout = min(self._attempt_timeout, remaining)

    def on_failure(self, exc: Exception) -> bool:
        if self.is_permanent_failure(exc):
            return False
        return not self.is_exhausted()

    def is_exhausted(self) -> bool:
        return time.monotonic() >= self._deadline

    def __repr__(self):
        return f"LimitedTimeRetryPolicy(maximum_duration={self._maximum_duration})"
