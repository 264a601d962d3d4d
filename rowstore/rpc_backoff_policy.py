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

from abc import ABC, abstractmethod

from google.api_core.retry import exponential_sleep_generator

from rowstore._helpers import CallContext

DEFAULT_INITIAL_DELAY = 0.01
DEFAULT_MAXIMUM_DELAY = 60.0
DEFAULT_MULTIPLIER = 2.0


class RPCBackoffPolicy(ABC):
    """
    Base class for backoff policies.

    on_completion is called after each failed attempt and returns how long
    to wait, in seconds, before the next one.
    """

    @abstractmethod
    def clone(self) -> RPCBackoffPolicy:
        raise NotImplementedError

    def setup(self, context: CallContext) -> None:
        pass

    @abstractmethod
    def on_completion(self, exc: Exception | None = None) -> float:
        raise NotImplementedError


class ExponentialBackoffPolicy(RPCBackoffPolicy):
    """
    Exponentially growing delays with jitter.

    Candidate delays come from api_core's exponential_sleep_generator. Each
    returned delay is at least the previous one and at most `maximum_delay`,
    so delays never decrease even when the jitter draws low.
    """

    def __init__(
        self,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        maximum_delay: float = DEFAULT_MAXIMUM_DELAY,
        multiplier: float = DEFAULT_MULTIPLIER,
    ):
        if initial_delay <= 0:
            raise ValueError("initial_delay must be greater than 0")
        if maximum_delay < initial_delay:
            raise ValueError("maximum_delay must be >= initial_delay")
        if multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        self._initial_delay = initial_delay
        self._maximum_delay = maximum_delay
        self._multiplier = multiplier
        self._sleep_generator = exponential_sleep_generator(
            initial=initial_delay, maximum=maximum_delay, multiplier=multiplier
        )
        self._last_delay = 0.0

    def clone(self) -> ExponentialBackoffPolicy:
        return ExponentialBackoffPolicy(
            self._initial_delay, self._maximum_delay, self._multiplier
        )

    def on_completion(self, exc: Exception | None = None) -> float:
        candidate = next(self._sleep_generator)
        self._last_delay = min(max(self._last_delay, candidate), self._maximum_delay)
        return self._last_delay

    def __repr__(self):
        return (
            f"ExponentialBackoffPolicy(initial_delay={self._initial_delay}, "
            f"maximum_delay={self._maximum_delay}, multiplier={self._multiplier})"
        )


class LinearBackoffPolicy(RPCBackoffPolicy):
    """
    Delays that grow by a fixed `increment`, capped at `maximum_delay`.
    """

    def __init__(self, delay: float, increment: float = 0.0, maximum_delay: float | None = None):
        if delay < 0 or increment < 0:
            raise ValueError("delay and increment must be >= 0")
        if maximum_delay is None:
            maximum_delay = DEFAULT_MAXIMUM_DELAY
        if maximum_delay < delay:
            raise ValueError("maximum_delay must be >= delay")
        self._delay = delay
        self._increment = increment
        self._maximum_delay = maximum_delay
        self._next_delay = delay

    def clone(self) -> LinearBackoffPolicy:
        return LinearBackoffPolicy(self._delay, self._increment, self._maximum_delay)

    def on_completion(self, exc: Exception | None = None) -> float:
        delay = self._next_delay
        self._next_delay = min(delay + self._increment, self._maximum_delay)
        return delay

    def __repr__(self):
        return (
            f"LinearBackoffPolicy(delay={self._delay}, increment={self._increment}, "
            f"maximum_delay={self._maximum_delay})"
        )
