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

import pytest

from unittest import mock

import google.api_core.exceptions as core_exceptions


class TestExponentialBackoffPolicy:
    def _get_target_class(self):
        from rowstore.rpc_backoff_policy import ExponentialBackoffPolicy

        return ExponentialBackoffPolicy

    def _make_one(self, *args, **kwargs):
        return self._get_target_class()(*args, **kwargs)

    def test_defaults(self):
        policy = self._make_one()
        assert policy._initial_delay == 0.01
        assert policy._maximum_delay == 60
        assert policy._multiplier == 2

    @pytest.mark.parametrize(
        "args",
        [(-1, 10), (0, 10), (5, 1), (1, 10, 0.5)],
    )
    def test_ctor_invalid(self, args):
        with pytest.raises(ValueError):
            self._make_one(*args)

    def test_ctor_builds_sleep_generator(self):
        with mock.patch(
            "rowstore.rpc_backoff_policy.exponential_sleep_generator"
        ) as gen:
            self._make_one(0.5, 30, 3)
        gen.assert_called_once_with(initial=0.5, maximum=30, multiplier=3)

    def test_delays_monotonic_and_capped(self):
        """
        consecutive delays never decrease, and never exceed the maximum
        """
        max_delay = 1.0
        policy = self._make_one(0.01, max_delay, 2.0)
        exc = core_exceptions.ServiceUnavailable("")
        delays = [policy.on_completion(exc) for _ in range(50)]
        for prev, cur in zip(delays, delays[1:]):
            assert cur >= prev
        assert all(0 <= d <= max_delay for d in delays)
        assert delays[-1] > 0

    def test_small_initial_delay_grows(self):
        policy = self._make_one(0.001, 5.0)
        delays = [policy.on_completion() for _ in range(30)]
        assert max(delays) > 0.001

    def test_delays_with_low_jitter(self):
        """
        a draw below the previous delay repeats the previous delay
        """
        with mock.patch(
            "rowstore.rpc_backoff_policy.exponential_sleep_generator",
            return_value=iter([1, 0.25, 3, 2, 0]),
        ):
            policy = self._make_one(1, 8, 2)
            delays = [policy.on_completion() for _ in range(5)]
        assert delays == [1, 1, 3, 3, 3]

    def test_delays_capped_at_maximum(self):
        with mock.patch(
            "rowstore.rpc_backoff_policy.exponential_sleep_generator",
            return_value=iter([2, 4, 8, 16, 32]),
        ):
            policy = self._make_one(1, 8, 2)
            delays = [policy.on_completion() for _ in range(5)]
        assert delays == [2, 4, 8, 8, 8]

    def test_clone_resets_state(self):
        with mock.patch(
            "rowstore.rpc_backoff_policy.exponential_sleep_generator",
            side_effect=lambda **kwargs: iter([1, 2, 4, 8]),
        ) as gen:
            policy = self._make_one(1, 8, 2)
            for _ in range(4):
                policy.on_completion()
            clone = policy.clone()
            assert clone.on_completion() == 1
        assert gen.call_count == 2
        assert policy._last_delay == 8


class TestLinearBackoffPolicy:
    def _get_target_class(self):
        from rowstore.rpc_backoff_policy import LinearBackoffPolicy

        return LinearBackoffPolicy

    def _make_one(self, *args, **kwargs):
        return self._get_target_class()(*args, **kwargs)

    def test_constant(self):
        policy = self._make_one(0.5)
        assert [policy.on_completion() for _ in range(3)] == [0.5, 0.5, 0.5]

    def test_increment_capped(self):
        policy = self._make_one(1, increment=2, maximum_delay=4)
        assert [policy.on_completion() for _ in range(4)] == [1, 3, 4, 4]

    def test_clone(self):
        policy = self._make_one(1, increment=1)
        policy.on_completion()
        policy.on_completion()
        clone = policy.clone()
        assert clone.on_completion() == 1

    @pytest.mark.parametrize(
        "args,kwargs",
        [((-1,), {}), ((1,), {"increment": -1}), ((5,), {"maximum_delay": 1})],
    )
    def test_ctor_invalid(self, args, kwargs):
        with pytest.raises(ValueError):
            self._make_one(*args, **kwargs)
