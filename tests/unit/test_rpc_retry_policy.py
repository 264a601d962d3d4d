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

from rowstore._helpers import CallContext
from rowstore.exceptions import _MutateRowsIncomplete


class TestLimitedErrorCountRetryPolicy:
    def _get_target_class(self):
        from rowstore.rpc_retry_policy import LimitedErrorCountRetryPolicy

        return LimitedErrorCountRetryPolicy

    def _make_one(self, *args, **kwargs):
        return self._get_target_class()(*args, **kwargs)

    def test_ctor_negative(self):
        with pytest.raises(ValueError):
            self._make_one(-1)

    def test_ctor_bad_attempt_timeout(self):
        with pytest.raises(ValueError):
            self._make_one(1, attempt_timeout=0)

    @pytest.mark.parametrize("max_failures", [0, 1, 3])
    def test_allows_n_plus_one_attempts(self, max_failures):
        """
        a policy with N allowed failures permits N retries
        """
        policy = self._make_one(max_failures)
        attempts = 1
        while policy.on_failure(core_exceptions.ServiceUnavailable("")):
            attempts += 1
        assert attempts == max_failures + 1
        assert policy.is_exhausted()

    @pytest.mark.parametrize(
        "exc",
        [
            core_exceptions.PermissionDenied(""),
            core_exceptions.NotFound(""),
            core_exceptions.InvalidArgument(""),
            core_exceptions.FailedPrecondition(""),
            RuntimeError("boom"),
        ],
    )
    def test_permanent_error(self, exc):
        policy = self._make_one(5)
        assert policy.on_failure(exc) is False
        # permanent errors don't use up the budget
        assert not policy.is_exhausted()

    @pytest.mark.parametrize(
        "exc",
        [
            core_exceptions.ServiceUnavailable(""),
            core_exceptions.DeadlineExceeded(""),
            core_exceptions.Aborted(""),
            _MutateRowsIncomplete(""),
        ],
    )
    def test_transient_error(self, exc):
        policy = self._make_one(1)
        assert policy.on_failure(exc) is True

    def test_clone_resets_state(self):
        policy = self._make_one(1, attempt_timeout=2)
        policy.on_failure(core_exceptions.ServiceUnavailable(""))
        policy.on_failure(core_exceptions.ServiceUnavailable(""))
        assert policy.is_exhausted()
        clone = policy.clone()
        assert isinstance(clone, self._get_target_class())
        assert clone is not policy
        assert not clone.is_exhausted()
        assert clone.on_failure(core_exceptions.ServiceUnavailable("")) is True

    def test_setup_sets_attempt_timeout(self):
        policy = self._make_one(1, attempt_timeout=2.5)
        context = CallContext()
        policy.setup(context)
        assert context.timeout == 2.5

    def test_setup_without_attempt_timeout(self):
        policy = self._make_one(1)
        context = CallContext()
        policy.setup(context)
        assert context.timeout is None


class TestLimitedTimeRetryPolicy:
    def _get_target_class(self):
        from rowstore.rpc_retry_policy import LimitedTimeRetryPolicy

        return LimitedTimeRetryPolicy

    def _make_one(self, *args, **kwargs):
        return self._get_target_class()(*args, **kwargs)

    def test_defaults(self):
        from rowstore.rpc_retry_policy import DEFAULT_MAXIMUM_RETRY_PERIOD

        with mock.patch("time.monotonic", return_value=100.0):
            policy = self._make_one()
            context = CallContext()
            policy.setup(context)
        assert context.timeout == DEFAULT_MAXIMUM_RETRY_PERIOD
        assert DEFAULT_MAXIMUM_RETRY_PERIOD == 600

    @pytest.mark.parametrize("duration", [0, -1])
    def test_ctor_invalid_duration(self, duration):
        with pytest.raises(ValueError):
            self._make_one(duration)

    def test_transient_error_within_budget(self):
        with mock.patch("time.monotonic", return_value=0.0):
            policy = self._make_one(10)
        with mock.patch("time.monotonic", return_value=9.0):
            assert policy.on_failure(core_exceptions.ServiceUnavailable("")) is True
            assert not policy.is_exhausted()

    def test_transient_error_after_budget(self):
        with mock.patch("time.monotonic", return_value=0.0):
            policy = self._make_one(10)
        with mock.patch("time.monotonic", return_value=10.5):
            assert policy.on_failure(core_exceptions.ServiceUnavailable("")) is False
            assert policy.is_exhausted()

    def test_permanent_error(self):
        policy = self._make_one(10)
        assert policy.on_failure(core_exceptions.PermissionDenied("")) is False

    @pytest.mark.parametrize(
        "attempt_timeout,now,expected",
        [
            (None, 4.0, 6.0),
            (2.0, 4.0, 2.0),
            (2.0, 9.0, 1.0),
            (2.0, 12.0, 0.0),
        ],
    )
    def test_setup_caps_attempt_timeout(self, attempt_timeout, now, expected):
        with mock.patch("time.monotonic", return_value=0.0):
            policy = self._make_one(10, attempt_timeout=attempt_timeout)
        context = CallContext()
        with mock.patch("time.monotonic", return_value=now):
            policy.setup(context)
        assert context.timeout == pytest.approx(expected)

    def test_clone_restarts_clock(self):
        with mock.patch("time.monotonic", return_value=0.0):
            policy = self._make_one(10)
        with mock.patch("time.monotonic", return_value=20.0):
            assert policy.is_exhausted()
            clone = policy.clone()
            assert not clone.is_exhausted()
            assert clone.on_failure(core_exceptions.Aborted("")) is True
