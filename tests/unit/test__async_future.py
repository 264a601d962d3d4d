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

import google.api_core.exceptions as core_exceptions


class TestFutureCallback:
    @staticmethod
    def _get_target_class():
        from rowstore._async_future import _FutureCallback

        return _FutureCallback

    def _make_one(self, *args, **kwargs):
        if not args:
            args = ("test",)
        return self._get_target_class()(*args, **kwargs)

    def test_ctor(self):
        instance = self._make_one()
        assert not instance.future.done()
        assert not instance.resolved
        assert not instance.cancelled

    def test_resolve_with_response(self):
        instance = self._make_one()
        assert instance("response") is True
        assert instance.resolved
        assert instance.future.result() == "response"

    def test_resolve_with_error(self):
        instance = self._make_one()
        exc = core_exceptions.NotFound("missing")
        assert instance(error=exc) is True
        assert instance.future.exception() is exc

    def test_resolves_once(self):
        instance = self._make_one()
        assert instance("first") is True
        assert instance("second") is False
        assert instance(error=RuntimeError("late")) is False
        assert instance.future.result() == "first"

    def test_transform(self):
        instance = self._make_one("t", transform=lambda r: r * 2)
        instance(21)
        assert instance.future.result() == 42

    def test_transform_error_captured(self):
        """
        an exception raised while converting the response resolves the
        future with that exception, rather than propagating to the caller
        """

        def _bad_transform(response):
            raise ValueError("bad response")

        instance = self._make_one("t", transform=_bad_transform)
        assert instance("response") is True
        with pytest.raises(ValueError, match="bad response"):
            instance.future.result()

    def test_transform_skipped_on_error(self):
        calls = []
        instance = self._make_one("t", transform=calls.append)
        instance(error=RuntimeError("x"))
        assert calls == []

    def test_cancelled_by_consumer(self):
        instance = self._make_one()
        assert instance.future.cancel() is True
        assert instance.cancelled
        # the result is dropped without raising
        assert instance("late result") is False
        assert instance.resolved
        assert instance.future.cancelled()
