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

import grpc
import google.api_core.exceptions as core_exceptions

from rowstore.exceptions import InvalidChunk
from rowstore.read_rows_query import RowRange
from rowstore.read_rows_query import RowSet
from rowstore.types import CellChunk
from rowstore.types import ReadRowsResponse

TABLE_NAME = "projects/p/instances/i/tables/t"


class _FakeStream:
    """
    Streams the given items, raising any exception found among them
    """

    def __init__(self, items):
        self._items = list(items)
        self.cancelled = False

    def __iter__(self):
        for item in self._items:
            if self.cancelled:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def cancel(self):
        self.cancelled = True
        return True


def _row_response(*keys, value=b"v"):
    return ReadRowsResponse(
        chunks=[
            CellChunk(
                row_key=key,
                family_name="f",
                qualifier=b"q",
                timestamp_micros=1000,
                value=value,
                commit_row=True,
            )
            for key in keys
        ]
    )


def _partial_row_response(key):
    return ReadRowsResponse(
        chunks=[CellChunk(row_key=key, family_name="f", qualifier=b"q", value=b"x")]
    )


class TestRowReader:
    @staticmethod
    def _get_target_class():
        from rowstore._read_rows import RowReader

        return RowReader

    def _make_one(self, streams, **kwargs):
        from rowstore.rpc_backoff_policy import LinearBackoffPolicy
        from rowstore.rpc_retry_policy import LimitedErrorCountRetryPolicy

        transport = mock.Mock()
        transport.read_rows.side_effect = [_FakeStream(s) for s in streams]
        kwargs.setdefault("row_set", RowSet())
        kwargs.setdefault("rows_limit", None)
        kwargs.setdefault("row_filter", None)
        kwargs.setdefault("retry_policy", LimitedErrorCountRetryPolicy(3))
        kwargs.setdefault("backoff_policy", LinearBackoffPolicy(0.5))
        kwargs.setdefault("app_profile_id", None)
        instance = self._get_target_class()(
            transport,
            TABLE_NAME,
            kwargs.pop("app_profile_id"),
            kwargs.pop("row_set"),
            kwargs.pop("rows_limit"),
            kwargs.pop("row_filter"),
            kwargs.pop("retry_policy"),
            kwargs.pop("backoff_policy"),
            **kwargs,
        )
        return instance, transport

    def _requests(self, transport):
        return [c[0][0] for c in transport.read_rows.call_args_list]

    def test_ctor_negative_limit(self):
        with pytest.raises(ValueError):
            self._make_one([], rows_limit=-1)

    def test_lazy_start(self):
        from rowstore._read_rows import _ReaderState

        instance, transport = self._make_one([[_row_response(b"a")]])
        assert transport.read_rows.call_count == 0
        assert instance.state == _ReaderState.NOT_STARTED
        rows = list(instance)
        assert [r.row_key for r in rows] == [b"a"]
        assert instance.state == _ReaderState.DONE
        assert transport.read_rows.call_count == 1

    def test_request_contents(self):
        from rowstore.row_filters import CellsRowLimitFilter

        row_set = RowSet(row_keys=[b"a"], row_ranges=[RowRange("m", "p")])
        instance, transport = self._make_one(
            [[]],
            row_set=row_set,
            rows_limit=10,
            row_filter=CellsRowLimitFilter(1),
            app_profile_id="prof",
            metadata=[("x-goog-request-params", "table_name=t")],
        )
        assert list(instance) == []
        request = self._requests(transport)[0]
        assert request == {
            "table_name": TABLE_NAME,
            "rows": row_set._to_dict(),
            "app_profile_id": "prof",
            "rows_limit": 10,
            "filter": {"cells_per_row_limit_filter": 1},
        }
        kwargs = transport.read_rows.call_args[1]
        assert kwargs["metadata"] == [("x-goog-request-params", "table_name=t")]

    def test_rows_split_across_responses(self):
        instance, transport = self._make_one(
            [[_row_response(b"a", b"b"), _row_response(b"c")]]
        )
        assert [r.row_key for r in instance] == [b"a", b"b", b"c"]
        assert instance.rows_returned == 3

    @mock.patch("time.sleep")
    def test_resume_after_transient_error(self, sleep):
        """
        the second stream starts after the last complete row, the partial
        row is dropped, and no row is returned twice
        """
        instance, transport = self._make_one(
            [
                [
                    _row_response(b"a", b"b"),
                    _partial_row_response(b"c"),
                    core_exceptions.ServiceUnavailable("retry me"),
                ],
                [_row_response(b"c", b"d")],
            ]
        )
        keys = [r.row_key for r in instance]
        assert keys == [b"a", b"b", b"c", b"d"]
        requests = self._requests(transport)
        assert len(requests) == 2
        assert requests[1]["rows"] == {
            "row_keys": [],
            "row_ranges": [{"start_key_open": b"b"}],
        }
        sleep.assert_called_once_with(0.5)
        assert instance.stream_count == 2

    @mock.patch("time.sleep")
    def test_resume_reduces_rows_limit(self, sleep):
        instance, transport = self._make_one(
            [
                [_row_response(b"a", b"b"), core_exceptions.DeadlineExceeded("")],
                [_row_response(b"c", b"d", b"e")],
            ],
            rows_limit=5,
        )
        assert [r.row_key for r in instance] == [b"a", b"b", b"c", b"d", b"e"]
        requests = self._requests(transport)
        assert requests[0]["rows_limit"] == 5
        assert requests[1]["rows_limit"] == 3

    @mock.patch("time.sleep")
    def test_resume_with_row_keys(self, sleep):
        row_set = RowSet(row_keys=[b"a", b"b", b"c"])
        instance, transport = self._make_one(
            [
                [_row_response(b"a"), core_exceptions.ServiceUnavailable("")],
                [_row_response(b"b", b"c")],
            ],
            row_set=row_set,
        )
        assert [r.row_key for r in instance] == [b"a", b"b", b"c"]
        assert self._requests(transport)[1]["rows"]["row_keys"] == [b"b", b"c"]

    @mock.patch("time.sleep")
    def test_no_resume_when_row_set_complete(self, sleep):
        """
        if every requested row was received, a stream error ends the read
        without opening another stream
        """
        row_set = RowSet(row_keys=[b"a", b"b"])
        instance, transport = self._make_one(
            [[_row_response(b"a", b"b"), core_exceptions.ServiceUnavailable("")]],
            row_set=row_set,
        )
        assert [r.row_key for r in instance] == [b"a", b"b"]
        assert transport.read_rows.call_count == 1

    def test_limit_reached_cancels_stream(self):
        from rowstore._read_rows import _ReaderState

        streams = [[_row_response(b"a", b"b"), _row_response(b"c")]]
        instance, transport = self._make_one(streams, rows_limit=2)
        assert [r.row_key for r in instance] == [b"a", b"b"]
        assert instance.state == _ReaderState.DONE

    def test_too_many_rows(self):
        instance, transport = self._make_one(
            [[_row_response(b"a", b"b", b"c")]], rows_limit=2
        )
        with pytest.raises(InvalidChunk, match="exceeds row limit"):
            list(instance)

    @mock.patch("time.sleep")
    def test_permanent_error(self, sleep):
        """
        rows received before the error are returned, then the error is raised
        """
        instance, transport = self._make_one(
            [[_row_response(b"a"), core_exceptions.PermissionDenied("denied")]]
        )
        assert next(instance).row_key == b"a"
        with pytest.raises(core_exceptions.PermissionDenied) as e:
            next(instance)
        assert "RowReader" in str(e.value)
        assert e.value.__cause__.message == "denied"
        sleep.assert_not_called()
        with pytest.raises(StopIteration):
            next(instance)

    @mock.patch("time.sleep")
    def test_retries_exhausted(self, sleep):
        from rowstore.exceptions import RetryExceptionGroup
        from rowstore.rpc_retry_policy import LimitedErrorCountRetryPolicy

        streams = [[core_exceptions.ServiceUnavailable(str(i))] for i in range(3)]
        instance, transport = self._make_one(
            streams, retry_policy=LimitedErrorCountRetryPolicy(2)
        )
        with pytest.raises(core_exceptions.ServiceUnavailable) as e:
            list(instance)
        assert e.value.grpc_status_code == grpc.StatusCode.UNAVAILABLE
        assert isinstance(e.value.__cause__, RetryExceptionGroup)
        assert len(e.value.__cause__.exceptions) == 3
        assert transport.read_rows.call_count == 3
        assert sleep.call_count == 2

    def test_premature_end_of_stream(self):
        instance, transport = self._make_one([[_partial_row_response(b"a")]])
        with pytest.raises(InvalidChunk, match="premature end of stream"):
            list(instance)

    @mock.patch("time.sleep")
    def test_invalid_chunk_not_retried(self, sleep):
        bad = ReadRowsResponse(chunks=[CellChunk(family_name="f", qualifier=b"q")])
        instance, transport = self._make_one([[bad], [_row_response(b"a")]])
        with pytest.raises(InvalidChunk):
            list(instance)
        assert transport.read_rows.call_count == 1

    @mock.patch("time.sleep")
    def test_last_scanned_row_key(self, sleep):
        """
        heartbeats move the resume point forward
        """
        instance, transport = self._make_one(
            [
                [
                    _row_response(b"a"),
                    ReadRowsResponse(last_scanned_row_key=b"m"),
                    core_exceptions.ServiceUnavailable(""),
                ],
                [_row_response(b"z")],
            ]
        )
        assert [r.row_key for r in instance] == [b"a", b"z"]
        assert self._requests(transport)[1]["rows"]["row_ranges"] == [
            {"start_key_open": b"m"}
        ]

    def test_cancel(self):
        from rowstore._read_rows import _ReaderState

        instance, transport = self._make_one(
            [[_row_response(b"a", b"b"), _row_response(b"c")]]
        )
        assert next(instance).row_key == b"a"
        stream = instance._stream
        instance.cancel()
        assert stream.cancelled
        assert instance.state == _ReaderState.DONE
        assert list(instance) == []
        # cancelling twice is a no-op
        instance.close()

    def test_context_manager(self):
        instance, transport = self._make_one([[_row_response(b"a", b"b")]])
        with instance as reader:
            assert next(reader).row_key == b"a"
            stream = reader._stream
        assert stream.cancelled
