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

from collections import deque
from typing import Any, Iterator, Sequence, TYPE_CHECKING
import enum
import logging
import time

from google.api_core import exceptions as core_exceptions

from rowstore._helpers import CallContext
from rowstore._read_rows_state_machine import _StateMachine
from rowstore.exceptions import InvalidChunk
from rowstore.exceptions import _RowSetComplete
from rowstore.exceptions import _terminal_error
from rowstore.read_rows_query import RowSet
from rowstore.row import Row

if TYPE_CHECKING:
    from rowstore.row_filters import RowFilter
    from rowstore.rpc_backoff_policy import RPCBackoffPolicy
    from rowstore.rpc_retry_policy import RPCRetryPolicy
    from rowstore.transport import DataTransport
    from rowstore.transport import ServerStream
    from rowstore.types import ReadRowsResponse

_LOGGER = logging.getLogger(__name__)


class _ReaderState(enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    STREAMING = "STREAMING"
    DONE = "DONE"
    FAILED = "FAILED"


class RowReader(Iterator[Row]):
    """
    A lazy, single-pass iterator over the rows selected by a read.

    The read_rows stream is opened on the first call to next(). Chunks are fed
    to a state machine that reassembles rows, and each row is returned as soon
    as it is complete. If the stream breaks with a retryable error, the reader
    waits for the backoff delay and opens a new stream for the rows after the
    last complete row, with the row limit reduced by the rows already
    received. Rows are never returned twice.

    An unrecoverable failure is raised from next() after every row received
    before it has been returned; the iterator is exhausted afterwards.

    Closing the reader, or letting it be garbage collected, cancels the
    stream in flight.
    """

    NO_ROWS_LIMIT = 0

    def __init__(
        self,
        transport: "DataTransport",
        table_name: str,
        app_profile_id: str | None,
        row_set: RowSet,
        rows_limit: int | None,
        row_filter: "RowFilter" | dict[str, Any] | None,
        retry_policy: "RPCRetryPolicy",
        backoff_policy: "RPCBackoffPolicy",
        metadata: Sequence[tuple[str, str]] = (),
    ):
        """
        Args:
          - transport: the shared transport to open streams on
          - table_name: the fully qualified name of the table to read
          - app_profile_id: the app profile to send requests on, if any
          - row_set: the rows to read. An empty RowSet reads the whole table
          - rows_limit: the maximum number of rows to return. None or 0 means no limit
          - row_filter: passed through to the server unchanged
          - retry_policy: a clone owned by this reader
          - backoff_policy: a clone owned by this reader
          - metadata: metadata to attach to each stream
        Raises:
          - ValueError if rows_limit is negative
        """
        if rows_limit is None:
            rows_limit = self.NO_ROWS_LIMIT
        if rows_limit < 0:
            raise ValueError("rows_limit must be >= 0")
        self._transport = transport
        self._table_name = table_name
        self._app_profile_id = app_profile_id
        self._row_set = row_set
        self._rows_limit = rows_limit
        self._row_filter = row_filter
        self._retry_policy = retry_policy
        self._backoff_policy = backoff_policy
        self._metadata = list(metadata)
        self._state_machine = _StateMachine()
        self._state = _ReaderState.NOT_STARTED
        self._stream: "ServerStream" | None = None
        self._responses: Iterator["ReadRowsResponse"] | None = None
        self._pending_rows: deque[Row] = deque()
        self._final_error: Exception | None = None
        self._errors: list[Exception] = []
        self._rows_received = 0
        self._rows_returned = 0
        self.stream_count = 0

    @property
    def state(self) -> _ReaderState:
        return self._state

    @property
    def rows_returned(self) -> int:
        return self._rows_returned

    def __iter__(self) -> RowReader:
        return self

    def __next__(self) -> Row:
        while True:
            if self._pending_rows:
                return self._return_row(self._pending_rows.popleft())
            if self._final_error is not None:
                exc, self._final_error = self._final_error, None
                raise exc
            if self._state in (_ReaderState.DONE, _ReaderState.FAILED):
                raise StopIteration
            self._advance()

    def _return_row(self, row: Row) -> Row:
        self._rows_returned += 1
        if self._rows_limit and self._rows_returned >= self._rows_limit:
            # limit reached; nothing more to read
            self._finish()
        return row

    def _advance(self) -> None:
        """
        Make progress on the stream: open one if needed, and process the next
        response, moving complete rows into the pending queue.
        """
        try:
            if self._responses is None and not self._open_stream():
                self._finish()
                return
            try:
                response = next(self._responses)
            except StopIteration:
                if not self._state_machine.is_terminal_state():
                    raise InvalidChunk("premature end of stream")
                self._finish()
                return
            self._process_response(response)
        except InvalidChunk as exc:
            self._fail(exc)
        except core_exceptions.GoogleAPICallError as exc:
            self._handle_stream_break(exc)

    def _open_stream(self) -> bool:
        """
        Start a new read_rows stream for the rows not received yet.

        Returns:
          - False if there is nothing left to read
        """
        last_seen = self._state_machine.last_seen_row_key
        if last_seen is not None:
            try:
                self._row_set = self._row_set._revise(last_seen)
            except _RowSetComplete:
                return False
        request: dict[str, Any] = {
            "table_name": self._table_name,
            "rows": self._row_set._to_dict(),
        }
        if self._app_profile_id is not None:
            request["app_profile_id"] = self._app_profile_id
        if self._rows_limit:
            remaining = self._rows_limit - self._rows_received
            if remaining <= 0:
                return False
            request["rows_limit"] = remaining
        if self._row_filter is not None:
            request["filter"] = (
                self._row_filter
                if isinstance(self._row_filter, dict)
                else self._row_filter._to_dict()
            )
        context = CallContext(self._metadata)
        self._retry_policy.setup(context)
        self._backoff_policy.setup(context)
        self.stream_count += 1
        self._state = _ReaderState.STREAMING
        self._stream = self._transport.read_rows(request, **context.as_kwargs())
        self._responses = iter(self._stream)
        return True

    def _process_response(self, response: "ReadRowsResponse") -> None:
        for chunk in response.chunks:
            row = self._state_machine.handle_chunk(chunk)
            if row is not None:
                self._rows_received += 1
                if self._rows_limit and self._rows_received > self._rows_limit:
                    raise InvalidChunk("emit count exceeds row limit")
                self._pending_rows.append(row)
        # handle last_scanned_row_key packets, sent when server
        # has scanned past the end of the row range
        if response.last_scanned_row_key:
            self._state_machine.handle_last_scanned_row(response.last_scanned_row_key)

    def _handle_stream_break(self, exc: core_exceptions.GoogleAPICallError) -> None:
        """
        Decide between resuming after a failed stream and failing the read.
        """
        self._errors.append(exc)
        self._cancel_stream()
        if not self._retry_policy.on_failure(exc):
            self._fail(
                _terminal_error(
                    self._errors, "Permanent (or too many transient) errors in RowReader"
                )
            )
            return
        # the partial row will be sent again by the next stream
        self._state_machine.handle_stream_break()
        delay = self._backoff_policy.on_completion(exc)
        _LOGGER.debug(
            "read_rows stream broke after %d rows (%r); resuming after %r in %.3fs",
            self._rows_received,
            exc,
            self._state_machine.last_seen_row_key,
            delay,
        )
        time.sleep(delay)

    def _cancel_stream(self) -> None:
        stream, self._stream = self._stream, None
        self._responses = None
        if stream is not None:
            cancel = getattr(stream, "cancel", None)
            if cancel is not None:
                cancel()

    def _finish(self) -> None:
        self._cancel_stream()
        self._state = _ReaderState.DONE

    def _fail(self, exc: Exception) -> None:
        self._cancel_stream()
        self._state = _ReaderState.FAILED
        self._final_error = exc

    def cancel(self) -> None:
        """
        Stop reading. Rows not returned yet are dropped, and the stream in
        flight, if any, is cancelled.
        """
        if self._state in (_ReaderState.DONE, _ReaderState.FAILED):
            return
        self._pending_rows.clear()
        self._finish()

    close = cancel

    def __enter__(self) -> RowReader:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cancel()

    def __del__(self):
        # attributes may be missing if __init__ raised
        if getattr(self, "_stream", None) is not None:
            self._cancel_stream()
