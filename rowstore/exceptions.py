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

import sys

import grpc
from google.api_core import exceptions as core_exceptions

is_311_plus = sys.version_info >= (3, 11)


class InvalidChunk(core_exceptions.GoogleAPICallError):
    """Exception raised to invalid chunk data from back-end."""

    grpc_status_code = grpc.StatusCode.INTERNAL


class _RowSetComplete(Exception):
    """
    Internal exception for RowReader
    Raised when revising the row set for a retry leaves no rows to read
    """

    pass


class _MutateRowsIncomplete(RuntimeError):
    """
    Exception raised when a mutate_rows round finished with entries
    that are eligible for another attempt.
    """

    pass


class RowstoreExceptionGroup(ExceptionGroup if is_311_plus else Exception):  # type: ignore # noqa: F821
    """
    Several exceptions raised together by one rowstore operation.

    On Python 3.11+ this is a real ExceptionGroup. Older interpreters get a
    plain Exception exposing only the `exceptions` tuple.
    """

    def __init__(self, message, excs):
        if is_311_plus:
            super().__init__(message, excs)
        else:
            if len(excs) == 0:
                raise ValueError("exceptions must be a non-empty sequence")
            self.exceptions = tuple(excs)
            super().__init__(message)

    def __new__(cls, message, excs):
        if is_311_plus:
            return super().__new__(cls, message, excs)
        else:
            return super().__new__(cls)

    def __str__(self):
        # sub-exceptions are summarized in the message
        return self.args[0]


class RetryExceptionGroup(RowstoreExceptionGroup):
    """Represents one or more exceptions that occur during a retryable operation"""

    @staticmethod
    def _format_message(excs: list[Exception]):
        if len(excs) == 0:
            return "No exceptions"
        if len(excs) == 1:
            return f"1 failed attempt: {type(excs[0]).__name__}"
        else:
            return f"{len(excs)} failed attempts. Latest: {type(excs[-1]).__name__}"

    def __init__(self, excs: list[Exception]):
        super().__init__(self._format_message(excs), excs)

    def __new__(cls, excs: list[Exception]):
        return super().__new__(cls, cls._format_message(excs), excs)


def _terminal_error(
    exc_list: list[Exception], message: str
) -> core_exceptions.GoogleAPICallError:
    """
    Build the error reported when an operation stops retrying.

    The returned exception carries the status code of the last attempt, so
    callers can tell a permanent code from an exhausted transient one. The
    attempt history is attached as __cause__.

    Args:
      - exc_list: errors from each failed attempt, oldest first
      - message: human-readable description of the failed operation
    """
    last = exc_list[-1]
    code = getattr(last, "grpc_status_code", None) or grpc.StatusCode.UNKNOWN
    detail = getattr(last, "message", None) or str(last)
    new_exc = core_exceptions.from_grpc_status(code, f"{message}: {detail}")
    if len(exc_list) > 1:
        new_exc.__cause__ = RetryExceptionGroup(exc_list)
    else:
        new_exc.__cause__ = last
    return new_exc
