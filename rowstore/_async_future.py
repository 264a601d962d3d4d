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

from typing import Any, Callable, Generic, TypeVar
import concurrent.futures
import logging
import threading

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class _FutureCallback(Generic[T]):
    """
    A one-shot channel from a completion callback to a Future.

    The operation calls the instance once it finishes, either with a response
    or with an error. The first call resolves `future`; any later call is
    ignored. If the response must be converted, `transform` runs inside the
    callback, and an exception it raises becomes the future's exception.

    If the consumer cancelled the future before the operation finished, the
    result is dropped. Operations check `cancelled` to stop scheduling
    further attempts.
    """

    def __init__(self, name: str, transform: Callable[[Any], T] | None = None):
        self.future: concurrent.futures.Future[T] = concurrent.futures.Future()
        self._name = name
        self._transform = transform
        self._lock = threading.Lock()
        self._resolved = False

    @property
    def cancelled(self) -> bool:
        return self.future.cancelled()

    @property
    def resolved(self) -> bool:
        return self._resolved

    def __call__(self, response: Any = None, error: BaseException | None = None) -> bool:
        """
        Resolve the future.

        Returns:
          - True if this call resolved the future
        """
        with self._lock:
            if self._resolved:
                _LOGGER.debug("%s: ignoring repeated completion", self._name)
                return False
            self._resolved = True
        result: Any = None
        if error is None:
            try:
                result = self._transform(response) if self._transform else response
            except Exception as exc:
                error = exc
        try:
            if error is not None:
                self.future.set_exception(error)
            else:
                self.future.set_result(result)
        except concurrent.futures.InvalidStateError:
            _LOGGER.warning("%s: future was cancelled; result dropped", self._name)
            return False
        return True
