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

from typing import Any, Callable
import concurrent.futures
import logging
import threading

_LOGGER = logging.getLogger(__name__)


class CompletionQueue:
    """
    The executor asynchronous operations run on.

    Work is submitted to a thread pool. Delayed work (the backoff between
    attempts) waits on a timer, and is only handed to the pool once the
    timer fires, so no worker is held while an operation backs off.

    Args:
      - executor: the executor to run work on. If None, a ThreadPoolExecutor
          owned by this queue is created, and shut down with it
      - max_workers: size of the owned thread pool. Ignored if executor is passed
    """

    def __init__(
        self,
        executor: concurrent.futures.Executor | None = None,
        max_workers: int | None = None,
    ):
        self._owns_executor = executor is None
        if executor is None:
            executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="rowstore-cq"
            )
        self._executor = executor
        self._lock = threading.Lock()
        self._timers: dict[threading.Timer, Callable[[], None] | None] = {}
        self._is_shutdown = False

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def submit(
        self, fn: Callable[..., Any], *args, **kwargs
    ) -> concurrent.futures.Future:
        """
        Run fn on the executor

        Raises:
          - RuntimeError if the queue has been shut down
        """
        if self._is_shutdown:
            raise RuntimeError("cannot schedule new work after shutdown")
        return self._executor.submit(fn, *args, **kwargs)

    def run_after(
        self,
        delay: float,
        fn: Callable[..., Any],
        *args,
        on_cancel: Callable[[], None] | None = None,
    ) -> threading.Timer:
        """
        Run fn on the executor after `delay` seconds

        Args:
          - delay: seconds to wait before submitting fn
          - fn: the function to run
          - on_cancel: called instead of fn if the queue shuts down first
        Raises:
          - RuntimeError if the queue has been shut down
        """

        def fire():
            with self._lock:
                if timer not in self._timers:
                    # shutdown already cancelled this timer
                    return
                del self._timers[timer]
            try:
                self.submit(fn, *args)
            except RuntimeError:
                _LOGGER.debug("executor shut down before delayed work could run")
                if on_cancel is not None:
                    on_cancel()

        timer = threading.Timer(max(0.0, delay), fire)
        timer.daemon = True
        with self._lock:
            if self._is_shutdown:
                raise RuntimeError("cannot schedule new work after shutdown")
            self._timers[timer] = on_cancel
        timer.start()
        return timer

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop accepting work. Pending timers are cancelled and their on_cancel
        callbacks invoked.

        Args:
          - wait: if True, block until work already submitted has finished
        """
        with self._lock:
            self._is_shutdown = True
            pending = list(self._timers.items())
            self._timers.clear()
        for timer, on_cancel in pending:
            timer.cancel()
            if on_cancel is not None:
                on_cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> CompletionQueue:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(wait=True)
