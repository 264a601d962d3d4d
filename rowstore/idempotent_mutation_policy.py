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
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from rowstore.mutations import Mutation


class IdempotentMutationPolicy(ABC):
    """
    Decides which mutations are safe to send more than once.
    """

    @abstractmethod
    def clone(self) -> IdempotentMutationPolicy:
        raise NotImplementedError

    @abstractmethod
    def is_idempotent(self, mutation: "Mutation") -> bool:
        raise NotImplementedError

    @abstractmethod
    def is_conditional_mutation_idempotent(self, request: dict[str, Any]) -> bool:
        """Classify a check_and_mutate_row request as a whole"""
        raise NotImplementedError


class SafeIdempotentMutationPolicy(IdempotentMutationPolicy):
    """
    Only retry mutations that are idempotent by construction.

    Server-side timestamps, increments, and conditional mutations are never
    retried.
    """

    def clone(self) -> SafeIdempotentMutationPolicy:
        return SafeIdempotentMutationPolicy()

    def is_idempotent(self, mutation: "Mutation") -> bool:
        return mutation.is_idempotent()

    def is_conditional_mutation_idempotent(self, request: dict[str, Any]) -> bool:
        return False


class AlwaysRetryMutationPolicy(IdempotentMutationPolicy):
    """
    Retry every mutation. Use only when duplicate writes are acceptable.
    """

    def clone(self) -> AlwaysRetryMutationPolicy:
        return AlwaysRetryMutationPolicy()

    def is_idempotent(self, mutation: "Mutation") -> bool:
        return True

    def is_conditional_mutation_idempotent(self, request: dict[str, Any]) -> bool:
        return True
