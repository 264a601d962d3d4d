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

from rowstore.mutations import AddToCell
from rowstore.mutations import DeleteAllFromRow
from rowstore.mutations import SetCell


@pytest.mark.parametrize(
    "mutation,safe_expected",
    [
        (SetCell("f", b"q", b"v", 1000), True),
        (SetCell("f", b"q", b"v", -1), False),
        (AddToCell("f", b"q", 1, 1000), False),
        (DeleteAllFromRow(), True),
    ],
)
def test_is_idempotent(mutation, safe_expected):
    from rowstore.idempotent_mutation_policy import AlwaysRetryMutationPolicy
    from rowstore.idempotent_mutation_policy import SafeIdempotentMutationPolicy

    assert SafeIdempotentMutationPolicy().is_idempotent(mutation) is safe_expected
    assert AlwaysRetryMutationPolicy().is_idempotent(mutation) is True


def test_conditional_mutation():
    from rowstore.idempotent_mutation_policy import AlwaysRetryMutationPolicy
    from rowstore.idempotent_mutation_policy import SafeIdempotentMutationPolicy

    request = {"row_key": b"r", "true_mutations": [], "false_mutations": []}
    assert SafeIdempotentMutationPolicy().is_conditional_mutation_idempotent(request) is False
    assert AlwaysRetryMutationPolicy().is_conditional_mutation_idempotent(request) is True


def test_clone():
    from rowstore.idempotent_mutation_policy import AlwaysRetryMutationPolicy
    from rowstore.idempotent_mutation_policy import SafeIdempotentMutationPolicy

    for policy in [SafeIdempotentMutationPolicy(), AlwaysRetryMutationPolicy()]:
        clone = policy.clone()
        assert type(clone) is type(policy)
        assert clone is not policy
