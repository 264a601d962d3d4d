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
from rowstore.version import __version__

from rowstore.client import DataClient
from rowstore.table import Table

from rowstore.completion_queue import CompletionQueue

from rowstore.read_rows_query import RowRange
from rowstore.read_rows_query import RowSet
from rowstore.row import Row
from rowstore.row import Cell

from rowstore.mutations import Mutation
from rowstore.mutations import RowMutationEntry
from rowstore.mutations import BulkMutation
from rowstore.mutations import FailedMutation
from rowstore.mutations import SetCell
from rowstore.mutations import AddToCell
from rowstore.mutations import DeleteRangeFromColumn
from rowstore.mutations import DeleteAllFromFamily
from rowstore.mutations import DeleteAllFromRow

from rowstore.rpc_retry_policy import RPCRetryPolicy
from rowstore.rpc_retry_policy import LimitedErrorCountRetryPolicy
from rowstore.rpc_retry_policy import LimitedTimeRetryPolicy
from rowstore.rpc_backoff_policy import RPCBackoffPolicy
from rowstore.rpc_backoff_policy import ExponentialBackoffPolicy
from rowstore.rpc_backoff_policy import LinearBackoffPolicy
from rowstore.idempotent_mutation_policy import IdempotentMutationPolicy
from rowstore.idempotent_mutation_policy import SafeIdempotentMutationPolicy
from rowstore.idempotent_mutation_policy import AlwaysRetryMutationPolicy

from rowstore.exceptions import InvalidChunk
from rowstore.exceptions import RowstoreExceptionGroup
from rowstore.exceptions import RetryExceptionGroup

from rowstore._read_rows import RowReader


__all__ = (
    "DataClient",
    "Table",
    "CompletionQueue",
    "RowReader",
    "RowRange",
    "RowSet",
    "Row",
    "Cell",
    "Mutation",
    "RowMutationEntry",
    "BulkMutation",
    "FailedMutation",
    "SetCell",
    "AddToCell",
    "DeleteRangeFromColumn",
    "DeleteAllFromFamily",
    "DeleteAllFromRow",
    "RPCRetryPolicy",
    "LimitedErrorCountRetryPolicy",
    "LimitedTimeRetryPolicy",
    "RPCBackoffPolicy",
    "ExponentialBackoffPolicy",
    "LinearBackoffPolicy",
    "IdempotentMutationPolicy",
    "SafeIdempotentMutationPolicy",
    "AlwaysRetryMutationPolicy",
    "InvalidChunk",
    "RowstoreExceptionGroup",
    "RetryExceptionGroup",
    "__version__",
)
