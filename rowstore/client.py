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

from typing import Any, TYPE_CHECKING

from rowstore.table import Table

if TYPE_CHECKING:
    from rowstore.transport import DataTransport


class DataClient:
    """
    Entry point for data operations in a project.

    The client holds the transport shared by every Table it creates. It does
    not open or close the transport; the caller owns its lifecycle.
    """

    def __init__(self, transport: "DataTransport", project: str):
        """
        Args:
          - transport: the transport used for every request
          - project: the project id that owns the instances
        Raises:
          - ValueError if project is empty
        """
        if not project:
            raise ValueError("project must not be empty")
        self.transport = transport
        self.project = project

    def table_path(self, instance_id: str, table_id: str) -> str:
        """Return the fully qualified name of a table"""
        return f"projects/{self.project}/instances/{instance_id}/tables/{table_id}"

    def get_table(
        self,
        instance_id: str,
        table_id: str,
        app_profile_id: str | None = None,
        **kwargs: Any,
    ) -> Table:
        """
        Return a Table instance to make data requests against.

        Args:
          - instance_id: the id of the instance that owns the table
          - table_id: the id of the table
          - app_profile_id: the app profile to route requests through
          - kwargs: policy overrides forwarded to Table: retry_policy,
              backoff_policy, idempotent_policy
        """
        return Table(
            self.transport,
            self.table_path(instance_id, table_id),
            app_profile_id=app_profile_id,
            **kwargs,
        )

    def __repr__(self):
        return f"DataClient(project={self.project!r})"
