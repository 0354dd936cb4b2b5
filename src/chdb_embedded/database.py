# Copyright 2025 Sushanth (https://github.com/sushanthpy)
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

"""
chDB Embedded Database

Runs the ClickHouse engine in-process through the native library.
"""

import logging
import weakref
from typing import Any, List, Optional, Sequence

from .connection import Connection
from .constants import DEFAULT_FORMAT
from .data_path import DataPath
from .native import NativeEngine
from .result_set import HashResultSet, ResultSet
from .statement import Statement

logger = logging.getLogger(__name__)


class Database:
    """
    chDB Embedded Database.

    Example:
        db = Database.open("./my_database")
        rows = db.execute("SELECT number FROM system.numbers LIMIT 3")
        db.close()

    Or with context manager:
        with Database.open(":memory:", results_as_hash=True) as db:
            db.execute("SELECT 1 AS value")   # [{'value': '1'}]
    """

    def __init__(self, path: Optional[str] = None, engine: Optional[NativeEngine] = None,
                 **options: Any):
        """
        Open a database.

        Args:
            path: Database directory or URI. None or ":memory:" uses a
                temporary directory removed on close().
            engine: Engine to connect with; the process-wide one by default.
            **options: ``results_as_hash``, ``readonly``, ``readwrite``,
                ``flags``, ``udf_path``; anything else becomes an engine flag.
        """
        self._closed = True
        self._data_path = DataPath(path, options)
        self.results_as_hash = _truthy(self._data_path.query_params.get("results_as_hash"))

        try:
            self._conn = Connection(self._data_path.generate_arguments(), engine=engine)
        except BaseException:
            self._data_path.close()
            raise
        self._closed = False
        # Removes a temporary directory even if close() is never called
        self._cleanup = weakref.finalize(self, self._data_path.close)
        logger.debug("Opened database at %s", self._data_path.dir_path)

    @classmethod
    def open(cls, path: Optional[str] = None, engine: Optional[NativeEngine] = None,
             **options: Any) -> "Database":
        """Open a database at the given path."""
        return cls(path, engine=engine, **options)

    @property
    def connection(self) -> Connection:
        return self._conn

    @property
    def path(self) -> Optional[str]:
        return self._data_path.dir_path

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def readonly(self) -> bool:
        return self._data_path.readonly

    def close(self) -> None:
        """Close the database."""
        if self._closed:
            return
        self._closed = True
        self._conn.close()
        self._cleanup()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # Query API
    # =========================================================================

    def prepare(self, sql: str) -> Statement:
        return Statement(self, sql)

    def execute(self, sql: str, bind_vars: Sequence[Any] = ()) -> List[Any]:
        """
        Execute a statement and return all rows.

        Args:
            sql: SQL text, optionally with ``?`` placeholders.
            bind_vars: Values for the placeholders.

        Returns:
            List of rows (lists, or dicts when results_as_hash is set).
        """
        with self.prepare(sql) as stmt:
            return list(stmt.execute(bind_vars))

    def execute2(self, sql: str, *bind_vars: Any) -> List[Any]:
        """Like execute(), with the column names as the first row."""
        with self.prepare(sql) as stmt:
            result = stmt.execute(*bind_vars)
            stmt.parse()
            return [list(stmt.columns)] + list(result)

    def query(self, sql: str, bind_vars: Sequence[Any] = ()) -> ResultSet:
        """Execute a statement and return a cursor over its rows."""
        return self.prepare(sql).execute(bind_vars)

    def query_with_format(self, sql: str, bind_vars: Sequence[Any] = (),
                          format: str = DEFAULT_FORMAT) -> Optional[bytes]:
        """Execute a statement and return its raw output in ``format``."""
        with self.prepare(sql) as stmt:
            return stmt.execute_with_format(bind_vars, format=format)

    def get_first_row(self, sql: str, *bind_vars: Any) -> Optional[Any]:
        rows = self.execute(sql, bind_vars)
        return rows[0] if rows else None

    def get_first_value(self, sql: str, *bind_vars: Any) -> Optional[str]:
        with self.prepare(sql) as stmt:
            rs = stmt.execute(bind_vars)
            row = rs.next()
            if row is None:
                return None
            return row[rs.columns[0]] if self.results_as_hash else row[0]

    def build_result_set(self, stmt: Statement) -> ResultSet:
        if self.results_as_hash:
            return HashResultSet(self, stmt)
        return ResultSet(self, stmt)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() not in ("", "0", "false", "no")
    return bool(value)
