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

"""Prepared statements with ``?`` placeholders.

Bound values are escaped and spliced into the SQL text before it is
sent to the engine. Row results are fetched as CSVWithNames and parsed
with the csv module, so every value comes back as a string.
"""

from __future__ import annotations

import csv
import io
import re
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional

from .constants import ROWS_FORMAT
from .errors import InvalidArgumentError, UsageError

if TYPE_CHECKING:
    from .connection import QueryResult
    from .database import Database
    from .result_set import ResultSet

_PLACEHOLDER = re.compile(r"(?<!\\)\?")


def escape(value: Any) -> str:
    """Render a Python value as a SQL literal."""
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if value is None:
        return "NULL"
    if value is True:
        return "1"
    if value is False:
        return "0"
    return str(value)


def _flatten(values) -> List[Any]:
    flat: List[Any] = []
    for value in values:
        if isinstance(value, (list, tuple)):
            flat.extend(_flatten(value))
        else:
            flat.append(value)
    return flat


def parse_output(data: bytes) -> tuple:
    """Split CSVWithNames output into (columns, rows)."""
    # String columns are raw bytes; undecodable ones survive as surrogates
    reader = csv.reader(io.StringIO(data.decode("utf-8", "surrogateescape")))
    columns = next(reader, [])
    rows = [row for row in reader]
    return columns, rows


class Statement:
    """A SQL statement bound to a Database."""

    def __init__(self, db: "Database", sql: Optional[str]):
        if sql is None:
            raise InvalidArgumentError("SQL statement cannot be None")
        if db is None or db.closed:
            raise UsageError("prepare called on a closed database")

        self._db = db
        self.sql = sql.decode("utf-8") if isinstance(sql, bytes) else str(sql)
        self._bind_vars: Dict[int, Any] = {}
        self._result: Optional["QueryResult"] = None
        self._executed = False
        self._parsed = False
        self._row_idx = 0
        self.columns: List[str] = []
        self.parsed_data: List[List[str]] = []

    # =========================================================================
    # Parameter binding
    # =========================================================================

    def bind_param(self, index: int, value: Any) -> None:
        """Bind a value to the 1-based placeholder ``index``."""
        if index < 1:
            raise InvalidArgumentError(f"bind index must be >= 1, got {index}")
        self._bind_vars[index] = value

    def bind_params(self, *values: Any) -> None:
        for index, value in enumerate(_flatten(values), start=1):
            self.bind_param(index, value)

    def processed_sql(self) -> str:
        """SQL text with bound values substituted for placeholders."""
        if not self._bind_vars:
            return self.sql
        count = max(self._bind_vars)
        escaped = iter([escape(self._bind_vars.get(i)) for i in range(1, count + 1)])
        return _PLACEHOLDER.sub(lambda _: next(escaped, "?"), self.sql)

    # =========================================================================
    # Execution
    # =========================================================================

    def execute(self, *bind_vars: Any) -> "ResultSet":
        """Run the statement and return a cursor over its rows."""
        self._run(bind_vars, ROWS_FORMAT)
        return self._db.build_result_set(self)

    def execute_all(self, *bind_vars: Any) -> List[Any]:
        """Run the statement and return every row."""
        return list(self.execute(*bind_vars))

    def execute_with_format(self, *bind_vars: Any, format: str) -> Optional[bytes]:
        """Run the statement and return the raw output in ``format``."""
        result = self._run(bind_vars, format)
        return result.buffer()

    def _run(self, bind_vars, fmt: str) -> "QueryResult":
        if self._executed:
            self.reset()
        self._executed = True

        if bind_vars:
            self.bind_params(*bind_vars)

        self._result = self._db.connection.query(self.processed_sql(), fmt)
        return self._result

    def reset(self) -> None:
        """Forget the previous execution and its bound values."""
        if self._result is not None:
            self._result.close()
            self._result = None
        self._executed = False
        self._parsed = False
        self._row_idx = 0
        self._bind_vars.clear()
        self.parsed_data = []
        self.columns = []

    def close(self) -> None:
        if self._result is not None:
            self._result.close()
            self._result = None

    @property
    def result(self) -> Optional["QueryResult"]:
        return self._result

    # =========================================================================
    # Rows
    # =========================================================================

    def parse(self) -> None:
        """Parse the query output into columns and rows (once)."""
        if self._parsed:
            return

        data = self._result.buffer() if self._result is not None else None
        if data:
            self.columns, self.parsed_data = parse_output(data)
        else:
            self.columns, self.parsed_data = [], []
        self._parsed = True

    def step(self) -> Optional[List[str]]:
        """Return the next row, or None when exhausted."""
        self.parse()
        if self._row_idx >= len(self.parsed_data):
            return None
        row = self.parsed_data[self._row_idx]
        self._row_idx += 1
        return row

    def done(self) -> bool:
        self.parse()
        return self._row_idx >= len(self.parsed_data)

    def active(self) -> bool:
        return self._executed and not self.done()

    def __iter__(self) -> Iterator[List[str]]:
        while True:
            row = self.step()
            if row is None:
                return
            yield row

    def __enter__(self) -> "Statement":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
