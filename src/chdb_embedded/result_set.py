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

"""Cursors over the rows of an executed Statement."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional

if TYPE_CHECKING:
    from .database import Database
    from .statement import Statement


class ResultSet:
    """
    Forward-only cursor over a statement's rows.

    Rows are lists of strings. Obtain instances from Statement.execute()
    or Database.query() rather than constructing them directly.
    """

    def __init__(self, db: "Database", stmt: "Statement"):
        self._db = db
        self._stmt = stmt

    @property
    def columns(self) -> List[str]:
        self._stmt.parse()
        return self._stmt.columns

    def eof(self) -> bool:
        return self._stmt.done()

    def next(self) -> Optional[Any]:
        """Return the next row, or None at the end."""
        return self._stmt.step()

    def next_hash(self) -> Optional[Dict[str, str]]:
        """Return the next row as a column -> value dict."""
        row = self._stmt.step()
        if row is None:
            return None
        return dict(zip(self._stmt.columns, row))

    def each_hash(self) -> Iterator[Dict[str, str]]:
        while True:
            row = self.next_hash()
            if row is None:
                self.close()
                return
            yield row

    def __iter__(self) -> Iterator[Any]:
        while True:
            row = self.next()
            if row is None:
                # Rows are parsed by now; the native result is no longer needed
                self.close()
                return
            yield row

    def to_numpy(self):
        """
        All rows of the result as a 2-D array of strings.

        The array has shape ``(rows, len(columns))`` regardless of how far
        the cursor has advanced.
        """
        import numpy as np

        columns = self.columns
        rows = self._stmt.parsed_data
        if not rows:
            return np.empty((0, len(columns)), dtype=str)
        return np.array(rows, dtype=str)

    def close(self) -> None:
        self._stmt.close()

    def __enter__(self) -> "ResultSet":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class HashResultSet(ResultSet):
    """ResultSet whose rows are dicts keyed by column name."""

    def next(self) -> Optional[Dict[str, str]]:
        return self.next_hash()
