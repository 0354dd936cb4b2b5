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
chDB Embedded Python SDK v0.1.0

ctypes bindings to the chDB in-process ClickHouse engine (libchdb).

Example (low level):
    from chdb_embedded import Connection

    with Connection(["clickhouse", "--path=/tmp/db"]) as conn:
        with conn.query("SELECT 1", "CSV") as result:
            print(result.buffer())        # b'1\\n'

Example (database):
    from chdb_embedded import Database

    with Database.open(":memory:", results_as_hash=True) as db:
        db.execute("SELECT 1 AS value")   # [{'value': '1'}]

Environment:
    CHDB_LIB_PATH   libchdb file, or directory containing it
    CHDB_HOME       base directory holding lib/chdb/lib/
    CHDB_DEBUG      "1" enables debug logging to stderr
"""

import logging
import os
import sys

__version__ = "0.1.0"

VERSION_INFO = {
    "python": sys.version,
    "package": {"version": __version__},
}

logging.getLogger(__name__).addHandler(logging.NullHandler())

if os.environ.get("CHDB_DEBUG") in ("1", "true", "True"):
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s: %(message)s"))
    logging.getLogger(__name__).addHandler(_handler)
    logging.getLogger(__name__).setLevel(logging.DEBUG)

from .constants import CREATE, READONLY, READWRITE
from .errors import (
    ChdbError,
    LoadError,
    LibraryLoadError,
    SymbolResolutionError,
    InvalidArgumentError,
    UsageError,
    DirectoryNotFoundError,
)
from .native import NativeEngine, get_engine, shutdown
from .connection import Connection, QueryResult, connect, execute_query
from .data_path import DataPath
from .statement import Statement
from .result_set import ResultSet, HashResultSet
from .database import Database


def query(sql: str, format: str = "CSV") -> bytes:
    """Run a single query on a temporary database and return its output."""
    with Database() as db:
        return db.query_with_format(sql, format=format) or b""


__all__ = [
    # Version
    "__version__",
    "VERSION_INFO",

    # Open modes
    "READONLY",
    "READWRITE",
    "CREATE",

    # Native layer
    "NativeEngine",
    "get_engine",
    "shutdown",
    "Connection",
    "QueryResult",
    "connect",
    "execute_query",

    # Database API
    "Database",
    "DataPath",
    "Statement",
    "ResultSet",
    "HashResultSet",
    "query",

    # Errors
    "ChdbError",
    "LoadError",
    "LibraryLoadError",
    "SymbolResolutionError",
    "InvalidArgumentError",
    "UsageError",
    "DirectoryNotFoundError",
]
