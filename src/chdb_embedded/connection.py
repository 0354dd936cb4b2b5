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
Native connection and query result handles.

Each Connection owns exactly one native connection and each QueryResult
owns exactly one native result buffer. The native release function runs
once: on close(), or from the finalizer when the object is reclaimed
without being closed.

Neither class takes a lock. Do not share a Connection between threads
without serializing access, and do not close a QueryResult while another
thread is still reading it.
"""

import ctypes
import logging
import warnings
import weakref
from typing import Iterable, Optional, Union

from .constants import DEFAULT_FORMAT
from .errors import ChdbError, InvalidArgumentError, UsageError
from .native import NativeEngine, get_engine

logger = logging.getLogger(__name__)

StrOrBytes = Union[str, bytes]


def _to_c_string(value: StrOrBytes, what: str) -> bytes:
    """Encode a value as a NUL-free byte string for the native call."""
    if isinstance(value, str):
        try:
            value = value.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise InvalidArgumentError(f"{what} is not valid UTF-8: {exc}") from exc
    elif not isinstance(value, (bytes, bytearray)):
        raise InvalidArgumentError(
            f"{what} must be str or bytes, not {type(value).__name__}"
        )
    if b"\x00" in value:
        raise InvalidArgumentError(f"{what} contains an embedded null byte")
    return bytes(value)


def _finalize_connection(engine: NativeEngine, handle) -> None:
    # Runs from the garbage collector or at interpreter exit; must not raise.
    if not engine.loaded:
        return
    try:
        warnings.warn("chdb Connection was not closed", ResourceWarning)
        engine.close_connection(handle)
    except Exception:
        logger.debug("Connection finalizer failed", exc_info=True)


def _finalize_result(engine: NativeEngine, result_ptr) -> None:
    if not engine.loaded:
        return
    try:
        warnings.warn("chdb QueryResult was not closed", ResourceWarning)
        engine.free_result(result_ptr)
    except Exception:
        logger.debug("QueryResult finalizer failed", exc_info=True)


class QueryResult:
    """
    Result of a successful query.

    Buffer and counters live in native memory owned by this object.
    All accessors raise UsageError once the result has been closed.

    Example:
        with conn.query("SELECT 1", "CSV") as result:
            print(result.buffer(), result.rows_read())
    """

    def __init__(self, engine: NativeEngine, result_ptr, output_format: Optional[str] = None):
        self._engine = engine
        self._ptr = result_ptr
        self.output_format = output_format
        self._finalizer = weakref.finalize(self, _finalize_result, engine, result_ptr)
        engine.track_result(self)

    def _contents(self):
        if not self._finalizer.alive:
            raise UsageError("QueryResult has been closed")
        return self._ptr.contents

    def buffer(self) -> Optional[bytes]:
        """Copy of the result buffer, or None for an empty result."""
        result = self._contents()
        if not result.buf or not result.len:
            logger.debug("Buffer access attempted on empty result")
            return None
        return ctypes.string_at(result.buf, result.len)

    def elapsed(self) -> float:
        """Query execution time in seconds."""
        return float(self._contents().elapsed)

    def rows_read(self) -> int:
        return int(self._contents().rows_read)

    def bytes_read(self) -> int:
        return int(self._contents().bytes_read)

    def text(self, encoding: str = "utf-8") -> str:
        """Result buffer decoded as text ("" for an empty result)."""
        data = self.buffer()
        if data is None:
            return ""
        return data.decode(encoding)

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        """Free the native result. Calling close() again is a no-op."""
        if self._finalizer.detach() is None:
            return
        ptr, self._ptr = self._ptr, None
        self._engine.free_result(ptr)

    def __enter__(self) -> "QueryResult":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __str__(self) -> str:
        return self.text()

    def __repr__(self) -> str:
        if self.closed:
            return "<QueryResult closed>"
        return f"<QueryResult format={self.output_format!r} rows_read={self.rows_read()}>"


def execute_query(engine: NativeEngine, conn, sql: bytes, fmt: bytes) -> QueryResult:
    """
    Run one query on a live native connection.

    Args:
        engine: Engine the connection was opened with.
        conn: Dereferenced native connection (struct chdb_conn *).
        sql: Query text, NUL-free bytes.
        fmt: Output format name, NUL-free bytes.

    Returns:
        QueryResult owning the native result.

    Raises:
        ChdbError: The engine returned no result or reported an error.
    """
    sql_text = sql.decode("utf-8", "replace")
    result_ptr = engine.query(conn, sql, fmt)

    if not result_ptr:
        raise ChdbError("Query failed with nil result", sql=sql_text)

    message = result_ptr.contents.error_message
    if message is not None:
        # The errored result is still an allocation we own
        try:
            text = message.decode("utf-8", "replace")
        finally:
            engine.free_result(result_ptr)
        raise ChdbError(f"CHDB error: {text}", sql=sql_text)

    return QueryResult(engine, result_ptr, fmt.decode("utf-8", "replace"))


class Connection:
    """
    A native chDB connection.

    Args are engine startup flags, passed through as the native argv.

    Example:
        with Connection(["clickhouse", "--path=/tmp/db"]) as conn:
            result = conn.query("SELECT 1", "CSV")
            print(result.buffer())
    """

    def __init__(self, args: Iterable[StrOrBytes] = (), engine: Optional[NativeEngine] = None):
        argv = [_to_c_string(arg, "connection argument") for arg in args]
        self._engine = engine if engine is not None else get_engine()

        handle = self._engine.connect(argv)
        if not handle:
            raise ChdbError("Failed to connect")

        self._handle = handle
        self._finalizer = weakref.finalize(self, _finalize_connection, self._engine, handle)
        self._engine.track_connection(self)

    @property
    def engine(self) -> NativeEngine:
        return self._engine

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def query(self, sql: StrOrBytes, format: StrOrBytes = DEFAULT_FORMAT) -> QueryResult:
        """
        Execute a query.

        Args:
            sql: SQL query text.
            format: Output format name, e.g. "CSV", "JSONEachRow".

        Returns:
            QueryResult holding the serialized output.

        Raises:
            UsageError: The connection is closed.
            InvalidArgumentError: sql or format cannot be encoded.
            ChdbError: The query failed.
        """
        if self.closed:
            raise UsageError("Connection is closed")
        sql_bytes = _to_c_string(sql, "sql")
        fmt_bytes = _to_c_string(format, "format")
        return execute_query(self._engine, self._handle[0], sql_bytes, fmt_bytes)

    def close(self) -> None:
        """Close the native connection. Calling close() again is a no-op."""
        if self._finalizer.detach() is None:
            return
        handle, self._handle = self._handle, None
        self._engine.close_connection(handle)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<Connection {state}>"


def connect(*args: StrOrBytes, engine: Optional[NativeEngine] = None) -> Connection:
    """Open a Connection with the given engine startup flags."""
    return Connection(args, engine=engine)
