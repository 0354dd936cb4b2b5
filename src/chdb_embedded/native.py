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
Native library loader.

Locates libchdb inside the installed package, opens it with global
symbol binding and resolves the four entry points the binding needs:

    connect_chdb(argc, argv)          -> struct chdb_conn **
    close_conn(conn)                  -> void
    query_conn(*conn, query, format)  -> struct local_result_v2 *
    free_result_v2(result)            -> void

A NativeEngine is the only object that ever calls into the library.
Connections and results are handed the engine they were created with,
so unloading it can release everything that is still alive first.
"""

import atexit
import ctypes
import logging
import os
import sys
import threading
import weakref
from typing import Callable, List, Optional

import _ctypes

from .errors import LibraryLoadError, LoadError, SymbolResolutionError, UsageError

logger = logging.getLogger(__name__)

ENGINE_NAME = "chdb"

REQUIRED_SYMBOLS = ("connect_chdb", "close_conn", "query_conn", "free_result_v2")


def _library_name() -> str:
    """Platform-specific file name of the engine library."""
    if sys.platform == "darwin":
        return "libchdb.dylib"
    return "libchdb.so"


def library_path(base_path: str) -> str:
    """Path of the engine library below ``base_path``.

    The layout is fixed: ``<base_path>/lib/chdb/lib/<library>``.
    """
    return os.path.join(base_path, "lib", ENGINE_NAME, "lib", _library_name())


def _find_library(base_path: Optional[str] = None) -> str:
    """Resolve the engine library path.

    Search order:
    1. Explicit ``base_path`` argument
    2. CHDB_LIB_PATH environment variable (file, or directory holding it)
    3. CHDB_HOME environment variable (base path)
    4. Package directory
    """
    if base_path is not None:
        return library_path(base_path)

    env_path = os.environ.get("CHDB_LIB_PATH")
    if env_path:
        if os.path.isdir(env_path):
            return os.path.join(env_path, _library_name())
        return env_path

    home = os.environ.get("CHDB_HOME")
    if home:
        return library_path(home)

    return library_path(os.path.dirname(os.path.abspath(__file__)))


def _dlclose(handle: int) -> None:
    if sys.platform == "win32":
        _ctypes.FreeLibrary(handle)
    else:
        _ctypes.dlclose(handle)


class C_LocalResultV2(ctypes.Structure):
    """Query result returned by query_conn (struct local_result_v2)."""
    _fields_ = [
        ("buf", ctypes.c_void_p),
        ("len", ctypes.c_size_t),
        ("_vec", ctypes.c_void_p),            # engine-private
        ("elapsed", ctypes.c_double),
        ("rows_read", ctypes.c_uint64),
        ("bytes_read", ctypes.c_uint64),
        ("error_message", ctypes.c_char_p),   # NULL on success
    ]


C_ResultPtr = ctypes.POINTER(C_LocalResultV2)
C_ConnHandle = ctypes.POINTER(ctypes.c_void_p)


class NativeEngine:
    """
    A loaded engine library and its resolved entry points.

    Use NativeEngine.load() to create instances, or get_engine() for
    the process-wide one.

    Example:
        engine = NativeEngine.load("/opt/chdb-embedded")
        conn = Connection(["clickhouse", "--path=/tmp/db"], engine=engine)
        ...
        engine.close()
    """

    def __init__(self, lib, path: str):
        self._lib = lib
        self._path = path
        self._lock = threading.Lock()
        self._closed = False
        self._connections = weakref.WeakSet()
        self._results = weakref.WeakSet()
        self._setup_bindings()

    @classmethod
    def load(cls, base_path: Optional[str] = None,
             loader: Callable = ctypes.CDLL) -> "NativeEngine":
        """
        Open the engine library and resolve its entry points.

        Args:
            base_path: Directory holding the ``lib/chdb/lib`` layout.
                Defaults to the environment overrides, then this package.
            loader: Callable used to open the library, called as
                ``loader(path, mode=...)``.

        Returns:
            NativeEngine with all four entry points resolved.

        Raises:
            LibraryLoadError: The library could not be opened.
            SymbolResolutionError: A required entry point is missing.
        """
        path = _find_library(base_path)
        logger.debug("Loading chdb library from %s", path)

        try:
            lib = loader(path, mode=os.RTLD_LAZY | os.RTLD_GLOBAL)
        except OSError as exc:
            raise LibraryLoadError(
                f"Failed to load chdb library: {exc}\n"
                f"Check if {_library_name()} exists at: {path}",
                path=path,
            ) from exc

        missing = [name for name in REQUIRED_SYMBOLS if not cls._has_symbol(lib, name)]
        if missing:
            handle = getattr(lib, "_handle", None)
            if handle:
                _dlclose(handle)
            raise SymbolResolutionError(
                f"Symbol loading failed for {path}\n"
                f"Missing functions: {', '.join(missing)}",
                path=path,
                missing=missing,
            )

        logger.debug("chdb library loaded successfully")
        return cls(lib, path)

    @staticmethod
    def _has_symbol(lib, name: str) -> bool:
        try:
            getattr(lib, name)
        except AttributeError:
            return False
        return True

    def _setup_bindings(self) -> None:
        """Set up function signatures for the native library."""
        lib = self._lib

        # connect_chdb(argc: int, argv: char**) -> struct chdb_conn**
        self._connect = lib.connect_chdb
        self._connect.argtypes = [ctypes.c_int, ctypes.POINTER(ctypes.c_char_p)]
        self._connect.restype = C_ConnHandle

        # close_conn(conn: struct chdb_conn**)
        self._close_conn = lib.close_conn
        self._close_conn.argtypes = [C_ConnHandle]
        self._close_conn.restype = None

        # query_conn(conn: struct chdb_conn*, query: char*, format: char*) -> struct local_result_v2*
        self._query_conn = lib.query_conn
        self._query_conn.argtypes = [ctypes.c_void_p, ctypes.c_char_p, ctypes.c_char_p]
        self._query_conn.restype = C_ResultPtr

        # free_result_v2(result: struct local_result_v2*)
        self._free_result = lib.free_result_v2
        self._free_result.argtypes = [C_ResultPtr]
        self._free_result.restype = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def loaded(self) -> bool:
        return not self._closed

    def _check_loaded(self) -> None:
        if self._closed:
            raise UsageError("chdb library has been unloaded")

    # =========================================================================
    # Entry points
    # =========================================================================

    def connect(self, argv: List[bytes]):
        """Call connect_chdb. Returns the raw handle, which may be NULL."""
        self._check_loaded()
        c_argv = (ctypes.c_char_p * len(argv))(*argv)
        handle = self._connect(len(argv), c_argv)
        logger.debug("connect_chdb(%d args) -> %s", len(argv), "ok" if handle else "NULL")
        return handle

    def close_connection(self, handle) -> None:
        self._check_loaded()
        logger.debug("Closing connection: %s", ctypes.addressof(handle.contents) if handle else None)
        self._close_conn(handle)

    def query(self, conn, sql: bytes, fmt: bytes):
        """Call query_conn. Returns the raw result pointer, which may be NULL."""
        self._check_loaded()
        return self._query_conn(conn, sql, fmt)

    def free_result(self, result) -> None:
        self._check_loaded()
        logger.debug("Freeing local_result_v2: %s", ctypes.addressof(result.contents))
        self._free_result(result)

    # =========================================================================
    # Ownership tracking
    # =========================================================================

    def track_connection(self, conn) -> None:
        self._connections.add(conn)

    def track_result(self, result) -> None:
        self._results.add(result)

    def close(self) -> None:
        """
        Unload the library.

        Results and connections still alive are released first (results
        before connections). Calling close() more than once is a no-op.
        """
        with self._lock:
            if self._closed:
                return

            for result in list(self._results):
                result.close()
            for conn in list(self._connections):
                conn.close()

            self._closed = True
            handle = getattr(self._lib, "_handle", None)
            self._lib = None
            self._connect = self._close_conn = None
            self._query_conn = self._free_result = None

        if handle:
            _dlclose(handle)
        logger.debug("chdb library unloaded: %s", self._path)


# =============================================================================
# Process-wide engine
# =============================================================================

_default_engine: Optional[NativeEngine] = None
_default_error: Optional[Exception] = None
_default_lock = threading.Lock()


def get_engine() -> NativeEngine:
    """
    Return the process-wide engine, loading it on first use.

    Initialization is serialized and runs at most once. If it fails,
    every later call raises the cached error (with a fresh traceback)
    without retrying the load.
    """
    global _default_engine, _default_error

    with _default_lock:
        if _default_engine is not None:
            return _default_engine
        if _default_error is not None:
            raise _default_error.with_traceback(None)

        try:
            engine = NativeEngine.load()
        except LoadError as exc:
            _default_error = exc
            raise

        atexit.register(shutdown)
        _default_engine = engine
        return engine


def shutdown() -> None:
    """Unload the process-wide engine. Safe to call repeatedly; never raises."""
    engine = _default_engine
    if engine is None:
        return
    try:
        engine.close()
    except Exception:  # exit hook must not raise
        logger.warning("Failed to unload chdb library", exc_info=True)
