"""Shared fixtures: a fake libchdb built from ctypes memory."""

import ctypes
import os

import pytest

from chdb_embedded import native
from chdb_embedded.native import C_LocalResultV2, NativeEngine


class FakeLibrary:
    """Exposes the four libchdb entry points as plain callables.

    Results are real C_LocalResultV2 structs so the binding reads them
    exactly as it would read native memory. Every call is recorded.
    """

    def __init__(self, output=b"1\n", error=None, null_result=False, null_connect=False):
        self.output = output
        self.error = error
        self.null_result = null_result
        self.null_connect = null_connect
        self.responses = {}

        self.connect_calls = []
        self.close_calls = []
        self.query_calls = []
        self.free_calls = []
        self._keep = []

        def connect_chdb(argc, argv):
            self.connect_calls.append([argv[i] for i in range(argc)])
            if self.null_connect:
                return None
            handle = ctypes.pointer(ctypes.c_void_p(0xC0FFEE + len(self.connect_calls)))
            self._keep.append(handle)
            return handle

        def close_conn(handle):
            self.close_calls.append(handle[0])

        def query_conn(conn, sql, fmt):
            self.query_calls.append((conn, sql, fmt))
            if self.null_result:
                return None
            output, error = self.responses.get(sql.decode(), (self.output, self.error))
            result = C_LocalResultV2()
            if output:
                buf = ctypes.create_string_buffer(output, len(output))
                self._keep.append(buf)
                result.buf = ctypes.addressof(buf)
                result.len = len(output)
            result.elapsed = 0.25
            result.rows_read = 1
            result.bytes_read = len(output or b"")
            result.error_message = error
            self._keep.append(result)
            return ctypes.pointer(result)

        def free_result_v2(result):
            self.free_calls.append(ctypes.addressof(result.contents))

        self.connect_chdb = connect_chdb
        self.close_conn = close_conn
        self.query_conn = query_conn
        self.free_result_v2 = free_result_v2


@pytest.fixture
def fake_lib():
    return FakeLibrary()


@pytest.fixture
def engine(fake_lib):
    eng = NativeEngine(fake_lib, "/fake/lib/chdb/lib/libchdb.so")
    yield eng
    eng.close()


@pytest.fixture
def reset_default_engine(monkeypatch):
    """Isolate tests from the process-wide engine."""
    monkeypatch.setattr(native, "_default_engine", None)
    monkeypatch.setattr(native, "_default_error", None)
    registered = []
    monkeypatch.setattr(native.atexit, "register", registered.append)
    return registered


def _real_library_path():
    try:
        path = native._find_library()
    except Exception:
        return None
    return path if os.path.isfile(path) else None


REAL_LIBRARY = _real_library_path()

requires_libchdb = pytest.mark.skipif(
    REAL_LIBRARY is None, reason="libchdb shared library not available"
)
