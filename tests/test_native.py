"""Tests for library loading and the process-wide engine."""

import os
import threading
import time
import traceback

import pytest

from chdb_embedded import native
from chdb_embedded.connection import Connection
from chdb_embedded.errors import (
    ChdbError,
    LibraryLoadError,
    LoadError,
    SymbolResolutionError,
    UsageError,
)
from chdb_embedded.native import NativeEngine, library_path

from conftest import FakeLibrary


class TestLibraryPath:

    def test_fixed_layout(self):
        path = library_path("/opt/pkg")
        assert path.startswith(os.path.join("/opt/pkg", "lib", "chdb", "lib"))
        assert os.path.basename(path).startswith("libchdb.")

    def test_explicit_base_path_wins(self, monkeypatch):
        monkeypatch.setenv("CHDB_LIB_PATH", "/elsewhere/libchdb.so")
        assert native._find_library("/opt/pkg") == library_path("/opt/pkg")

    def test_env_lib_path_file(self, monkeypatch):
        monkeypatch.setenv("CHDB_LIB_PATH", "/custom/libchdb.so")
        assert native._find_library() == "/custom/libchdb.so"

    def test_env_lib_path_directory(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CHDB_LIB_PATH", str(tmp_path))
        assert native._find_library() == os.path.join(str(tmp_path), native._library_name())

    def test_env_home(self, monkeypatch):
        monkeypatch.delenv("CHDB_LIB_PATH", raising=False)
        monkeypatch.setenv("CHDB_HOME", "/srv/chdb")
        assert native._find_library() == library_path("/srv/chdb")

    def test_default_is_package_dir(self, monkeypatch):
        monkeypatch.delenv("CHDB_LIB_PATH", raising=False)
        monkeypatch.delenv("CHDB_HOME", raising=False)
        pkg_dir = os.path.dirname(os.path.abspath(native.__file__))
        assert native._find_library() == library_path(pkg_dir)


class TestLoad:

    def test_load_resolves_symbols_with_global_binding(self):
        fake = FakeLibrary()
        seen = {}

        def loader(path, mode):
            seen["path"] = path
            seen["mode"] = mode
            return fake

        engine = NativeEngine.load("/opt/pkg", loader=loader)
        assert engine.loaded
        assert engine.path == library_path("/opt/pkg")
        assert seen["mode"] & os.RTLD_GLOBAL
        assert seen["mode"] & os.RTLD_LAZY
        engine.close()

    def test_missing_file_raises_library_load_error(self, tmp_path):
        with pytest.raises(LibraryLoadError) as exc_info:
            NativeEngine.load(str(tmp_path))
        err = exc_info.value
        assert err.path == library_path(str(tmp_path))
        assert err.path in str(err)
        assert isinstance(err, LoadError)

    def test_unloadable_file_raises_library_load_error(self, tmp_path):
        lib_file = tmp_path / "lib" / "chdb" / "lib" / native._library_name()
        lib_file.parent.mkdir(parents=True)
        lib_file.write_text("not a shared object")
        with pytest.raises(LibraryLoadError, match="Failed to load chdb library"):
            NativeEngine.load(str(tmp_path))

    def test_missing_symbols_named(self):
        fake = FakeLibrary()
        del fake.query_conn
        del fake.free_result_v2
        with pytest.raises(SymbolResolutionError) as exc_info:
            NativeEngine.load("/opt/pkg", loader=lambda path, mode: fake)
        assert exc_info.value.missing == ("query_conn", "free_result_v2")
        assert "query_conn" in str(exc_info.value)

    def test_missing_symbols_closes_handle(self, monkeypatch):
        fake = FakeLibrary()
        fake._handle = 4242
        del fake.close_conn
        closed = []
        monkeypatch.setattr(native, "_dlclose", closed.append)
        with pytest.raises(SymbolResolutionError):
            NativeEngine.load("/opt/pkg", loader=lambda path, mode: fake)
        assert closed == [4242]


class TestEngineClose:

    def test_close_is_idempotent(self, fake_lib):
        engine = NativeEngine(fake_lib, "fake")
        engine.close()
        engine.close()
        assert not engine.loaded

    def test_close_dlcloses_handle_once(self, monkeypatch):
        fake = FakeLibrary()
        fake._handle = 99
        closed = []
        monkeypatch.setattr(native, "_dlclose", closed.append)
        engine = NativeEngine(fake, "fake")
        engine.close()
        engine.close()
        assert closed == [99]

    def test_close_releases_live_handles_first(self, fake_lib):
        engine = NativeEngine(fake_lib, "fake")
        conn = Connection(["clickhouse"], engine=engine)
        result = conn.query("SELECT 1")

        engine.close()

        assert result.closed
        assert conn.closed
        assert len(fake_lib.free_calls) == 1
        assert len(fake_lib.close_calls) == 1

    def test_calls_after_unload_raise_usage_error(self, fake_lib):
        engine = NativeEngine(fake_lib, "fake")
        engine.close()
        with pytest.raises(UsageError):
            Connection([], engine=engine)
        assert fake_lib.connect_calls == []


class TestDefaultEngine:

    def test_loads_once_and_registers_exit_hook(self, reset_default_engine, monkeypatch):
        loads = []

        def fake_load(cls=None):
            loads.append(1)
            return NativeEngine(FakeLibrary(), "fake")

        monkeypatch.setattr(NativeEngine, "load", staticmethod(fake_load))
        first = native.get_engine()
        second = native.get_engine()
        assert first is second
        assert len(loads) == 1
        assert reset_default_engine == [native.shutdown]
        first.close()

    def test_failure_is_cached(self, reset_default_engine, monkeypatch):
        attempts = []

        def failing_load(cls=None):
            attempts.append(1)
            raise LibraryLoadError("no library", path="/nowhere")

        monkeypatch.setattr(NativeEngine, "load", staticmethod(failing_load))
        with pytest.raises(LibraryLoadError):
            native.get_engine()
        with pytest.raises(LibraryLoadError):
            native.get_engine()
        assert len(attempts) == 1
        assert reset_default_engine == []

    def test_connection_without_library_fails_before_connect(self, reset_default_engine,
                                                             monkeypatch, tmp_path):
        monkeypatch.setenv("CHDB_LIB_PATH", str(tmp_path / "missing.so"))
        with pytest.raises(LibraryLoadError):
            Connection(["clickhouse"])

    def test_shutdown_is_safe_without_engine(self, reset_default_engine):
        native.shutdown()
        native.shutdown()

    def test_shutdown_never_raises(self, reset_default_engine, monkeypatch):
        engine = NativeEngine(FakeLibrary(), "fake")

        def broken_close():
            raise ChdbError("boom")

        monkeypatch.setattr(engine, "close", broken_close)
        monkeypatch.setattr(native, "_default_engine", engine)
        native.shutdown()

    def test_concurrent_callers_share_one_load(self, reset_default_engine, monkeypatch):
        loads = []

        def slow_load(cls=None):
            loads.append(1)
            time.sleep(0.05)
            return NativeEngine(FakeLibrary(), "fake")

        monkeypatch.setattr(NativeEngine, "load", staticmethod(slow_load))
        start = threading.Barrier(8)
        engines = []

        def worker():
            start.wait()
            engines.append(native.get_engine())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(loads) == 1
        assert len(engines) == 8
        assert len({id(engine) for engine in engines}) == 1
        assert reset_default_engine == [native.shutdown]
        engines[0].close()

    def test_cached_failure_traceback_does_not_grow(self, reset_default_engine, monkeypatch):
        def failing_load(cls=None):
            raise LibraryLoadError("no library", path="/nowhere")

        monkeypatch.setattr(NativeEngine, "load", staticmethod(failing_load))
        with pytest.raises(LibraryLoadError):
            native.get_engine()

        depths = []
        for _ in range(3):
            with pytest.raises(LibraryLoadError) as exc_info:
                native.get_engine()
            depths.append(len(traceback.extract_tb(exc_info.value.__traceback__)))
        assert depths[0] == depths[1] == depths[2]
