"""Tests for file_mover.service module"""
import gzip
import logging
import logging.handlers
import threading

import pytest

from file_mover import service as service_module
from file_mover.service import (
    LOG_FILE_NAME,
    MoverService,
    _gzip_namer,
    _gzip_rotator,
    ensure_log_directory,
    run,
    setup_logging,
)
from tests.helpers import ENV_NAMES, wait_for


@pytest.fixture(autouse=True)
def isolated_logging(monkeypatch):
    """Restore the root logger and hide the runner's environment"""
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    level, handlers = root.level, root.handlers[:]
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            handler.close()
            root.removeHandler(handler)
    root.setLevel(level)


def write_env(app_dir, source, dest, extra=""):
    (app_dir / ".env").write_text(
        f"SRC={source}\nDEST={dest}\nFILE_NAME=example.txt\n"
        f"POLL_INTERVAL=0.05\nRETRY_DELAY=0\n{extra}",
        encoding="utf-8",
    )


class TestLogging:
    """Test suite for log sink setup"""

    def test_ensure_log_directory(self, tmp_path):
        log_dir = ensure_log_directory(tmp_path / "logs" / "nested")
        assert log_dir.is_dir()

    def test_setup_logging_writes_file(self, tmp_path):
        handlers = setup_logging(tmp_path)
        try:
            logging.getLogger("file_mover.test").info("hello log")
            for handler in handlers:
                handler.flush()
            content = (tmp_path / LOG_FILE_NAME).read_text(encoding="utf-8")
            assert "[INFO] file_mover.test: hello log" in content
        finally:
            service_module._teardown_logging(handlers)

    def test_setup_logging_rotates_daily(self, tmp_path):
        handlers = setup_logging(tmp_path, level="WARNING")
        try:
            rotating = [h for h in handlers if isinstance(h, logging.handlers.TimedRotatingFileHandler)]
            assert len(rotating) == 1
            assert rotating[0].backupCount == 14
            assert logging.getLogger().level == logging.WARNING
        finally:
            service_module._teardown_logging(handlers)

    def test_unknown_level_falls_back_to_info(self, tmp_path):
        handlers = setup_logging(tmp_path, level="basic_format")
        try:
            assert logging.getLogger().level == logging.INFO
        finally:
            service_module._teardown_logging(handlers)

    def test_rotated_files_are_gzipped(self, tmp_path):
        source = tmp_path / "old.log"
        source.write_text("line\n", encoding="utf-8")
        dest = _gzip_namer(str(tmp_path / "old.log.2024-01-01"))

        _gzip_rotator(str(source), dest)

        assert dest.endswith(".gz")
        assert not source.exists()
        with gzip.open(dest, "rt", encoding="utf-8") as fh:
            assert fh.read() == "line\n"


class TestMoverService:
    """Test suite for the watcher-to-mover wiring"""

    def test_new_files_are_moved(self, source_dir, dest_dir, mock_logger):
        (source_dir / "old.txt").write_text("backlog")
        service = MoverService(source_dir, dest_dir, poll_interval=0.05, retry_delay=0, log=mock_logger)
        service.start()
        try:
            (source_dir / "new.txt").write_text("fresh")
            assert wait_for(lambda: (dest_dir / "new.txt").exists())
        finally:
            service.stop()

        assert (dest_dir / "new.txt").read_text() == "fresh"
        assert (source_dir / "old.txt").exists()
        assert not (dest_dir / "old.txt").exists()
        assert any("Detected new file" in str(call) for call in mock_logger.info.call_args_list)

    def test_existing_destination_is_overwritten(self, source_dir, dest_dir, mock_logger):
        (dest_dir / "same.txt").write_text("previous")
        service = MoverService(source_dir, dest_dir, poll_interval=0.05, retry_delay=0, log=mock_logger)
        service.start()
        try:
            (source_dir / "same.txt").write_text("current")
            assert wait_for(lambda: not (source_dir / "same.txt").exists())
            assert wait_for(lambda: (dest_dir / "same.txt").read_text() == "current")
        finally:
            service.stop()

    def test_watch_errors_are_logged(self, source_dir, dest_dir, mock_logger):
        service = MoverService(source_dir, dest_dir, poll_interval=0.05, log=mock_logger)
        service._on_watch_error(FileNotFoundError("gone"))
        mock_logger.error.assert_called_once()
        assert "Watcher error" in mock_logger.error.call_args[0][0]

    def test_missing_source_raises(self, tmp_path, dest_dir, mock_logger):
        service = MoverService(tmp_path / "missing", dest_dir, log=mock_logger)
        with pytest.raises(FileNotFoundError):
            service.start()


class TestRun:
    """Test suite for the process entry point"""

    def test_first_start_creates_env_and_fails_without_source(self, tmp_path):
        code = run(tmp_path, stop_event=threading.Event())

        assert code == 1
        assert (tmp_path / ".env").exists()
        assert (tmp_path / "logs").is_dir()

    def test_invalid_config_exits_with_error(self, tmp_path):
        (tmp_path / ".env").write_text("SRC=./src\n", encoding="utf-8")

        assert run(tmp_path, stop_event=threading.Event()) == 1

    def test_log_directory_failure_exits_with_error(self, tmp_path):
        (tmp_path / "logs").write_text("not a directory")

        assert run(tmp_path, stop_event=threading.Event()) == 1

    def test_log_file_failure_exits_with_error(self, tmp_path, capsys):
        # A directory where the log file should be
        (tmp_path / "logs" / LOG_FILE_NAME).mkdir(parents=True)

        assert run(tmp_path, stop_event=threading.Event()) == 1
        assert "Error creating log file" in capsys.readouterr().err

    def test_runs_until_stopped(self, tmp_path):
        source, dest = tmp_path / "in", tmp_path / "out"
        source.mkdir()
        write_env(tmp_path, source, dest)
        stop = threading.Event()
        result = {}

        runner = threading.Thread(target=lambda: result.update(code=run(tmp_path, stop_event=stop)))
        runner.start()
        try:
            # Wait for the watcher to take its baseline
            assert wait_for(lambda: (tmp_path / "logs" / LOG_FILE_NAME).exists()
                            and "Watching directory" in (tmp_path / "logs" / LOG_FILE_NAME).read_text(encoding="utf-8"))
            (source / "payload.bin").write_bytes(b"\x00\x01")
            assert wait_for(lambda: (dest / "payload.bin").exists())
        finally:
            stop.set()
            runner.join(timeout=10)

        assert result["code"] == 0
        assert not (source / "payload.bin").exists()

    def test_relative_paths_resolve_against_app_dir(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / ".env").write_text(
            "SRC=./src\nDEST=./dest\nFILE_NAME=example.txt\nPOLL_INTERVAL=0.05\n",
            encoding="utf-8",
        )
        stop = threading.Event()
        stop.set()

        assert run(tmp_path, stop_event=stop) == 0
