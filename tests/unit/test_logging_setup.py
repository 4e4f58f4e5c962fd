from __future__ import annotations

import logging

from harreplay.core.logging_setup import configure_stdlib_logging, reset_stdlib_logging_for_tests


def _file_handlers() -> list[logging.FileHandler]:
    return [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]


def test_configure_writes_records_to_file(tmp_path) -> None:
    log_path = tmp_path / "logs" / "harreplay.log"
    configure_stdlib_logging(log_path=log_path, level="DEBUG")

    logging.getLogger("harreplay.test").info("hello %s", "file")
    for h in _file_handlers():
        h.flush()

    assert "hello file" in log_path.read_text(encoding="utf-8")
    reset_stdlib_logging_for_tests()


def test_configure_is_idempotent_for_same_path(tmp_path) -> None:
    log_path = tmp_path / "a.log"
    before = len(_file_handlers())
    configure_stdlib_logging(log_path=log_path)
    configure_stdlib_logging(log_path=log_path)
    assert len(_file_handlers()) == before + 1
    reset_stdlib_logging_for_tests()
    assert len(_file_handlers()) == before


def test_switching_paths_replaces_handler(tmp_path) -> None:
    before = len(_file_handlers())
    configure_stdlib_logging(log_path=tmp_path / "a.log")
    configure_stdlib_logging(log_path=tmp_path / "b.log")
    handlers = _file_handlers()
    assert len(handlers) == before + 1
    assert handlers[-1].baseFilename.endswith("b.log")
    reset_stdlib_logging_for_tests()
