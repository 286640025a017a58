import logging
from importlib import reload

import log_utils


def _reset_logger(logger: logging.Logger) -> None:
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()


def test_setup_logger_writes_rotating_file(tmp_path, monkeypatch):
    module = reload(log_utils)
    log_file = tmp_path / "nested" / "signal_engine.log"
    monkeypatch.setattr(module, "LOG_FILE", str(log_file), raising=False)

    logger = module.setup_logger("test_log_utils_file")
    try:
        kinds = {type(h).__name__ for h in logger.handlers}
        assert {"StreamHandler", "RotatingFileHandler"} <= kinds

        logger.info("candidate accepted")
        for handler in logger.handlers:
            handler.flush()

        assert "candidate accepted" in log_file.read_text()
    finally:
        _reset_logger(logger)


def test_setup_logger_is_idempotent(tmp_path, monkeypatch):
    module = reload(log_utils)
    monkeypatch.setattr(module, "LOG_FILE", str(tmp_path / "engine.log"), raising=False)

    first = module.setup_logger("test_log_utils_idempotent")
    try:
        count = len(first.handlers)
        second = module.setup_logger("test_log_utils_idempotent")
        assert second is first
        assert len(second.handlers) == count
    finally:
        _reset_logger(first)


def test_unwritable_log_path_falls_back_to_console(tmp_path, monkeypatch):
    module = reload(log_utils)
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("")
    monkeypatch.setattr(module, "LOG_FILE", str(blocker / "engine.log"), raising=False)

    logger = module.setup_logger("test_log_utils_console_only")
    try:
        assert [type(h).__name__ for h in logger.handlers] == ["StreamHandler"]
    finally:
        _reset_logger(logger)
