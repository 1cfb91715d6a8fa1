import logging
from pathlib import Path

from dtsync.core.logging_setup import MaskSecretsFilter, build_logger


def test_logger_creates_files_and_redacts(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    logger = build_logger(
        name="dtsync_t1",
        run_id="run123",
        action="upsert",
        base_dir="logs",
        extra={"api": "alerting-profile"},
    )
    logger.info("hello Authorization: Api-Token dt0c01.ABC.DEF")
    logger.error("password=secret-x, token: tkn999 | api_key=AKIA123")
    logger.info("header %s", "Api-Token dt0c01.XYZ")

    app_log = Path("logs/app.log")
    assert app_log.exists()

    dated_dirs = list(Path("logs").glob("20*"))
    assert dated_dirs, "dated directory not created"
    files = list(dated_dirs[0].glob("upsert_run123.log"))
    assert files, "action-based log file not created"

    content = app_log.read_text(encoding="utf-8")
    assert "***REDACTED***" in content
    for secret in ("dt0c01.ABC.DEF", "secret-x", "tkn999", "AKIA123", "dt0c01.XYZ"):
        assert secret not in content
    assert "api=alerting-profile" in content

    action_content = files[0].read_text(encoding="utf-8")
    assert "***REDACTED***" in action_content
    assert "tkn999" not in action_content


def test_library_records_get_context_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    build_logger(name="dtsync_t2", run_id="r42", action="list", base_dir="logs")

    logging.getLogger("dtsync_t2.client").debug("debug-line-42")

    content = Path("logs/app.log").read_text(encoding="utf-8")
    assert "DEBUG" in content and "debug-line-42" in content
    assert "run=- action=- api=-" in content


def test_single_console_handler(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    build_logger(name="dtsync_t3", run_id="a", action="list", base_dir="logs")
    build_logger(name="dtsync_t3", run_id="b", action="list", base_dir="logs")

    handlers = logging.getLogger("dtsync_t3").handlers
    assert sum(type(h) is logging.StreamHandler for h in handlers) == 1
    assert sum(isinstance(h, logging.handlers.TimedRotatingFileHandler) for h in handlers) == 1


def test_json_quoted_secrets_are_masked():
    masked = MaskSecretsFilter.mask('payload={"name": "creds", "password": "hun\\"ter2", "apiToken": "dt0c01.X"}')

    assert '"name": "creds"' in masked
    assert "hun" not in masked and "dt0c01.X" not in masked
    assert masked.count("***REDACTED***") == 2
