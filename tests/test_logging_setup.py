import logging
from pathlib import Path

import pytest

from pulsesync.core.logging_setup import MaskSecretsFilter, build_logger, with_context


@pytest.fixture
def in_tmp(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _app_log():
    return Path("logs/app.log").read_text(encoding="utf-8")


def test_run_files_are_created_and_secrets_masked(in_tmp):
    logger = build_logger(name="pulse_t1", run_id="run123", action="sync", extra={"source": "netbox"})

    logger.info("hello Authorization: Token abc123")
    logger.info("retry with %s", "Authorization: Bearer zzz777")
    logger.error("password=secret-x, token: tkn999 | api_key=AKIA123")

    run_logs = list(Path("logs").glob("20*/sync_run123.log"))
    assert len(run_logs) == 1, "per-run log file not created under a dated directory"

    for text in (_app_log(), run_logs[0].read_text(encoding="utf-8")):
        assert "***REDACTED***" in text
        for secret in ("abc123", "zzz777", "secret-x", "tkn999", "AKIA123"):
            assert secret not in text
    assert "run=run123 action=sync source=netbox kind=-" in _app_log()


def test_debug_reaches_files_but_not_console(in_tmp, capsys):
    logger = build_logger(name="pulse_t2", run_id="r42", action="problems", console_level="INFO")
    logger.debug("debug-line-42")
    assert "debug-line-42" in _app_log()
    assert "debug-line-42" not in capsys.readouterr().err


def test_context_and_module_loggers(in_tmp):
    logger = build_logger(name="pulse_t3", run_id="r7", action="sync")

    with_context(logger, kind="sites").info("sites pass")
    # plain module logger without adapter fields
    logging.getLogger("pulse_t3.http").warning("slow page")

    content = _app_log()
    assert "run=r7 action=sync source=- kind=sites | sites pass" in content
    assert "run=- action=- source=- kind=- | slow page" in content


def test_redact_keeps_surrounding_text():
    assert MaskSecretsFilter.redact("GET /x Authorization: Token abc.def-1 ok") == (
        "GET /x Authorization: Token ***REDACTED*** ok"
    )
    assert MaskSecretsFilter.redact("no secrets here") == "no secrets here"
