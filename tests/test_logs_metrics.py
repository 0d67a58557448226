from __future__ import annotations

import json
import logging
import os

from algodid import metrics
from algodid.env import load_dotenv_if_present
from algodid.logs import log_event


def test_log_event_emits_one_json_object(caplog) -> None:
    logger = logging.getLogger("algodid.test")
    with caplog.at_level(logging.INFO, logger="algodid.test"):
        log_event(logger, "cell_written", cell_index=3, identity="ABC")

    rec = json.loads(caplog.records[-1].getMessage())
    assert rec["event"] == "cell_written"
    assert rec["cell_index"] == 3
    assert isinstance(rec["ts_ms"], int)


def test_log_event_respects_level(caplog) -> None:
    logger = logging.getLogger("algodid.test.quiet")
    with caplog.at_level(logging.WARNING, logger="algodid.test.quiet"):
        log_event(logger, "noise", level=logging.DEBUG)
    assert caplog.records == []


def test_log_event_survives_unserializable_fields(caplog) -> None:
    logger = logging.getLogger("algodid.test.odd")
    with caplog.at_level(logging.INFO, logger="algodid.test.odd"):
        log_event(logger, "odd", blob=object())
    assert caplog.records[-1].getMessage().startswith("event=odd")


def test_prometheus_text() -> None:
    metrics.reset()
    metrics.inc_counter("groups_sent", 2)
    metrics.set_gauge("workers", 4)

    text = metrics.format_prometheus()
    assert "algodid_groups_sent 2" in text
    assert "algodid_workers 4" in text
    assert text.startswith("algodid_uptime_ms ")


def test_dotenv_loads_once(tmp_path, monkeypatch) -> None:
    import algodid.env as env_mod

    p = tmp_path / ".env"
    p.write_text("ALGODID_TEST_FROM_DOTENV=1\n", encoding="utf-8")
    monkeypatch.delenv("ALGODID_TEST_FROM_DOTENV", raising=False)
    monkeypatch.setattr(env_mod, "_LOADED", False)

    assert load_dotenv_if_present(str(p)) is True
    assert load_dotenv_if_present(str(p)) is False
    assert os.environ.get("ALGODID_TEST_FROM_DOTENV") == "1"
    monkeypatch.delenv("ALGODID_TEST_FROM_DOTENV", raising=False)
