from __future__ import annotations

import pytest
import structlog

from flownote.logging import configure_logging, get_logger


def test_keyword_fields_are_rendered_and_levels_filtered(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("WARNING")
    logger = get_logger("flownote.test")

    logger.info("Hidden message", node_id="n1")
    logger.warning("Connection rejected", reason="self loop", node_id="n1")

    err = capsys.readouterr().err
    assert "Hidden message" not in err
    assert "Connection rejected" in err
    assert "node_id=n1" in err
    assert "warning" in err


def test_fields_reach_structlog_processors() -> None:
    with structlog.testing.capture_logs() as logs:
        get_logger("flownote.test").error("Queued pass failed", key="refresh", error="boom")
    assert logs == [{"event": "Queued pass failed", "key": "refresh", "error": "boom", "log_level": "error"}]


def test_unknown_level_names_fall_back_to_info(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("chatty")
    get_logger("flownote.test").info("Visible at info", count=2)
    assert "count=2" in capsys.readouterr().err
    configure_logging("WARNING")
