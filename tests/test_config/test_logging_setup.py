import io
import json

import pytest
import structlog

from turnkeeper.logging import bind_turn, clear_turn, configure_logging, get_logger


@pytest.fixture
def output():
    stream = io.StringIO()
    yield stream
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


def lines(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_turn_context_is_attached_until_cleared(output):
    configure_logging(level="INFO", fmt="json", stream=output)
    log = get_logger("turnkeeper.sample")

    bind_turn("seq-1", 2)
    log.info("Tool finished", tool="viewFile")
    clear_turn()
    log.info("Idle")

    first, second = lines(output)
    assert first["event"] == "Tool finished"
    assert first["level"] == "info"
    assert first["logger"] == "turnkeeper.sample"
    assert first["sequence_id"] == "seq-1"
    assert first["depth"] == 2
    assert first["tool"] == "viewFile"
    assert "sequence_id" not in second
    assert "depth" not in second


def test_level_filters_lower_severity(output):
    configure_logging(level="WARNING", fmt="json", stream=output)
    log = get_logger("turnkeeper.sample")

    log.debug("hidden")
    log.info("hidden too")
    log.warning("shown")

    assert [line["event"] for line in lines(output)] == ["shown"]
