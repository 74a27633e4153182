import io
import json
import logging

import structlog

from orc_core.logging import bind_context, clear_context, configure_logging


def test_json_logging_carries_bound_context():
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    logging.root.addHandler(handler)
    try:
        configure_logging(fmt="json")
        assert isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter)

        bind_context(commission_id="COMM-001")
        structlog.get_logger("orc_core.tests").warning("patrol_escalated", patrol_id="PATROL-001")

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["event"] == "patrol_escalated"
        assert record["patrol_id"] == "PATROL-001"
        assert record["commission_id"] == "COMM-001"
        assert record["level"] == "warning"
        assert "timestamp" in record
    finally:
        clear_context()
        logging.root.removeHandler(handler)
        structlog.reset_defaults()


def test_clear_context_drops_bindings():
    bind_context(actor_id="IMP-BENCH-001")
    assert structlog.contextvars.get_contextvars() == {"actor_id": "IMP-BENCH-001"}
    clear_context()
    assert structlog.contextvars.get_contextvars() == {}
