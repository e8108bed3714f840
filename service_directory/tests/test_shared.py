"""
Tests for shared logging and metrics helpers.
"""

import logging

import structlog

from shared.logging import configure_logging
from shared.metrics import MetricsCollector


def test_log_events_carry_iso_timestamp():
    """Test the processor chain leaves an ISO-8601 timestamp."""
    configure_logging("directory")
    processors = structlog.get_config()["processors"]
    logger = logging.getLogger("directory.tests")

    event_dict = {"event": "hello"}
    # skip the level filter and the final renderer
    for processor in processors[1:-1]:
        event_dict = processor(logger, "info", event_dict)

    assert isinstance(event_dict["timestamp"], str)
    assert "T" in event_dict["timestamp"]
    assert event_dict["service"] == "directory"


def test_record_decision_counts_evaluation_errors():
    """Test decisions and evaluation errors are counted separately."""
    metrics = MetricsCollector("directory-test")

    metrics.record_decision("update-group", "deny", error_count=2)
    metrics.record_decision("update-group", "allow")

    registry = metrics.registry
    assert registry.get_sample_value(
        "authz_decisions_total", {"action": "update-group", "judgement": "deny"}
    ) == 1.0
    assert registry.get_sample_value(
        "authz_decisions_total", {"action": "update-group", "judgement": "allow"}
    ) == 1.0
    assert registry.get_sample_value(
        "authz_evaluation_errors_total", {"action": "update-group"}
    ) == 2.0
