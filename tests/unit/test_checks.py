"""
Unit tests for the pure alert checks
"""

from controlplane.monitoring.checks import (
    check_connector_state,
    check_dlq,
    check_error_rate,
    check_lag,
    check_throughput,
    check_wal_size,
    merge_evaluations,
    raised,
)
from models.base import AlertSeverity, AlertType


def status(state, task_states=("RUNNING",), trace=None):
    return {
        "name": "orders-source",
        "connector": {"state": state, "worker_id": "connect:8083", "trace": trace},
        "tasks": [{"id": i, "state": s, "worker_id": "connect:8083"} for i, s in enumerate(task_states)],
    }


class TestConnectorState:
    """Connector and task states"""

    def test_running_clears_everything(self):
        evaluation = check_connector_state("source", "orders-source", status("RUNNING"), None, 300)

        assert evaluation == {
            AlertType.CONNECTOR_FAILED: None,
            AlertType.CONNECTOR_PAUSED: None,
            AlertType.TASK_FAILED: None,
        }

    def test_failed_connector_is_critical(self):
        evaluation = check_connector_state("source", "orders-source", status("FAILED", trace="boom"), None, 300)

        condition = evaluation[AlertType.CONNECTOR_FAILED]
        assert condition.severity == AlertSeverity.CRITICAL
        assert condition.metadata["error_trace"] == "boom"
        assert condition.metadata["connector_name"] == "orders-source"

    def test_failed_tasks_counted(self):
        evaluation = check_connector_state(
            "sink", "orders-sink", status("RUNNING", ("FAILED", "RUNNING", "FAILED")), None, 300
        )

        condition = evaluation[AlertType.TASK_FAILED]
        assert condition.message.startswith("2 sink task(s) FAILED")
        assert [task["id"] for task in condition.metadata["failed_tasks"]] == [0, 2]

    def test_short_pause_is_clear(self):
        evaluation = check_connector_state("source", "orders-source", status("PAUSED"), 120, 300)

        assert evaluation[AlertType.CONNECTOR_PAUSED] is None

    def test_long_pause_raises_warning(self):
        evaluation = check_connector_state("source", "orders-source", status("PAUSED"), 301, 300)

        condition = evaluation[AlertType.CONNECTOR_PAUSED]
        assert condition.severity == AlertSeverity.WARNING
        assert condition.metadata["paused_duration_seconds"] == 301

    def test_pause_on_paused_pipeline_is_expected(self):
        evaluation = check_connector_state(
            "source", "orders-source", status("PAUSED"), 3600, 300, pipeline_paused=True
        )

        assert evaluation[AlertType.CONNECTOR_PAUSED] is None

    def test_pause_during_remediation_is_not_evaluated(self):
        evaluation = check_connector_state(
            "source", "orders-source", status("PAUSED"), 3600, 300, remediating=True
        )

        assert AlertType.CONNECTOR_PAUSED not in evaluation
        assert evaluation[AlertType.CONNECTOR_FAILED] is None

    def test_unknown_state_leaves_state_alerts_untouched(self):
        evaluation = check_connector_state("source", "orders-source", status("UNASSIGNED"), None, 300)

        assert AlertType.CONNECTOR_FAILED not in evaluation
        assert AlertType.CONNECTOR_PAUSED not in evaluation


class TestMetricChecks:
    """Threshold checks over metric samples"""

    def test_lag_above_threshold(self):
        evaluation = check_lag("orders-source", 6500, 5000)

        assert evaluation[AlertType.HIGH_LAG].metadata["lag_ms"] == 6500

    def test_lag_at_threshold_is_clear(self):
        assert check_lag("orders-source", 5000, 5000) == {AlertType.HIGH_LAG: None}

    def test_missing_series_is_not_evaluated(self):
        assert check_lag("orders-source", None, 5000) == {}
        assert check_error_rate("orders-source", None, 5) == {}
        assert check_dlq("orders-sink", None, 100) == {}
        assert check_wal_size("orders_slot", None, 1024, 80) == {}

    def test_throughput_drop(self):
        evaluation = check_throughput("orders-source", 40, 100, 50)

        condition = evaluation[AlertType.THROUGHPUT_DROP]
        assert condition.metadata["drop_percent"] == 60

    def test_throughput_needs_previous_sample(self):
        assert check_throughput("orders-source", 40, None, 50) == {}
        assert check_throughput("orders-source", 40, 0, 50) == {}
        assert check_throughput("orders-source", 80, 100, 50) == {AlertType.THROUGHPUT_DROP: None}

    def test_error_rate_and_dlq(self):
        assert AlertType.ERROR_RATE in raised(check_error_rate("orders-sink", 7.5, 5))
        assert AlertType.DLQ_COUNT in raised(check_dlq("orders-sink", 101, 100))
        assert check_dlq("orders-sink", 100, 100) == {AlertType.DLQ_COUNT: None}

    def test_wal_size_severity(self):
        warning = check_wal_size("orders_slot", 900, 1024, 80)[AlertType.WAL_SIZE]
        critical = check_wal_size("orders_slot", 1024, 1024, 80)[AlertType.WAL_SIZE]

        assert warning.severity == AlertSeverity.WARNING
        assert critical.severity == AlertSeverity.CRITICAL
        assert check_wal_size("orders_slot", 500, 1024, 80) == {AlertType.WAL_SIZE: None}


class TestMerge:

    def test_raised_by_any_connector_wins(self):
        source = check_lag("orders-source", 100, 5000)
        sink = check_lag("orders-sink", 9000, 5000)

        merged = merge_evaluations([source, sink])

        assert merged[AlertType.HIGH_LAG].metadata["connector_name"] == "orders-sink"

    def test_first_raised_condition_is_kept(self):
        merged = merge_evaluations([check_lag("a", 6000, 5000), check_lag("b", 9000, 5000)])

        assert merged[AlertType.HIGH_LAG].metadata["connector_name"] == "a"

    def test_unevaluated_types_stay_absent(self):
        merged = merge_evaluations([check_lag("orders-source", 100, 5000), {}])

        assert merged == {AlertType.HIGH_LAG: None}
