"""
Pure alert checks.

Every check returns a mapping from the alert types it evaluated to either a
Condition (the alert should be open) or None (the condition is clear). An
alert type missing from the mapping was not evaluated this cycle, e.g. a
metric series was absent, and must be left as it is.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from models.base import AlertType, AlertSeverity

Evaluation = Dict[AlertType, Optional["Condition"]]

STATE_RUNNING = "RUNNING"
STATE_PAUSED = "PAUSED"
STATE_FAILED = "FAILED"


@dataclass
class Condition:
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def check_connector_state(
    kind: str,
    name: str,
    status: Dict[str, Any],
    paused_seconds: Optional[float],
    pause_threshold_seconds: int,
    pipeline_paused: bool = False,
    remediating: bool = False
) -> Evaluation:
    """
    Connector and task state from the engine's status document.

    Args:
        kind: "source" or "sink"
        name: Connector name
        status: GET /connectors/:name/status body
        paused_seconds: How long the connector has been seen PAUSED
        pause_threshold_seconds: Pause duration that raises CONNECTOR_PAUSED
        pipeline_paused: The pipeline was paused on purpose; pauses are expected
        remediating: The loop paused this connector itself; pauses are not evaluated
    """
    evaluation: Evaluation = {}
    connector = status.get("connector") or {}
    state = connector.get("state")

    if state == STATE_FAILED:
        evaluation[AlertType.CONNECTOR_FAILED] = Condition(
            AlertType.CONNECTOR_FAILED,
            AlertSeverity.CRITICAL,
            f"{kind.upper()} connector \"{name}\" is FAILED",
            {
                "connector_name": name,
                "connector_type": kind,
                "error_trace": connector.get("trace"),
                "worker_id": connector.get("worker_id"),
            },
        )
    elif state in (STATE_RUNNING, STATE_PAUSED):
        evaluation[AlertType.CONNECTOR_FAILED] = None

    if state == STATE_PAUSED:
        if pipeline_paused:
            evaluation[AlertType.CONNECTOR_PAUSED] = None
        elif not remediating:
            seconds = paused_seconds or 0
            if seconds > pause_threshold_seconds:
                evaluation[AlertType.CONNECTOR_PAUSED] = Condition(
                    AlertType.CONNECTOR_PAUSED,
                    AlertSeverity.WARNING,
                    f"{kind.upper()} connector \"{name}\" has been PAUSED for {int(seconds)}s "
                    f"(threshold: {pause_threshold_seconds}s)",
                    {
                        "connector_name": name,
                        "connector_type": kind,
                        "paused_duration_seconds": int(seconds),
                        "threshold_seconds": pause_threshold_seconds,
                    },
                )
            else:
                evaluation[AlertType.CONNECTOR_PAUSED] = None
    elif state in (STATE_RUNNING, STATE_FAILED):
        evaluation[AlertType.CONNECTOR_PAUSED] = None

    tasks = status.get("tasks")
    if isinstance(tasks, list):
        failed = [task for task in tasks if task.get("state") == STATE_FAILED]
        if failed:
            evaluation[AlertType.TASK_FAILED] = Condition(
                AlertType.TASK_FAILED,
                AlertSeverity.CRITICAL,
                f"{len(failed)} {kind} task(s) FAILED for connector \"{name}\"",
                {
                    "connector_name": name,
                    "connector_type": kind,
                    "failed_tasks": [
                        {"id": task.get("id"), "worker_id": task.get("worker_id"), "trace": task.get("trace")}
                        for task in failed
                    ],
                },
            )
        else:
            evaluation[AlertType.TASK_FAILED] = None

    return evaluation


def check_lag(name: str, lag_ms: Optional[float], threshold_ms: int) -> Evaluation:
    if lag_ms is None:
        return {}
    if lag_ms > threshold_ms:
        return {AlertType.HIGH_LAG: Condition(
            AlertType.HIGH_LAG,
            AlertSeverity.WARNING,
            f"Connector \"{name}\" lag is {lag_ms:.0f}ms (threshold: {threshold_ms}ms)",
            {"connector_name": name, "lag_ms": lag_ms, "threshold_ms": threshold_ms},
        )}
    return {AlertType.HIGH_LAG: None}


def check_throughput(
    name: str,
    current: Optional[float],
    previous: Optional[float],
    threshold_percent: int
) -> Evaluation:
    """Throughput drop against the previous sample (records per minute)."""
    if current is None or previous is None or previous <= 0:
        return {}
    drop_percent = (previous - current) / previous * 100
    if drop_percent > threshold_percent:
        return {AlertType.THROUGHPUT_DROP: Condition(
            AlertType.THROUGHPUT_DROP,
            AlertSeverity.WARNING,
            f"Connector \"{name}\" throughput dropped {drop_percent:.1f}% "
            f"(from {previous:.0f} to {current:.0f} rec/min)",
            {
                "connector_name": name,
                "previous_throughput": previous,
                "current_throughput": current,
                "drop_percent": drop_percent,
                "threshold_percent": threshold_percent,
            },
        )}
    return {AlertType.THROUGHPUT_DROP: None}


def check_error_rate(name: str, error_rate_percent: Optional[float], threshold_percent: int) -> Evaluation:
    if error_rate_percent is None:
        return {}
    if error_rate_percent > threshold_percent:
        return {AlertType.ERROR_RATE: Condition(
            AlertType.ERROR_RATE,
            AlertSeverity.WARNING,
            f"Connector \"{name}\" error rate is {error_rate_percent:.2f}% over 5m "
            f"(threshold: {threshold_percent}%)",
            {
                "connector_name": name,
                "error_rate_percent": error_rate_percent,
                "threshold_percent": threshold_percent,
            },
        )}
    return {AlertType.ERROR_RATE: None}


def check_dlq(name: str, dlq_count: Optional[float], ceiling: int) -> Evaluation:
    if dlq_count is None:
        return {}
    if dlq_count > ceiling:
        return {AlertType.DLQ_COUNT: Condition(
            AlertType.DLQ_COUNT,
            AlertSeverity.WARNING,
            f"Connector \"{name}\" sent {dlq_count:.0f} record(s) to its dead-letter queue (ceiling: {ceiling})",
            {"connector_name": name, "dlq_count": dlq_count, "ceiling": ceiling},
        )}
    return {AlertType.DLQ_COUNT: None}


def check_wal_size(
    slot_name: str,
    wal_size_mb: Optional[float],
    max_wal_size_mb: int,
    alert_threshold_percent: int
) -> Evaluation:
    if wal_size_mb is None:
        return {}
    threshold_mb = max_wal_size_mb * alert_threshold_percent / 100
    if wal_size_mb > threshold_mb:
        severity = AlertSeverity.CRITICAL if wal_size_mb >= max_wal_size_mb else AlertSeverity.WARNING
        return {AlertType.WAL_SIZE: Condition(
            AlertType.WAL_SIZE,
            severity,
            f"WAL size {wal_size_mb:.2f} MB exceeds threshold {threshold_mb:.2f} MB "
            f"({alert_threshold_percent}% of {max_wal_size_mb} MB)",
            {
                "slot_name": slot_name,
                "wal_size_mb": wal_size_mb,
                "threshold_mb": threshold_mb,
                "max_wal_size_mb": max_wal_size_mb,
                "alert_threshold_percent": alert_threshold_percent,
            },
        )}
    return {AlertType.WAL_SIZE: None}


def merge_evaluations(evaluations: Iterable[Evaluation]) -> Evaluation:
    """
    Combine per-connector evaluations into one per pipeline.

    A type is open if any connector raised it and clear only if it was
    evaluated and nobody raised it.
    """
    merged: Evaluation = {}
    for evaluation in evaluations:
        for alert_type, condition in evaluation.items():
            if condition is not None:
                if merged.get(alert_type) is None:
                    merged[alert_type] = condition
            else:
                merged.setdefault(alert_type, None)
    return merged


def raised(evaluation: Evaluation) -> List[AlertType]:
    return [alert_type for alert_type, condition in evaluation.items() if condition is not None]
