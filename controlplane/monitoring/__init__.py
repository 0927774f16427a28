"""
Pipeline monitoring.

Modules:
    checks: Pure threshold checks
    alerts: Alert dedup, auto-resolution and operator queries
    metrics: Prometheus-backed connector metrics
    notifier: Alert transition delivery
    thresholds: Stored global thresholds
    loop: The periodic monitoring cycle
"""
