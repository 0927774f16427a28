"""
Unit tests for the configuration policy validator
"""

from controlplane.registry.policies import JDBC_SINK_CLASS, evaluate_policies

PG_CLASS = "io.debezium.connector.postgresql.PostgresConnector"


class TestPolicies:

    def test_clean_config_has_no_findings(self):
        warnings, errors = evaluate_policies("source", PG_CLASS, {"tasks.max": "1"}, max_tasks=8)

        assert warnings == []
        assert errors == []

    def test_tasks_max_over_ceiling_is_a_warning(self):
        warnings, errors = evaluate_policies("source", PG_CLASS, {"tasks.max": "16"}, max_tasks=8)

        assert warnings == ["tasks.max exceeds recommended threshold (8)"]
        assert errors == []

    def test_non_numeric_tasks_max_is_ignored(self):
        warnings, _ = evaluate_policies("source", PG_CLASS, {"tasks.max": "many"}, max_tasks=8)

        assert warnings == []

    def test_errors_tolerance_all_is_a_warning(self):
        warnings, _ = evaluate_policies("sink", JDBC_SINK_CLASS, {"errors.tolerance": "ALL"})

        assert "errors.tolerance=all may hide data issues" in warnings

    def test_upsert_without_record_pk_mode_is_an_error(self):
        _, errors = evaluate_policies("sink", JDBC_SINK_CLASS, {"insert.mode": "upsert", "primary.key.mode": "none"})

        assert errors == ["insert.mode=upsert requires pk.mode to be record_key or record_value"]

    def test_upsert_with_legacy_pk_mode_key_passes(self):
        _, errors = evaluate_policies("sink", JDBC_SINK_CLASS, {"insert.mode": "upsert", "pk.mode": "record_value"})

        assert errors == []

    def test_auto_evolve_without_auto_create(self):
        warnings, _ = evaluate_policies(
            "sink", JDBC_SINK_CLASS, {"auto.create": "false", "auto.evolve": True}
        )

        assert "auto.evolve enabled while auto.create disabled" in warnings

    def test_jdbc_rules_only_apply_to_jdbc_sink(self):
        _, errors = evaluate_policies("source", PG_CLASS, {"insert.mode": "upsert"})

        assert errors == []
