"""
Unit tests for connector config normalization
"""

import json
from controlplane.registry.normalizer import normalize_config
from controlplane.registry.policies import JDBC_SINK_CLASS


class TestNormalizeConfig:
    """Every stored shape ends up as one flat string map"""

    def test_nested_and_stringified_blocks_are_flattened(self):
        raw = {
            "connector_class": "io.debezium.connector.postgresql.PostgresConnector",
            "snapshot_config": json.dumps({"snapshot.mode": "initial", "snapshot.fetch.size": 1024}),
            "config": {"database.hostname": "pg", "database.port": 5432},
            "registry_connector": "orders-pg",
            "checksum": "abc",
        }

        config = normalize_config(raw, "orders-source", "orders", "source")

        assert config["connector.class"] == "io.debezium.connector.postgresql.PostgresConnector"
        assert config["snapshot.mode"] == "initial"
        assert config["snapshot.fetch.size"] == "1024"
        assert config["database.port"] == "5432"
        assert "connector_class" not in config
        assert "registry_connector" not in config
        assert "checksum" not in config
        assert "snapshot_config" not in config

    def test_name_dlq_and_string_values(self):
        config = normalize_config({"tasks.max": 1, "include.schema.changes": False}, "orders-sink", "orders", "sink")

        assert config["name"] == "orders-sink"
        assert config["errors.tolerance"] == "all"
        assert config["errors.deadletterqueue.topic.name"] == "orders-sink-dlq"
        assert config["errors.deadletterqueue.topic.replication.factor"] == "1"
        assert config["errors.deadletterqueue.context.headers.enable"] == "true"
        assert config["tasks.max"] == "1"
        assert config["include.schema.changes"] == "false"
        assert all(isinstance(value, str) for value in config.values())

    def test_slot_name_hyphens_replaced(self):
        config = normalize_config({"slot.name": "orders-slot-1"}, "orders-source", "orders", "source")

        assert config["slot.name"] == "orders_slot_1"

    def test_jdbc_sink_fixes(self):
        raw = {
            "connector.class": JDBC_SINK_CLASS,
            "connection.user": "loader",
            "topics": "placeholder",
            "topics.regex": "shop\\..*",
        }

        config = normalize_config(raw, "orders-sink", "orders", "sink")

        assert config["connection.username"] == "loader"
        assert "connection.user" not in config
        assert "topics" not in config
        assert config["topics.regex"] == "shop\\..*"
        assert config["primary.key.mode"] == "record_key"
        assert config["delete.enabled"] == "true"

    def test_jdbc_sink_explicit_topics_win_over_regex(self):
        raw = {"connector.class": JDBC_SINK_CLASS, "topics": "shop.public.orders", "topics.regex": "shop\\..*"}

        config = normalize_config(raw, "orders-sink", "orders", "sink")

        assert config["topics"] == "shop.public.orders"
        assert "topics.regex" not in config

    def test_restored_source_gets_suffix(self):
        raw = {"database.server.name": "shop", "slot.name": "orders_slot", "topic.prefix": "shop"}

        config = normalize_config(raw, "orders-source", "orders", "source", restore_count=2)

        assert config["database.server.name"] == "shop_r2"
        assert config["slot.name"] == "orders_slot_r2"
        assert config["topic.prefix"] == "shop_r2"

    def test_sink_never_gets_restore_suffix(self):
        config = normalize_config({"database.server.name": "shop"}, "orders-sink", "orders", "sink", restore_count=1)

        assert config["database.server.name"] == "shop"

    def test_none_input(self):
        config = normalize_config(None, "orders-source", "orders", "source")

        assert config["name"] == "orders-source"
