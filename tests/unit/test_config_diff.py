"""
Unit tests for config canonicalization, checksums and diffs
"""

from controlplane.registry.diff import canonicalize, config_checksum, diff_configs, flatten_config


class TestChecksum:
    """Checksums depend on content, not key order"""

    def test_key_order_does_not_change_checksum(self):
        a = {"tasks.max": "1", "database.hostname": "pg", "nested": {"b": 2, "a": 1}}
        b = {"nested": {"a": 1, "b": 2}, "database.hostname": "pg", "tasks.max": "1"}

        assert canonicalize(a) == canonicalize(b)
        assert config_checksum(a) == config_checksum(b)

    def test_value_change_changes_checksum(self):
        assert config_checksum({"tasks.max": "1"}) != config_checksum({"tasks.max": "2"})

    def test_checksum_is_sha256_hex(self):
        checksum = config_checksum({"a": "b"})
        assert len(checksum) == 64
        int(checksum, 16)


class TestFlatten:

    def test_nested_paths_and_lists(self):
        flat = flatten_config({"a": {"b": "x", "c": [1, {"d": None}]}, "e": True})

        assert flat == {"a.b": "x", "a.c[0]": "1", "a.c[1].d": "null", "e": "true"}


class TestDiff:
    """diff_configs partitions the union of paths"""

    def test_diff_of_identical_configs_is_empty(self):
        config = {"tasks.max": "1", "table.include.list": "public.orders"}

        assert diff_configs(config, dict(config)) == {"added": [], "removed": [], "changed": []}

    def test_added_removed_changed(self):
        before = {"tasks.max": "1", "slot.name": "orders_slot", "snapshot.mode": "initial"}
        after = {"tasks.max": "2", "slot.name": "orders_slot", "heartbeat.interval.ms": "10000"}

        diff = diff_configs(before, after)

        assert diff["added"] == [{"path": "heartbeat.interval.ms", "value": "10000"}]
        assert diff["removed"] == [{"path": "snapshot.mode", "value": "initial"}]
        assert diff["changed"] == [{"path": "tasks.max", "from": "1", "to": "2"}]

    def test_sets_are_disjoint_and_cover_union(self):
        before = {"a": "1", "b": "2", "c": {"d": "3"}}
        after = {"b": "20", "c": {"d": "3", "e": "4"}, "f": "5"}

        diff = diff_configs(before, after)
        added = {entry["path"] for entry in diff["added"]}
        removed = {entry["path"] for entry in diff["removed"]}
        changed = {entry["path"] for entry in diff["changed"]}
        unchanged = {"c.d"}

        assert added.isdisjoint(removed)
        assert added.isdisjoint(changed)
        assert removed.isdisjoint(changed)
        assert added | removed | changed | unchanged == set(flatten_config(before)) | set(flatten_config(after))
