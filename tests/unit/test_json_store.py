import json
from datetime import datetime

import pytest

from core.models.resource import ResourceKind, ResourceRegistry
from core.models.workflow import RunStatus
from infrastructure.storage.json_store import JSONStore, RegistryJournal, write_run_report


class TestJSONStore:
    """Test cases for JSONStore."""

    def setup_method(self):
        self.data = {
            "run_tag": "certrun-test0001",
            "status": RunStatus.SUCCEEDED,
            "started_at": datetime(2024, 1, 1, 12, 0, 0),
        }

    def test_write_and_read(self, tmp_path):
        store = JSONStore(str(tmp_path))

        path = store.write_json("nested/dir/run.json", self.data)

        assert path == tmp_path / "nested" / "dir" / "run.json"
        assert not path.with_suffix(".json.tmp").exists()
        loaded = store.read_json("nested/dir/run.json")
        assert loaded["status"] == "succeeded"
        assert loaded["started_at"] == "2024-01-01T12:00:00"

    def test_absolute_path_ignores_base(self, tmp_path):
        store = JSONStore(str(tmp_path / "base"))
        target = tmp_path / "elsewhere.json"

        store.write_json(str(target), {"a": 1})

        assert json.loads(target.read_text()) == {"a": 1}

    def test_read_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            JSONStore(str(tmp_path)).read_json("missing.json")

    def test_read_invalid(self, tmp_path):
        (tmp_path / "broken.json").write_text("{not json")

        with pytest.raises(json.JSONDecodeError):
            JSONStore(str(tmp_path)).read_json("broken.json")


class TestRegistryJournal:
    """The journal mirrors every append and restores the registry."""

    def test_every_record_is_persisted(self, tmp_path):
        store = JSONStore(str(tmp_path))
        journal = RegistryJournal(store, "runs")
        registry = ResourceRegistry("certrun-test0001", listener=journal)

        registry.record(ResourceKind.NETWORK, "vpc-1")
        assert len(store.read_json("runs/certrun-test0001.json")["handles"]) == 1

        registry.record(ResourceKind.DNS_RECORD, "a.example.com", zone_id="Z1", value="203.0.113.10")
        assert len(store.read_json("runs/certrun-test0001.json")["handles"]) == 2

    def test_load_round_trip(self, tmp_path):
        store = JSONStore(str(tmp_path))
        journal = RegistryJournal(store, "runs")
        registry = ResourceRegistry("certrun-test0001", listener=journal)
        registry.record(ResourceKind.KEY_PAIR, "key-1", name="certrun-test0001")
        registry.record(ResourceKind.DNS_RECORD, "a.example.com", zone_id="Z1", value="203.0.113.10")

        loaded = journal.load("certrun-test0001")

        assert len(loaded) == 2
        assert loaded.names(ResourceKind.KEY_PAIR) == ["certrun-test0001"]
        assert loaded.handles(ResourceKind.DNS_RECORD)[0].attributes["value"] == "203.0.113.10"

        loaded.record(ResourceKind.INSTANCE, "i-1")
        assert len(store.read_json(journal.path_for("certrun-test0001"))["handles"]) == 3

    def test_load_without_journal(self, tmp_path):
        assert RegistryJournal(JSONStore(str(tmp_path))).load("certrun-none") is None


def test_write_run_report(tmp_path):
    store = JSONStore(str(tmp_path))

    path = write_run_report(store, "reports", {"run_tag": "certrun-test0001", "status": "failed"})

    assert path.parent == tmp_path / "reports"
    assert path.name.startswith("certrun-test0001-")
    assert store.read_json(str(path))["status"] == "failed"
