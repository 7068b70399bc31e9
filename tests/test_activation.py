# tests/test_activation.py
import json
import os

from filechat.storage.activation import FileActivationStore


class TestDefaults:

    def test_unknown_file_is_active(self, activation_store):
        for file_id in ["abc", "never-seen", ""]:
            assert activation_store.is_active(file_id) is True

    def test_unknown_file_has_no_status(self, activation_store):
        assert activation_store.get_status("abc") is None

    def test_missing_table_starts_empty(self, tmp_path):
        store = FileActivationStore(str(tmp_path / "nope" / "statuses.json"))
        assert store.records() == []


class TestTransitions:

    def test_deactivate(self, activation_store):
        record = activation_store.deactivate("abc")

        assert activation_store.is_active("abc") is False
        assert record["active"] is False

        status = activation_store.get_status("abc")
        assert status["file_id"] == "abc"
        assert status["deactivated_at"]
        assert "reactivated_at" not in status

    def test_reactivate_keeps_deactivation_timestamp(self, activation_store):
        activation_store.deactivate("abc")
        deactivated_at = activation_store.get_status("abc")["deactivated_at"]

        activation_store.reactivate("abc")

        status = activation_store.get_status("abc")
        assert activation_store.is_active("abc") is True
        assert status["active"] is True
        assert status["reactivated_at"]
        assert status["deactivated_at"] == deactivated_at

    def test_reactivate_unknown_creates_record(self, activation_store):
        activation_store.reactivate("fresh")

        status = activation_store.get_status("fresh")
        assert status["active"] is True
        assert status["reactivated_at"]
        assert "deactivated_at" not in status

    def test_get_status_returns_a_copy(self, activation_store):
        activation_store.deactivate("abc")

        status = activation_store.get_status("abc")
        status["active"] = True

        assert activation_store.is_active("abc") is False


class TestFilterActive:

    def test_drops_inactive_and_preserves_order(self, activation_store):
        activation_store.deactivate("b")

        assert activation_store.filter_active(["a", "b", "c"]) == ["a", "c"]

    def test_reactivated_files_are_kept(self, activation_store):
        activation_store.deactivate("b")
        activation_store.reactivate("b")

        assert activation_store.filter_active(["c", "b", "a"]) == ["c", "b", "a"]

    def test_empty_input(self, activation_store):
        assert activation_store.filter_active([]) == []


class TestPersistence:

    def test_every_write_is_persisted(self, activation_store):
        activation_store.deactivate("abc")

        with open(activation_store.path) as f:
            data = json.load(f)

        assert data == [activation_store.get_status("abc")]

    def test_round_trip_preserves_classification(self, tmp_path):
        path = str(tmp_path / "statuses.json")
        store = FileActivationStore(path)

        ids = [f"file-{i}" for i in range(20)]
        for i, file_id in enumerate(ids):
            if i % 3 == 0:
                store.deactivate(file_id)
            elif i % 3 == 1:
                store.deactivate(file_id)
                store.reactivate(file_id)

        reloaded = FileActivationStore(path)

        for file_id in ids + ["untouched"]:
            assert reloaded.is_active(file_id) == store.is_active(file_id)
            assert reloaded.get_status(file_id) == store.get_status(file_id)

    def test_malformed_table_starts_empty(self, tmp_path, caplog):
        path = tmp_path / "statuses.json"
        path.write_text("{not json")

        store = FileActivationStore(str(path))

        assert store.records() == []
        assert store.is_active("anything") is True
        assert "Activation table load failed" in caplog.text

    def test_wrong_shape_starts_empty(self, tmp_path):
        path = tmp_path / "statuses.json"
        path.write_text(json.dumps({"abc": False}))

        store = FileActivationStore(str(path))

        assert store.records() == []

    def test_write_failure_keeps_memory_state(self, tmp_path):
        # the parent "directory" is a regular file, so every save fails
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = FileActivationStore(str(blocker / "statuses.json"))

        store.deactivate("abc")

        assert store.is_active("abc") is False

    def test_interrupted_write_keeps_previous_table(self, tmp_path, monkeypatch):
        path = str(tmp_path / "statuses.json")
        store = FileActivationStore(path)
        store.deactivate("abc")

        def crash(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", crash)
        store.deactivate("def")
        monkeypatch.undo()

        with open(path) as f:
            assert [r["file_id"] for r in json.load(f)] == ["abc"]
        assert FileActivationStore(path).is_active("abc") is False
        assert os.listdir(tmp_path) == ["statuses.json"]

    def test_no_temp_files_left_behind(self, tmp_path):
        store = FileActivationStore(str(tmp_path / "statuses.json"))

        for file_id in ["a", "b", "c"]:
            store.deactivate(file_id)
            store.reactivate(file_id)

        assert os.listdir(tmp_path) == ["statuses.json"]
