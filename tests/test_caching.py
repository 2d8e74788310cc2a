"""Tests for the insert-only subtitle output stores."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from src.subtitles.models import RuleViolation, ValidationRule
from src.subtitles.post_process_config import CacheSettings
from src.utils.caching import (
    CacheReadError,
    InMemorySubtitleOutputStore,
    JsonFileSubtitleOutputStore,
    create_output_store,
)


@pytest.mark.unit
class TestInMemoryStore:
    """Test the process-local store."""

    def test_miss_returns_none(self, memory_store):
        assert memory_store.get("missing") is None

    def test_insert_then_get(self, memory_store, make_output):
        output = make_output("key-1")
        assert memory_store.insert(output) is True
        assert memory_store.get("key-1") == output
        assert len(memory_store) == 1

    def test_existing_key_is_never_overwritten(self, memory_store, make_output):
        memory_store.insert(make_output("key-1", vtt="WEBVTT\n\nfirst"))
        assert memory_store.insert(make_output("key-1", vtt="WEBVTT\n\nsecond")) is False
        assert memory_store.get("key-1").vtt == "WEBVTT\n\nfirst"

    def test_output_with_validation_errors_is_rejected(self, memory_store, make_output):
        violation = RuleViolation(
            cue_index=0, rule=ValidationRule.MAX_CPL, measured=40, limit=38
        )
        with pytest.raises(ValueError, match="validation error"):
            memory_store.insert(make_output("bad", validation_errors=[violation]))
        assert len(memory_store) == 0


@pytest.mark.unit
class TestJsonFileStore:
    """Test the on-disk JSON store."""

    def test_missing_file_is_empty(self, temp_dir: Path):
        store = JsonFileSubtitleOutputStore(temp_dir / "cache.json")
        assert store.get("anything") is None

    def test_insert_persists_across_instances(self, temp_dir: Path, make_output):
        path = temp_dir / "nested" / "cache.json"
        output = make_output("key-1")

        assert JsonFileSubtitleOutputStore(path).insert(output) is True

        reloaded = JsonFileSubtitleOutputStore(path).get("key-1")
        assert reloaded == output

    def test_file_layout(self, temp_dir: Path, make_output):
        path = temp_dir / "cache.json"
        JsonFileSubtitleOutputStore(path).insert(make_output("key-1"))

        data = json.loads(path.read_text(encoding="utf-8"))
        entry = data["entries"]["key-1"]
        assert entry["idempotency_key"] == "key-1"
        assert entry["saved_at"].endswith("Z")
        assert entry["output"]["origin_after"] == "ai-processed"
        assert not (temp_dir / "cache.json.tmp").exists()

    def test_second_insert_is_a_no_op(self, temp_dir: Path, make_output):
        store = JsonFileSubtitleOutputStore(temp_dir / "cache.json")
        store.insert(make_output("key-1", vtt="WEBVTT\n\nfirst"))
        assert store.insert(make_output("key-1", vtt="WEBVTT\n\nsecond")) is False
        assert store.get("key-1").vtt == "WEBVTT\n\nfirst"

    def test_empty_file_raises_after_retries(self, temp_dir: Path):
        path = temp_dir / "cache.json"
        path.write_text("")
        store = JsonFileSubtitleOutputStore(path)

        with patch.object(store, "_load_once", wraps=store._load_once) as load_once:
            with pytest.raises(CacheReadError, match="empty"):
                store.get("key-1")
        assert load_once.call_count == 3

    def test_truncated_file_raises(self, temp_dir: Path):
        path = temp_dir / "cache.json"
        path.write_text('{"entries": {"key-1": ')
        with pytest.raises(CacheReadError, match="truncated"):
            JsonFileSubtitleOutputStore(path).get("key-1")

    def test_transient_read_failure_is_retried(self, temp_dir: Path):
        store = JsonFileSubtitleOutputStore(temp_dir / "cache.json")
        with patch.object(
            store, "_load_once", side_effect=[CacheReadError("partial"), {}]
        ) as load_once:
            assert store.get("key-1") is None
        assert load_once.call_count == 2

    def test_unexpected_document_shape_reads_as_empty(self, temp_dir: Path):
        path = temp_dir / "cache.json"
        path.write_text("[1, 2, 3]")
        assert JsonFileSubtitleOutputStore(path).get("key-1") is None


@pytest.mark.unit
class TestCreateOutputStore:
    def test_memory_backend(self):
        store = create_output_store(CacheSettings(backend="memory"))
        assert isinstance(store, InMemorySubtitleOutputStore)

    def test_json_backend(self, temp_dir: Path):
        path = temp_dir / "cache.json"
        store = create_output_store(CacheSettings(backend="json", json_path=str(path)))
        assert isinstance(store, JsonFileSubtitleOutputStore)
        assert store.path == path
