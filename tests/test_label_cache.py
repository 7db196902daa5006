import json
import os
import sys
import time
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SCRIPTS = ROOT / "scripts"
if str(SCRIPTS) not in sys.path:
    sys.path.insert(0, str(SCRIPTS))

from label_cache import LabelCache, dictionary_key, script_key  # type: ignore
from label_do import PARSER_VERSION  # type: ignore


def test_keys_encode_year_and_sample():
    assert dictionary_key(2018, 1) == "pums_dict_2018_1yr.txt"
    assert script_key(2016, 5) == "pums_labels_2016_5yr.do"


def test_write_read_and_manifest(tmp_path: Path):
    cache = LabelCache(tmp_path / "cache")
    key = script_key(2018, 1)
    assert not cache.exists(key)
    assert not cache.is_fresh(key)

    path = cache.write(key, "label variable sex \"Sex\"\n", source="dict.txt")
    assert path == tmp_path / "cache" / key
    assert cache.exists(key)
    assert cache.read(key) == "label variable sex \"Sex\"\n"
    assert cache.is_fresh(key)
    assert not (tmp_path / "cache" / (key + ".tmp")).exists()

    manifest = json.loads((tmp_path / "cache" / "manifest.json").read_text(encoding="utf-8"))
    entry = manifest["files"][key]
    assert entry["source"] == "dict.txt"
    assert entry["parser_version"] == PARSER_VERSION
    assert entry["written_at_utc"]


def test_script_from_older_parser_is_stale(tmp_path: Path):
    cache = LabelCache(tmp_path)
    key = script_key(2018, 1)
    (tmp_path / key).write_text("old", encoding="utf-8")
    (tmp_path / "manifest.json").write_text(
        json.dumps({"files": {key: {"parser_version": "0.1"}}}), encoding="utf-8"
    )
    assert cache.exists(key)
    assert not cache.is_fresh(key)


def test_corrupt_manifest_is_treated_as_empty(tmp_path: Path):
    cache = LabelCache(tmp_path)
    (tmp_path / "manifest.json").write_text("{not json", encoding="utf-8")
    assert cache.meta("anything.do") == {}
    cache.write("x.do", "x")
    assert cache.meta("x.do")["parser_version"] == PARSER_VERSION


def test_touch_meta_updates_entry(tmp_path: Path):
    cache = LabelCache(tmp_path)
    key = dictionary_key(2018, 1)
    cache.write(key, "text", etag='"abc"')
    cache.touch_meta(key, etag='"def"')
    assert cache.meta(key)["etag"] == '"def"'
    assert cache.meta(key)["parser_version"] == PARSER_VERSION


@pytest.mark.parametrize("key", ["", "../x", "a/b", "manifest.json"])
def test_invalid_keys_rejected(tmp_path: Path, key: str):
    with pytest.raises(ValueError):
        LabelCache(tmp_path).path(key)


def test_write_times_out_while_manifest_lock_is_held(tmp_path: Path):
    (tmp_path / "manifest.json.lock").write_text("1", encoding="utf-8")
    cache = LabelCache(tmp_path, lock_timeout=0.1)
    with pytest.raises(TimeoutError):
        cache.write("x.do", "x")


def test_stale_manifest_lock_is_broken(tmp_path: Path):
    lock = tmp_path / "manifest.json.lock"
    lock.write_text("1", encoding="utf-8")
    old = time.time() - 3600
    os.utime(lock, (old, old))
    LabelCache(tmp_path, lock_timeout=0.1).write("x.do", "x")
    assert not lock.exists()


def test_writers_of_different_keys_keep_both_entries(tmp_path: Path):
    first = LabelCache(tmp_path)
    second = LabelCache(tmp_path)
    first.write(script_key(2018, 1), "a", source="one")
    second.write(script_key(2019, 1), "b", source="two")
    first.touch_meta(script_key(2018, 1), etag='"e"')
    assert first.meta(script_key(2019, 1))["source"] == "two"
    assert second.meta(script_key(2018, 1))["etag"] == '"e"'
    assert not (tmp_path / "manifest.json.lock").exists()


def test_lock_file_is_not_a_key(tmp_path: Path):
    with pytest.raises(ValueError):
        LabelCache(tmp_path).path("manifest.json.lock")
