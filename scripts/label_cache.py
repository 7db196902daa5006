#!/usr/bin/env python3
"""
On-disk cache for downloaded dictionaries and generated label scripts.

Artifacts live flat under one directory; manifest.json keeps per-key
metadata (parser version, source URL, ETag, write time). Writes go through
a .tmp file and an atomic replace, so concurrent writers of the same key
leave one complete file behind. Manifest updates re-read and merge the
file under manifest.json.lock, so writers of different keys keep each
other's entries.
"""
from __future__ import annotations

import datetime
import json
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator

from label_do import PARSER_VERSION


MANIFEST_NAME = "manifest.json"
LOCK_NAME = MANIFEST_NAME + ".lock"
LOCK_TIMEOUT = 30.0
LOCK_STALE_AFTER = 300.0  # seconds; a lock this old was left by a crashed writer


def dictionary_key(year: int, sample_period: int) -> str:
    return f"pums_dict_{year}_{sample_period}yr.txt"


def script_key(year: int, sample_period: int) -> str:
    return f"pums_labels_{year}_{sample_period}yr.do"


def _read_json(path: Path) -> object:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, ValueError):
        return {}


def _json_dump(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=False, indent=2)
    tmp.replace(path)


class LabelCache:
    def __init__(self, root: Path, lock_timeout: float = LOCK_TIMEOUT):
        self.root = Path(root)
        self.lock_timeout = lock_timeout

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_NAME

    def path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in (MANIFEST_NAME, LOCK_NAME):
            raise ValueError(f"invalid cache key: {key!r}")
        return self.root / key

    @contextmanager
    def _manifest_lock(self) -> Iterator[None]:
        lock = self.root / LOCK_NAME
        self.root.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.lock_timeout
        while True:
            try:
                fd = os.open(lock, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                try:
                    if time.time() - lock.stat().st_mtime > LOCK_STALE_AFTER:
                        lock.unlink()
                        continue
                except FileNotFoundError:
                    continue
                if time.monotonic() >= deadline:
                    raise TimeoutError(f"manifest lock held: {lock}")
                time.sleep(0.05)
        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
            os.close(fd)
            yield
        finally:
            try:
                lock.unlink()
            except FileNotFoundError:
                pass

    def _files(self) -> Dict[str, Dict[str, str]]:
        manifest = _read_json(self.manifest_path)
        if not isinstance(manifest, dict):
            return {}
        files = manifest.get("files", {})
        return files if isinstance(files, dict) else {}

    def exists(self, key: str) -> bool:
        return self.path(key).exists()

    def read(self, key: str) -> str:
        return self.path(key).read_text(encoding="utf-8")

    def meta(self, key: str) -> Dict[str, str]:
        entry = self._files().get(key, {})
        return entry if isinstance(entry, dict) else {}

    def is_fresh(self, key: str) -> bool:
        return self.exists(key) and self.meta(key).get("parser_version") == PARSER_VERSION

    def write(self, key: str, text: str, **meta: str) -> Path:
        target = self.path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        try:
            tmp.write_text(text, encoding="utf-8")
            tmp.replace(target)
        except Exception:
            if tmp.exists():
                tmp.unlink()
            raise

        entry = {
            **{k: str(v) for k, v in meta.items()},
            "parser_version": PARSER_VERSION,
            "written_at_utc": datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0).isoformat(),
        }
        with self._manifest_lock():
            files = self._files()
            files[key] = entry
            _json_dump(self.manifest_path, {"files": files})
        return target

    def touch_meta(self, key: str, **meta: str) -> None:
        with self._manifest_lock():
            files = self._files()
            entry = dict(files.get(key, {}) or {})
            entry.update({k: str(v) for k, v in meta.items()})
            files[key] = entry
            _json_dump(self.manifest_path, {"files": files})
