#!/usr/bin/env python3
"""
ACS PUMS labeling CLI.

Commands:
  fetch  download (or refresh) the Census data dictionary into the cache
  build  parse the dictionary into a Stata label script (cached)
  apply  label a PUMS CSV extract and write it as .dta
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import pandas as pd

from dict_parse import FormatError, parse_dictionary_report
from label_apply import LabelApplier, write_stata
from label_cache import LabelCache, dictionary_key, script_key
from label_do import render_script
from pums_fetch import (
    NetworkError,
    decode_dictionary,
    dictionary_url,
    download_if_changed,
    validate_period,
)


DEFAULT_CACHE_DIR = "data/pums_labels"


def _print(msg: str, quiet: bool = False) -> None:
    if not quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    print(f"WARNING: {msg}", file=sys.stderr)


def _load_dictionary(args: argparse.Namespace, cache: LabelCache) -> Tuple[str, str]:
    """Return (text, source) for the requested dictionary."""
    if args.dict_file:
        path = Path(args.dict_file)
        if not path.exists():
            raise ValueError(f"dictionary file not found: {path}")
        return decode_dictionary(path.read_bytes()), str(path)

    key = dictionary_key(args.year, args.sample)
    if cache.exists(key) and not args.force:
        _print(f"Reusing cached dictionary {cache.path(key)}", quiet=args.quiet)
        return cache.read(key), cache.meta(key).get("url", str(cache.path(key)))

    url = args.url or dictionary_url(args.year, args.sample)
    _print(f"Downloading {url}", quiet=args.quiet)
    text, meta = download_if_changed(url)
    if text is None:
        raise NetworkError(f"server answered 304 for an unconditional request: {url}")
    saved = cache.write(key, text, url=url, **meta)
    _print(f"Saved {saved}", quiet=args.quiet)
    return text, url


def build_script(args: argparse.Namespace, cache: LabelCache) -> Tuple[str, dict]:
    """Return (script_text, payload), reusing a fresh cached script when allowed."""
    key = script_key(args.year, args.sample)
    if cache.is_fresh(key) and not args.force and not args.dict_file:
        _print(f"Reusing cached script {cache.path(key)}", quiet=args.quiet)
        return cache.read(key), {"script": str(cache.path(key)), "cached": True}

    text, source = _load_dictionary(args, cache)
    report = parse_dictionary_report(text, args.year, args.sample)
    for w in report.warnings():
        _warn(w)
    script = render_script(report.statements, args.year, args.sample)
    saved = cache.write(key, script, source=source, grammar=report.grammar)
    _print(f"Saved {saved}", quiet=args.quiet)
    payload = {
        "script": str(saved),
        "cached": False,
        "source": source,
        "grammar": report.grammar,
        "headers": report.headers,
        "variables": report.variables,
        "statements": sum(1 for s in report.statements if s),
        "dropped_ranges": report.dropped_ranges,
        "dropped_missing": report.dropped_missing,
        "unassociated": report.unassociated,
    }
    return script, payload


def _check_period(args: argparse.Namespace) -> Optional[int]:
    try:
        validate_period(args.year, args.sample)
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    return None


def cmd_fetch(args: argparse.Namespace) -> int:
    rc = _check_period(args)
    if rc is not None:
        return rc
    cache = LabelCache(Path(args.cache_dir))
    key = dictionary_key(args.year, args.sample)
    url = args.url or dictionary_url(args.year, args.sample)
    previous = cache.meta(key) if cache.exists(key) and not args.force else None

    _print(f"Downloading {url}", quiet=args.quiet)
    try:
        text, meta = download_if_changed(url, previous_meta=previous)
    except NetworkError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    if text is None:
        cache.touch_meta(key, **meta)
        status = "not_modified"
    else:
        cache.write(key, text, url=url, **meta)
        status = "downloaded"
        _print(f"Saved {cache.path(key)}", quiet=args.quiet)
    print(json.dumps({"url": url, "path": str(cache.path(key)), "status": status}, ensure_ascii=False))
    return 0


def cmd_build(args: argparse.Namespace) -> int:
    rc = _check_period(args)
    if rc is not None:
        return rc
    cache = LabelCache(Path(args.cache_dir))
    try:
        _, payload = build_script(args, cache)
    except (FormatError, NetworkError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def cmd_apply(args: argparse.Namespace) -> int:
    rc = _check_period(args)
    if rc is not None:
        return rc
    inp = Path(args.input)
    if not inp.exists():
        print(f"ERROR: input file not found: {inp}", file=sys.stderr)
        return 2

    cache = LabelCache(Path(args.cache_dir))
    try:
        script, build_payload = build_script(args, cache)
    except (FormatError, NetworkError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    _print(f"Reading {inp}", quiet=args.quiet)
    df = pd.read_csv(inp, low_memory=False)
    applier = LabelApplier()
    applied = applier.apply(script.split("\n"), df)
    if applier.errors:
        _warn(f"{len(applier.errors)} statement(s) skipped")
    out = write_stata(df, Path(args.out))
    _print(f"Saved {out}", quiet=args.quiet)

    payload = {
        "input": str(inp),
        "out": str(out),
        "script": build_payload["script"],
        "applied": applied,
        "skipped": len(applier.errors),
        "errors": applier.errors[: args.max_errors],
    }
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--year", type=int, required=True, help="ACS data year (end year for multi-year samples)")
    p.add_argument("--sample", type=int, choices=[1, 3, 5], default=1, help="Sample period in years (default: 1)")
    p.add_argument("--cache-dir", default=DEFAULT_CACHE_DIR, help=f"Cache directory (default: {DEFAULT_CACHE_DIR})")
    p.add_argument("--url", help="Override the Census dictionary URL")
    p.add_argument("--force", action="store_true", help="Ignore cached artifacts")
    p.add_argument("--quiet", action="store_true", help="Reduce command output")


def build_parser() -> argparse.ArgumentParser:
    epilog = """Examples:
  pums-labels fetch --year 2018
  pums-labels build --year 2016 --sample 5
  pums-labels build --year 2019 --dict-file PUMS_Data_Dictionary_2019.txt
  pums-labels apply --year 2019 --input psam_p06.csv --out data/psam_p06.dta
"""
    p = argparse.ArgumentParser(
        prog="pums-labels",
        description="Build Stata variable/value labels from the ACS PUMS data dictionary.",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = p.add_subparsers(dest="cmd")

    pf = sub.add_parser("fetch", help="Download the data dictionary into the cache")
    _add_common(pf)
    pf.set_defaults(func=cmd_fetch)

    pb = sub.add_parser("build", help="Generate the label do-file for a dictionary")
    _add_common(pb)
    pb.add_argument("--dict-file", help="Parse a local dictionary instead of downloading it")
    pb.set_defaults(func=cmd_build)

    pa = sub.add_parser("apply", help="Label a PUMS CSV extract and save it as .dta")
    _add_common(pa)
    pa.add_argument("--dict-file", help="Parse a local dictionary instead of downloading it")
    pa.add_argument("--input", required=True, help="PUMS CSV extract")
    pa.add_argument("--out", required=True, help="Output .dta path")
    pa.add_argument("--max-errors", type=int, default=20, help="Skipped statements listed in the output")
    pa.set_defaults(func=cmd_apply)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 0
    return int(args.func(args) or 0)


if __name__ == "__main__":
    raise SystemExit(main())
