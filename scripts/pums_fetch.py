#!/usr/bin/env python3
"""
Download ACS PUMS data dictionaries from the Census Bureau.

Functions:
- validate_period: reject (year, sample) pairs the Census never published.
- dictionary_filename / dictionary_url: where a dictionary lives.
- fetch_dictionary: download and decode one dictionary.
- download_if_changed: conditional download using a previous ETag/Last-Modified.
"""
from __future__ import annotations

from typing import Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen


CENSUS_PUMS_DICT_BASE = "https://www2.census.gov/programs-surveys/acs/tech_docs/pums/data_dict/"
USER_AGENT = "pums-labels/1.0"
FIRST_YEAR = {1: 2005, 3: 2007, 5: 2009}
LAST_THREE_YEAR = 2013
DICT_ENCODING = "cp1252"


class NetworkError(RuntimeError):
    """Dictionary could not be retrieved."""


def validate_period(year: int, sample_period: int) -> None:
    if sample_period not in FIRST_YEAR:
        raise ValueError(f"sample period must be 1, 3 or 5 years, got {sample_period}")
    if year < FIRST_YEAR[sample_period]:
        raise ValueError(f"{sample_period}-year PUMS starts in {FIRST_YEAR[sample_period]}, got {year}")
    if sample_period == 3 and year > LAST_THREE_YEAR:
        raise ValueError(f"3-year PUMS was discontinued after {LAST_THREE_YEAR}, got {year}")


def dictionary_filename(year: int, sample_period: int) -> str:
    if sample_period == 1:
        if year < 2017:
            return f"PUMSDataDict{year % 100:02d}.txt"
        return f"PUMS_Data_Dictionary_{year}.txt"
    start = year - sample_period + 1
    return f"PUMS_Data_Dictionary_{start}-{year}.txt"


def dictionary_url(year: int, sample_period: int, base_url: str = CENSUS_PUMS_DICT_BASE) -> str:
    return base_url.rstrip("/") + "/" + dictionary_filename(year, sample_period)


def decode_dictionary(payload: bytes) -> str:
    # Census dictionaries are mostly ASCII; older years carry cp1252 punctuation (0x85, 0x92)
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        return payload.decode(DICT_ENCODING, errors="replace")


def _meta(resp) -> Dict[str, str]:
    return {
        "etag": (resp.headers.get("ETag") or "").strip(),
        "last_modified": (resp.headers.get("Last-Modified") or "").strip(),
    }


def fetch_dictionary(
    year: int,
    sample_period: int,
    *,
    url: Optional[str] = None,
    timeout: int = 120,
) -> str:
    url = url or dictionary_url(year, sample_period)
    text, _ = download_if_changed(url, timeout=timeout)
    if text is None:
        raise NetworkError(f"server answered 304 for an unconditional request: {url}")
    return text


def download_if_changed(
    url: str,
    *,
    previous_meta: Optional[Dict[str, str]] = None,
    timeout: int = 120,
) -> tuple[Optional[str], Dict[str, str]]:
    """Return (text, meta); text is None when the server reports 304 Not Modified."""
    headers = {"User-Agent": USER_AGENT}
    known_etag = (previous_meta or {}).get("etag", "")
    known_last_modified = (previous_meta or {}).get("last_modified", "")
    if known_etag:
        headers["If-None-Match"] = known_etag
    elif known_last_modified:
        headers["If-Modified-Since"] = known_last_modified

    req = Request(url, headers=headers)
    try:
        with urlopen(req, timeout=timeout) as resp:
            return decode_dictionary(resp.read()), _meta(resp)
    except HTTPError as exc:
        if exc.code == 304:
            return None, dict(previous_meta or {})
        raise NetworkError(f"HTTP {exc.code} while fetching {url}") from exc
    except (URLError, OSError) as exc:
        raise NetworkError(f"could not fetch {url}: {exc}") from exc
