#!/usr/bin/env python3
"""
Apply generated label statements to a pandas DataFrame.

Labels are kept in ``df.attrs`` (``variable_labels``, ``value_labels``,
``notes``) and written out by write_stata(). Statements are replayed in
order, exactly as Stata would run the do-file; a statement that cannot be
applied raises ApplyError, which is recorded and skipped unless strict.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd
from pandas.api.types import is_numeric_dtype


STATA_LABEL_MAX = 80

_QUOTED = r'(?:`"(?P<cq>.*)"\'|"(?P<q>[^"]*)")'
VARIABLE_LABEL_RE = re.compile(r"^label\s+variable\s+(?P<var>\w+)\s+" + _QUOTED + r"\s*$")
DEFINE_RE = re.compile(r"^label\s+define\s+(?P<lbl>\w+)\s+(?P<code>\S+)\s+" + _QUOTED + r"\s*,\s*add\s*$")
VALUES_RE = re.compile(r"^label\s+values\s+(?P<var>\w+)\s+(?P<lbl>\w+)\s*$")
NOTES_RE = re.compile(r"^notes\s+(?P<var>\w+)\s*:\s*(?P<text>.*)$")
CAPTURE_RE = re.compile(r"^cap(?:ture)?\s+")


class ApplyError(ValueError):
    """A single statement could not be applied."""


@dataclass
class Action:
    kind: str
    target: str  # variable name or value-label set name
    text: str = ""
    code: str = ""
    label_set: str = ""
    captured: bool = False  # `capture` prefix: a failure is ignored, as in Stata


def _quoted(m: re.Match) -> str:
    return m.group("cq") if m.group("cq") is not None else m.group("q")


def parse_statement(statement: str) -> Optional[Action]:
    """Parse one do-file line; None for comments and blank lines."""
    s = statement.strip()
    if not s or s.startswith("*") or s.startswith("//"):
        return None
    m = CAPTURE_RE.match(s)
    if m:
        action = parse_statement(s[m.end() :])
        if action is not None:
            action.captured = True
        return action
    m = VARIABLE_LABEL_RE.match(s)
    if m:
        return Action("variable-label", m.group("var"), text=_quoted(m))
    m = DEFINE_RE.match(s)
    if m:
        return Action("value-label-define", m.group("lbl"), text=_quoted(m), code=m.group("code"))
    m = VALUES_RE.match(s)
    if m:
        return Action("value-label-apply", m.group("var"), label_set=m.group("lbl"))
    m = NOTES_RE.match(s)
    if m:
        return Action("note", m.group("var"), text=m.group("text").strip())
    raise ApplyError(f"unrecognized statement: {s}")


def _coerce_code(code: str, numeric: bool):
    if not numeric:
        return code
    try:
        return int(code)
    except ValueError:
        try:
            return float(code)
        except ValueError:
            raise ApplyError(f"non-numeric code {code!r} for a numeric column") from None


class LabelApplier:
    def __init__(self, strict: bool = False):
        self.strict = strict
        self.errors: List[str] = []
        self._sets: Dict[str, Dict[str, str]] = {}

    def _column(self, df: pd.DataFrame, name: str) -> str:
        for col in df.columns:
            if str(col).lower() == name.lower():
                return col
        raise ApplyError(f"variable not found in dataset: {name}")

    def _apply_one(self, action: Action, df: pd.DataFrame) -> None:
        attrs = df.attrs
        if action.kind == "variable-label":
            col = self._column(df, action.target)
            attrs.setdefault("variable_labels", {})[col] = action.text
        elif action.kind == "value-label-define":
            self._sets.setdefault(action.target, {})[action.code] = action.text
        elif action.kind == "value-label-apply":
            col = self._column(df, action.target)
            if action.label_set not in self._sets:
                raise ApplyError(f"value label {action.label_set} not defined")
            numeric = is_numeric_dtype(df[col])
            mapping = {}
            for code, text in self._sets[action.label_set].items():
                try:
                    mapping[_coerce_code(code, numeric)] = text
                except ApplyError:
                    if action.captured:
                        # Stata rejected these defines already; the integer codes still attach
                        continue
                    raise
            attrs.setdefault("value_labels", {})[col] = mapping
        elif action.kind == "note":
            col = self._column(df, action.target)
            attrs.setdefault("notes", {}).setdefault(col, []).append(action.text)

    def apply(self, statements: Iterable[str], df: pd.DataFrame) -> int:
        """Replay statements against df; return how many were applied."""
        applied = 0
        for statement in statements:
            try:
                action = parse_statement(statement)
                if action is None:
                    continue
                try:
                    self._apply_one(action, df)
                except ApplyError:
                    if action.captured:
                        continue
                    raise
            except ApplyError as exc:
                if self.strict:
                    raise
                self.errors.append(str(exc))
                continue
            applied += 1
        return applied


def write_stata(df: pd.DataFrame, path: Path, *, version: int = 118) -> Path:
    """Write df to .dta with the labels stored in df.attrs.

    Variable labels (cut to 80 characters) and integer value labels of
    numeric columns are written. Notes in ``df.attrs["notes"]`` are not:
    pandas has no writer for Stata characteristics, so they stay in attrs
    and in the generated do-file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    variable_labels = {
        col: text[:STATA_LABEL_MAX] for col, text in df.attrs.get("variable_labels", {}).items()
    }
    value_labels = {}
    for col, mapping in df.attrs.get("value_labels", {}).items():
        if not is_numeric_dtype(df[col]):
            # Stata only attaches value labels to numeric variables
            continue
        ints = {k: v for k, v in mapping.items() if isinstance(k, int)}
        if ints:
            value_labels[col] = ints
    out = df.copy()
    out.attrs = {}
    out.to_stata(
        path,
        write_index=False,
        version=version,
        variable_labels=variable_labels,
        value_labels=value_labels or None,
    )
    return path
