#!/usr/bin/env python3
"""
Turn assembled PUMS variables into Stata labeling statements.

Each variable produces a contiguous block:

    label variable sex "Sex"
    label define sex_lbl 1 "Male", add
    label define sex_lbl 2 "Female", add
    label values sex sex_lbl
    notes sex: ...
    <blank spacer>

Blocks are ordered by variable name and identical statements are written
once (the dictionary repeats RT, SERIALNO, ... in the housing and person
sections).
"""
from __future__ import annotations

import datetime
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence


PARSER_VERSION = "1.1"
GENERATOR = f"pums-labels {PARSER_VERSION}"

VARIABLE_LABEL = "variable-label"
VALUE_LABEL_DEFINE = "value-label-define"
VALUE_LABEL_APPLY = "value-label-apply"
NOTE = "note"
SPACER = "spacer"
CAPTURE = "capture "

INTEGER_CODE_RE = re.compile(r"^-?\d+$")


@dataclass(frozen=True)
class LabelStatement:
    kind: str
    variable: str
    text: str


def value_label_name(variable: str) -> str:
    return f"{variable}_lbl"


def quote(text: str) -> str:
    """Quote label text for a do-file; compound quotes when it holds a double quote."""
    text = text.strip().replace("`", "'")
    if '"' in text:
        return f'`"{text}"\''
    return f'"{text}"'


def is_integer_code(code: str) -> bool:
    return INTEGER_CODE_RE.match(code) is not None


def _variable_block(var) -> List[LabelStatement]:
    name = var.name
    # Stata only defines integer values; character codes run under capture so the do-file keeps going
    guard = "" if all(is_integer_code(vl.code) for vl in var.value_labels) else CAPTURE
    out: List[LabelStatement] = []
    if var.label and var.label.strip():
        out.append(LabelStatement(VARIABLE_LABEL, name, f"label variable {name} {quote(var.label)}"))
    lbl = value_label_name(name)
    for vl in var.value_labels:
        prefix = "" if is_integer_code(vl.code) else CAPTURE
        text = f"{prefix}label define {lbl} {vl.code} {quote(vl.description)}, add"
        out.append(LabelStatement(VALUE_LABEL_DEFINE, name, text))
    if var.has_value_labels:
        out.append(LabelStatement(VALUE_LABEL_APPLY, name, f"{guard}label values {name} {lbl}"))
    if var.note:
        note = var.note.strip().replace("`", "'")
        out.append(LabelStatement(NOTE, name, f"notes {name}: {note}"))
    return out


def emit_statements(variables: Iterable) -> List[LabelStatement]:
    """Ordered, deduplicated statements for the given Variable records."""
    seen: set[str] = set()
    out: List[LabelStatement] = []
    for var in sorted(variables, key=lambda v: v.name):
        block = []
        for stmt in _variable_block(var):
            if stmt.text in seen:
                continue
            seen.add(stmt.text)
            block.append(stmt)
        if block:
            out.extend(block)
            out.append(LabelStatement(SPACER, var.name, ""))
    return out


def header_lines(
    year: int,
    sample_period: int,
    statement_count: int,
    generated_at: Optional[datetime.datetime] = None,
) -> List[str]:
    generated_at = generated_at or datetime.datetime.now().replace(microsecond=0)
    return [
        f"* Variable and value labels from the ACS PUMS {year} {sample_period}-year data dictionary",
        f"* Generated by {GENERATOR} on {generated_at.isoformat(sep=' ')}",
        f"* {statement_count} label statements",
    ]


def render_script(
    statements: Sequence[str],
    year: int,
    sample_period: int,
    generated_at: Optional[datetime.datetime] = None,
) -> str:
    count = sum(1 for s in statements if s)
    lines = header_lines(year, sample_period, count, generated_at) + list(statements)
    return "\n".join(lines) + "\n"
