#!/usr/bin/env python3
"""
Assemble classified dictionary lines into per-variable label records.

parse_dictionary() is the entry point used by the CLI: text in, ordered
Stata label statements out. The parser never touches a dataset and does no
I/O; a malformed line is dropped, and only a dictionary without a single
recognizable variable header is an error.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from dict_lines import (
    DictionaryLine,
    classify_lines,
    grammar_for_year,
    split_value_label,
    tokenize_lines,
)
from label_do import emit_statements


MISSING_MARKER = "b"  # PUMS codes "b", "bb", ... stand for N/A (blank)
RANGE_MARKER = ".."


class FormatError(ValueError):
    """Dictionary text matches neither known layout."""


@dataclass
class ValueLabel:
    variable: str
    code: str
    description: str


@dataclass
class Variable:
    name: str
    label: Optional[str] = None
    value_labels: List[ValueLabel] = field(default_factory=list)
    note: Optional[str] = None

    @property
    def has_value_labels(self) -> bool:
        return bool(self.value_labels)

    def append_note(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        self.note = f"{self.note} {text}" if self.note else text


@dataclass
class Assembly:
    variables: Dict[str, Variable] = field(default_factory=dict)
    headers: int = 0
    dropped_ranges: int = 0
    dropped_missing: int = 0
    unassociated: int = 0


@dataclass
class ParseReport:
    year: int
    sample_period: int
    grammar: str
    statements: List[str]
    headers: int
    variables: int
    dropped_ranges: int
    dropped_missing: int
    unassociated: int

    def warnings(self) -> List[str]:
        out: List[str] = []
        if self.unassociated:
            out.append(f"{self.unassociated} value-label/note line(s) before any variable header were dropped")
        return out


def _strip_note_marker(text: str) -> str:
    head, _, rest = text.partition(" ")
    if head.lower() == "note:":
        return rest
    return text


def assemble_variables(lines: Sequence[DictionaryLine]) -> Assembly:
    """Single forward pass over classified lines.

    State carried between lines: the current variable (fill-down target for
    value labels and notes) and whether note continuation is active.
    """
    asm = Assembly()
    current: Optional[Variable] = None
    in_note = False
    skip_next = False

    for i, line in enumerate(lines):
        if skip_next:
            # label line already consumed by its header
            skip_next = False
            continue

        if line.is_variable_header:
            asm.headers += 1
            name = line.words[0].lower()
            current = asm.variables.get(name)
            if current is None:
                current = Variable(name=name)
                asm.variables[name] = current
            if i + 1 < len(lines):
                label = lines[i + 1].text
                if label and not current.label:
                    current.label = label
                skip_next = True
            in_note = False
            continue

        if line.is_blank:
            in_note = False
            continue

        if line.is_note:
            if current is None:
                asm.unassociated += 1
                continue
            current.append_note(_strip_note_marker(line.text))
            in_note = True
            continue

        if line.is_value_label:
            in_note = False
            if current is None:
                asm.unassociated += 1
                continue
            if RANGE_MARKER in line.text:
                asm.dropped_ranges += 1
                continue
            code, description = split_value_label(line)
            if code.startswith(MISSING_MARKER):
                asm.dropped_missing += 1
                continue
            if not description:
                continue
            current.value_labels.append(ValueLabel(variable=current.name, code=code, description=description))
            continue

        if in_note and current is not None:
            current.append_note(line.text)

    return asm


def parse_dictionary_report(text: str, year: int, sample_period: int) -> ParseReport:
    grammar = grammar_for_year(year)
    lines = classify_lines(tokenize_lines(text), grammar)
    asm = assemble_variables(lines)
    if asm.headers == 0:
        raise FormatError(
            f"no variable headers found for {year} ({grammar.name} layout, {sample_period}-year sample)"
        )
    statements = [s.text for s in emit_statements(asm.variables.values())]
    return ParseReport(
        year=int(year),
        sample_period=int(sample_period),
        grammar=grammar.name,
        statements=statements,
        headers=asm.headers,
        variables=len(asm.variables),
        dropped_ranges=asm.dropped_ranges,
        dropped_missing=asm.dropped_missing,
        unassociated=asm.unassociated,
    )


def parse_dictionary(text: str, year: int, sample_period: int) -> List[str]:
    return parse_dictionary_report(text, year, sample_period).statements
