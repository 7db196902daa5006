#!/usr/bin/env python3
"""
Line tokenizer and row classifier for ACS PUMS data dictionaries.

The Census text dictionary is a loosely formatted document:

    RT          1                      <- variable header (pre-2017)
        Record Type                    <- label line
              H .Housing Record        <- value label (code .description)
    Note: Use ADJINC to adjust ...     <- note

From 2017 onward the header carries a type column as well
(``RT Character 1``). Each grammar is a HeaderGrammar value picked once per
parse by grammar_for_year().
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional


MAX_LINE_WIDTH = 244  # str244 column used by the legacy reader; longer lines are cut
LAYOUT_CHANGE_YEAR = 2017

DOT_SPLIT_RE = re.compile(r"(?=\.)")
VALUE_LABEL_RE = re.compile(r"^(\S+)\s+\.(.*)$")
NOTE_MARKER = "note:"


@dataclass(frozen=True)
class DictionaryLine:
    number: int  # 1-based position in the source text
    raw: str
    text: str
    words: tuple
    dot_tokens: tuple
    is_variable_header: bool = False
    is_value_label: bool = False
    is_note: bool = False

    @property
    def is_blank(self) -> bool:
        return not self.text


@dataclass(frozen=True)
class HeaderGrammar:
    name: str
    word_count: int
    empty_dot_token: int  # 0-based index of the dot token that must be empty

    def matches(self, line: DictionaryLine, previous: Optional[DictionaryLine]) -> bool:
        if previous is not None and not previous.is_blank:
            return False
        if len(line.words) != self.word_count:
            return False
        return _dot_token(line, self.empty_dot_token) == ""


PRE_2017 = HeaderGrammar(name="pre-2017", word_count=2, empty_dot_token=2)
FROM_2017 = HeaderGrammar(name="2017+", word_count=3, empty_dot_token=3)


def grammar_for_year(year: int) -> HeaderGrammar:
    return FROM_2017 if int(year) >= LAYOUT_CHANGE_YEAR else PRE_2017


def _dot_token(line: DictionaryLine, index: int) -> str:
    if index < len(line.dot_tokens):
        return line.dot_tokens[index].strip()
    return ""


def tokenize_line(raw: str, number: int = 1) -> DictionaryLine:
    raw = raw.rstrip("\r\n")[:MAX_LINE_WIDTH]
    text = " ".join(raw.split())
    words = tuple(text.split(" ")) if text else ()
    dot_tokens = tuple(DOT_SPLIT_RE.split(text)) if text else ()
    return DictionaryLine(number=number, raw=raw, text=text, words=words, dot_tokens=dot_tokens)


def _physical_lines(text: str) -> List[str]:
    # "\n" only: str.splitlines() would also break on U+0085, U+2028, ...
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def tokenize_lines(text: str) -> List[DictionaryLine]:
    return [tokenize_line(raw, i) for i, raw in enumerate(_physical_lines(text), start=1)]


def is_value_label(line: DictionaryLine) -> bool:
    # `CODE .Description`: the dot token following the code starts with the dot marker
    if len(line.dot_tokens) < 2 or not line.dot_tokens[1].startswith("."):
        return False
    return VALUE_LABEL_RE.match(line.text) is not None


def is_note(line: DictionaryLine) -> bool:
    return bool(line.words) and line.words[0].lower() == NOTE_MARKER


def split_value_label(line: DictionaryLine) -> tuple[str, str]:
    """Return (code, description) for a value-label line."""
    m = VALUE_LABEL_RE.match(line.text)
    if not m:
        raise ValueError(f"not a value-label line: {line.text!r}")
    return m.group(1), m.group(2).strip()


def classify_lines(lines: Iterable[DictionaryLine], grammar: HeaderGrammar) -> List[DictionaryLine]:
    """Tag each line as header, value label or note.

    Only the previous line is consulted. Header detection wins over the other
    roles; note continuation is left to the assembler.
    """
    out: List[DictionaryLine] = []
    previous: Optional[DictionaryLine] = None
    for line in lines:
        header = not line.is_blank and grammar.matches(line, previous)
        note = not header and is_note(line)
        value = not header and not note and is_value_label(line)
        out.append(replace(line, is_variable_header=header, is_value_label=value, is_note=note))
        previous = line
    return out
