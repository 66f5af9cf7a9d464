#!/usr/bin/env python3
"""Line-by-line tokenization driver and the always-on scope dump."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

LINE_SPLIT_RE = re.compile(r"\r?\n")
SCOPE_SAMPLE_LIMIT = 25


@dataclass(frozen=True)
class LineRecord:
    line_no: int
    text: str
    scopes: tuple[str, ...]


def split_lines(text: str) -> list[str]:
    return LINE_SPLIT_RE.split(text)


def unique_scopes(scopes: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(scopes))


def tokenize_lines(grammar: Any, text: str) -> list[LineRecord]:
    """Tokenize every line, threading the engine state from one line to the next.

    `grammar` provides `initial_state` and `tokenize_line(line, state, first_line=...)`
    returning `(token_scopes, next_state)`; the state is never inspected.
    """

    records: list[LineRecord] = []
    state = grammar.initial_state
    for index, line in enumerate(split_lines(text)):
        tokens, state = grammar.tokenize_line(line, state, first_line=index == 0)
        scopes = unique_scopes(scope for token_scopes in tokens for scope in token_scopes)
        records.append(LineRecord(line_no=index + 1, text=line, scopes=scopes))
    return records


def render_scopes(scopes: Sequence[str], *, limit: int = SCOPE_SAMPLE_LIMIT) -> str:
    return json.dumps(list(scopes[:limit]), separators=(",", ":"), ensure_ascii=False)


def render_dump(
    fixture_label: str,
    records: Sequence[LineRecord],
    *,
    limit: int = SCOPE_SAMPLE_LIMIT,
    missing_scopes: Sequence[str] = (),
) -> list[str]:
    lines = [f"--- DUMP: {fixture_label} ---"]
    if missing_scopes:
        # embedded scopes registered as empty grammars
        lines.append(f"     no grammar for: {render_scopes(missing_scopes, limit=len(missing_scopes))}")
    for record in records:
        lines.append(f"{record.line_no:>4} | {record.text}")
        lines.append(f"     scopes: {render_scopes(record.scopes, limit=limit)}")
    lines.append(f"--- END DUMP: {fixture_label} ---")
    return lines
