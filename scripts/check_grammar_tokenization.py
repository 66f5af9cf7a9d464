#!/usr/bin/env python3
"""Fail-closed tokenization checker for TextMate embedded-language grammars.

Usage:
  python scripts/check_grammar_tokenization.py <grammar.tmLanguage.json> <fixture> <expect.json>

expect.json:
  {
    "checks": [
      {"match": "echo", "hasAny": ["source.css"], "note": "inside embedded block is css"},
      {"afterMatch": "'';", "notHasAny": ["source.css"], "note": "after terminator is not css"}
    ]
  }

Every line of the fixture is dumped with its scopes before checks run, on
success and failure alike.
"""

from __future__ import annotations

import argparse
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

from jsonschema import Draft202012Validator

SCRIPTS_DIR = Path(__file__).resolve().parent
PREFIX = "grammar-tokenization"

if str(SCRIPTS_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPTS_DIR))

from grammar_tokenization.grammar_registry import (
    DEFAULT_GRAMMARS_DIR,
    GrammarRegistry,
    HarnessError,
    read_json_hard_fail,
    read_text_hard_fail,
)
from grammar_tokenization.line_tokenizer import (
    SCOPE_SAMPLE_LIMIT,
    LineRecord,
    render_dump,
    render_scopes,
    split_lines,
    tokenize_lines,
)

STRING_LIST_SCHEMA: dict[str, Any] = {"type": "array", "items": {"type": "string"}}

EXPECTATIONS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["checks"],
    "properties": {"checks": {"type": "array", "minItems": 1}},
}

CHECK_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "match": {"type": "string"},
        "line": {"type": "integer"},
        "afterMatch": {"type": "string"},
        "afterLine": {"type": "integer"},
        "hasAny": STRING_LIST_SCHEMA,
        "notHasAny": STRING_LIST_SCHEMA,
        "note": {"type": "string"},
    },
}


class CheckError(RuntimeError):
    """Raised when a single check fails; never aborts the run."""


@dataclass(frozen=True)
class Check:
    match: str | None = None
    line: int | None = None
    after_match: str | None = None
    after_line: int | None = None
    has_any: tuple[str, ...] | None = None
    not_has_any: tuple[str, ...] | None = None
    note: str | None = None


@dataclass(frozen=True)
class CheckFailure:
    check_index: int
    message: str


def load_checks(path: Path) -> list[Any]:
    payload = read_json_hard_fail(path, artifact="expectations")
    if not Draft202012Validator(EXPECTATIONS_SCHEMA).is_valid(payload):
        raise HarnessError(f"No checks[] in {path}")
    return list(payload["checks"])


def optional_int(value: int | float | None) -> int | None:
    if value is None:
        return None
    return int(value)


def optional_tuple(value: list[str] | None) -> tuple[str, ...] | None:
    if value is None:
        return None
    return tuple(value)


def parse_check(entry: Any) -> Check:
    errors = sorted(
        Draft202012Validator(CHECK_SCHEMA).iter_errors(entry),
        key=lambda error: [str(part) for part in error.path],
    )
    if errors:
        error = errors[0]
        field = ".".join(str(part) for part in error.path) or "<root>"
        raise CheckError(f"invalid check: {field}: {error.message}")
    return Check(
        match=entry.get("match"),
        line=optional_int(entry.get("line")),
        after_match=entry.get("afterMatch"),
        after_line=optional_int(entry.get("afterLine")),
        has_any=optional_tuple(entry.get("hasAny")),
        not_has_any=optional_tuple(entry.get("notHasAny")),
        note=entry.get("note"),
    )


def find_line_containing(lines: Sequence[str], needle: str) -> int | None:
    for index, line in enumerate(lines):
        if needle in line:
            return index + 1
    return None


def next_non_empty_line(lines: Sequence[str], line_no: int) -> int | None:
    """Return the first non-blank line strictly after 1-based `line_no`."""

    for index in range(max(line_no, 0), len(lines)):
        if lines[index].strip():
            return index + 1
    return None


def resolve_by_match(check: Check, lines: Sequence[str]) -> int | None:
    if check.match is None:
        return None
    return find_line_containing(lines, check.match)


def resolve_by_line(check: Check, lines: Sequence[str]) -> int | None:
    return check.line


def resolve_by_after_match(check: Check, lines: Sequence[str]) -> int | None:
    if check.after_match is None:
        return None
    anchor = find_line_containing(lines, check.after_match)
    if anchor is None:
        raise CheckError(f"afterMatch not found: {check.after_match}")
    target = next_non_empty_line(lines, anchor)
    if target is None:
        raise CheckError(f"no non-empty line after afterMatch: {check.after_match}")
    return target


def resolve_by_after_line(check: Check, lines: Sequence[str]) -> int | None:
    if check.after_line is None:
        return None
    target = next_non_empty_line(lines, check.after_line)
    if target is None:
        raise CheckError(f"no non-empty line after afterLine: {check.after_line}")
    return target


TARGET_RESOLVERS: tuple[Callable[[Check, Sequence[str]], int | None], ...] = (
    resolve_by_match,
    resolve_by_line,
    resolve_by_after_match,
    resolve_by_after_line,
)


def resolve_target_line(check: Check, lines: Sequence[str]) -> int:
    for resolver in TARGET_RESOLVERS:
        target = resolver(check, lines)
        if target is not None:
            return target
    raise CheckError("could not resolve target line")


def scopes_at(records: Sequence[LineRecord], line_no: int) -> tuple[str, ...]:
    if 1 <= line_no <= len(records):
        return records[line_no - 1].scopes
    return ()


def scopes_contain(scopes: Sequence[str], needle: str) -> bool:
    return any(scope == needle or needle in scope for scope in scopes)


def render_needles(needles: Sequence[str]) -> str:
    return render_scopes(needles, limit=len(needles))


def assert_has_any(scopes: Sequence[str], needles: Sequence[str], context: str) -> None:
    if not any(scopes_contain(scopes, needle) for needle in needles):
        raise CheckError(
            f"FAIL: {context}\n"
            f"Expected any of: {render_needles(needles)}\n"
            f"Scopes sample: {render_scopes(scopes, limit=SCOPE_SAMPLE_LIMIT)}"
        )


def assert_not_has_any(scopes: Sequence[str], needles: Sequence[str], context: str) -> None:
    if any(scopes_contain(scopes, needle) for needle in needles):
        raise CheckError(
            f"FAIL: {context}\n"
            f"Expected none of: {render_needles(needles)}\n"
            f"Scopes sample: {render_scopes(scopes, limit=SCOPE_SAMPLE_LIMIT)}"
        )


def check_context(fixture_label: str, index: int, target: int | None, note: str | None) -> str:
    line_ref = "?" if target is None else str(target)
    suffix = f" ({note})" if note else ""
    return f"{fixture_label}: check[{index}] -> line {line_ref}{suffix}"


def evaluate_check(
    entry: Any,
    *,
    index: int,
    fixture_label: str,
    lines: Sequence[str],
    records: Sequence[LineRecord],
) -> None:
    note = entry.get("note") if isinstance(entry, dict) else None
    target: int | None = None
    try:
        check = parse_check(entry)
        target = resolve_target_line(check, lines)
        if check.has_any is None and check.not_has_any is None:
            raise CheckError("missing hasAny/notHasAny")
    except CheckError as exc:
        context = check_context(fixture_label, index, target, note if isinstance(note, str) else None)
        raise CheckError(
            f"{context}: {exc}\n"
            f"Scopes sample: {render_scopes(scopes_at(records, target or 0))}"
        ) from exc

    scopes = scopes_at(records, target)
    context = check_context(fixture_label, index, target, check.note)
    if check.has_any is not None:
        assert_has_any(scopes, check.has_any, context)
    if check.not_has_any is not None:
        assert_not_has_any(scopes, check.not_has_any, context)


def evaluate_checks(
    fixture_label: str,
    lines: Sequence[str],
    records: Sequence[LineRecord],
    checks: Sequence[Any],
) -> list[CheckFailure]:
    failures: list[CheckFailure] = []
    for index, entry in enumerate(checks):
        try:
            evaluate_check(
                entry,
                index=index,
                fixture_label=fixture_label,
                lines=lines,
                records=records,
            )
        except CheckError as exc:
            failures.append(CheckFailure(check_index=index, message=f"check[{index}]: {exc}"))
    return failures


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Tokenize a fixture with a TextMate grammar, dump per-line scopes, "
            "and assert expected scopes line by line."
        )
    )
    parser.add_argument("grammar", type=Path, help="Primary grammar (*.tmLanguage.json).")
    parser.add_argument("fixture", type=Path, help="Sample source file to tokenize.")
    parser.add_argument("expectations", type=Path, help="Expectation JSON with a checks[] list.")
    parser.add_argument(
        "--grammars-dir",
        type=Path,
        default=DEFAULT_GRAMMARS_DIR,
        help=(
            "Directory of optional embedded grammars named <scope>.tmLanguage.json "
            "(default: the grammars/ directory shipped with grammar_tokenization)."
        ),
    )
    return parser


def run(args: argparse.Namespace) -> int:
    fixture_label = str(args.fixture)
    fixture_text = read_text_hard_fail(args.fixture, artifact="fixture")

    with GrammarRegistry(args.grammar, grammars_dir=args.grammars_dir) as grammar:
        records = tokenize_lines(grammar, fixture_text)

    for line in render_dump(fixture_label, records, missing_scopes=grammar.missing_scopes):
        print(line)

    checks = load_checks(args.expectations)
    failures = evaluate_checks(fixture_label, split_lines(fixture_text), records, checks)

    if failures:
        print("FAILURES:", file=sys.stderr)
        for failure in failures:
            print(f"- {failure.message}", file=sys.stderr)
        return 1

    print("PASS")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except HarnessError as exc:
        print(f"{PREFIX}: error: {exc}", file=sys.stderr)
        return 1
    except Exception:
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
