#!/usr/bin/env python3
"""TextMate grammar registry: primary grammar plus optional embedded grammars.

The registry resolves every scope a grammar can pull in through ``include``
references before handing the set to the ``babi`` engine:

* the primary scope maps to the primary document;
* any other scope is looked up as ``<grammars_dir>/<scope>.tmLanguage.json``
  and its ``scopeName`` is forced to the requested scope;
* scopes with no grammar on disk are registered as empty grammars so the
  engine treats the region as "no embedded grammar" instead of failing.
"""

from __future__ import annotations

import json
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from babi.highlight import Compiler, Grammars, highlight_line

GRAMMAR_SUFFIX = ".tmLanguage.json"
DEFAULT_GRAMMARS_DIR = Path(__file__).resolve().parent / "grammars"
LOCAL_INCLUDES = frozenset({"$self", "$base"})


class HarnessError(RuntimeError):
    """Raised when the run cannot continue (bad inputs or unloadable grammar)."""


def read_text_hard_fail(path: Path, *, artifact: str) -> str:
    if not path.exists():
        raise HarnessError(f"{artifact} file does not exist: {path}")
    if not path.is_file():
        raise HarnessError(f"{artifact} path is not a file: {path}")
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise HarnessError(f"{artifact} file is not valid UTF-8: {path}") from exc
    except OSError as exc:
        raise HarnessError(f"unable to read {artifact} file {path}: {exc}") from exc


def read_json_hard_fail(path: Path, *, artifact: str) -> Any:
    raw_text = read_text_hard_fail(path, artifact=artifact)
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise HarnessError(
            f"{artifact} file is not valid JSON: {path} "
            f"(line {exc.lineno} column {exc.colno}: {exc.msg})"
        ) from exc


def read_grammar_document(path: Path, *, artifact: str) -> dict[str, Any]:
    payload = read_json_hard_fail(path, artifact=artifact)
    if not isinstance(payload, dict):
        raise HarnessError(f"{artifact} root must be an object: {path}")
    return payload


def iter_external_includes(node: Any) -> Iterator[str]:
    """Yield the scope names referenced by non-local ``include`` entries."""

    if isinstance(node, dict):
        for key, value in node.items():
            if key == "include" and isinstance(value, str):
                if value.startswith("#") or value in LOCAL_INCLUDES:
                    continue
                scope = value.partition("#")[0]
                if scope:
                    yield scope
            else:
                yield from iter_external_includes(value)
    elif isinstance(node, list):
        for item in node:
            yield from iter_external_includes(item)


def empty_grammar(scope: str) -> dict[str, Any]:
    return {"scopeName": scope, "patterns": []}


@dataclass(frozen=True)
class LoadedGrammar:
    """Compiled grammar handle exposing the single-line tokenization step."""

    scope_name: str
    compiler: Compiler
    missing_scopes: tuple[str, ...]

    @property
    def initial_state(self) -> Any:
        return self.compiler.root_state

    def tokenize_line(
        self,
        line: str,
        state: Any,
        *,
        first_line: bool,
    ) -> tuple[tuple[tuple[str, ...], ...], Any]:
        """Tokenize one line; return per-token scope lists and the next state.

        The engine matches against newline-terminated lines, so the newline
        stripped by line splitting is restored here.
        """

        next_state, regions = highlight_line(self.compiler, state, f"{line}\n", first_line)
        return tuple(tuple(region.scope) for region in regions), next_state


class GrammarRegistry:
    """Context manager owning the on-disk grammar set the engine reads from."""

    def __init__(self, grammar_path: Path, *, grammars_dir: Path | None) -> None:
        self.grammar_path = grammar_path
        self.grammars_dir = grammars_dir
        self._tmp_dir: tempfile.TemporaryDirectory[str] | None = None

    def auxiliary_path(self, scope: str) -> Path | None:
        if self.grammars_dir is None:
            return None
        path = self.grammars_dir / f"{scope}{GRAMMAR_SUFFIX}"
        if path.is_file():
            return path
        return None

    def resolve_documents(
        self, primary: dict[str, Any], scope_name: str
    ) -> tuple[dict[str, dict[str, Any]], list[str]]:
        documents: dict[str, dict[str, Any]] = {scope_name: primary}
        missing: list[str] = []
        pending = list(iter_external_includes(primary))
        while pending:
            scope = pending.pop(0)
            if scope in documents:
                continue
            path = self.auxiliary_path(scope)
            if path is None:
                documents[scope] = empty_grammar(scope)
                missing.append(scope)
                continue
            document = read_grammar_document(path, artifact="embedded grammar")
            document["scopeName"] = scope
            documents[scope] = document
            pending.extend(iter_external_includes(document))
        return documents, missing

    def __enter__(self) -> LoadedGrammar:
        primary = read_grammar_document(self.grammar_path, artifact="grammar")
        scope_name = primary.get("scopeName")
        if not isinstance(scope_name, str) or not scope_name:
            raise HarnessError(f"No scopeName in grammar: {self.grammar_path}")

        documents, missing = self.resolve_documents(primary, scope_name)

        self._tmp_dir = tempfile.TemporaryDirectory(prefix="grammar-registry-")
        tmp_root = Path(self._tmp_dir.name)
        for scope, document in documents.items():
            (tmp_root / f"{scope}.json").write_text(
                json.dumps(document, indent=2) + "\n",
                encoding="utf-8",
            )

        try:
            compiler = Grammars(str(tmp_root)).compiler_for_scope(scope_name)
        except Exception as exc:
            self.close()
            raise HarnessError(f"Failed to load grammar: {scope_name} ({exc})") from exc

        return LoadedGrammar(
            scope_name=scope_name,
            compiler=compiler,
            missing_scopes=tuple(missing),
        )

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._tmp_dir is not None:
            self._tmp_dir.cleanup()
            self._tmp_dir = None
