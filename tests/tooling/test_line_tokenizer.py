import importlib.util
import sys
import unittest
from pathlib import Path

MODULE_PATH = Path(__file__).resolve().parents[2] / "scripts" / "grammar_tokenization" / "line_tokenizer.py"
SPEC = importlib.util.spec_from_file_location("line_tokenizer", MODULE_PATH)
if SPEC is None or SPEC.loader is None:
    raise RuntimeError("Unable to load scripts/grammar_tokenization/line_tokenizer.py for tests.")
line_tokenizer = importlib.util.module_from_spec(SPEC)
sys.modules[SPEC.name] = line_tokenizer
SPEC.loader.exec_module(line_tokenizer)


class RecordingGrammar:
    """Stand-in engine: scopes depend on whether a ''-block is open."""

    initial_state = ("root",)

    def __init__(self) -> None:
        self.calls: list[tuple[str, object, bool]] = []

    def tokenize_line(self, line, state, *, first_line):
        self.calls.append((line, state, first_line))
        tokens = []
        if line:
            scope = ("source.test", "embedded.shell") if state[-1] == "block" else ("source.test",)
            tokens = [scope, scope + ("word.test",), scope]
        if line.count("''") % 2 == 1:
            state = state[:-1] if state[-1] == "block" else state + ("block",)
        return tokens, state


class LineTokenizerTests(unittest.TestCase):
    def test_split_lines_accepts_lf_and_crlf(self) -> None:
        self.assertEqual(line_tokenizer.split_lines("a\r\nb\nc"), ["a", "b", "c"])
        self.assertEqual(line_tokenizer.split_lines("a\n"), ["a", ""])
        self.assertEqual(line_tokenizer.split_lines(""), [""])

    def test_unique_scopes_keeps_first_seen_order(self) -> None:
        self.assertEqual(
            line_tokenizer.unique_scopes(["b", "a", "b", "c", "a"]),
            ("b", "a", "c"),
        )

    def test_state_is_threaded_line_to_line(self) -> None:
        grammar = RecordingGrammar()
        records = line_tokenizer.tokenize_lines(grammar, "x = ''\necho\n'';\ny\n")

        self.assertEqual([record.line_no for record in records], [1, 2, 3, 4, 5])
        self.assertEqual(
            [call[1] for call in grammar.calls],
            [("root",), ("root", "block"), ("root", "block"), ("root",), ("root",)],
        )
        self.assertEqual([call[2] for call in grammar.calls], [True, False, False, False, False])
        self.assertEqual(records[1].scopes, ("source.test", "embedded.shell", "word.test"))
        self.assertEqual(records[3].scopes, ("source.test", "word.test"))

    def test_empty_line_yields_empty_scope_set(self) -> None:
        records = line_tokenizer.tokenize_lines(RecordingGrammar(), "a\n\nb")

        self.assertEqual(len(records), 3)
        self.assertEqual(records[1].text, "")
        self.assertEqual(records[1].scopes, ())

    def test_render_dump_formats_rows_and_truncates_scopes(self) -> None:
        records = [
            line_tokenizer.LineRecord(line_no=1, text="  a = 1;", scopes=("source.nix",)),
            line_tokenizer.LineRecord(
                line_no=12,
                text="",
                scopes=tuple(f"s{index}" for index in range(30)),
            ),
        ]

        dump = line_tokenizer.render_dump("sample.nix", records)

        self.assertEqual(dump[0], "--- DUMP: sample.nix ---")
        self.assertEqual(dump[1], "   1 |   a = 1;")
        self.assertEqual(dump[2], '     scopes: ["source.nix"]')
        self.assertEqual(dump[3], "  12 | ")
        self.assertIn('"s24"]', dump[4])
        self.assertNotIn('"s25"', dump[4])
        self.assertEqual(dump[-1], "--- END DUMP: sample.nix ---")

    def test_render_dump_lists_scopes_without_grammar(self) -> None:
        records = [line_tokenizer.LineRecord(line_no=1, text="x", scopes=("source.nix",))]

        plain = line_tokenizer.render_dump("sample.nix", records)
        stubbed = line_tokenizer.render_dump(
            "sample.nix",
            records,
            missing_scopes=("source.python", "source.lua"),
        )

        self.assertEqual(len(plain), 4)
        self.assertEqual(stubbed[1], '     no grammar for: ["source.python","source.lua"]')
        self.assertEqual(stubbed[2:], plain[1:])


if __name__ == "__main__":
    unittest.main()
