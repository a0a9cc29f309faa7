from __future__ import annotations

from pathlib import Path
import tempfile
import textwrap
import unittest

from core.template import TemplateError
from moldsmith.diagnostics import DiagnosticCollector
from moldsmith.errors import CircularIngotError, IngotNotFoundError, ResolutionError
from moldsmith.ingots import IngotResolver
from moldsmith.render import render_template


class IngotResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.mold = self.root / "mold"
        self.shared = self.root / "shared"

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def write(self, base: Path, relative: str, text: str) -> None:
        path = base / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text))

    def render(self, source: str, context: dict | None = None, **kwargs: object) -> str:
        resolver = IngotResolver([self.mold, self.shared])
        return render_template(source, context or {}, ingots=resolver, **kwargs)

    def test_bare_document_ingot(self) -> None:
        self.write(self.mold, "ingots/header.md", "# {{title}}")
        self.assertEqual(self.render('{{ingot "header"}}\nbody', {"title": "Docs"}), "# Docs\nbody")

    def test_ingot_name_from_context(self) -> None:
        self.write(self.mold, "ingots/header.md", "# head")
        self.assertEqual(self.render("{{ingot .part}}", {"part": "header"}), "# head")

    def test_ingot_name_must_be_a_string(self) -> None:
        for source, context in (("{{ingot .part}}", {}), ("{{ingot 3}}", {}), ('{{ingot ""}}', {})):
            with self.assertRaisesRegex(TemplateError, "ingot name must be a non-empty string"):
                self.render(source, context)

    def test_manifest_ingot_concatenates_files_in_order(self) -> None:
        self.write(
            self.mold,
            "ingots/guide/ingot.yaml",
            """
            apiVersion: v1
            kind: ingot
            name: guide
            version: 1.0.0
            files:
              - intro.md
              - parts/outro.md
            """,
        )
        self.write(self.mold, "ingots/guide/intro.md", "intro {{name}};")
        self.write(self.mold, "ingots/guide/parts/outro.md", "outro")

        self.assertEqual(self.render('{{ingot "guide"}}', {"name": "x"}), "intro x;outro")

    def test_manifest_form_wins_over_bare_document(self) -> None:
        self.write(self.mold, "ingots/pick.md", "bare")
        self.write(self.mold, "ingots/pick/ingot.yaml", "files:\n  - body.md\n")
        self.write(self.mold, "ingots/pick/body.md", "manifest")

        self.assertEqual(self.render('{{ingot "pick"}}'), "manifest")

    def test_first_root_with_a_match_wins(self) -> None:
        self.write(self.mold, "ingots/common.md", "local")
        self.write(self.shared, "ingots/common.md", "shared")
        self.write(self.shared, "ingots/only-shared.md", "fallback")

        self.assertEqual(self.render('{{ingot "common"}}/{{ingot "only-shared"}}'), "local/fallback")

    def test_nested_ingots_share_context(self) -> None:
        self.write(self.mold, "ingots/outer.md", 'A[{{ingot "inner"}}]')
        self.write(self.shared, "ingots/inner.md", "B{{name}}")

        self.assertEqual(self.render('{{ingot "outer"}}', {"name": "x"}), "A[Bx]")

    def test_same_ingot_may_appear_twice(self) -> None:
        self.write(self.mold, "ingots/dash.md", "-")
        self.assertEqual(self.render('{{ingot "dash"}}{{ingot "dash"}}'), "--")

    def test_self_reference_is_circular(self) -> None:
        self.write(self.mold, "ingots/self.md", 'loop {{ingot "self"}}')

        with self.assertRaises(CircularIngotError) as caught:
            self.render('{{ingot "self"}}')
        self.assertEqual(caught.exception.chain, ("self", "self"))
        self.assertIn("self", str(caught.exception))

    def test_indirect_cycle_names_the_chain(self) -> None:
        self.write(self.mold, "ingots/a.md", '{{ingot "b"}}')
        self.write(self.mold, "ingots/b.md", '{{ingot "a"}}')

        with self.assertRaisesRegex(CircularIngotError, "circular ingot reference detected: a -> b -> a"):
            self.render('{{ingot "a"}}')

    def test_failed_resolution_leaves_no_state_behind(self) -> None:
        self.write(self.mold, "ingots/self.md", '{{ingot "self"}}')
        self.write(self.mold, "ingots/ok.md", "fine")
        resolver = IngotResolver([self.mold])

        with self.assertRaises(CircularIngotError):
            resolver.resolve("self", {})
        self.assertEqual(resolver.resolve("ok", {}), "fine")

    def test_not_found_lists_searched_locations(self) -> None:
        with self.assertRaises(IngotNotFoundError) as caught:
            self.render('{{ingot "ghost"}}')
        message = str(caught.exception)
        self.assertIn("'ghost' not found", message)
        self.assertIn(str(self.mold / "ingots"), message)
        self.assertIn(str(self.shared / "ingots"), message)

    def test_missing_listed_file(self) -> None:
        self.write(self.mold, "ingots/broken/ingot.yaml", "files:\n  - absent.md\n")
        with self.assertRaisesRegex(IngotNotFoundError, "broken/absent.md"):
            self.render('{{ingot "broken"}}')

    def test_listed_file_may_not_escape_ingot_directory(self) -> None:
        self.write(self.mold, "secret.md", "secret")
        self.write(self.mold, "ingots/escape/ingot.yaml", "files:\n  - ../../secret.md\n")
        with self.assertRaisesRegex(ResolutionError, "escapes the ingot directory"):
            self.render('{{ingot "escape"}}')

    def test_unresolved_references_inside_ingots_are_reported(self) -> None:
        self.write(self.mold, "ingots/note.md", "{{missing}}")
        sink = DiagnosticCollector()

        self.render('{{ingot "note"}}', sink=sink)

        self.assertEqual(len(sink), 1)
        self.assertTrue(sink.diagnostics[0].file.endswith("note.md"))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
