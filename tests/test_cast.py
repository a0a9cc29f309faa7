from __future__ import annotations

from pathlib import Path
import tempfile
import textwrap
import unittest

from moldsmith.cast import CastOptions, cast
from moldsmith.errors import FluxValidationError, ResolutionError
from moldsmith.reader import MoldReader


MOLD_YAML = """
apiVersion: v1
kind: mold
name: project-kit
version: 1.0.0
flux:
  - name: org
    type: string
    required: true
  - name: board
    type: string
    default: Engineering
output:
  commands: .claude/commands
  assets: {dest: .claude/assets, process: false}
"""


class CastTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        root = Path(self.temp_dir.name)
        self.mold = root / "mold"
        self.target = root / "target"
        self.shared = root / "shared"
        self.write(self.mold, "mold.yaml", MOLD_YAML)
        self.write(self.mold, "commands/plan.md", '{{ingot "header"}}Board: {{board}} for {{org}}\n')
        self.write(self.mold, "assets/raw.md", "Keep {{org}} literal\n")
        self.write(self.mold, "ingots/header.md", "# {{org}}\n")
        self.write(self.mold, "README.md", "About {{org}}\n")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def write(self, base: Path, relative: str, text: str) -> Path:
        path = base / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text).lstrip())
        return path

    def options(self, **kwargs: object) -> CastOptions:
        return CastOptions(target=self.target, **kwargs)

    def test_renders_and_copies_files(self) -> None:
        result = cast(MoldReader(self.mold), self.options(overrides=["org=acme"]))

        plan = (self.target / ".claude/commands/plan.md").read_text()
        self.assertEqual(plan, "# acme\nBoard: Engineering for acme\n")
        self.assertEqual((self.target / ".claude/assets/raw.md").read_text(), "Keep {{org}} literal\n")
        self.assertEqual((self.target / "README.md").read_text(), "About acme\n")
        self.assertFalse((self.target / "ingots").exists())
        self.assertEqual(len(result.written), 3)
        self.assertEqual(result.context, {"org": "acme", "board": "Engineering"})
        self.assertEqual(result.diagnostics, [])

    def test_flux_precedence_across_sources(self) -> None:
        self.write(self.mold, "flux.yaml", "org: from-defaults\nboard: Defaults\n")
        values = self.write(self.shared, "values.yaml", "board: Values\n")

        result = cast(
            MoldReader(self.mold),
            self.options(value_files=[values], overrides=["org=cli"], dry_run=True),
        )

        self.assertEqual(result.context, {"org": "cli", "board": "Values"})

    def test_schema_file_overrides_inline_flux(self) -> None:
        self.write(self.mold, "flux.schema.yaml", "- name: team\n  type: string\n  required: true\n")

        with self.assertRaises(FluxValidationError) as caught:
            cast(MoldReader(self.mold), self.options(overrides=["org=acme"]))
        self.assertEqual(caught.exception.errors, ["flux 'team' is required but not provided"])

    def test_validation_failure_writes_nothing(self) -> None:
        with self.assertRaises(FluxValidationError):
            cast(MoldReader(self.mold), self.options())
        self.assertFalse(self.target.exists())

    def test_dry_run_writes_nothing(self) -> None:
        result = cast(MoldReader(self.mold), self.options(overrides=["org=acme"], dry_run=True))

        self.assertFalse(self.target.exists())
        self.assertEqual(result.written, [])
        self.assertEqual(
            [item.destination for item in result.files],
            ["README.md", ".claude/assets/raw.md", ".claude/commands/plan.md"],
        )

    def test_unresolved_references_are_collected(self) -> None:
        self.write(self.mold, "commands/extra.md", "{{missing.value}}")

        result = cast(MoldReader(self.mold), self.options(overrides=["org=acme"]))

        self.assertEqual([(item.file, item.message) for item in result.diagnostics], [
            ("commands/extra.md", "unresolved template variable: {{.missing.value}}"),
        ])

    def test_extra_ingot_roots_are_searched(self) -> None:
        (self.mold / "ingots/header.md").unlink()
        self.write(self.shared, "ingots/header.md", "## shared {{org}}\n")

        cast(MoldReader(self.mold), self.options(overrides=["org=acme"], ingot_roots=[self.shared]))

        self.assertTrue((self.target / ".claude/commands/plan.md").read_text().startswith("## shared acme"))

    def test_destination_may_not_escape_target(self) -> None:
        self.write(self.mold, "mold.yaml", MOLD_YAML.replace(".claude/commands", "../outside"))
        with self.assertRaisesRegex(ResolutionError, "escapes the target directory"):
            cast(MoldReader(self.mold), self.options(overrides=["org=acme"]))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
