from __future__ import annotations

from pathlib import Path
import tempfile
import textwrap
import unittest

from moldsmith.diagnostics import Severity
from moldsmith.manifest import Mold
from moldsmith.temper import temper, validate_mold


VALID_MOLD = """
apiVersion: v1
kind: mold
name: project-kit
version: 1.0.0
requires:
  moldsmith: ">=0.1.0"
flux:
  - name: org
    type: string
    required: true
dependencies:
  - ingot: header
    version: ^1.0.0
output:
  commands: .claude/commands
"""


class TemperTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def write(self, relative: str, text: str) -> None:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text).lstrip())

    def messages(self, severity: Severity) -> list[str]:
        result = temper(self.root)
        return [item.message for item in result.diagnostics if item.severity is severity]

    def test_valid_mold(self) -> None:
        self.write("mold.yaml", VALID_MOLD)
        self.write("commands/hello.md", 'Hello {{org}}\n{{ingot "header"}}\n')
        self.write("ingots/header.md", "# {{org}}")

        result = temper(self.root)

        self.assertFalse(result.has_errors(), result.diagnostics)
        self.assertEqual((result.kind, result.name, result.version), ("mold", "project-kit", "1.0.0"))
        self.assertEqual(result.warnings(), [])

    def test_missing_manifest(self) -> None:
        result = temper(self.root)
        self.assertTrue(result.has_errors())
        self.assertEqual([item.message for item in result.errors()], ["no mold.yaml or ingot.yaml found"])
        self.assertEqual(result.kind, "")

    def test_field_errors_are_all_reported(self) -> None:
        self.write(
            "mold.yaml",
            """
            kind: ingot
            name: broken
            version: v1
            requires:
              moldsmith: latest
            flux:
              - name: count
                type: float
              - type: string
            dependencies:
              - version: "1.0"
            """,
        )

        errors = self.messages(Severity.ERROR)

        self.assertEqual(
            errors,
            [
                "apiVersion is required",
                "kind must be \"mold\", got 'ingot'",
                "version 'v1' is not valid semver",
                "requires.moldsmith 'latest' is not a valid version constraint",
                "flux[0].type 'float' is not valid (allowed: string, bool, int, list, select)",
                "flux[1].name is required",
                "dependencies[0].ingot is required",
                "dependencies[0].version '1.0' is not a valid version constraint",
            ],
        )

    def test_unparsable_manifest_still_checks_documents(self) -> None:
        self.write("mold.yaml", "name: [unclosed\n")
        self.write("commands/bad.md", "{{if .x}}")

        result = temper(self.root)

        files = [item.file for item in result.errors()]
        self.assertEqual(files, ["mold.yaml", "commands/bad.md"])
        self.assertTrue(result.errors()[0].message.startswith("failed to parse mold.yaml"))

    def test_template_syntax_errors(self) -> None:
        self.write("mold.yaml", VALID_MOLD)
        self.write("commands/good.md", "{{org}}")
        self.write("commands/bad.md", "text\n{{range .items}}")
        self.write("commands/notes.txt", "{{if}}")

        result = temper(self.root)

        self.assertEqual(len(result.errors()), 1)
        error = result.errors()[0]
        self.assertEqual(error.file, "commands/bad.md")
        self.assertTrue(error.message.startswith("template syntax error: commands/bad.md:2"))

    def test_missing_output_source(self) -> None:
        self.write("mold.yaml", VALID_MOLD.replace("commands: .claude/commands", "skills: .claude/skills"))
        self.write("commands/hello.md", "hi")

        errors = temper(self.root).errors()

        self.assertEqual(len(errors), 1)
        self.assertIn("'skills' does not exist", errors[0].message)
        self.assertEqual(errors[0].file, "mold.yaml")

    def test_malformed_output_value(self) -> None:
        self.write("mold.yaml", VALID_MOLD.replace("commands: .claude/commands", "commands:\n    dest: 3"))
        self.write("commands/hello.md", "hi")

        errors = [item.message for item in temper(self.root).errors()]

        self.assertEqual(len(errors), 1)
        self.assertIn("dest must be a string", errors[0])

    def test_schema_file_duplicates_warn_and_are_checked(self) -> None:
        self.write("mold.yaml", VALID_MOLD)
        self.write("commands/hello.md", "hi")
        self.write("flux.schema.yaml", "- name: org\n  type: string\n- name: size\n  type: huge\n")

        result = temper(self.root)

        self.assertEqual(
            [(item.file, item.message) for item in result.errors()],
            [("flux.schema.yaml", "flux[1].type 'huge' is not valid (allowed: string, bool, int, list, select)")],
        )
        self.assertEqual(len(result.warnings()), 1)
        self.assertIn("schema file takes precedence", result.warnings()[0].message)

    def test_nested_ingot_manifest_files_are_checked(self) -> None:
        self.write("mold.yaml", VALID_MOLD)
        self.write("commands/hello.md", "hi")
        self.write("ingots/guide/ingot.yaml", "files:\n  - intro.md\n  - missing.md\n")
        self.write("ingots/guide/intro.md", "intro")

        errors = temper(self.root).errors()

        self.assertEqual([(item.file, item.message) for item in errors], [
            ("ingots/guide/ingot.yaml", "referenced file not found: ingots/guide/missing.md"),
        ])

    def test_ingot_package(self) -> None:
        self.write(
            "ingot.yaml",
            """
            apiVersion: v1
            kind: ingot
            name: header
            version: 1.0.0
            files:
              - header.md
              - absent.md
            """,
        )
        self.write("header.md", "# {{title}}")

        result = temper(self.root)

        self.assertEqual((result.kind, result.name), ("ingot", "header"))
        self.assertEqual([item.message for item in result.errors()], ["referenced file not found: absent.md"])

    def test_checks_do_not_write_anything(self) -> None:
        self.write("mold.yaml", VALID_MOLD)
        self.write("commands/hello.md", "hi")
        before = sorted(path.relative_to(self.root) for path in self.root.rglob("*"))

        temper(self.root)

        self.assertEqual(sorted(path.relative_to(self.root) for path in self.root.rglob("*")), before)


class ValidateMoldTests(unittest.TestCase):
    def test_semver_variants(self) -> None:
        for version in ("0.1.0", "1.0.0-beta.1", "2.3.4+build.7"):
            mold = Mold(api_version="v1", kind="mold", name="m", version=version)
            self.assertEqual(validate_mold(mold), [], version)
        for version in ("1.0", "01.0.0", "1.0.0-"):
            mold = Mold(api_version="v1", kind="mold", name="m", version=version)
            self.assertEqual(len(validate_mold(mold)), 1, version)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
