from __future__ import annotations

import unittest

from moldsmith.errors import ManifestError, OutputSourceError
from moldsmith.manifest import (
    OutputAbsent,
    OutputExplicit,
    OutputParent,
    OutputTarget,
    parse_output_spec,
)
from moldsmith.output import ResolvedFile, is_reserved, resolve_files


SOURCES = [
    "mold.yaml",
    "flux.yaml",
    "flux.schema.yaml",
    "README.md",
    ".hidden",
    ".github/workflows/ci.yml",
    "ingots/header.md",
    "commands/a.md",
    "commands/special.md",
    "skills/review/SKILL.md",
]


def mapping(resolved: list[ResolvedFile]) -> dict[str, tuple[str, bool]]:
    return {item.source: (item.destination, item.process) for item in resolved}


class ParseOutputSpecTests(unittest.TestCase):
    def test_shapes(self) -> None:
        self.assertEqual(parse_output_spec(None), OutputAbsent())
        self.assertEqual(parse_output_spec(".claude"), OutputParent(".claude"))
        spec = parse_output_spec({"commands": ".claude/commands", "docs": {"dest": "d", "process": False}})
        self.assertEqual(
            spec,
            OutputExplicit(
                {
                    "commands": OutputTarget(".claude/commands", True),
                    "docs": OutputTarget("d", False),
                }
            ),
        )

    def test_invalid_shapes(self) -> None:
        with self.assertRaisesRegex(ManifestError, "output must be a string or mapping, got int"):
            parse_output_spec(3)
        with self.assertRaisesRegex(ManifestError, "dest must be a string"):
            parse_output_spec({"a": {"dest": 1}})
        with self.assertRaisesRegex(ManifestError, "process must be a boolean"):
            parse_output_spec({"a": {"dest": "x", "process": "no"}})
        with self.assertRaisesRegex(ManifestError, "value must be a string or mapping"):
            parse_output_spec({"a": ["x"]})


class ReservedTests(unittest.TestCase):
    def test_reserved_paths(self) -> None:
        for source in ("mold.yaml", "flux.schema.yaml", ".hidden", ".github/x.yml", "ingots/a.md"):
            self.assertTrue(is_reserved(source), source)
        for source in ("README.md", "commands/a.md", "docs/ingots/a.md"):
            self.assertFalse(is_reserved(source), source)


class ResolveFilesTests(unittest.TestCase):
    def test_absent_maps_identically(self) -> None:
        resolved = resolve_files(OutputAbsent(), SOURCES)
        self.assertEqual(
            resolved,
            [
                ResolvedFile("README.md", "README.md", True),
                ResolvedFile("commands/a.md", "commands/a.md", True),
                ResolvedFile("commands/special.md", "commands/special.md", True),
                ResolvedFile("skills/review/SKILL.md", "skills/review/SKILL.md", True),
            ],
        )

    def test_parent_reroots_directories_only(self) -> None:
        resolved = mapping(resolve_files(OutputParent(".claude"), SOURCES))
        self.assertEqual(resolved["commands/a.md"], (".claude/commands/a.md", True))
        self.assertEqual(resolved["skills/review/SKILL.md"], (".claude/skills/review/SKILL.md", True))
        self.assertEqual(resolved["README.md"], ("README.md", True))
        self.assertNotIn("ingots/header.md", resolved)

    def test_parent_single_file(self) -> None:
        resolved = resolve_files(OutputParent(".claude"), ["commands/a.md"])
        self.assertEqual(resolved, [ResolvedFile("commands/a.md", ".claude/commands/a.md", True)])

    def test_explicit_directory_and_file_keys(self) -> None:
        spec = parse_output_spec(
            {
                "commands": ".claude/commands",
                "skills": {"dest": ".claude/skills", "process": False},
                "commands/special.md": {"dest": "docs/special.md", "process": False},
            }
        )

        resolved = mapping(resolve_files(spec, SOURCES))

        self.assertEqual(
            resolved,
            {
                "README.md": ("README.md", True),
                "commands/a.md": (".claude/commands/a.md", True),
                "commands/special.md": ("docs/special.md", False),
                "skills/review/SKILL.md": (".claude/skills/review/SKILL.md", False),
            },
        )

    def test_file_key_beats_enclosing_directory_key_regardless_of_order(self) -> None:
        spec = OutputExplicit(
            {
                "commands/a.md": OutputTarget("single.md"),
                "commands": OutputTarget("all"),
            }
        )
        resolved = mapping(resolve_files(spec, ["commands/a.md", "commands/b.md"]))
        self.assertEqual(resolved, {"commands/a.md": ("single.md", True), "commands/b.md": ("all/b.md", True)})

    def test_longest_directory_key_wins(self) -> None:
        spec = parse_output_spec({"docs": "out", "docs/api": {"dest": "api", "process": False}})
        resolved = mapping(resolve_files(spec, ["docs/index.md", "docs/api/ref.md"]))
        self.assertEqual(resolved, {"docs/api/ref.md": ("api/ref.md", False), "docs/index.md": ("out/index.md", True)})

    def test_root_key_maps_every_file(self) -> None:
        spec = OutputExplicit({".": OutputTarget(".claude")})
        resolved = mapping(resolve_files(spec, ["README.md", "commands/a.md", "mold.yaml", "ingots/header.md"]))
        self.assertEqual(
            resolved,
            {"README.md": (".claude/README.md", True), "commands/a.md": (".claude/commands/a.md", True)},
        )

    def test_file_key_beats_root_key(self) -> None:
        spec = parse_output_spec({".": "out", "commands/a.md": "single.md"})
        resolved = mapping(resolve_files(spec, ["commands/a.md", "commands/b.md"]))
        self.assertEqual(resolved, {"commands/a.md": ("single.md", True), "commands/b.md": ("out/commands/b.md", True)})

    def test_explicit_keys_may_name_reserved_sources(self) -> None:
        spec = parse_output_spec({"ingots/header.md": "partials/header.md"})
        resolved = mapping(resolve_files(spec, SOURCES))
        self.assertEqual(resolved["ingots/header.md"], ("partials/header.md", True))

    def test_missing_source_is_an_error(self) -> None:
        spec = parse_output_spec({"workflows": ".github/workflows"})
        with self.assertRaises(OutputSourceError) as caught:
            resolve_files(spec, SOURCES)
        self.assertEqual(caught.exception.source, "workflows")

    def test_output_is_sorted_by_source(self) -> None:
        resolved = resolve_files(OutputAbsent(), ["z/file.md", "a/file.md", "m.md"])
        self.assertEqual([item.source for item in resolved], ["a/file.md", "m.md", "z/file.md"])

    def test_sources_are_normalized(self) -> None:
        resolved = resolve_files(OutputAbsent(), ["./commands/a.md", "commands\\b.md"])
        self.assertEqual([item.source for item in resolved], ["commands/a.md", "commands/b.md"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
