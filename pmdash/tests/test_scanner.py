import tempfile
import unittest
from pathlib import Path

from pmdash.project_config import ScanSettings
from pmdash.services.scanner import (
    ScanOptions,
    filter_findings,
    group_by_file,
    group_by_priority,
    options_from_settings,
    process_scan_results,
    scan,
    scan_file,
)


class ScannerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _write(self, rel_path: str, text: str) -> Path:
        path = self.root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def _write_app(self) -> None:
        self._write(
            "src/app.js",
            "const a = 1;\n\n// TODO: A\nconst b = 2;\nconst c = 3;\n\n// FIXME: B\n",
        )

    def test_end_to_end_scan_of_single_file(self) -> None:
        self._write_app()

        result = scan(self.root)

        self.assertEqual(len(result.todos), 2)
        self.assertEqual([f.line for f in result.todos], [3, 7])
        self.assertEqual([f.priority for f in result.todos], ["medium", "high"])
        self.assertEqual([f.content for f in result.todos], ["A", "B"])
        self.assertEqual(result.summary.totalTodos, 2)
        self.assertEqual(result.summary.filesScanned, 1)
        self.assertEqual(result.summary.byPriority, {"high": 1, "medium": 1, "low": 0})
        self.assertEqual(result.summary.byFile, {"src/app.js": 2})
        self.assertTrue(result.scanDate.endswith("Z"))

    def test_repeated_scans_give_same_hashes_in_same_order(self) -> None:
        self._write_app()
        self._write("docs/plan.md", "# Plan\n\n- [ ] Write tests\n")

        first = process_scan_results(scan(self.root))
        second = process_scan_results(scan(self.root))

        self.assertEqual([f.hash for f in first.todos], [f.hash for f in second.todos])
        self.assertEqual([f.id for f in first.todos], ["todo-1", "todo-2", "todo-3"])
        self.assertTrue(all(f.hash for f in first.todos))

    def test_missing_root_raises(self) -> None:
        with self.assertRaises(FileNotFoundError):
            scan(self.root / "nope")

    def test_gitignore_and_builtin_excludes(self) -> None:
        self._write_app()
        self._write(".gitignore", "generated/\n")
        self._write("generated/out.js", "// TODO: generated\n")
        self._write("node_modules/pkg/index.js", "// TODO: vendored\n")

        result = scan(self.root)
        self.assertEqual(set(result.summary.byFile), {"src/app.js"})

        unfiltered = scan(self.root, ScanOptions(use_gitignore=False))
        self.assertEqual(set(unfiltered.summary.byFile), {"src/app.js", "generated/out.js"})

    def test_include_and_exclude_patterns(self) -> None:
        self._write_app()
        self._write("docs/plan.md", "- [ ] Write tests\n")

        only_docs = scan(self.root, ScanOptions(include=["docs/**"]))
        self.assertEqual(set(only_docs.summary.byFile), {"docs/plan.md"})

        no_docs = scan(self.root, ScanOptions(exclude=["docs/"]))
        self.assertEqual(set(no_docs.summary.byFile), {"src/app.js"})

    def test_exclude_archives(self) -> None:
        self._write_app()
        self._write("archive/old-plan.md", "- [ ] Forgotten task\n")

        result = scan(self.root, ScanOptions(exclude_archives=True))

        self.assertEqual(set(result.summary.byFile), {"src/app.js"})

    def test_exclude_completed_drops_checked_off_items(self) -> None:
        self._write("notes.md", "- [ ] Open task\n\n\n\n\n\n\n\n// TODO: ✅ already shipped\n")

        kept = scan(self.root, ScanOptions(exclude_completed=True))

        self.assertEqual([f.content for f in kept.todos], ["Open task"])

    def test_scan_file_skips_unreadable_paths(self) -> None:
        self.assertEqual(scan_file("missing.py", self.root / "missing.py", ScanOptions()), [])

    def test_grouping_and_filtering(self) -> None:
        self._write_app()
        findings = scan(self.root).todos

        self.assertEqual(list(group_by_file(findings)), ["src/app.js"])
        by_priority = group_by_priority(findings)
        self.assertEqual(len(by_priority["high"]), 1)
        self.assertEqual(by_priority["low"], [])
        self.assertEqual([f.content for f in filter_findings(findings, priority="high")], ["B"])
        self.assertEqual([f.content for f in filter_findings(findings, search_term="a")], ["A"])
        self.assertEqual(filter_findings(findings, file="other"), [])

    def test_options_from_settings_applies_overrides(self) -> None:
        settings = ScanSettings(exclude=["docs/"], excludeArchives=True, useGitignore=False)

        opts = options_from_settings(settings, exclude_completed=True, include=None)

        self.assertEqual(opts.exclude, ["docs/"])
        self.assertTrue(opts.exclude_archives)
        self.assertFalse(opts.use_gitignore)
        self.assertTrue(opts.exclude_completed)
        with self.assertRaises(TypeError):
            options_from_settings(settings, bogus=True)


if __name__ == "__main__":
    unittest.main()
