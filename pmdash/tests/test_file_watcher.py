import tempfile
import unittest
from pathlib import Path

from watchfiles import Change

from pmdash.services.file_watcher import TodoWatcher
from pmdash.services.scanner import ScanOptions
from pmdash.services.state_tracker import load_state, record_findings


class TodoWatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name).resolve()
        (self.root / "src").mkdir()
        (self.root / "src" / "a.py").write_text("# TODO: first\n# FIXME: second\n", encoding="utf-8")
        self.state_path = self.root / ".pmdash" / "state.json"
        self.reported: list = []
        self.watcher = TodoWatcher()
        self.watcher.configure(self.root, self.state_path, ScanOptions(exclude=["*.gen.py"]), on_scan=self.reported.append)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_classify_changes(self) -> None:
        changes = {
            (Change.modified, str(self.root / "src" / "a.py")),
            (Change.added, str(self.root / "docs" / "plan.md")),
            (Change.deleted, str(self.root / "src" / "old.py")),
            (Change.added, str(self.root / "node_modules" / "x" / "index.js")),
            (Change.added, str(self.root / "src" / "schema.gen.py")),
            (Change.modified, str(self.root / "logo.png")),
            (Change.modified, "/somewhere/else/b.py"),
        }

        self.assertEqual(self.watcher._classify_changes(changes), ["docs/plan.md", "src/a.py"])

    def test_classify_changes_honours_include(self) -> None:
        self.watcher.configure(self.root, self.state_path, ScanOptions(include=["src/**"]))
        changes = {
            (Change.modified, str(self.root / "src" / "a.py")),
            (Change.added, str(self.root / "docs" / "plan.md")),
            (Change.added, str(self.root / "tools" / "build.py")),
        }

        self.assertEqual(self.watcher._classify_changes(changes), ["src/a.py"])

    def test_process_changes_reports_only_unseen_findings(self) -> None:
        first = self.watcher.process_changes(["src/a.py"])
        self.assertEqual([f.type for f in first], ["TODO", "FIXME"])
        self.assertTrue(all(f.hash for f in first))
        self.assertFalse(self.state_path.exists())

        record_findings(self.state_path, first[:1])
        second = self.watcher.process_changes(["src/a.py"])

        self.assertEqual([f.type for f in second], ["FIXME"])
        self.assertEqual(self.watcher.last_new, second)
        self.assertEqual(len(self.reported), 2)

    def test_record_mode_persists_findings(self) -> None:
        self.watcher.configure(self.root, self.state_path, ScanOptions(), record=True)

        self.assertEqual(len(self.watcher.process_changes(["src/a.py"])), 2)
        self.assertEqual(self.watcher.process_changes(["src/a.py"]), [])
        self.assertEqual(len(load_state(self.state_path).processedTodos), 2)

    def test_unreadable_file_yields_nothing(self) -> None:
        self.assertEqual(self.watcher.process_changes(["src/missing.py"]), [])


class TodoWatcherLifecycleTests(unittest.IsolatedAsyncioTestCase):
    async def test_start_and_stop(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            watcher = TodoWatcher()
            await watcher.start(tmp, Path(tmp) / "state.json")
            self.assertTrue(watcher.is_running)

            await watcher.stop()

            self.assertFalse(watcher.is_running)

    async def test_missing_root(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            watcher = TodoWatcher()
            with self.assertRaises(FileNotFoundError):
                await watcher.start(Path(tmp) / "missing", Path(tmp) / "state.json")
            self.assertFalse(watcher.is_running)


if __name__ == "__main__":
    unittest.main()
