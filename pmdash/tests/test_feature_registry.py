import tempfile
import unittest
from pathlib import Path

from pmdash.models import FeatureCreate, FeatureUpdate
from pmdash.services.feature_registry import (
    CSV_COLUMNS,
    PROJECT_META_ID,
    DuplicateFeatureError,
    FeatureRegistry,
    RegistryFormatError,
)


class FeatureRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "features.csv"

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _registry(self) -> FeatureRegistry:
        registry = FeatureRegistry(self.path, create_if_missing=True)
        registry.set_project("Widgets", "WDG", "Widget platform")
        return registry

    def _add(self, registry: FeatureRegistry, feature_id: str, **fields):
        return registry.add_feature(FeatureCreate(id=feature_id, name=feature_id.title(), **fields))

    def test_missing_file_raises_unless_created(self) -> None:
        with self.assertRaises(FileNotFoundError):
            FeatureRegistry(self.path)
        FeatureRegistry(self.path, create_if_missing=True)
        self.assertTrue(self.path.exists())

    def test_numbers_are_never_reused(self) -> None:
        registry = self._registry()
        self.assertEqual([self._add(registry, name).number for name in ("a", "b", "c")], [1, 2, 3])

        registry.delete_feature("b")
        self.assertEqual(self._add(registry, "d").number, 4)

        reloaded = FeatureRegistry(self.path)
        self.assertEqual(self._add(reloaded, "e").number, 5)

    def test_deleting_highest_number_survives_reload(self) -> None:
        registry = self._registry()
        for name in ("a", "b", "c"):
            self._add(registry, name)
        registry.delete_feature("c")

        reloaded = FeatureRegistry(self.path)

        self.assertEqual(self._add(reloaded, "d").number, 4)

    def test_round_trip_preserves_fields(self) -> None:
        registry = self._registry()
        self._add(
            registry,
            "auth",
            description='Login, with "quotes"',
            category="core",
            priority="P0",
            status="in-progress",
            dependencies=["db", "api"],
            tags=["security", "mvp"],
            notes="multi\nline",
        )

        feature = FeatureRegistry(self.path).get_feature("auth")

        self.assertEqual(feature.description, 'Login, with "quotes"')
        self.assertEqual(feature.dependencies, ["db", "api"])
        self.assertEqual(feature.tags, ["security", "mvp"])
        self.assertEqual(feature.priority, "P0")
        self.assertEqual(feature.notes, "multi\nline")
        self.assertEqual(FeatureRegistry(self.path).project_info().code, "WDG")

    def test_written_header_and_project_row(self) -> None:
        self._registry()
        lines = self.path.read_text(encoding="utf-8").splitlines()
        self.assertEqual(lines[0], ",".join(CSV_COLUMNS))
        self.assertTrue(lines[1].startswith(PROJECT_META_ID))

    def test_add_rejects_duplicates_and_reserved_ids(self) -> None:
        registry = self._registry()
        self._add(registry, "auth")
        with self.assertRaises(DuplicateFeatureError):
            self._add(registry, "auth")
        with self.assertRaises(ValueError):
            registry.add_feature({"id": PROJECT_META_ID, "name": "x"})
        with self.assertRaises(ValueError):
            registry.add_feature({"id": "  ", "name": "x"})

    def test_update_merges_and_keeps_identity(self) -> None:
        registry = self._registry()
        self._add(registry, "auth")

        updated = registry.update_feature("auth", {"status": "completed", "number": 99, "id": "other"})

        self.assertEqual(updated.status, "completed")
        self.assertEqual(updated.number, 1)
        self.assertEqual(updated.id, "auth")
        self.assertIsNone(registry.update_feature("missing", FeatureUpdate(status="blocked")))
        with self.assertRaises(ValueError):
            registry.update_feature("auth", {"colour": "blue"})

    def test_list_entries_with_separator_are_rejected(self) -> None:
        registry = self._registry()
        with self.assertRaises(ValueError):
            self._add(registry, "auth", tags=["q3;q4"])
        self.assertIsNone(registry.get_feature("auth"))

        self._add(registry, "auth", tags=["q3"])
        with self.assertRaises(ValueError):
            registry.update_feature("auth", {"dependencies": ["x;y"]})
        with self.assertRaises(ValueError):
            registry.update_feature("auth", FeatureUpdate(blocks=["a;b"]))

        reloaded = FeatureRegistry(self.path).get_feature("auth")
        self.assertEqual((reloaded.tags, reloaded.dependencies, reloaded.blocks), (["q3"], [], []))

    def test_unknown_priority_is_rejected(self) -> None:
        registry = self._registry()
        with self.assertRaises(ValueError):
            self._add(registry, "auth", priority="urgent")
        self._add(registry, "auth", priority="P3")
        with self.assertRaises(ValueError):
            registry.update_feature("auth", {"priority": "P9"})
        self.assertEqual(registry.update_feature("auth", {"priority": "P0"}).priority, "P0")

    def test_returned_features_are_copies(self) -> None:
        registry = self._registry()
        feature = self._add(registry, "auth", tags=["a"])
        feature.tags.append("mutated")
        self.assertEqual(registry.get_feature("auth").tags, ["a"])

    def test_filters(self) -> None:
        registry = self._registry()
        self._add(registry, "auth", category="core", tags=["security"], description="Login flow")
        self._add(registry, "billing", category="payments", status="completed", phase="2")
        self._add(registry, "search", category="core", priority="P1")

        self.assertEqual([f.id for f in registry.filter_features(category="core")], ["auth", "search"])
        self.assertEqual([f.id for f in registry.filter_features(tags=["security", "nope"])], ["auth"])
        self.assertEqual([f.id for f in registry.filter_features(search_term="LOGIN")], ["auth"])
        self.assertEqual([f.id for f in registry.filter_features(category="core", priority="P1")], ["search"])
        self.assertEqual([f.id for f in registry.by_status("completed")], ["billing"])

    def test_cycles(self) -> None:
        registry = self._registry()
        self._add(registry, "a", dependencies=["b"])
        self._add(registry, "b", dependencies=["a"])
        self._add(registry, "x", dependencies=["y"])
        self._add(registry, "y", dependencies=["z"])
        self._add(registry, "z")
        self._add(registry, "self", dependencies=["self"])
        self._add(registry, "feeds", dependencies=["a"])
        self._add(registry, "dangling", dependencies=["ghost"])

        self.assertTrue(registry.has_circular_dependency("a"))
        self.assertTrue(registry.has_circular_dependency("b"))
        self.assertFalse(registry.has_circular_dependency("x"))
        self.assertTrue(registry.has_circular_dependency("self"))
        self.assertTrue(registry.has_circular_dependency("feeds"))
        self.assertFalse(registry.has_circular_dependency("dangling"))
        self.assertFalse(registry.has_circular_dependency("unknown"))
        self.assertEqual(registry.find_cycles(), ["a", "b", "self", "feeds"])
        self.assertEqual(registry.dependents("a"), ["b", "feeds"])

    def test_ready_features(self) -> None:
        registry = self._registry()
        self._add(registry, "db", status="completed")
        self._add(registry, "api", dependencies=["db"])
        self._add(registry, "ui", dependencies=["api"])
        self._add(registry, "docs", dependencies=["ghost"])
        self._add(registry, "ops", status="in-progress")

        self.assertEqual([f.id for f in registry.ready_features()], ["api", "docs"])

    def test_malformed_csv(self) -> None:
        cases = {
            "missing columns": "id,name\nauth,Auth\n",
            "bad number": ",".join(CSV_COLUMNS) + "\nauth,one,Auth,,,,,,,,,,,,,\n",
            "duplicate id": ",".join(CSV_COLUMNS) + "\nauth,1,Auth,,,,,,,,,,,,,\nauth,2,Auth,,,,,,,,,,,,,\n",
            "duplicate number": ",".join(CSV_COLUMNS) + "\na,1,A,,,,,,,,,,,,,\nb,1,B,,,,,,,,,,,,,\n",
        }
        for label, text in cases.items():
            self.path.write_text(text, encoding="utf-8")
            with self.subTest(label):
                with self.assertRaises(RegistryFormatError):
                    FeatureRegistry(self.path)
        self.assertTrue(issubclass(RegistryFormatError, ValueError))

    def test_columns_may_appear_in_any_order(self) -> None:
        header = list(reversed(CSV_COLUMNS))
        row = {column: "" for column in header}
        row.update({"id": "auth", "number": "3", "name": "Auth", "dependencies": "db;api"})
        self.path.write_text(
            ",".join(header) + "\n" + ",".join(row[column] for column in header) + "\n",
            encoding="utf-8",
        )

        registry = FeatureRegistry(self.path)

        self.assertEqual(registry.get_feature("auth").dependencies, ["db", "api"])
        self.assertEqual(registry.next_number(), 4)


if __name__ == "__main__":
    unittest.main()
