import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi import HTTPException

from pmdash import config
from pmdash.models import FeatureCreate, FeatureUpdate
from pmdash.routers import features as features_router
from pmdash.routers import roadmap as roadmap_router
from pmdash.services.feature_registry import FeatureRegistry


def _list(**filters):
    params = {"status": None, "priority": None, "category": None, "phase": None, "tag": None, "search": None}
    params.update(filters)
    return features_router.list_features(**params)


def _roadmap(format: str = "json", group_by: str = "status", **flags):
    return roadmap_router.get_roadmap(
        format=format,
        group_by=group_by,
        include_completed=flags.get("include_completed", False),
        include_blocked=flags.get("include_blocked", False),
        include_dependencies=flags.get("include_dependencies", False),
    )


class FeaturesRouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "features.csv"
        registry = FeatureRegistry(self.path, create_if_missing=True)
        registry.set_project("Widgets", "WDG")
        registry.add_feature(FeatureCreate(id="db", name="Database", status="completed", tags=["infra"]))
        registry.add_feature(FeatureCreate(id="api", name="API", dependencies=["db"], category="core"))
        registry.add_feature(FeatureCreate(id="ui", name="UI", dependencies=["api"], category="core"))
        self.patcher = patch.object(config, "REGISTRY_FILE", self.path)
        self.patcher.start()

    def tearDown(self) -> None:
        self.patcher.stop()
        self.tmpdir.cleanup()

    async def test_list_and_filter(self) -> None:
        self.assertEqual([f.id for f in await _list()], ["db", "api", "ui"])
        self.assertEqual([f.id for f in await _list(category="core", search="ap")], ["api"])
        self.assertEqual([f.id for f in await _list(tag=["infra"])], ["db"])

    async def test_get_feature(self) -> None:
        self.assertEqual((await features_router.get_feature("api")).number, 2)
        with self.assertRaises(HTTPException) as ctx:
            await features_router.get_feature("missing")
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_create_feature(self) -> None:
        created = await features_router.create_feature(FeatureCreate(id="docs", name="Docs"))
        self.assertEqual(created.number, 4)

        with self.assertRaises(HTTPException) as ctx:
            await features_router.create_feature(FeatureCreate(id="docs", name="Again"))
        self.assertEqual(ctx.exception.status_code, 409)

        with self.assertRaises(HTTPException) as ctx:
            await features_router.create_feature(FeatureCreate(id="PROJECT_META", name="Nope"))
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_create_feature_with_cycle_logs_warning(self) -> None:
        await features_router.update_feature("db", FeatureUpdate(dependencies=["loop"]))
        with self.assertLogs("pmdash.features", level="WARNING"):
            await features_router.create_feature(FeatureCreate(id="loop", name="Loop", dependencies=["ui"]))

        graph = await features_router.get_dependency_graph()
        self.assertEqual(graph["cycles"], ["db", "api", "ui", "loop"])

    async def test_update_and_delete(self) -> None:
        updated = await features_router.update_feature("ui", FeatureUpdate(status="in-progress"))
        self.assertEqual(updated.status, "in-progress")
        self.assertEqual(FeatureRegistry(self.path).get_feature("ui").status, "in-progress")

        with self.assertRaises(HTTPException) as ctx:
            await features_router.update_feature("missing", FeatureUpdate(status="blocked"))
        self.assertEqual(ctx.exception.status_code, 404)

        with self.assertRaises(HTTPException) as ctx:
            await features_router.update_feature("ui", FeatureUpdate(tags=["q3;q4"]))
        self.assertEqual(ctx.exception.status_code, 400)

        self.assertEqual(await features_router.delete_feature("ui"), {"deleted": "ui"})
        with self.assertRaises(HTTPException) as ctx:
            await features_router.delete_feature("ui")
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_graph_ready_and_cycle(self) -> None:
        graph = await features_router.get_dependency_graph()
        self.assertEqual(graph, {"graph": {"db": [], "api": ["db"], "ui": ["api"]}, "cycles": []})

        self.assertEqual([f.id for f in await features_router.get_ready_features()], ["api"])

        cycle = await features_router.get_feature_cycle("api")
        self.assertEqual(cycle, {"featureId": "api", "hasCycle": False, "dependents": ["ui"]})

    async def test_missing_registry_is_404(self) -> None:
        with patch.object(config, "REGISTRY_FILE", Path(self.tmpdir.name) / "none.csv"):
            with self.assertRaises(HTTPException) as ctx:
                await _list()
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_malformed_registry_is_500(self) -> None:
        self.path.write_text("id,name\nx,y\n", encoding="utf-8")
        with self.assertLogs("pmdash.features", level="ERROR"):
            with self.assertRaises(HTTPException) as ctx:
                await features_router.get_ready_features()
        self.assertEqual(ctx.exception.status_code, 500)


class RoadmapRouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "features.csv"
        registry = FeatureRegistry(self.path, create_if_missing=True)
        registry.set_project("Widgets", "WDG")
        registry.add_feature(FeatureCreate(id="db", name="Database", status="completed"))
        registry.add_feature(FeatureCreate(id="api", name="API"))
        self.patcher = patch.object(config, "REGISTRY_FILE", self.path)
        self.patcher.start()

    def tearDown(self) -> None:
        self.patcher.stop()
        self.tmpdir.cleanup()

    async def test_json(self) -> None:
        response = await _roadmap("json")
        self.assertEqual(response.media_type, "application/json")
        self.assertEqual(json.loads(response.body)["stats"]["completionPercentage"], 50)

    async def test_markdown_and_html(self) -> None:
        markdown = await _roadmap("markdown", include_completed=True)
        self.assertEqual(markdown.media_type, "text/markdown")
        self.assertIn("## ✅ Completed", markdown.body.decode("utf-8"))

        html = await _roadmap("html")
        self.assertEqual(html.media_type, "text/html")
        self.assertIn("<h1>Widgets</h1>", html.body.decode("utf-8"))

    async def test_bad_options_are_400(self) -> None:
        for kwargs in ({"format": "pdf"}, {"format": "markdown", "group_by": "owner"}):
            with self.subTest(**kwargs):
                with self.assertRaises(HTTPException) as ctx:
                    await _roadmap(**kwargs)
                self.assertEqual(ctx.exception.status_code, 400)


if __name__ == "__main__":
    unittest.main()
