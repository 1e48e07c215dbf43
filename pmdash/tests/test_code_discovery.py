import json
import tempfile
import unittest
from pathlib import Path

from pmdash.models import DiscoveredFeature, DiscoveryResult
from pmdash.parsers.code_discovery import (
    analyze_manifest,
    analyze_python,
    analyze_script,
    comment_above,
    discover_features,
    path_to_feature_name,
    slugify,
    to_registry_features,
)

ROUTES_TSX = """import { Route } from "react-router-dom";

// Edit a single user
<Route path="/users/:id/edit" element={<UserEdit />} />
<Route path="/" component={Home} />
"""

SERVER_JS = """const app = express();

/**
 * List all orders
 */
app.get('/api/orders', listOrders);
router.post("/api/orders", createOrder);
"""

COMPONENT_TSX = """export default function UserProfile() {
  return null;
}
export function App() {}
"""

API_PY = """from fastapi import APIRouter

router = APIRouter()


# Fetch one user
@router.get("/api/users/{user_id}")
async def get_user(user_id: str):
    return {}


@app.route("/health")
def health():
    return "ok"
"""

MANIFEST = {
    "name": "shop",
    "scripts": {"build": "vite build"},
    "dependencies": {"express": "^4", "react-router-dom": "^6"},
    "devDependencies": {"jest": "^29", "react-router": "^6"},
}


class HelperTests(unittest.TestCase):
    def test_path_to_feature_name(self) -> None:
        self.assertEqual(path_to_feature_name("/users/:id/edit"), "Users Item Edit")
        self.assertEqual(path_to_feature_name("/api/users/{user_id}"), "Api Users Item")
        self.assertEqual(path_to_feature_name("/order-history"), "Order History")
        self.assertEqual(path_to_feature_name("/"), "Home")

    def test_slugify(self) -> None:
        self.assertEqual(slugify("Route: Users Item Edit!"), "route-users-item-edit")

    def test_comment_above(self) -> None:
        lines = ["/**", " * List all", " * orders", " */", "app.get('/x')"]
        self.assertEqual(comment_above(lines, 4), "List all orders")
        self.assertEqual(comment_above(["# hello", "x"], 1), "hello")
        self.assertEqual(comment_above(["x = 1", "y"], 1), "")
        self.assertEqual(comment_above(["first"], 0), "")


class AnalyzerTests(unittest.TestCase):
    def test_react_routes(self) -> None:
        found = analyze_script(ROUTES_TSX, "src/routes.tsx")

        self.assertEqual([f.name for f in found], ["Users Item Edit", "Home"])
        self.assertEqual(found[0].type, "route")
        self.assertEqual(found[0].confidence, 90)
        self.assertEqual(found[0].line, 4)
        self.assertEqual(found[0].description, "Edit a single user")
        self.assertEqual(found[1].metadata["component"], "Home")

    def test_express_handlers(self) -> None:
        found = analyze_script(SERVER_JS, "server.js")

        self.assertEqual([(f.type, f.metadata["method"]) for f in found], [("api", "GET"), ("api", "POST")])
        self.assertEqual(found[0].name, "Api Orders")
        self.assertEqual(found[0].description, "List all orders")
        self.assertEqual(found[0].confidence, 95)

    def test_components_skip_generic_names(self) -> None:
        found = analyze_script(COMPONENT_TSX, "src/UserProfile.tsx")

        self.assertEqual([f.name for f in found], ["UserProfile"])
        self.assertEqual(found[0].confidence, 75)

    def test_python_handlers(self) -> None:
        found = analyze_python(API_PY, "app/api.py")

        self.assertEqual([f.name for f in found], ["Api Users Item", "Health"])
        self.assertEqual(found[0].metadata, {"path": "/api/users/{user_id}", "method": "GET"})
        self.assertEqual(found[0].description, "Fetch one user")
        self.assertEqual(found[1].metadata["method"], "GET")

    def test_manifest(self) -> None:
        found = analyze_manifest(json.dumps(MANIFEST), "package.json")

        self.assertEqual(
            [(f.type, f.name) for f in found],
            [
                ("script", "Script: build"),
                ("dependency", "REST API"),
                ("dependency", "Client-side Routing"),
                ("dependency", "Testing"),
            ],
        )
        self.assertEqual(found[0].description, "NPM script: vite build")
        self.assertEqual(found[0].confidence, 100)

    def test_invalid_manifest_is_skipped(self) -> None:
        with self.assertLogs("pmdash.discovery", level="WARNING"):
            self.assertEqual(analyze_manifest("{not json", "package.json"), [])


class DiscoveryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        for rel_path, text in {
            "src/routes.tsx": ROUTES_TSX,
            "src/UserProfile.tsx": COMPONENT_TSX,
            "server.js": SERVER_JS,
            "app/api.py": API_PY,
            "package.json": json.dumps(MANIFEST),
            "README.md": "<Route path=\"/ignored\" element={<X />} />\n",
            "node_modules/lib/index.js": "app.get('/vendor', x);\n",
        }.items():
            path = self.root / rel_path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_discover_features(self) -> None:
        result = discover_features(self.root)

        self.assertEqual(result.filesScanned, 5)
        self.assertEqual(
            result.byType,
            {"api": 4, "script": 1, "dependency": 3, "route": 2, "component": 1},
        )
        self.assertFalse(any(f.file.startswith("node_modules") for f in result.features))

    def test_discover_respects_exclude(self) -> None:
        result = discover_features(self.root, exclude=["*.py", "package.json"])
        self.assertEqual(set(result.byType), {"api", "route", "component"})

    def test_to_registry_features(self) -> None:
        drafts = to_registry_features(discover_features(self.root))

        ids = [draft.id for draft in drafts]
        self.assertIn("route-users-item-edit", ids)
        self.assertIn("dependency-rest-api", ids)
        self.assertNotIn("component-userprofile", ids)
        self.assertEqual(len(ids), len(set(ids)))
        draft = next(d for d in drafts if d.id == "route-users-item-edit")
        self.assertEqual(draft.status, "planned")
        self.assertEqual(draft.category, "route")
        self.assertEqual(draft.tags, ["discovered"])
        self.assertEqual(draft.notes, "Source: src/routes.tsx:4 (confidence 90)")

    def test_duplicate_slugs_collapse(self) -> None:
        result = DiscoveryResult(
            features=[
                DiscoveredFeature(name="Api Orders", type="api", file="a.js", line=1, confidence=95),
                DiscoveredFeature(name="Api Orders", type="api", file="b.js", line=9, confidence=95),
            ]
        )

        drafts = to_registry_features(result)

        self.assertEqual(len(drafts), 1)
        self.assertEqual(drafts[0].description, "Discovered api in a.js:1")
        self.assertEqual(to_registry_features(result, min_confidence=99), [])


if __name__ == "__main__":
    unittest.main()
