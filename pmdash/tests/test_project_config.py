import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

from pmdash import config
from pmdash.project_config import (
    ConfigError,
    ProjectConfig,
    load_project_config,
    registry_file_for,
    state_file_for,
    write_default_config,
)


class ProjectConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        self.path = self.root / "pmdash.yaml"

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_missing_and_empty_files_give_defaults(self) -> None:
        self.assertEqual(load_project_config(self.path), ProjectConfig())
        self.path.write_text("", encoding="utf-8")
        self.assertEqual(load_project_config(self.path).github.defaultLabels, ["auto-created"])

    def test_loads_values(self) -> None:
        self.path.write_text(
            "github:\n"
            "  owner: acme\n"
            "  repo: widgets\n"
            "  issueTitlePrefix: '[TODO]'\n"
            "labels:\n"
            "  TODO: [enhancement]\n"
            "scan:\n"
            "  exclude: ['*.min.js']\n"
            "  excludeArchives: true\n"
            "stateFile: var/state.json\n",
            encoding="utf-8",
        )

        project = load_project_config(self.path)

        self.assertEqual((project.github.owner, project.github.repo), ("acme", "widgets"))
        self.assertEqual(project.github.issueTitlePrefix, "[TODO]")
        self.assertEqual(project.labels, {"TODO": ["enhancement"]})
        self.assertEqual(project.scan.exclude, ["*.min.js"])
        self.assertTrue(project.scan.excludeArchives)
        self.assertTrue(project.scan.useGitignore)

    def test_malformed_files_raise(self) -> None:
        for text in ("github: [unclosed", "- just\n- a list\n", "scan:\n  include: 7\n"):
            self.path.write_text(text, encoding="utf-8")
            with self.subTest(text=text):
                with self.assertRaises(ConfigError):
                    load_project_config(self.path)

    def test_write_default_config(self) -> None:
        write_default_config(self.path, owner="acme", repo="widgets")

        data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        self.assertEqual(data["github"]["owner"], "acme")
        self.assertNotIn("token", data["github"])
        with self.assertRaises(FileExistsError):
            write_default_config(self.path)

    def test_path_precedence(self) -> None:
        project = ProjectConfig(stateFile="var/state.json", registryFile="plan/features.csv")
        other = self.root / "elsewhere"

        self.assertEqual(state_file_for(self.root, project, "/tmp/explicit.json"), Path("/tmp/explicit.json"))
        self.assertEqual(state_file_for(self.root, project), self.root / "var" / "state.json")
        self.assertEqual(registry_file_for(self.root, project), self.root / "plan" / "features.csv")
        self.assertEqual(state_file_for(other, ProjectConfig()), other / ".pmdash" / "state.json")
        self.assertEqual(registry_file_for(other, ProjectConfig()), other / "features.csv")

    def test_environment_defaults_apply_to_configured_root(self) -> None:
        env_state = self.root / "env-state.json"
        env_registry = self.root / "env-features.csv"
        with patch.object(config, "ROOT_PATH", self.root), patch.object(
            config, "STATE_FILE", env_state
        ), patch.object(config, "REGISTRY_FILE", env_registry):
            self.assertEqual(state_file_for(self.root, ProjectConfig()), env_state)
            self.assertEqual(registry_file_for(self.root, ProjectConfig()), env_registry)


if __name__ == "__main__":
    unittest.main()
