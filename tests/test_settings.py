import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from mapclaim.claims import REMOVE_COLOR, REMOVE_TEAM
from mapclaim.settings import SettingsError, load_settings, settings_from_mapping


class SettingsTests(unittest.TestCase):
    def _write(self, payload) -> Path:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        path = Path(tmp.name) / "ServerSettings.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_load_settings(self) -> None:
        path = self._write(
            {
                "mapImage": "maps/world.png",
                "Teams": {"Red": {"color": "#ff0000"}, "Blue": {"color": "#0000ff"}},
                "adminPassword": "hunter2",
                "whiteThreshold": 240,
                "pollInterval": 5,
            }
        )
        settings = load_settings(path)
        self.assertEqual(settings.white_threshold, 240)
        self.assertEqual(settings.alpha_threshold, 0)
        self.assertEqual(settings.poll_interval, 5.0)
        self.assertEqual(settings.saved_recovery_radius, 80)
        self.assertEqual(settings.map_path, path.resolve().parent / "maps" / "world.png")
        self.assertEqual(settings.team_color("Red"), "#ff0000")
        self.assertEqual(settings.team_color(REMOVE_TEAM), REMOVE_COLOR)
        self.assertIsNone(settings.team_color("Green"))
        self.assertEqual(
            settings.team_options(),
            [(REMOVE_TEAM, "Remove Claim"), ("Red", "Red"), ("Blue", "Blue")],
        )

    def test_no_teams_means_no_options(self) -> None:
        settings = settings_from_mapping({})
        self.assertEqual(settings.team_options(), [])
        self.assertIsNone(settings.map_path)

    def test_public_dict_hides_password(self) -> None:
        settings = settings_from_mapping({"adminPassword": "pw", "Teams": {"Red": "#f00"}})
        public = settings.to_public_dict()
        self.assertNotIn("adminPassword", public)
        self.assertNotIn("pw", json.dumps(public))
        self.assertEqual(public["Teams"], {"Red": {"color": "#f00"}})

    def test_invalid_values(self) -> None:
        with self.assertRaises(SettingsError):
            settings_from_mapping({"Teams": {"Red": {"color": "crimson"}}})
        with self.assertRaises(SettingsError):
            settings_from_mapping({"Teams": ["Red"]})
        with self.assertRaises(SettingsError):
            settings_from_mapping({"whiteThreshold": "high"})

    def test_missing_or_malformed_file(self) -> None:
        with self.assertRaises(SettingsError):
            load_settings("/nonexistent/ServerSettings.json")
        path = self._write([1, 2])
        with self.assertRaises(SettingsError):
            load_settings(path)
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(SettingsError):
            load_settings(path)

    def test_database_path_env_override(self) -> None:
        settings = settings_from_mapping({"dbPath": "data/claims.db"}, base_dir=Path("/srv/map"))
        with mock.patch.dict(os.environ, {}, clear=False):
            os.environ.pop("MAPCLAIM_DB_PATH", None)
            self.assertEqual(settings.database_path, Path("/srv/map/data/claims.db"))
        with mock.patch.dict(os.environ, {"MAPCLAIM_DB_PATH": "/tmp/other.db"}):
            self.assertEqual(settings.database_path, Path("/tmp/other.db"))


if __name__ == "__main__":
    unittest.main()
