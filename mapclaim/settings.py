from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .claims import REMOVE_COLOR, REMOVE_TEAM, REMOVE_TEAM_LABEL, hex_to_rgba
from .overlay import PENDING_RECOVERY_RADIUS, SAVED_RECOVERY_RADIUS
from .raster import ALPHA_THRESHOLD, WHITE_THRESHOLD

SETTINGS_FILENAME = "ServerSettings.json"


class SettingsError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    map_image: Optional[str] = None
    teams: Dict[str, str] = field(default_factory=dict)
    admin_password: Optional[str] = None
    white_threshold: int = WHITE_THRESHOLD
    alpha_threshold: int = ALPHA_THRESHOLD
    pending_recovery_radius: float = PENDING_RECOVERY_RADIUS
    saved_recovery_radius: float = SAVED_RECOVERY_RADIUS
    poll_interval: float = 3.0
    db_path: str = "mapdata.db"
    base_dir: Path = Path(".")

    def team_color(self, team: Optional[str]) -> Optional[str]:
        if team == REMOVE_TEAM:
            return REMOVE_COLOR
        if team is None:
            return None
        return self.teams.get(team)

    def team_options(self) -> List[Tuple[str, str]]:
        if not self.teams:
            return []
        return [(REMOVE_TEAM, REMOVE_TEAM_LABEL)] + [(name, name) for name in self.teams]

    def resolve(self, relative: Optional[str]) -> Optional[Path]:
        if not relative:
            return None
        path = Path(relative)
        return path if path.is_absolute() else self.base_dir / path

    @property
    def map_path(self) -> Optional[Path]:
        return self.resolve(self.map_image)

    @property
    def database_path(self) -> Path:
        override = os.environ.get("MAPCLAIM_DB_PATH")
        if override:
            return Path(override)
        return self.resolve(self.db_path) or Path(self.db_path)

    def to_public_dict(self) -> Dict[str, Any]:
        """Settings as served to clients (no secrets)."""
        return {
            "mapImage": self.map_image,
            "Teams": {name: {"color": color} for name, color in self.teams.items()},
            "pollInterval": self.poll_interval,
        }


def _parse_teams(raw: Any) -> Dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SettingsError("'Teams' must be an object of {name: {color: '#rrggbb'}}")
    teams: Dict[str, str] = {}
    for name, entry in raw.items():
        color = entry.get("color") if isinstance(entry, dict) else entry
        if not isinstance(color, str):
            raise SettingsError(f"Team {name!r} has no color")
        try:
            hex_to_rgba(color)
        except ValueError as exc:
            raise SettingsError(f"Team {name!r}: {exc}") from exc
        teams[str(name)] = color
    return teams


def settings_from_mapping(payload: Mapping[str, Any], *, base_dir: Path = Path(".")) -> Settings:
    defaults = Settings()
    try:
        return Settings(
            map_image=payload.get("mapImage"),
            teams=_parse_teams(payload.get("Teams")),
            admin_password=payload.get("adminPassword"),
            white_threshold=int(payload.get("whiteThreshold", defaults.white_threshold)),
            alpha_threshold=int(payload.get("alphaThreshold", defaults.alpha_threshold)),
            pending_recovery_radius=float(
                payload.get("pendingRecoveryRadius", defaults.pending_recovery_radius)
            ),
            saved_recovery_radius=float(payload.get("savedRecoveryRadius", defaults.saved_recovery_radius)),
            poll_interval=float(payload.get("pollInterval", defaults.poll_interval)),
            db_path=str(payload.get("dbPath", defaults.db_path)),
            base_dir=base_dir,
        )
    except SettingsError:
        raise
    except (TypeError, ValueError) as exc:
        raise SettingsError(f"Invalid settings value: {exc}") from exc


def load_settings(path: Path | str) -> Settings:
    path = Path(path)
    if not path.exists():
        raise SettingsError(f"Settings file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SettingsError(f"Failed to parse {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise SettingsError(f"Expected top-level object in {path}.")
    return settings_from_mapping(payload, base_dir=path.resolve().parent)
