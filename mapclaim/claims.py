from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

REMOVE_TEAM = "__EMPTY__"
REMOVE_TEAM_LABEL = "Remove Claim"
REMOVE_COLOR = "#ffffff"


def utc_timestamp() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def hex_to_rgba(color: str | None, alpha: int = 255) -> tuple[int, int, int, int]:
    """Parse ``#rrggbb`` / ``#rgb`` (leading ``#`` optional) into RGBA."""
    if not color:
        return (0, 0, 0, alpha)
    raw = color.strip().lstrip("#")
    if len(raw) == 3:
        raw = "".join(ch * 2 for ch in raw)
    if len(raw) != 6:
        raise ValueError(f"Invalid hex color: {color!r}")
    try:
        value = int(raw, 16)
    except ValueError as exc:
        raise ValueError(f"Invalid hex color: {color!r}") from exc
    return ((value >> 16) & 255, (value >> 8) & 255, value & 255, alpha)


def round_half_up(value: float) -> int:
    # matches the browser's Math.round for positive and negative halves
    return int((float(value) + 0.5) // 1)


@dataclass(frozen=True)
class PendingClaim:
    x: float
    y: float
    timestamp: str = field(default_factory=utc_timestamp)
    team: Optional[str] = None
    color: Optional[str] = None
    owner_id: Optional[str] = None
    id: None = None
    client_key: str = field(default_factory=lambda: uuid.uuid4().hex, compare=False, repr=False)

    @property
    def is_saved(self) -> bool:
        return False

    @property
    def seed(self) -> tuple[int, int]:
        return round_half_up(self.x), round_half_up(self.y)

    @property
    def is_removal(self) -> bool:
        return self.team == REMOVE_TEAM

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "imgX": self.x,
            "imgY": self.y,
            "date": self.timestamp,
            "team": self.team,
            "color": self.color,
        }
        if self.owner_id is not None:
            payload["owner"] = self.owner_id
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PendingClaim":
        x = payload.get("imgX", payload.get("x"))
        y = payload.get("imgY", payload.get("y"))
        if x is None or y is None:
            raise ValueError(f"Claim payload missing coordinates: {dict(payload)!r}")
        color = payload.get("color") or None
        if color is not None:
            if not isinstance(color, str):
                raise ValueError(f"Invalid hex color: {color!r}")
            hex_to_rgba(color)
        return cls(
            x=float(x),
            y=float(y),
            timestamp=str(payload.get("date") or utc_timestamp()),
            team=payload.get("team") or None,
            color=color,
            owner_id=payload.get("owner") or None,
        )


@dataclass(frozen=True)
class SavedClaim:
    id: int
    x: float
    y: float
    timestamp: str
    team: Optional[str] = None
    color: Optional[str] = None
    owner_id: Optional[str] = None

    @property
    def is_saved(self) -> bool:
        return True

    @property
    def seed(self) -> tuple[int, int]:
        return round_half_up(self.x), round_half_up(self.y)

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "x": self.x,
            "y": self.y,
            "date": self.timestamp,
            "team": self.team,
            "color": self.color,
            "owner": self.owner_id,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SavedClaim":
        return cls(
            id=int(row["id"]),
            x=float(row["x"]),
            y=float(row["y"]),
            timestamp=str(row.get("date") or ""),
            team=row.get("team"),
            color=row.get("color"),
            owner_id=row.get("owner"),
        )


Claim = Union[PendingClaim, SavedClaim]


def claim_ids(claims) -> set[int]:
    return {c.id for c in claims if c.id is not None}
