"""Badge credential records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

HACKER = "HACKER"
WINS = "WINS"


@dataclass(frozen=True)
class Badge:
    name: str
    image_url: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "imageUrl": self.image_url}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Badge:
        return cls(name=str(data.get("name", "")), image_url=str(data.get("imageUrl") or ""))


@dataclass
class BadgeBucket:
    """A count plus the badges behind it."""

    count: int = 0
    items: list[Badge] = field(default_factory=list)

    def add(self, badge: Badge) -> None:
        self.count += 1
        self.items.append(badge)

    def merge(self, other: BadgeBucket) -> BadgeBucket:
        return BadgeBucket(count=self.count + other.count, items=[*self.items, *other.items])

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "items": [b.to_dict() for b in self.items]}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BadgeBucket:
        data = data or {}
        return cls(
            count=int(data.get("count", 0)),
            items=[Badge.from_dict(b) for b in data.get("items") or []],
        )


@dataclass
class BadgeCredentials:
    """Participation (HACKER) and placement (WINS) badges for one or more addresses."""

    hacker: BadgeBucket = field(default_factory=BadgeBucket)
    wins: BadgeBucket = field(default_factory=BadgeBucket)
    total_poaps: int = 0

    @property
    def total_badges(self) -> int:
        return self.hacker.count + self.wins.count

    def merge(self, other: BadgeCredentials) -> BadgeCredentials:
        """Counts add; item lists concatenate."""
        return BadgeCredentials(
            hacker=self.hacker.merge(other.hacker),
            wins=self.wins.merge(other.wins),
            total_poaps=self.total_poaps + other.total_poaps,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            HACKER: self.hacker.to_dict(),
            WINS: self.wins.to_dict(),
            "totalBadges": self.total_badges,
            "totalPoaps": self.total_poaps,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BadgeCredentials:
        data = data or {}
        return cls(
            hacker=BadgeBucket.from_dict(data.get(HACKER)),
            wins=BadgeBucket.from_dict(data.get(WINS)),
            total_poaps=int(data.get("totalPoaps", 0)),
        )
