"""Data types shared by the fetcher, extractor, store and notifier."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

# Count sentinel for a failed fetch or an unparsable page
UNKNOWN = -1


class Target(str, Enum):
    """The monitored appointment sites."""
    REGULAR = "regular"
    MOBILE = "mobile"

    @property
    def label(self) -> str:
        return DEFAULT_LABELS[self]

    @classmethod
    def parse(cls, value: "str | Target") -> "Target":
        """Accept either an enum member or its identifier string."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid target: {value}. Available: {[t.value for t in cls]}"
            ) from None


DEFAULT_LABELS: dict[Target, str] = {
    Target.REGULAR: "Regular DMV",
    Target.MOBILE: "Mobile Unit",
}

# Card title shown on each site for the REAL ID service
CARD_TITLES: dict[Target, str] = {
    Target.REGULAR: "REAL ID",
    Target.MOBILE: "REAL ID - MOBILE",
}


@dataclass(frozen=True)
class TargetSite:
    """A monitored site: where to fetch and where to send people to book."""
    target: Target
    url: str
    notification_url: Optional[str]
    label: str
    card_title: str


@dataclass(frozen=True)
class Observation:
    """A successful count reading for one target."""
    target: Target
    count: int
    timestamp: datetime
    label: str

    def to_dict(self) -> dict:
        return {
            "target": self.target.value,
            "count": self.count,
            "timestamp": self.timestamp.isoformat(),
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Observation":
        target = Target.parse(data["target"])
        return cls(
            target=target,
            count=int(data["count"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            label=data.get("label") or target.label,
        )


@dataclass
class Transition:
    """Outcome of a store update, consumed by the tracker to decide on alerts."""
    target: Target
    count: int
    previous_count: int
    changed: bool
    became_available: bool
    timestamp: datetime
