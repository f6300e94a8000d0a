"""Structured view of free-text locations.

Locations arrive either as plain address text ("Kasarani, Nairobi") or as
JSON text with a ``ward`` key. They are parsed once into :class:`Location`
and compared through :attr:`Location.key`.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional


def extract_ward(text: str) -> str:
    """Return the text before the first comma, trimmed."""
    return text.split(",", 1)[0].strip()


@dataclass(frozen=True)
class Location:
    """A location as stored, plus the ward token used for matching."""

    raw: str
    ward: str
    search_text: str

    @classmethod
    def parse(cls, value: Optional[str]) -> "Location":
        """
        Parse a stored location string.

        JSON objects contribute their ``ward`` value; any other text
        contributes its first comma-separated segment. Empty input yields a
        location that never matches.
        """
        if not value or not value.strip():
            return cls(raw="", ward="", search_text="")

        text = value.strip()
        if text.startswith("{"):
            data = _load_json_object(text)
            if data is not None:
                ward = str(data.get("ward") or "").strip()
                values = " ".join(
                    str(v) for v in data.values() if isinstance(v, (str, int, float))
                )
                return cls(raw=text, ward=ward, search_text=values.lower())

        return cls(raw=text, ward=extract_ward(text), search_text=text.lower())

    @property
    def key(self) -> str:
        """Lowercased ward token."""
        return self.ward.lower()

    @property
    def is_empty(self) -> bool:
        return not self.key

    def display(self) -> str:
        return self.ward or self.raw


def _load_json_object(text: str) -> Optional[dict[str, Any]]:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
