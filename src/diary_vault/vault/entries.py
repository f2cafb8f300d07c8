"""Diary entries and the in-memory entry store.

One entry per calendar date, keyed by ``YYYY-MM-DD``. The store only
manipulates the decrypted collection; persisting it is the session's job
(see ``VaultSession.mutate``).
"""

import re
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .exceptions import InvalidDateKey, NotFound

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DateLike = Union[str, date]


def normalize_date_key(value: DateLike) -> str:
    """Return the canonical ``YYYY-MM-DD`` key for a date or date string.

    Raises:
        InvalidDateKey: Not a zero-padded, real calendar date
    """
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
    if not isinstance(value, str) or not _DATE_KEY_RE.match(value):
        raise InvalidDateKey(f"Date key must look like YYYY-MM-DD, got {value!r}")
    try:
        date.fromisoformat(value)
    except ValueError as e:
        raise InvalidDateKey(f"Not a calendar date: {value!r}") from e
    return value


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Entry:
    """A single diary entry."""

    date_key: str
    title: str = ""
    text: str = ""
    modified: Optional[str] = None
    reaction: Optional[str] = None

    def __post_init__(self):
        # None means "new entry"; "" is a loaded entry that never had a timestamp
        if self.modified is None:
            self.modified = _now()

    def to_dict(self) -> dict:
        """Payload form stored inside the ciphertext (date_key is the map key)."""
        d = {
            "title": self.title,
            "text": self.text,
        }
        if self.modified:
            d["modified"] = self.modified
        if self.reaction:
            d["reaction"] = self.reaction
        return d

    def to_api_dict(self) -> dict:
        return {
            "date_key": self.date_key,
            "title": self.title,
            "text": self.text,
            "modified": self.modified,
            "reaction": self.reaction,
        }

    @classmethod
    def from_dict(cls, date_key: str, raw: Dict[str, Any]) -> "Entry":
        return cls(
            date_key=date_key,
            title=raw.get("title") or "",
            text=raw.get("text") or "",
            modified=raw.get("modified") or "",
            reaction=raw.get("reaction") or None,
        )


class EntryStore:
    """CRUD over the decrypted entry collection, keyed by date."""

    def __init__(self, entries: Optional[Dict[str, Entry]] = None):
        self._entries: Dict[str, Entry] = entries if entries is not None else {}

    @classmethod
    def from_payload(cls, payload: Any) -> "EntryStore":
        """Build a store from a decrypted payload (``{date_key: {...}}``).

        A null payload is an empty diary.
        """
        if payload is None:
            return cls()
        if not isinstance(payload, dict):
            raise ValueError("Entry payload must be a JSON object")
        entries = {}
        for key, raw in payload.items():
            date_key = normalize_date_key(key)
            entries[date_key] = Entry.from_dict(date_key, raw if isinstance(raw, dict) else {})
        return cls(entries)

    def to_payload(self) -> Dict[str, dict]:
        return {key: entry.to_dict() for key, entry in self._entries.items()}

    def copy(self) -> "EntryStore":
        """Independent working copy (entries are copied, not shared)."""
        return EntryStore({key: replace(entry) for key, entry in self._entries.items()})

    def clear(self) -> None:
        self._entries.clear()

    def upsert(self, date_key: DateLike, title: str = "", text: str = "") -> Entry:
        """Create or overwrite the entry at date_key. An existing reaction is kept."""
        key = normalize_date_key(date_key)
        existing = self._entries.get(key)
        entry = Entry(
            date_key=key,
            title=(title or "").strip(),
            text=text or "",
            modified=_now(),
            reaction=existing.reaction if existing else None,
        )
        self._entries[key] = entry
        return entry

    def remove(self, date_key: DateLike) -> bool:
        """Delete the entry if present. Returns True if something was removed."""
        key = normalize_date_key(date_key)
        return self._entries.pop(key, None) is not None

    def set_reaction(self, date_key: DateLike, glyph: Optional[str]) -> Entry:
        """Set (or clear, with None/empty) the reaction of an existing entry."""
        key = normalize_date_key(date_key)
        entry = self._entries.get(key)
        if entry is None:
            raise NotFound(f"No entry for {key}")
        entry.reaction = glyph or None
        return entry

    def get(self, date_key: DateLike) -> Optional[Entry]:
        return self._entries.get(normalize_date_key(date_key))

    def list(self) -> List[Entry]:
        """All entries, in no particular order."""
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, date_key) -> bool:
        try:
            return normalize_date_key(date_key) in self._entries
        except InvalidDateKey:
            return False
