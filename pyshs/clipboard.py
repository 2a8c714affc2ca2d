"""An in-memory clipboard of text entries."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime

_HTML_ESCAPES = str.maketrans(
    {
        "<": "\\u003c",
        ">": "\\u003e",
        "&": "\\u0026",
        "\u2028": "\\u2028",
        "\u2029": "\\u2029",
    }
)


def _timestamp(moment: datetime) -> str:
    return f"{moment:%a %b} {moment.day:2d} {moment:%H:%M:%S %Y}"


@dataclass
class Entry:
    """A single clipboard entry."""

    id: int
    content: str
    time: str


@dataclass
class Clipboard:
    """Ordered clipboard entries with ids equal to their position."""

    entries: list[Entry] = field(default_factory=list)

    def add_entry(self, content: str) -> Entry:
        """Append an entry and return it."""
        new_id = self.entries[-1].id + 1 if self.entries else 0
        entry = Entry(id=new_id, content=content, time=_timestamp(datetime.now()))
        self.entries.append(entry)
        return entry

    def delete_entry(self, entry_id: int) -> None:
        """Remove the entry at position entry_id and renumber the rest."""
        if not 0 <= entry_id < len(self.entries):
            raise IndexError(f"no clipboard entry with id {entry_id}")
        del self.entries[entry_id]
        self.entries = [
            Entry(id=index, content=entry.content, time=entry.time)
            for index, entry in enumerate(self.entries)
        ]

    def clear(self) -> None:
        """Remove all entries."""
        self.entries = []

    def download(self) -> bytes:
        """Return the entries as indented JSON; an empty clipboard gives null."""
        payload = (
            [{"ID": e.id, "Content": e.content, "Time": e.time} for e in self.entries]
            if self.entries
            else None
        )
        text = json.dumps(payload, indent=4, ensure_ascii=False)
        return text.translate(_HTML_ESCAPES).encode("utf-8")