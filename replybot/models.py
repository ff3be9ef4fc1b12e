from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Mention:
    id: str
    raw_text: str


@dataclass
class Answer:
    text: str
    image_url: str | None = None


@dataclass
class StreamRule:
    value: str
    tag: str

    def to_payload(self) -> dict:
        return {"value": self.value, "tag": self.tag}
