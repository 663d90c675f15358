from __future__ import annotations
from dataclasses import dataclass
from typing import List, Literal

Level = Literal["success", "error", "info"]


@dataclass(frozen=True)
class Notice:
    level: Level
    message: str

    def as_dict(self) -> dict:
        return {"level": self.level, "message": self.message}


class Notifier:
    """Queue of user-facing messages, drained by whoever renders them."""

    def __init__(self) -> None:
        self._notices: List[Notice] = []

    def success(self, message: str) -> None:
        self._notices.append(Notice("success", message))

    def error(self, message: str) -> None:
        self._notices.append(Notice("error", message))

    def info(self, message: str) -> None:
        self._notices.append(Notice("info", message))

    @property
    def notices(self) -> List[Notice]:
        return list(self._notices)

    def messages(self, level: Level | None = None) -> List[str]:
        return [n.message for n in self._notices if level is None or n.level == level]

    def drain(self) -> List[Notice]:
        notices, self._notices = self._notices, []
        return notices
