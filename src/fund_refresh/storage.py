from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Iterable, Protocol

from .errors import ParseError, StorageError
from .models import Fund

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class WatchlistStore(Protocol):
    def load(self) -> list[Fund]: ...

    def save(self, funds: list[Fund]) -> None: ...


class JsonWatchlistStore:
    """Tracked funds kept in one JSON document, replaced atomically on save."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def load(self) -> list[Fund]:
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"读取自选列表失败: {self.path} -> {exc}", exc) from exc
        if not text.strip():
            return []
        try:
            doc = json.loads(text)
            return [Fund.from_dict(item) for item in doc.get("funds", [])]
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError) as exc:
            raise ParseError(f"自选列表格式错误: {self.path}", exc) from exc

    def save(self, funds: Iterable[Fund]) -> None:
        doc = {"version": SCHEMA_VERSION, "funds": [f.to_dict() for f in funds]}
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(doc, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StorageError(f"保存自选列表失败: {self.path} -> {exc}", exc) from exc
        LOGGER.debug("Saved %d funds to %s", len(doc["funds"]), self.path)
