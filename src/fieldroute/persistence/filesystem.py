"""File-based persistence helpers for generated routes."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any

from ..config import settings


class FileStorage:
    """Thin wrapper around the data root for storing JSON and CSV outputs."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = (root or settings.data_root).resolve()
        self.output_root = self.root / "outputs"
        self.output_root.mkdir(parents=True, exist_ok=True)

    def route_directory(self, company_id: str, service_date: date) -> Path:
        path = self.output_root / "routes" / company_id / service_date.isoformat()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def metrics_directory(self, company_id: str, service_date: date) -> Path:
        path = self.output_root / "metrics" / company_id / service_date.isoformat()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def write_json(self, path: Path, data: Any, *, indent: int = 2) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, ensure_ascii=False, indent=indent)

    def write_csv(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as handle:
            handle.write(content)

    def read_json(self, path: Path) -> Any:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
