"""Date-organised storage for analysis run outputs."""
from datetime import date
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)


class DateOrganizedCache:
    """JSON/text files laid out as YYYY-MM/DD/<key>.<suffix>."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str, target_date: date, suffix: str = "json") -> Path:
        return self.cache_dir / target_date.strftime("%Y-%m") / target_date.strftime("%d") / f"{key}.{suffix}"

    def exists_dated(self, key: str, target_date: date) -> bool:
        return self.path_for(key, target_date).exists()

    def get_dated(self, key: str, target_date: date, model: type[M]) -> M | None:
        """Load a stored model, or None if that run was never saved."""
        path = self.path_for(key, target_date)
        if not path.exists():
            return None
        return model.model_validate_json(path.read_text())

    def save_dated(self, key: str, target_date: date, value: BaseModel) -> Path:
        path = self.path_for(key, target_date)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(value.model_dump_json(indent=2))
        return path

    def save_text(self, key: str, target_date: date, text: str, suffix: str = "md") -> Path:
        path = self.path_for(key, target_date, suffix)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path
