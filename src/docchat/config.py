"""Application configuration defaults."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from docchat.models import GenerationOptions

DEFAULT_MODEL = "qwen3:4b"
DEFAULT_BASE_URL = "http://localhost:11434"
SNAPSHOT_FILENAME = "docchat-rag-database.json"
MAX_DIRECTORIES = 3


def _get_default_data_path() -> Path:
    """Get the default snapshot path based on platform and execution context."""
    user_data = Path.home() / "Documents" / "DocChat" / SNAPSHOT_FILENAME

    if getattr(sys, "frozen", False):
        return user_data

    # When running from source, prefer local data/ if it exists
    local_data = Path("data") / SNAPSHOT_FILENAME
    if local_data.exists():
        return local_data

    return user_data


@dataclass(slots=True)
class AppConfig:
    directories: List[Path] = field(default_factory=list)
    data_path: Path | None = None
    sensitivity: int = 70
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    temperature: float = 0.7
    context_length: int = 8192
    top_p: float = 0.9
    top_k: int = 40
    repeat_penalty: float = 1.1
    max_results: int = 3
    request_timeout: float = 300.0
    auto_index_interval: float = 3600.0
    stale_after_hours: float = 24.0
    startup_delay: float = 5.0

    def __post_init__(self) -> None:
        if self.data_path is None:
            self.data_path = _get_default_data_path()
        self.directories = [Path(directory) for directory in self.directories]
        if len(self.directories) > MAX_DIRECTORIES:
            raise ValueError(
                f"At most {MAX_DIRECTORIES} directories can be configured, "
                f"got {len(self.directories)}"
            )
        if not 0 <= self.sensitivity <= 100:
            raise ValueError(f"Sensitivity must be between 0 and 100, got {self.sensitivity}")

    def resolve_data_path(self, base_dir: Path | None = None) -> Path:
        if self.data_path is None:
            self.data_path = _get_default_data_path()
        if Path(self.data_path).is_absolute() or base_dir is None:
            return Path(self.data_path)
        return base_dir / self.data_path

    @property
    def generation_options(self) -> GenerationOptions:
        return GenerationOptions(
            temperature=self.temperature,
            context_length=self.context_length,
            top_p=self.top_p,
            top_k=self.top_k,
            repeat_penalty=self.repeat_penalty,
        )
