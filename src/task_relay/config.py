"""Runtime configuration for the workflow engine and context cache."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class ContextSettings:
    """Snapshot bounds and cache sizing."""

    max_comments: int = 10
    max_delegations: int = 5
    max_transitions: int = 20
    comment_preview_chars: int = 100
    cache_max_entries: int = 0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".task_relay.db")
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "WARNING"
    context: ContextSettings = field(default_factory=ContextSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("TASK_RELAY_DB_PATH", ".task_relay.db")),
            sqlite_busy_timeout_ms=int(os.getenv("TASK_RELAY_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("TASK_RELAY_LOG_LEVEL", "WARNING").strip().upper(),
            context=ContextSettings(
                max_comments=int(os.getenv("TASK_RELAY_CONTEXT_MAX_COMMENTS", "10")),
                max_delegations=int(os.getenv("TASK_RELAY_CONTEXT_MAX_DELEGATIONS", "5")),
                max_transitions=int(os.getenv("TASK_RELAY_CONTEXT_MAX_TRANSITIONS", "20")),
                comment_preview_chars=int(
                    os.getenv("TASK_RELAY_CONTEXT_COMMENT_PREVIEW_CHARS", "100"),
                ),
                cache_max_entries=int(os.getenv("TASK_RELAY_CONTEXT_CACHE_MAX_ENTRIES", "0")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("TASK_RELAY_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if logging.getLevelName(self.log_level) == f"Level {self.log_level}":
            raise ValueError(f"Invalid TASK_RELAY_LOG_LEVEL: {self.log_level!r}")
        for name, value in (
            ("TASK_RELAY_CONTEXT_MAX_COMMENTS", self.context.max_comments),
            ("TASK_RELAY_CONTEXT_MAX_DELEGATIONS", self.context.max_delegations),
            ("TASK_RELAY_CONTEXT_MAX_TRANSITIONS", self.context.max_transitions),
            ("TASK_RELAY_CONTEXT_COMMENT_PREVIEW_CHARS", self.context.comment_preview_chars),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be a positive integer.")
        if self.context.cache_max_entries < 0:
            raise ValueError("TASK_RELAY_CONTEXT_CACHE_MAX_ENTRIES must be >= 0.")
