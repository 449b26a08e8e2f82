"""
core/config.py

Shared dataclasses: Category, Subscription, SyncConfig, FetchResult, CompileResult.

Environment variables (read by SyncConfig.from_env):
  FILTERLIST_SHARED_DIR      Shared directory for cache and bundle files
  FILTERLIST_SETTINGS_PATH   JSON file backing the selection store
  FILTERLIST_BUNDLE_ID       Identifier passed to the host reload command
  FILTERLIST_COMPILER_CMD    Rule compiler command line
  FILTERLIST_TARGET_VERSION  Compiler target format version
  FILTERLIST_RELOAD_CMD      Host reload command line (empty = log only)
  FILTERLIST_FETCH_TIMEOUT   Fetch timeout in seconds
  FILTERLIST_MAX_CONCURRENT  Parallel fetches within one workflow
  FILTERLIST_CHECK_ON_START  Run the missing-filter check at startup (1/0)
  REDIS_URL                  If set, selection flags are stored in Redis
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Category(str, Enum):
    ALL = "all"
    ADS = "ads"
    PRIVACY = "privacy"
    SECURITY = "security"
    MULTIPURPOSE = "multipurpose"
    ANNOYANCES = "annoyances"
    EXPERIMENTAL = "experimental"


@dataclass
class Subscription:
    """One named, URL-addressed filter list.  ``name`` doubles as the cache key."""
    name: str
    url: str
    category: Category
    selected: bool = False

    @property
    def selection_key(self) -> str:
        return f"filter_{self.name}"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "url": self.url,
            "category": self.category.value,
            "selected": self.selected,
        }


def _env_path(name: str, default: str) -> str:
    return os.path.expanduser(os.getenv(name, "") or default)


@dataclass
class SyncConfig:
    """All tunable parameters for the pipeline."""
    shared_dir: str = "~/.filterlist-mcp/shared"
    settings_path: str = "~/.filterlist-mcp/settings.json"
    bundle_identifier: str = "app.filterlist.content-blocker"
    compiler_command: str = "ConverterTool"
    target_version: str = "16.4"
    reload_command: str = ""
    fetch_timeout: int = 30
    max_concurrent: int = 4
    check_on_start: bool = True
    redis_url: str = ""

    @classmethod
    def from_env(cls) -> "SyncConfig":
        return cls(
            shared_dir        = _env_path("FILTERLIST_SHARED_DIR", cls.shared_dir),
            settings_path     = _env_path("FILTERLIST_SETTINGS_PATH", cls.settings_path),
            bundle_identifier = os.getenv("FILTERLIST_BUNDLE_ID", cls.bundle_identifier),
            compiler_command  = os.getenv("FILTERLIST_COMPILER_CMD", cls.compiler_command),
            target_version    = os.getenv("FILTERLIST_TARGET_VERSION", cls.target_version),
            reload_command    = os.getenv("FILTERLIST_RELOAD_CMD", cls.reload_command),
            fetch_timeout     = int(os.getenv("FILTERLIST_FETCH_TIMEOUT", str(cls.fetch_timeout))),
            max_concurrent    = max(1, int(os.getenv("FILTERLIST_MAX_CONCURRENT", str(cls.max_concurrent)))),
            check_on_start    = os.getenv("FILTERLIST_CHECK_ON_START", "1").strip() not in ("0", "false", "no"),
            redis_url         = os.getenv("REDIS_URL", ""),
        )


@dataclass
class FetchResult:
    """Result for a single fetched URL."""
    url: str
    success: bool
    content: str = ""
    error: Optional[str] = None


@dataclass(frozen=True)
class CompileOptions:
    target_version: str = "16.4"
    optimize: bool = True
    advanced: bool = True


@dataclass
class CompileResult:
    """
    Raw compiler output.

    ``converted`` may decode to more entries than ``converted_count``; only the
    first ``converted_count`` are valid.
    """
    converted: str
    converted_count: int
    advanced: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)
