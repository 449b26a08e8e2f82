"""
core/cache.py

On-disk artifact cache in the shared directory.

Per subscription:
  <name>.txt             raw snapshot (last fetched text)
  <name>.json            compiled rules
  <name>_advanced.json   compiled advanced rules (optional)

Aggregate bundle:
  blockerList.json       standard rules of every selected subscription
  advancedBlocking.json  advanced rules of every selected subscription

Every file is written to a temporary sibling and renamed into place, so a
reader never sees a half-written file.  Files of one subscription are still
independent: a crash between writes can leave a new raw snapshot next to an
old (or absent) compiled artifact, which is why callers re-check exists().
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .config import Subscription
from .errors import ArtifactParseError, ArtifactReadError, PersistError
from .storage import atomic_write_text, stage_text

logger = logging.getLogger(__name__)

BLOCKER_LIST_FILE = "blockerList.json"
ADVANCED_BLOCKING_FILE = "advancedBlocking.json"
LOG_FILE = "logs.txt"

RuleList = List[Any]


def encode_rules(rules: RuleList) -> str:
    """Deterministic JSON encoding shared by artifacts and bundles."""
    return json.dumps(rules, indent=2, ensure_ascii=False) + "\n"


def decode_rules(text: str) -> RuleList:
    """Decode a JSON rule array.  Raises ValueError if *text* is not one."""
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array, got {type(data).__name__}")
    return data


class ArtifactCache:
    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    # -----------------------------------------------------------------------
    # Paths
    # -----------------------------------------------------------------------

    def raw_path(self, sub: Subscription) -> Path:
        return self._root / f"{sub.name}.txt"

    def rules_path(self, sub: Subscription) -> Path:
        return self._root / f"{sub.name}.json"

    def advanced_path(self, sub: Subscription) -> Path:
        return self._root / f"{sub.name}_advanced.json"

    @property
    def blocker_list_path(self) -> Path:
        return self._root / BLOCKER_LIST_FILE

    @property
    def advanced_blocking_path(self) -> Path:
        return self._root / ADVANCED_BLOCKING_FILE

    @property
    def log_path(self) -> Path:
        return self._root / LOG_FILE

    # -----------------------------------------------------------------------
    # Per-subscription artifacts
    # -----------------------------------------------------------------------

    def exists(self, sub: Subscription) -> bool:
        return self.rules_path(sub).is_file()

    def load(self, sub: Subscription) -> Tuple[RuleList, Optional[RuleList]]:
        """Return ``(rules, advanced_or_None)`` for *sub*."""
        rules = self._read_rule_file(self.rules_path(sub))
        advanced: Optional[RuleList] = None
        if self.advanced_path(sub).is_file():
            advanced = self._read_rule_file(self.advanced_path(sub))
        return rules, advanced

    def store(
        self,
        sub: Subscription,
        rules: RuleList,
        advanced: Optional[RuleList],
        raw_text: Optional[str] = None,
    ) -> None:
        """
        Persist the compiled artifact(s) for *sub*, plus the raw snapshot when given.

        The compiled rules file goes last so that exists() implies the advanced
        file already matches.  A missing advanced artifact removes any stale one.
        """
        try:
            if raw_text is not None:
                atomic_write_text(self.raw_path(sub), raw_text)
            if advanced is not None:
                atomic_write_text(self.advanced_path(sub), encode_rules(advanced))
            else:
                self.advanced_path(sub).unlink(missing_ok=True)
            atomic_write_text(self.rules_path(sub), encode_rules(rules))
        except OSError as exc:
            raise PersistError(f"Unable to store artifacts for {sub.name}: {exc}") from exc

    def read_raw_snapshot(self, sub: Subscription) -> Optional[str]:
        path = self.raw_path(sub)
        try:
            # bytes first: read_text() would translate \r\n and break the comparison
            return path.read_bytes().decode("utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise ArtifactReadError(f"Unable to read {path.name}: {exc}") from exc

    def write_raw_snapshot(self, sub: Subscription, text: str) -> None:
        try:
            atomic_write_text(self.raw_path(sub), text)
        except OSError as exc:
            raise PersistError(f"Unable to write {self.raw_path(sub).name}: {exc}") from exc

    def _read_rule_file(self, path: Path) -> RuleList:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ArtifactReadError(f"Unable to read {path.name}: {exc}") from exc
        try:
            return decode_rules(text)
        except ValueError as exc:
            raise ArtifactParseError(f"Unable to parse {path.name}: {exc}") from exc

    # -----------------------------------------------------------------------
    # Aggregate bundle
    # -----------------------------------------------------------------------

    def bundle_exists(self) -> bool:
        return self.blocker_list_path.is_file()

    def write_bundle(self, rules: RuleList, advanced: RuleList) -> None:
        """
        Write both bundle files.

        Both payloads are staged before either is renamed, so an encode or
        write failure leaves the previous bundle untouched.  The two renames
        are sequential (standard first); the host may briefly see a new
        standard bundle next to the old advanced one.
        """
        staged: List[Tuple[Path, Path]] = []
        try:
            for target, payload in (
                (self.blocker_list_path, rules),
                (self.advanced_blocking_path, advanced),
            ):
                staged.append((stage_text(target, encode_rules(payload)), target))
            for tmp, target in staged:
                os.replace(tmp, target)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistError(f"Unable to write bundle: {exc}") from exc
        finally:
            for tmp, _target in staged:
                tmp.unlink(missing_ok=True)

    def read_bundle(self) -> Tuple[RuleList, RuleList]:
        rules = self._read_rule_file(self.blocker_list_path)
        advanced: RuleList = []
        if self.advanced_blocking_path.is_file():
            advanced = self._read_rule_file(self.advanced_blocking_path)
        return rules, advanced

    def read_bundle_rule_count(self) -> int:
        """Number of standard rules in the deployed bundle."""
        return len(self._read_rule_file(self.blocker_list_path))

    # -----------------------------------------------------------------------
    # Diagnostic log
    # -----------------------------------------------------------------------

    def write_log(self, text: str) -> None:
        try:
            atomic_write_text(self.log_path, text)
        except OSError as exc:
            raise PersistError(f"Unable to write {LOG_FILE}: {exc}") from exc

    def read_log(self) -> Optional[str]:
        try:
            return self.log_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise ArtifactReadError(f"Unable to read {LOG_FILE}: {exc}") from exc
