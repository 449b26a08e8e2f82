"""
core/catalog.py

Static subscription catalog plus the registry that overlays the user's
persisted selection onto it.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import Category, Subscription
from .errors import UnknownSubscriptionError
from .selection import SelectionStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Default catalog
# ---------------------------------------------------------------------------

_ADGUARD_SAFARI = "https://raw.githubusercontent.com/AdguardTeam/FiltersRegistry/master/platforms/extension/safari/filters"

DEFAULT_CATALOG: Tuple[Subscription, ...] = (
    Subscription("AdGuard Base filter", f"{_ADGUARD_SAFARI}/2_optimized.txt", Category.ADS, True),
    Subscription("AdGuard Tracking Protection filter", f"{_ADGUARD_SAFARI}/4_optimized.txt", Category.PRIVACY, True),
    Subscription("AdGuard Annoyances filter", f"{_ADGUARD_SAFARI}/14_optimized.txt", Category.ANNOYANCES),
    Subscription("AdGuard Social Media filter", f"{_ADGUARD_SAFARI}/3_optimized.txt", Category.ANNOYANCES),
    Subscription("Fanboy's Annoyances filter", f"{_ADGUARD_SAFARI}/122_optimized.txt", Category.ANNOYANCES),
    Subscription("EasyPrivacy", f"{_ADGUARD_SAFARI}/118_optimized.txt", Category.PRIVACY, True),
    Subscription("Online Malicious URL Blocklist", f"{_ADGUARD_SAFARI}/208_optimized.txt", Category.SECURITY, True),
    Subscription("Peter Lowe's Blocklist", f"{_ADGUARD_SAFARI}/204_optimized.txt", Category.MULTIPURPOSE, True),
    Subscription("Hagezi Pro mini", "https://cdn.jsdelivr.net/gh/hagezi/dns-blocklists@latest/adblock/pro.mini.txt",
                 Category.MULTIPURPOSE, True),
    Subscription("d3Host List by d3ward", "https://raw.githubusercontent.com/d3ward/toolz/master/src/d3host.adblock",
                 Category.MULTIPURPOSE, True),
    Subscription("Anti-Adblock List", f"{_ADGUARD_SAFARI}/207_optimized.txt", Category.MULTIPURPOSE, True),
    Subscription("AdGuard Experimental filter", f"{_ADGUARD_SAFARI}/5_optimized.txt", Category.EXPERIMENTAL),
)

RECOMMENDED_FILTERS: Tuple[str, ...] = (
    "AdGuard Base filter",
    "AdGuard Tracking Protection filter",
    "AdGuard Annoyances filter",
    "EasyPrivacy",
    "Online Malicious URL Blocklist",
    "d3Host List by d3ward",
    "Anti-Adblock List",
)


def _check_name(name: str) -> None:
    if not name or name.startswith(".") or "/" in name or "\\" in name or "\x00" in name:
        raise ValueError(f"Subscription name is not filesystem-safe: {name!r}")


class SubscriptionRegistry:
    """
    Ordered catalog of subscriptions with persisted selection overrides.

    The catalog is fixed for the lifetime of the registry; only ``selected``
    changes.  Flags missing from the store keep the catalog default.
    """

    def __init__(
        self,
        store: SelectionStore,
        catalog: Optional[Iterable[Subscription]] = None,
    ) -> None:
        self._store = store
        self._subs: List[Subscription] = [replace(s) for s in (DEFAULT_CATALOG if catalog is None else catalog)]
        seen = set()
        for sub in self._subs:
            _check_name(sub.name)
            if sub.name in seen:
                raise ValueError(f"Duplicate subscription name: {sub.name!r}")
            if sub.category is Category.ALL:
                raise ValueError(f"'all' is a query category, not a subscription category: {sub.name!r}")
            seen.add(sub.name)

    async def load(self) -> None:
        """Overlay the persisted selection flags onto the catalog."""
        flags = await self._store.load([s.selection_key for s in self._subs])
        for sub in self._subs:
            if sub.selection_key in flags:
                sub.selected = flags[sub.selection_key]

    async def save(self) -> None:
        await self._store.save(self.selection_flags())

    def selection_flags(self) -> Dict[str, bool]:
        return {sub.selection_key: sub.selected for sub in self._subs}

    # -- queries ------------------------------------------------------------

    def all(self) -> List[Subscription]:
        return list(self._subs)

    def by_selection(self) -> List[Subscription]:
        return [s for s in self._subs if s.selected]

    def by_category(self, category: Category) -> List[Subscription]:
        if category is Category.ALL:
            return self.all()
        return [s for s in self._subs if s.category is category]

    def get(self, name: str) -> Subscription:
        for sub in self._subs:
            if sub.name == name:
                return sub
        raise UnknownSubscriptionError(f"Unknown filter list: {name}")

    def in_order(self, names: Iterable[str]) -> List[Subscription]:
        """Resolve *names* to subscriptions, returned in catalog order."""
        wanted = set(names)
        for name in wanted:
            self.get(name)
        return [s for s in self._subs if s.name in wanted]

    # -- mutations ----------------------------------------------------------

    async def toggle(self, name: str) -> Subscription:
        """Flip ``selected`` for *name* and persist every flag."""
        sub = self.get(name)
        sub.selected = not sub.selected
        await self.save()
        return sub

    async def select(self, names: Sequence[str]) -> List[Subscription]:
        """Mark every known name in *names* selected and persist.  Returns the touched subscriptions."""
        wanted = set(names)
        enabled = [s for s in self._subs if s.name in wanted]
        for sub in enabled:
            sub.selected = True
        await self.save()
        return enabled
