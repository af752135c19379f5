from __future__ import annotations
import threading
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from signflow.core.settings import settings
from signflow.schemas.convention import Convention


class ConventionCache:
    """In-process mirror of committed conventions.

    Only the orchestration layer writes to it, and only after the store accepted
    the write, so a failed persist leaves the mirror as it was. Holds at most
    ``max_size`` documents, evicting the least recently used, and keeps an index
    from every verification code and fingerprint to the documents carrying it.
    Every document handed out is a copy.
    """

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size or settings.cache_max_size
        self._items: "OrderedDict[str, Convention]" = OrderedDict()
        self._index: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()

    def get(self, convention_id: str) -> Optional[Convention]:
        with self._lock:
            item = self._items.get(convention_id)
            if item is None:
                return None
            self._items.move_to_end(convention_id)
            return item.model_copy(deep=True)

    def put(self, convention: Convention) -> None:
        with self._lock:
            self._unindex(convention.id)
            self._items[convention.id] = convention.model_copy(deep=True)
            self._items.move_to_end(convention.id)
            for field, value in convention.verification_values():
                self._index.setdefault(value.strip().upper(), {}).setdefault(convention.id, field)
            while len(self._items) > self.max_size:
                evicted, _ = self._items.popitem(last=False)
                self._unindex(evicted)

    def lookup(self, code: str) -> List[Tuple[Convention, str]]:
        """Documents carrying ``code`` (already normalized), with the field it sits in."""
        with self._lock:
            hits = self._index.get(code, {})
            return [(self._items[cid].model_copy(deep=True), field) for cid, field in hits.items()]

    def values(self) -> List[Convention]:
        with self._lock:
            return [item.model_copy(deep=True) for item in self._items.values()]

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._index.clear()

    def _unindex(self, convention_id: str) -> None:
        old = self._items.pop(convention_id, None)
        if old is None:
            return
        for _, value in old.verification_values():
            key = value.strip().upper()
            hits = self._index.get(key)
            if hits is not None:
                hits.pop(convention_id, None)
                if not hits:
                    del self._index[key]

    def __contains__(self, convention_id: str) -> bool:
        with self._lock:
            return convention_id in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
