import logging
from decimal import Decimal

from cardpoints.domain.models import UsageKey

logger = logging.getLogger(__name__)

SPEND_SUFFIX = ":spend"


class UsageCache:
    """In-memory front tier for the usage ledger.

    Entries are filled on read misses and overwritten with the ledger's value
    after every write. Nothing here is authoritative: dropping an entry only
    costs one ledger read.
    """

    def __init__(self) -> None:
        self._entries: dict[UsageKey, Decimal] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: UsageKey) -> bool:
        return key in self._entries

    def get(self, key: UsageKey) -> Decimal | None:
        value = self._entries.get(key)
        logger.debug("usage cache %s for %s", "hit" if value is not None else "miss", key.tracking_id)
        return value

    def put(self, key: UsageKey, value: Decimal) -> None:
        self._entries[key] = value

    def _drop(self, predicate) -> int:
        stale = [key for key in self._entries if predicate(key)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def invalidate_instrument(self, instrument_id: str) -> int:
        return self._drop(lambda key: key.instrument_id == instrument_id)

    def invalidate_tracking_id(self, tracking_id: str) -> int:
        """Drop a rule's or cap group's entries, including its spend sub-key."""
        spend_id = f"{tracking_id}{SPEND_SUFFIX}"
        return self._drop(lambda key: key.tracking_id in (tracking_id, spend_id))

    def clear(self) -> None:
        self._entries.clear()
