"""
Yeelight IP Cache

Persistent map of last-known device addresses. The in-memory map is
mirrored to a settings store as a JSON array of [ip, record] pairs on
every mutation.
"""

import json
import logging
from typing import Any, Dict, Iterator, Optional, Tuple

try:
    import udi_interface
    LOGGER = udi_interface.LOGGER
except ImportError:
    LOGGER = logging.getLogger(__name__)


PERSISTENCE_ID = "ipCache"
PERSISTENCE_KEY = "cache"


class MemorySettingsStore:
    """Settings store backed by a plain dict"""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data = data if data is not None else {}

    @staticmethod
    def _name(setting_id: str, key: str) -> str:
        return f"{setting_id}.{key}"

    def get_setting(self, setting_id: str, key: str) -> Optional[str]:
        return self.data.get(self._name(setting_id, key))

    def save_setting(self, setting_id: str, key: str, value: str):
        self.data[self._name(setting_id, key)] = value

    def remove_setting(self, setting_id: str, key: str):
        self.data.pop(self._name(setting_id, key), None)


class IPCache:
    """
    Cache of discovered devices keyed by IP address.

    Corrupted storage is purged wholesale; individually malformed entries
    are dropped while the rest are kept.
    """

    def __init__(self, store, persistence_id: str = PERSISTENCE_ID,
                 persistence_key: str = PERSISTENCE_KEY):
        """
        Initialize and load the cache.

        Args:
            store: Settings store with get_setting/save_setting/remove_setting
            persistence_id: Setting id the cache is stored under
            persistence_key: Setting key the cache is stored under
        """
        self._store = store
        self._id = persistence_id
        self._key = persistence_key
        self._cache: Dict[str, Dict[str, Any]] = {}
        self.load()

    def __len__(self):
        return len(self._cache)

    def __contains__(self, key):
        return self.has(key)

    def add(self, key: str, value: Dict[str, Any]):
        """Add or replace an entry and persist"""
        if not key:
            LOGGER.warning("[IPCache] Invalid key add attempt")
            return
        LOGGER.info(f"[IPCache] Adding/Updating {key} in Cache...")
        self._cache[key] = value
        self.persist()

    def remove(self, key: str):
        """Remove an entry and persist if it existed"""
        if not key:
            LOGGER.warning("[IPCache] Invalid key remove attempt")
            return
        LOGGER.info(f"[IPCache] Removing {key} from Cache...")
        if self._cache.pop(key, None) is not None:
            self.persist()

    def has(self, key: str) -> bool:
        return bool(key) and key in self._cache

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        if not key:
            return None
        return self._cache.get(key)

    def entries(self) -> Iterator[Tuple[str, Dict[str, Any]]]:
        # Snapshot so callers may remove while iterating
        return iter(list(self._cache.items()))

    def keys(self):
        return list(self._cache.keys())

    def purge(self):
        """Clear the cache from memory and storage"""
        LOGGER.info("[IPCache] Purging IP Cache...")
        self._cache.clear()
        try:
            self._store.remove_setting(self._id, self._key)
            LOGGER.info("[IPCache] Cache removed from storage")
        except Exception as e:
            LOGGER.error(f"[IPCache] Error purging cache: {e}")

    def load(self):
        """Populate the cache from storage"""
        LOGGER.info("[IPCache] Populating IP Cache from storage...")

        try:
            raw = self._store.get_setting(self._id, self._key)
        except Exception as e:
            LOGGER.error(f"[IPCache] Error getting setting: {e}")
            return

        if raw is None:
            LOGGER.info("[IPCache] Cache is empty (no setting found)")
            return

        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError) as e:
            LOGGER.error(f"[IPCache] Error parsing cache from storage: {e}. Purging corrupted cache.")
            self.purge()
            return

        if not isinstance(parsed, list):
            LOGGER.error("[IPCache] Cache data from storage is not an array. Purging.")
            self.purge()
            return

        valid = [
            entry for entry in parsed
            if isinstance(entry, list) and len(entry) == 2
            and isinstance(entry[0], str) and isinstance(entry[1], dict)
        ]
        if len(valid) != len(parsed):
            LOGGER.warning("[IPCache] Some invalid entries found in cached data. Loading valid entries only.")

        self._cache = {key: value for key, value in valid}
        LOGGER.info(f"[IPCache] Cache populated with {len(self._cache)} entries")

    def persist(self):
        """Write the cache to storage"""
        entries = [[key, value] for key, value in self._cache.items()]
        try:
            self._store.save_setting(self._id, self._key, json.dumps(entries))
            LOGGER.debug(f"[IPCache] Cache saved with {len(entries)} entries")
        except Exception as e:
            LOGGER.error(f"[IPCache] Error saving cache: {e}")

    def dump(self):
        """Log the cache contents"""
        LOGGER.info("--- IP Cache Dump ---")
        if not self._cache:
            LOGGER.info("(Cache is empty)")
        for key, value in self._cache.items():
            LOGGER.info(f"[{key}]: {json.dumps(value)}")
        LOGGER.info("--- End Cache Dump ---")
