"""Cache of the objects each installation currently owns.

The cache is keyed by an owner key derived from the installation's custom
resource (see `labels.owner_cache_key`) and holds the hashes of the objects
that are considered applied. It lets drift detection know which objects are
still ours after a reconciliation pass, and may always be rebuilt by listing
the labelled objects in the cluster.

A single `ObjectCache` is created for the lifetime of the process and passed
to every reconciler. Individual add and remove operations are atomic, however
reconciliation passes against the same installation must be serialized by the
caller.
"""

from collections.abc import MutableMapping
import logging
import threading

__all__ = ["ObjectCache"]

_LOGGER = logging.getLogger(__name__)


class ObjectCache:
    """Object hashes owned by each installation."""

    def __init__(self, store: MutableMapping[str, set[str]] | None = None) -> None:
        """Initialize the ObjectCache.

        Args:
            store: Optional backing mapping of owner key to object hashes.
        """
        self._store: MutableMapping[str, set[str]] = store if store is not None else {}
        self._lock = threading.Lock()

    def add(self, owner_key: str, obj_hash: str) -> None:
        """Record that the owner holds the object, creating the owner if needed."""
        with self._lock:
            self._store.setdefault(owner_key, set()).add(obj_hash)

    def remove(self, owner_key: str, obj_hash: str) -> None:
        """Remove an object from the owner, ignoring objects that are absent."""
        with self._lock:
            if (hashes := self._store.get(owner_key)) is None:
                return
            hashes.discard(obj_hash)
        _LOGGER.debug("Removed object %s from cache %s", obj_hash, owner_key)

    def get(self, owner_key: str) -> frozenset[str]:
        """Return the object hashes currently held by the owner."""
        with self._lock:
            return frozenset(self._store.get(owner_key, ()))

    def flush_all(self) -> None:
        """Clear the objects of every owner."""
        with self._lock:
            self._store.clear()
        _LOGGER.info("Flushed all object caches")

    def __len__(self) -> int:
        """Return the number of objects held across all owners."""
        with self._lock:
            return sum(len(hashes) for hashes in self._store.values())
