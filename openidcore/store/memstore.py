"""A simple store using only in-process memory."""
import logging
import threading

from openidcore.association import newest_association
from openidcore.store.interface import AssociationStore

__all__ = ['MemoryStore']

_LOGGER = logging.getLogger(__name__)


class PartitionAssocs(object):
    """The associations of one partition, by handle."""

    def __init__(self):
        self.assocs = {}

    def set(self, assoc):
        self.assocs[assoc.handle] = assoc

    def get(self, handle):
        return self.assocs.get(handle)

    def remove(self, handle):
        try:
            del self.assocs[handle]
        except KeyError:
            return False
        else:
            return True

    def best(self, policy):
        """Return the most recently issued live association within the policy, or None."""
        return newest_association(a for a in self.assocs.values()
                                  if not a.is_expired and policy.is_in_permitted_range(a))

    def cleanup(self):
        """Remove expired associations.

        @return: The number of associations removed.
        @rtype: int
        """
        expired = [handle for handle, assoc in self.assocs.items() if assoc.is_expired]
        for handle in expired:
            del self.assocs[handle]
        return len(expired)

    def __len__(self):
        return len(self.assocs)


class MemoryStore(AssociationStore):
    """In-process memory store.

    Use for single long-running processes.  No persistence supplied.
    Associations are immutable, so they are stored and returned as they are.
    """

    def __init__(self):
        self.partitions = {}
        self._lock = threading.RLock()

    def _getPartition(self, key):
        try:
            return self.partitions[key]
        except KeyError:
            assocs = self.partitions[key] = PartitionAssocs()
            return assocs

    def store_association(self, key, association):
        with self._lock:
            self._getPartition(key).set(association)

    def get_best_association(self, key, policy):
        with self._lock:
            partition = self.partitions.get(key)
            if partition is None:
                return None
            return partition.best(policy)

    def get_association(self, key, handle):
        with self._lock:
            partition = self.partitions.get(key)
            assoc = partition.get(handle) if partition is not None else None
        if assoc is None or assoc.is_expired:
            return None
        return assoc

    def remove_association(self, key, handle):
        with self._lock:
            partition = self.partitions.get(key)
            if partition is None:
                return False
            removed = partition.remove(handle)
            if not partition:
                del self.partitions[key]
            return removed

    def sweep_expired(self):
        with self._lock:
            removed = 0
            for key in list(self.partitions):
                partition = self.partitions[key]
                removed += partition.cleanup()
                if not partition:
                    del self.partitions[key]
        _LOGGER.debug('Swept %d expired associations', removed)
        return removed
