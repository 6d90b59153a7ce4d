# -*- test-case-name: openidcore.test.test_cache -*-
"""An in-memory cache of discovery results."""
import logging
import threading
import time

__all__ = ['DiscoveryCache', 'DEFAULT_TTL']

_LOGGER = logging.getLogger(__name__)

# One hour, in seconds.
DEFAULT_TTL = 60 * 60


class DiscoveryCache(object):
    """Remembers the endpoints discovered for identifiers for a while.

    Results are keyed by the canonical form of the identifier and by
    whether its discovery had to be secure.  Empty results are cached
    too.  Callers get copies of the cached endpoints.

    @ivar ttl: How long a result stays in the cache, in seconds.
    @type ttl: float
    """

    # Parameterized for the benefit of testing.
    clock = staticmethod(time.monotonic)

    def __init__(self, ttl=DEFAULT_TTL):
        if ttl <= 0:
            raise ValueError('Cache TTL must be positive: %r' % (ttl,))
        self.ttl = ttl
        self._entries = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(identifier):
        return (identifier.canonical, identifier.is_discovery_secure_end_to_end)

    def get(self, identifier):
        """Return the cached endpoints of an identifier.

        @type identifier: openidcore.identifier.Identifier
        @return: The endpoints, or C{None} if nothing is cached.
        @rtype: Optional[List[openidcore.consumer.discover.ServiceEndpoint]]
        """
        key = self._key(identifier)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires, endpoints = entry
            if self.clock() >= expires:
                del self._entries[key]
                return None
            return [endpoint.copy() for endpoint in endpoints]

    def set(self, identifier, endpoints):
        """Cache the endpoints of an identifier.

        Expired results of other identifiers are dropped on the way.
        """
        endpoints = [endpoint.copy() for endpoint in endpoints]
        with self._lock:
            now = self.clock()
            self._purge(now)
            self._entries[self._key(identifier)] = (now + self.ttl, endpoints)

    def _purge(self, now):
        expired = [key for key, (expires, endpoints) in self._entries.items() if now >= expires]
        for key in expired:
            del self._entries[key]
        if expired:
            _LOGGER.debug('Dropped %d expired discovery results', len(expired))

    def remove(self, identifier):
        """Forget the endpoints of an identifier.

        @return: Whether anything was cached.
        @rtype: bool
        """
        with self._lock:
            return self._entries.pop(self._key(identifier), None) is not None

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def preload(self, discoverer, identifiers, cancel=None):
        """Discover identifiers ahead of time and cache the results.

        The discovery itself runs without holding the cache lock.

        @type discoverer: openidcore.consumer.discover.Discoverer
        @param identifiers: Identifiers or the texts to parse them from.
        @type identifiers: Iterable[Union[openidcore.identifier.Identifier, str]]
        @type cancel: Optional[threading.Event]

        @return: The number of identifiers preloaded.
        @rtype: int
        """
        count = 0
        for identifier in identifiers:
            identifier, endpoints = discoverer.discover_identifier(identifier, cancel)
            self.set(identifier, endpoints)
            _LOGGER.debug('Preloaded %d endpoints for %s', len(endpoints), identifier)
            count += 1
        return count
