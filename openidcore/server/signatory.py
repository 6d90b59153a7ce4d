# -*- test-case-name: openidcore.test.test_signatory -*-
"""The provider's side of associations: creating, looking up and signing with them."""
import logging
import os

from openidcore.association import Association, find_best_association, get_secret_length
from openidcore.config import SecurityPolicy
from openidcore.constants import SMART_ASSOCIATION_LIFETIME
from openidcore.oidutil import fromBase64, toBase64, utcnow

__all__ = ['Signatory', 'SMART_KEY', 'DUMB_KEY']

_LOGGER = logging.getLogger(__name__)

# Store partitions of the associations shared with relying parties and
# of those the provider keeps for itself.
SMART_KEY = 'http://localhost/|smart'
DUMB_KEY = 'http://localhost/|dumb'


class Signatory(object):
    """I sign things for the provider.

    Smart associations are shared with relying parties and live for
    L{SMART_ASSOCIATION_LIFETIME}.  Dumb associations never leave the
    provider, they sign assertions for relying parties without an
    association and live only as long as an authentication may take.

    @ivar store: The store of the provider's associations.
    @type store: openidcore.store.interface.AssociationStore

    @ivar policy: Limits on the association types the provider issues.
    @type policy: openidcore.config.SecurityPolicy
    """

    SECRET_LIFETIME = SMART_ASSOCIATION_LIFETIME

    def __init__(self, store, policy=None):
        if store is None:
            raise ValueError('Signatory requires a store')
        self.store = store
        self.policy = policy or SecurityPolicy.provider()

    @staticmethod
    def _key(dumb):
        return DUMB_KEY if dumb else SMART_KEY

    def create_association(self, dumb=True, assoc_type=None):
        """Make a new association and store it.

        @param dumb: Whether the association stays with the provider.
        @type dumb: bool

        @param assoc_type: The type of the association, the strongest
            type the policy permits by default.
        @type assoc_type: Optional[str]

        @rtype: openidcore.association.Association

        @raise SecurityPolicyViolation: If the type is outside the policy.
        @raise ProtocolError: If the type is unknown.
        """
        if assoc_type is None:
            best = find_best_association(self.policy.minimum_hash_bit_length, self.policy.maximum_hash_bit_length,
                                         False)
            if best is None:
                raise ValueError('No association type satisfies %r' % (self.policy,))
            assoc_type = best[0]
        self.policy.check(assoc_type=assoc_type)

        secret = os.urandom(get_secret_length(assoc_type))
        uniq = toBase64(os.urandom(4))
        handle = '{%s}{%x}{%s}' % (assoc_type, int(utcnow().timestamp()), uniq)

        if dumb:
            lifetime = self.policy.max_authentication_time
        else:
            lifetime = self.SECRET_LIFETIME
        assoc = Association.create(assoc_type, handle, secret, lifetime)

        self.store.store_association(self._key(dumb), assoc)
        _LOGGER.debug('Created %s association %s', 'dumb' if dumb else 'smart', handle)
        return assoc

    def get_association(self, assoc_handle, dumb):
        """Get the association with the handle.

        @return: The live association or C{None}.
        @rtype: Optional[openidcore.association.Association]
        """
        if assoc_handle is None:
            raise ValueError("assoc_handle must not be None")

        assoc = self.store.get_association(self._key(dumb), assoc_handle)
        if assoc is None:
            _LOGGER.debug('No live %s association with handle %r', 'dumb' if dumb else 'smart', assoc_handle)
        return assoc

    def invalidate(self, assoc_handle, dumb):
        """Forget the association with the handle.

        @return: Whether the association existed.
        @rtype: bool
        """
        return self.store.remove_association(self._key(dumb), assoc_handle)

    def sign(self, assoc_handle, data):
        """Sign data with the smart association with the handle.

        If there is no such association, or no handle is given, a new
        dumb association signs instead and the relying party should be
        told to drop the handle it sent.

        @type assoc_handle: Optional[str]
        @type data: bytes

        @return: The handle of the association used, the base64 encoded
            signature and the handle to invalidate, if any.
        @rtype: Tuple[str, str, Optional[str]]
        """
        invalidate_handle = None
        assoc = None
        if assoc_handle:
            # smart mode
            assoc = self.get_association(assoc_handle, dumb=False)
            if assoc is None:
                # fall back to dumb mode
                invalidate_handle = assoc_handle
        if assoc is None:
            assoc = self.create_association(dumb=True)

        return assoc.handle, toBase64(assoc.sign(data)), invalidate_handle

    def verify(self, assoc_handle, data, sig):
        """Check a signature made with a dumb association.

        @param sig: The base64 encoded signature.
        @type sig: str
        @rtype: bool
        """
        assoc = self.get_association(assoc_handle, dumb=True)
        if assoc is None:
            _LOGGER.info('Failed to get assoc with handle %r to verify sig %r', assoc_handle, sig)
            return False

        try:
            signature = fromBase64(sig)
        except ValueError:
            _LOGGER.info('Malformed signature %r for handle %r', sig, assoc_handle)
            return False
        return assoc.verify(data, signature)

    def sweep(self):
        """Remove the expired associations of the provider.

        @rtype: int
        """
        return self.store.sweep_expired()
