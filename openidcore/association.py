# -*- test-case-name: openidcore.test.test_association -*-
"""
This module contains code for dealing with associations between
relying parties and providers. Associations contain a shared secret
that is used to sign and verify protocol messages.

Users of the library should not usually need to interact directly with
associations. The L{stores<openidcore.store>} and the
L{signatory<openidcore.server.signatory>} create and manage them.

An association is always one of a small, fixed set of keyed-hash
variants.  The variant is identified by its protocol type name when an
association is negotiated, and by the length of its secret when one is
rehydrated from storage, since only the secret is persisted.

@var HMAC_VARIANTS: The supported keyed-hash variants, strongest first.
"""
import collections
import hmac
import logging
from datetime import timedelta, timezone

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.constant_time import bytes_eq
from cryptography.hazmat.primitives.hmac import HMAC

from openidcore.constants import MAX_AUTHENTICATION_TIME, NO_ENCRYPTION
from openidcore.dh import get_session_type_for_size, lookup_session_algorithm
from openidcore.errors import InternalInvariantError, ProtocolError
from openidcore.oidutil import utcnow

__all__ = [
    'HMAC_VARIANTS',
    'HmacVariant',
    'Association',
    'find_best_association',
    'is_dh_session_compatible',
    'get_secret_length',
]

_LOGGER = logging.getLogger(__name__)


HmacVariant = collections.namedtuple('HmacVariant', ['assoc_type', 'algorithm', 'secret_length'])
HmacVariant.__doc__ = """A keyed-hash variant: protocol type name, hash algorithm and secret size in bytes."""

HMAC_VARIANTS = (
    HmacVariant('HMAC-SHA512', hashes.SHA512(), 64),
    HmacVariant('HMAC-SHA384', hashes.SHA384(), 48),
    HmacVariant('HMAC-SHA256', hashes.SHA256(), 32),
    HmacVariant('HMAC-SHA1', hashes.SHA1(), 20),
)


def _findVariantByType(assoc_type):
    for variant in HMAC_VARIANTS:
        if variant.assoc_type == assoc_type:
            return variant
    raise ProtocolError('Unsupported association type: %r' % (assoc_type,))


def _findVariantByLength(secret_length):
    for variant in HMAC_VARIANTS:
        if variant.secret_length == secret_length:
            return variant
    raise ProtocolError('No association type has a %d byte secret' % (secret_length,))


def get_secret_length(assoc_type):
    """Return the secret size in bytes for an association type.

    @raise ProtocolError: If the association type is unknown.
    """
    return _findVariantByType(assoc_type).secret_length


def find_best_association(min_bits, max_bits, require_matching_dh_session, high_security_is_better=True):
    """Pick the association and session types to negotiate.

    The variants are scanned strongest first, or weakest first if
    C{high_security_is_better} is false.  The first variant whose hash
    size lies within C{[min_bits, max_bits]} wins.  If a Diffie-Hellman
    session is mandatory, which it is over a channel that is not
    secure, the variant must also have a Diffie-Hellman session type of
    the same strength.

    @return: Pair of association type and session type or C{None} if
        no variant qualifies.
    @rtype: Optional[Tuple[str, str]]
    """
    variants = HMAC_VARIANTS if high_security_is_better else tuple(reversed(HMAC_VARIANTS))
    for variant in variants:
        bits = variant.secret_length * 8
        if bits < min_bits or bits > max_bits:
            continue

        session_type = get_session_type_for_size(bits)
        if session_type is None:
            if require_matching_dh_session:
                continue
            session_type = NO_ENCRYPTION

        return variant.assoc_type, session_type

    return None


def is_dh_session_compatible(assoc_type, session_type):
    """Check whether an association type may be negotiated using a session type.

    Every association type works with C{no-encryption}.  A
    Diffie-Hellman session must hash to exactly the association's
    secret length.

    @raise ProtocolError: If either type is unknown.
    """
    if session_type == NO_ENCRYPTION:
        return True

    secret_length = get_secret_length(assoc_type)
    algorithm = lookup_session_algorithm(session_type)
    return algorithm.digest_size == secret_length


def _pairsToKV(pairs):
    """Encode key-value pairs as newline-terminated C{key:value} lines."""
    lines = []
    for key, value in pairs:
        if '\n' in key or ':' in key:
            raise ValueError('Invalid key for key-value form: %r' % (key,))
        if '\n' in value:
            raise ValueError('Invalid value for key-value form: %r' % (value,))
        lines.append('%s:%s\n' % (key, value))
    return ''.join(lines)


class Association(object):
    """
    This class represents an association between a provider and a
    relying party.  In general, users of this library will never see
    instances of this object.  The only exception is if you implement
    a custom C{L{AssociationStore<openidcore.store.interface.AssociationStore>}}.

    If you do implement such a store, it only needs to persist the
    C{L{handle}}, C{L{expires}} and the bytes returned by
    C{L{serialize_private_data}}, and rebuild the association with
    C{L{deserialize}}.

    Instances are immutable.

    @ivar handle: This is the handle the provider gave this association.
    @type handle: str

    @ivar secret: This is the shared secret.
    @type secret: bytes

    @ivar issued: This is the time this association was issued, in UTC,
        cut to the whole second.
    @type issued: datetime

    @ivar lifetime: This is the amount of time this association is good
        for, measured from C{issued}.
    @type lifetime: timedelta
    """

    __slots__ = ('handle', 'secret', 'issued', 'lifetime', '_variant')

    def __init__(self, variant, handle, secret, lifetime, issued=None):
        """
        Create an association of a known variant.  Most code should use
        C{L{create}}, C{L{from_secret}} or C{L{deserialize}} instead.

        @type variant: L{HmacVariant}
        @type handle: str
        @type secret: bytes
        @type lifetime: timedelta

        @param issued: Time of issue, defaults to now cut to the second.
            Must be an aware datetime not in the future.
        @type issued: Optional[datetime]
        """
        if not handle:
            raise ValueError('Association handle must not be empty')
        if not isinstance(secret, bytes):
            raise TypeError('Association secret must be bytes, got %r' % type(secret))
        if lifetime <= timedelta(0):
            raise ValueError('Association lifetime must be positive: %r' % (lifetime,))
        if len(secret) != variant.secret_length:
            raise ProtocolError('Wrong size secret (%s bytes) for association type %s'
                                % (len(secret), variant.assoc_type))

        now = utcnow()
        if issued is None:
            issued = now
        else:
            if issued.tzinfo is None:
                raise ValueError('Association issue time must be timezone aware')
            issued = issued.astimezone(timezone.utc)
            if issued > now:
                raise ValueError('Association issue time is in the future: %s' % (issued,))

        set_attr = super(Association, self).__setattr__
        set_attr('_variant', variant)
        set_attr('handle', handle)
        set_attr('secret', secret)
        set_attr('issued', issued)
        set_attr('lifetime', lifetime)

    def __setattr__(self, name, value):
        raise AttributeError('%s is immutable' % (self.__class__.__name__,))

    def __delattr__(self, name):
        raise AttributeError('%s is immutable' % (self.__class__.__name__,))

    @classmethod
    def create(cls, assoc_type, handle, secret, lifetime):
        """Create a new association of a named type.

        @param assoc_type: Protocol name of the association type, e.g.
            C{'HMAC-SHA256'}.
        @type assoc_type: str

        @raise ProtocolError: If the type is unknown or the secret does
            not have the type's length.
        """
        return cls(_findVariantByType(assoc_type), handle, secret, lifetime)

    @classmethod
    def from_secret(cls, handle, secret, lifetime):
        """Create a new association whose type is inferred from the secret length.

        @raise ProtocolError: If no variant has a secret of that length.
        """
        return cls(_findVariantByLength(len(secret)), handle, secret, lifetime)

    @classmethod
    def deserialize(cls, handle, expires, private_data):
        """Rehydrate an association persisted as C{(handle, expires, private_data)}.

        The variant is recovered from the length of the secret.  The
        association is considered issued now with the remaining lifetime,
        so C{expires} survives the round trip.

        @type handle: str
        @type expires: datetime
        @type private_data: bytes

        @raise InternalInvariantError: If the private data does not
            correspond to any supported variant.
        """
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        issued = utcnow()
        lifetime = expires.astimezone(timezone.utc) - issued
        try:
            variant = _findVariantByLength(len(private_data))
        except ProtocolError as error:
            raise InternalInvariantError('Bad association private data for %r: %s' % (handle, error))
        if lifetime <= timedelta(0):
            # Keep expired associations representable, so stores can report and sweep them.
            issued = issued - (timedelta(seconds=1) - lifetime)
            lifetime = timedelta(seconds=1)
        return cls(variant, handle, bytes(private_data), lifetime, issued=issued)

    def serialize_private_data(self):
        """Return the data that must be persisted alongside handle and expiry.

        Currently that is just a copy of the secret; its length
        identifies the variant.

        @rtype: bytes
        """
        return bytes(self.secret)

    @property
    def assoc_type(self):
        return self._variant.assoc_type

    @property
    def hash_bit_length(self):
        return len(self.secret) * 8

    @property
    def expires(self):
        return self.issued + self.lifetime

    @property
    def is_expired(self):
        return utcnow() >= self.expires

    def get_expires_in(self, now=None):
        """
        Return the number of seconds this association is still valid
        for, or C{0} if the association is no longer valid.

        @rtype: int
        """
        if now is None:
            now = utcnow()
        return max(0, int((self.expires - now).total_seconds()))

    expires_in = property(get_expires_in)

    def has_useful_life_remaining(self, minimum=MAX_AUTHENTICATION_TIME):
        """Whether enough life is left to complete an authentication with this association.

        @type minimum: timedelta
        """
        return self.expires - utcnow() >= minimum

    def sign(self, data):
        """Return the keyed hash of C{data}.

        @type data: bytes
        @rtype: bytes
        """
        mac = HMAC(self.secret, self._variant.algorithm)
        mac.update(data)
        return mac.finalize()

    def verify(self, data, signature):
        """Check a signature by recomputing it.

        @rtype: bool
        """
        return bytes_eq(self.sign(data), signature)

    def sign_pairs(self, pairs):
        """
        Generate a signature for a sequence of (key, value) pairs
        encoded in key-value form.

        @param pairs: The pairs to sign, in order
        @type pairs: Iterable[Tuple[str, str]]

        @return: The binary signature of this sequence of pairs
        @rtype: bytes
        """
        return self.sign(_pairsToKV(pairs).encode('utf-8'))

    def check_pairs_signature(self, pairs, signature):
        return self.verify(_pairsToKV(pairs).encode('utf-8'), signature)

    def __eq__(self, other):
        """
        Two associations are equal if they have the same handle, type,
        expiry and secret.
        """
        if type(self) != type(other):
            return NotImplemented
        return (self.handle == other.handle
                and self._variant == other._variant
                and self.expires == other.expires
                and hmac.compare_digest(self.secret, other.secret))

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self):
        return hash((self.handle, self.expires))

    def __repr__(self):
        return "<%s.%s %s %s expires %s>" % (
            self.__class__.__module__,
            self.__class__.__name__,
            self.assoc_type,
            self.handle,
            self.expires.isoformat())


def newest_association(associations):
    """Return the most recently issued association or C{None}.

    All associations of one type share the same lifetime, so the most
    recently issued one also has the most life remaining.
    """
    best = None
    for assoc in associations:
        if best is None or best.issued < assoc.issued:
            best = assoc
    return best
