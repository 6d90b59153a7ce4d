"""Utilities for Diffie-Hellman key exchange.

@var DH_SESSION_TYPES: The Diffie-Hellman session types, strongest first.
"""
import collections

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.dh import DHParameterNumbers, DHPublicNumbers

from openidcore import cryptutil
from openidcore.constants import DEFAULT_DH_GENERATOR, DEFAULT_DH_MODULUS
from openidcore.errors import ProtocolError
from openidcore.oidutil import fromBase64, toBase64

__all__ = ['DiffieHellman', 'DH_SESSION_TYPES', 'lookup_session_algorithm', 'get_session_type_for_size', 'strxor']


DHSessionType = collections.namedtuple('DHSessionType', ['session_type', 'algorithm'])

DH_SESSION_TYPES = (
    DHSessionType('DH-SHA512', hashes.SHA512()),
    DHSessionType('DH-SHA384', hashes.SHA384()),
    DHSessionType('DH-SHA256', hashes.SHA256()),
    DHSessionType('DH-SHA1', hashes.SHA1()),
)


def lookup_session_algorithm(session_type):
    """Return the hash algorithm of a Diffie-Hellman session type.

    @type session_type: str
    @rtype: hashes.HashAlgorithm
    @raise ProtocolError: If the session type is unknown.
    """
    for item in DH_SESSION_TYPES:
        if item.session_type == session_type:
            return item.algorithm
    raise ProtocolError('Unsupported session type: %r' % (session_type,))


def get_session_type_for_size(bits):
    """Return the name of the Diffie-Hellman session type whose hash has C{bits} bits.

    @rtype: Optional[str]
    """
    for item in DH_SESSION_TYPES:
        if item.algorithm.digest_size * 8 == bits:
            return item.session_type
    return None


def strxor(x, y):
    if len(x) != len(y):
        raise ValueError('Inputs to strxor must have the same length')
    return bytes((a ^ b) for a, b in zip(x, y))


class DiffieHellman(object):
    """Utility for Diffie-Hellman key exchange."""

    def __init__(self, modulus, generator):
        """Create a new instance with a freshly generated private key.

        @param modulus: Base64 encoded prime modulus
        @type modulus: str
        @param generator: Base64 encoded generator
        @type generator: str
        """
        self.parameter_numbers = DHParameterNumbers(cryptutil.base64ToLong(modulus),
                                                    cryptutil.base64ToLong(generator))
        parameters = self.parameter_numbers.parameters()
        self.private_key = parameters.generate_private_key()

    @classmethod
    def from_defaults(cls):
        """Create Diffie-Hellman with the default modulus and generator."""
        return cls(DEFAULT_DH_MODULUS, DEFAULT_DH_GENERATOR)

    @property
    def parameters(self):
        """Return base64 encoded modulus and generator.

        @return: Tuple with modulus and generator
        @rtype: Tuple[str, str]
        """
        modulus = self.parameter_numbers.p
        generator = self.parameter_numbers.g
        return cryptutil.longToBase64(modulus), cryptutil.longToBase64(generator)

    @property
    def public_key(self):
        """Return base64 encoded public key.

        @rtype: str
        """
        return cryptutil.longToBase64(self.private_key.public_key().public_numbers().y)

    def uses_default_values(self):
        return self.parameters == (DEFAULT_DH_MODULUS, DEFAULT_DH_GENERATOR)

    def get_shared_secret(self, public_key):
        """Return a shared secret in its `btwoc` form.

        @param public_key: Base64 encoded public key of the other party.
        @type public_key: str
        @rtype: bytes
        @raise ProtocolError: If the public key is not usable.
        """
        try:
            public_numbers = DHPublicNumbers(cryptutil.base64ToLong(public_key), self.parameter_numbers)
            shared = self.private_key.exchange(public_numbers.public_key())
        except ValueError as error:
            raise ProtocolError('Invalid Diffie-Hellman public key: %s' % error)
        # The exchange pads the value to the size of the modulus, the protocol uses the shortest form.
        # See http://openid.net/specs/openid-authentication-2_0.html#rfc.section.8.2.3 for details.
        return cryptutil.int_to_bytes(cryptutil.bytes_to_int(shared))

    def xor_secret(self, public_key, secret, algorithm):
        """Return a base64 encoded XOR of a secret key and hash of a DH exchanged secret.

        Applying it twice with the same keys returns the original secret.

        @param public_key: Base64 encoded public key of the other party.
        @type public_key: str
        @param secret: Base64 encoded secret
        @type secret: str
        @type algorithm: hashes.HashAlgorithm
        @rtype: str
        @raise ProtocolError: If the secret and the hash differ in length.
        """
        dh_shared = self.get_shared_secret(public_key)

        digest = hashes.Hash(algorithm)
        digest.update(dh_shared)
        hashed_dh_shared = digest.finalize()

        try:
            secret_bytes = fromBase64(secret)
        except ValueError as error:
            raise ProtocolError('Malformed secret: %s' % error)
        if len(secret_bytes) != len(hashed_dh_shared):
            raise ProtocolError('Secret of %d bytes does not match the %s hash of %d bytes'
                                % (len(secret_bytes), algorithm.name, len(hashed_dh_shared)))
        return toBase64(strxor(secret_bytes, hashed_dh_shared))
