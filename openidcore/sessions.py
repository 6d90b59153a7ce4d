"""Association sessions: how an association secret travels between the parties.

A Diffie-Hellman session hides the secret from eavesdroppers.  The
C{no-encryption} session sends it in the clear and is only acceptable
over a channel that is already confidential.

The arguments and responses are plain dictionaries of unprefixed
protocol fields, e.g. C{dh_consumer_public} or C{enc_mac_key}.
"""
import logging

from openidcore.constants import NO_ENCRYPTION
from openidcore.dh import DH_SESSION_TYPES, DiffieHellman, lookup_session_algorithm
from openidcore.errors import ProtocolError
from openidcore.oidutil import fromBase64, toBase64

__all__ = ['DiffieHellmanConsumerSession', 'PlainTextConsumerSession', 'DiffieHellmanServerSession',
           'PlainTextServerSession', 'create_consumer_session', 'create_server_session', 'SESSION_TYPES']

_LOGGER = logging.getLogger(__name__)

SESSION_TYPES = tuple(item.session_type for item in DH_SESSION_TYPES) + (NO_ENCRYPTION, )


def _getArg(args, name):
    try:
        return args[name]
    except KeyError:
        raise ProtocolError('Missing required field %r' % (name,))


def _checkChannel(is_channel_secure):
    if not is_channel_secure:
        raise ProtocolError('Session type %s is only allowed over a secure channel' % NO_ENCRYPTION)


class DiffieHellmanConsumerSession(object):
    """Relying party side of a Diffie-Hellman session."""

    def __init__(self, session_type, dh=None):
        self.algorithm = lookup_session_algorithm(session_type)
        self.session_type = session_type
        if dh is None:
            dh = DiffieHellman.from_defaults()
        self.dh = dh

    def get_request(self):
        """Return the session fields of an association request.

        @rtype: Dict[str, str]
        """
        args = {'dh_consumer_public': self.dh.public_key}

        if not self.dh.uses_default_values():
            modulus, generator = self.dh.parameters
            args.update({'dh_modulus': modulus, 'dh_gen': generator})

        return args

    def extract_secret(self, response_args):
        """Decrypt the association secret from a provider's response.

        @type response_args: Dict[str, str]
        @rtype: bytes
        @raise ProtocolError: If fields are missing or malformed.
        """
        server_public = _getArg(response_args, 'dh_server_public')
        enc_mac_key = _getArg(response_args, 'enc_mac_key')
        return fromBase64(self.dh.xor_secret(server_public, enc_mac_key, self.algorithm))


class PlainTextConsumerSession(object):
    session_type = NO_ENCRYPTION

    def __init__(self, is_channel_secure=False):
        _checkChannel(is_channel_secure)

    def get_request(self):
        return {}

    def extract_secret(self, response_args):
        try:
            return fromBase64(_getArg(response_args, 'mac_key'))
        except ValueError as error:
            raise ProtocolError('Malformed mac_key: %s' % error)


def create_consumer_session(session_type, is_channel_secure=False):
    """Create the relying party session for a session type.

    @raise ProtocolError: If the session type is unknown or is
        C{no-encryption} over a channel which is not secure.
    """
    if session_type == NO_ENCRYPTION:
        return PlainTextConsumerSession(is_channel_secure)
    return DiffieHellmanConsumerSession(session_type)


class DiffieHellmanServerSession(object):
    """Provider side of a Diffie-Hellman session.

    @ivar consumer_public: Base64 encoded public key of the relying party.
    @type consumer_public: str
    """

    def __init__(self, session_type, dh, consumer_public):
        self.algorithm = lookup_session_algorithm(session_type)
        self.session_type = session_type
        self.dh = dh
        self.consumer_public = consumer_public

    @classmethod
    def from_args(cls, session_type, args):
        """Build the session from the fields of an association request.

        Custom Diffie-Hellman parameters are used when both C{dh_modulus}
        and C{dh_gen} are present.

        @raise ProtocolError: If the fields are missing or malformed.
        """
        modulus = args.get('dh_modulus')
        generator = args.get('dh_gen')
        if (modulus is None) != (generator is None):
            raise ProtocolError('If non-default modulus or generator is supplied, both must be supplied.')

        try:
            if modulus is None:
                dh = DiffieHellman.from_defaults()
            else:
                dh = DiffieHellman(modulus, generator)
        except ValueError as error:
            raise ProtocolError('Invalid Diffie-Hellman parameters: %s' % error)

        consumer_public = _getArg(args, 'dh_consumer_public')
        return cls(session_type, dh, consumer_public)

    def answer(self, secret):
        """Return the response fields carrying the encrypted secret.

        @type secret: bytes
        @rtype: Dict[str, str]
        """
        enc_mac_key = self.dh.xor_secret(self.consumer_public, toBase64(secret), self.algorithm)
        return {'dh_server_public': self.dh.public_key, 'enc_mac_key': enc_mac_key}


class PlainTextServerSession(object):
    session_type = NO_ENCRYPTION

    @classmethod
    def from_args(cls, session_type, args, is_channel_secure=False):
        _checkChannel(is_channel_secure)
        return cls()

    def answer(self, secret):
        return {'mac_key': toBase64(secret)}


def create_server_session(session_type, args, is_channel_secure=False):
    """Create the provider session answering an association request.

    @raise ProtocolError: If the request cannot be answered.
    """
    if session_type == NO_ENCRYPTION:
        return PlainTextServerSession.from_args(session_type, args, is_channel_secure)
    _LOGGER.debug('Answering association request using %s session', session_type)
    return DiffieHellmanServerSession.from_args(session_type, args)
