"""Configuration objects for discovery and association handling.

There is no global configuration.  Instances of these classes are
passed to the objects which need them.
"""
import logging

from openidcore.association import get_secret_length
from openidcore.constants import MAX_AUTHENTICATION_TIME, NO_ENCRYPTION
from openidcore.dh import lookup_session_algorithm
from openidcore.errors import SecurityPolicyViolation

__all__ = ['SecurityPolicy', 'HostMetaProxy', 'GOOGLE_HOSTED_HOST_META', 'DiscoveryConfig', 'ALL_DOMAINS']

_LOGGER = logging.getLogger(__name__)


class SecurityPolicy(object):
    """Limits on the strength of associations and the security of discovery.

    @ivar minimum_hash_bit_length: Weakest acceptable association hash, in bits.
    @type minimum_hash_bit_length: int

    @ivar maximum_hash_bit_length: Strongest acceptable association hash, in bits.
    @type maximum_hash_bit_length: int

    @ivar require_ssl: Whether discovery must be secure end to end.
    @type require_ssl: bool

    @ivar max_authentication_time: Longest time an authentication may
        take.  Associations with less life remaining are not used.
    @type max_authentication_time: timedelta
    """

    def __init__(self, minimum_hash_bit_length=160, maximum_hash_bit_length=256, require_ssl=False,
                 max_authentication_time=MAX_AUTHENTICATION_TIME):
        if minimum_hash_bit_length <= 0 or maximum_hash_bit_length <= 0:
            raise ValueError('Hash bit lengths must be positive')
        if minimum_hash_bit_length > maximum_hash_bit_length:
            raise ValueError('Minimum hash bit length %d exceeds the maximum %d'
                             % (minimum_hash_bit_length, maximum_hash_bit_length))
        self.minimum_hash_bit_length = minimum_hash_bit_length
        self.maximum_hash_bit_length = maximum_hash_bit_length
        self.require_ssl = require_ssl
        self.max_authentication_time = max_authentication_time

    @classmethod
    def relying_party(cls, **kwargs):
        """Return the default policy of a relying party."""
        kwargs.setdefault('maximum_hash_bit_length', 256)
        return cls(**kwargs)

    @classmethod
    def provider(cls, **kwargs):
        """Return the default policy of a provider."""
        kwargs.setdefault('maximum_hash_bit_length', 512)
        return cls(**kwargs)

    def _inRange(self, bits):
        return self.minimum_hash_bit_length <= bits <= self.maximum_hash_bit_length

    def is_in_permitted_range(self, association=None, assoc_type=None, session_type=None):
        """Check an association, or an association and session type pair, against the policy.

        @raise ProtocolError: If a type name is unknown.
        @rtype: bool
        """
        if association is not None:
            return self._inRange(association.hash_bit_length)

        if assoc_type is None:
            raise TypeError('Either association or assoc_type is required')
        if not self._inRange(get_secret_length(assoc_type) * 8):
            return False
        if session_type is not None and session_type != NO_ENCRYPTION:
            return self._inRange(lookup_session_algorithm(session_type).digest_size * 8)
        return True

    def check(self, association=None, assoc_type=None, session_type=None):
        """Like L{is_in_permitted_range}, but raise L{SecurityPolicyViolation} on failure."""
        if not self.is_in_permitted_range(association, assoc_type, session_type):
            if association is not None:
                assoc_type = association.assoc_type
            raise SecurityPolicyViolation('Association type %s (session type %s) is outside of [%d, %d] bits'
                                          % (assoc_type, session_type, self.minimum_hash_bit_length,
                                             self.maximum_hash_bit_length))

    def __repr__(self):
        return '<%s [%d, %d] require_ssl=%s>' % (self.__class__.__name__, self.minimum_hash_bit_length,
                                                 self.maximum_hash_bit_length, self.require_ssl)


class HostMetaProxy(object):
    """A trusted third party serving host-meta documents for other hosts.

    @ivar proxy_format: Template of the proxy URL, C{{host}} is replaced
        by the host of the identifier.
    @type proxy_format: str

    @ivar signing_host_format: Template of the host name which must sign
        the documents.  Both C{{host}} and C{{proxy_host}} are substituted.
    @type signing_host_format: str
    """

    def __init__(self, proxy_format, signing_host_format):
        if '{host}' not in proxy_format:
            raise ValueError('Proxy format must contain {host}: %r' % (proxy_format,))
        self.proxy_format = proxy_format
        self.signing_host_format = signing_host_format

    def get_proxy(self, host):
        return self.proxy_format.format(host=host)

    def get_signing_host(self, host, proxy_host=''):
        return self.signing_host_format.format(host=host, proxy_host=proxy_host)

    def __eq__(self, other):
        if not isinstance(other, HostMetaProxy):
            return NotImplemented
        return (self.proxy_format, self.signing_host_format) == (other.proxy_format, other.signing_host_format)

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self):
        return hash((self.proxy_format, self.signing_host_format))

    def __repr__(self):
        return '<%s %s>' % (self.__class__.__name__, self.proxy_format)


GOOGLE_HOSTED_HOST_META = HostMetaProxy('https://www.google.com/accounts/o8/.well-known/host-meta?hd={host}',
                                        'hosted-id.google.com')

# Marker for host-meta discovery of every host.
ALL_DOMAINS = '*'


class DiscoveryConfig(object):
    """Settings of the discovery process.

    @ivar timeout: Timeout of a single HTTP request, in seconds.
    @type timeout: float

    @ivar host_meta_domains: Hosts for which host-meta discovery is
        attempted, or L{ALL_DOMAINS}.
    @type host_meta_domains: Union[Set[str], str]

    @ivar trusted_host_meta_proxies: Proxies queried for host-meta
        documents before the host itself, in order.
    @type trusted_host_meta_proxies: List[HostMetaProxy]

    @ivar trusted_certificates: Root certificates which may anchor the
        signatures of XRDS documents found through host-meta.
    @type trusted_certificates: List[cryptography.x509.Certificate]

    @ivar allow_single_certificate_validation: Accept a signing
        certificate issued directly by a trusted root even when the
        rest of the supplied chain does not validate.
    @type allow_single_certificate_validation: bool

    @ivar cache_certificate_validation: Remember certificates which
        have validated already.
    @type cache_certificate_validation: bool
    """

    def __init__(self, timeout=10, host_meta_domains=(), trusted_host_meta_proxies=(), trusted_certificates=(),
                 allow_single_certificate_validation=False, cache_certificate_validation=True):
        self.timeout = timeout
        if host_meta_domains == ALL_DOMAINS:
            self.host_meta_domains = ALL_DOMAINS
        else:
            self.host_meta_domains = set(domain.lower() for domain in host_meta_domains)
        self.trusted_host_meta_proxies = list(trusted_host_meta_proxies)
        self.trusted_certificates = list(trusted_certificates)
        self.allow_single_certificate_validation = allow_single_certificate_validation
        self.cache_certificate_validation = cache_certificate_validation

    def is_host_meta_domain(self, host):
        """Whether host-meta discovery applies to a host."""
        if self.host_meta_domains == ALL_DOMAINS:
            return True
        return host.lower() in self.host_meta_domains

    @property
    def use_google_hosted_host_meta(self):
        """Whether Google's hosted host-meta proxy is trusted."""
        return GOOGLE_HOSTED_HOST_META in self.trusted_host_meta_proxies

    @use_google_hosted_host_meta.setter
    def use_google_hosted_host_meta(self, value):
        if value and not self.use_google_hosted_host_meta:
            self.trusted_host_meta_proxies.append(GOOGLE_HOSTED_HOST_META)
        elif not value:
            self.trusted_host_meta_proxies = [p for p in self.trusted_host_meta_proxies
                                              if p != GOOGLE_HOSTED_HOST_META]
