# -*- test-case-name: openidcore.test.test_discover -*-
"""Discovery of the OpenID provider endpoints of an identifier.

L{Discoverer.discover} tries, in order:

 1. host-meta discovery, for the hosts it is enabled for,
 2. YADIS discovery of an XRDS document,
 3. the C{<link rel="...">} tags of the identifier's HTML page.

The endpoints are returned ordered by their priorities.  Failures of
remote parties never raise, they only make the result shorter.
"""
import copy
import logging
from urllib.parse import urlsplit

from openidcore.config import DiscoveryConfig, SecurityPolicy
from openidcore.consumer import html_parse
from openidcore.consumer.hostmeta import HostMetaDiscoverer
from openidcore.errors import ProtocolError
from openidcore.fetchers import ExceptionWrappingFetcher, HTTPFetchingError, getDefaultFetcher
from openidcore.identifier import Identifier, NoDiscoveryIdentifier, UriIdentifier, XriIdentifier
from openidcore.urinorm import urinorm
from openidcore.yadis import etxrd
from openidcore.yadis.discover import DiscoveryFailure
from openidcore.yadis.discover import discover as yadisDiscover
from openidcore.yadis.xrires import ProxyResolver

__all__ = ['Discoverer', 'ServiceEndpoint', 'DiscoveryFailure', 'OPENID_IDP_2_0_TYPE', 'OPENID_2_0_TYPE',
           'OPENID_1_1_TYPE', 'OPENID_1_0_TYPE', 'sortEndpoints']

_LOGGER = logging.getLogger(__name__)

OPENID_1_0_NS = 'http://openid.net/xmlns/1.0'
OPENID_IDP_2_0_TYPE = 'http://specs.openid.net/auth/2.0/server'
OPENID_2_0_TYPE = 'http://specs.openid.net/auth/2.0/signon'
OPENID_1_1_TYPE = 'http://openid.net/signon/1.1'
OPENID_1_0_TYPE = 'http://openid.net/signon/1.0'

OPENID_1_0_MESSAGE_NS = 'http://openid.net/signon/1.0'
OPENID_2_0_MESSAGE_NS = 'http://specs.openid.net/auth/2.0'

# OpenID service type URIs, listed in order of preference.
OPENID_TYPE_URIS = [
    OPENID_IDP_2_0_TYPE,
    OPENID_2_0_TYPE,
    OPENID_1_1_TYPE,
    OPENID_1_0_TYPE,
]


def _isAbsoluteHTTPURL(url):
    parts = urlsplit(url)
    return parts.scheme in ('http', 'https') and bool(parts.netloc)


class ServiceEndpoint(object):
    """Object representing an OpenID service endpoint.

    @ivar server_url: URL of the provider endpoint.
    @ivar type_uris: The service types of the endpoint.
    @ivar service_priority: Priority of the XRDS service, if any.
    @ivar uri_priority: Priority of the XRDS service URI, if any.
    @ivar local_id: The identifier the provider knows the user by, if it
        differs from the claimed identifier.
    @ivar claimed_id: The verified identifier, C{None} for OP identifiers.
    @ivar user_supplied_identifier: The identifier discovery started from.
    @ivar canonical_id: For XRI, the persistent identifier.
    """

    def __init__(self, server_url, type_uris, claimed_id=None, local_id=None, service_priority=None,
                 uri_priority=None, user_supplied_identifier=None, canonical_id=None):
        self.server_url = server_url
        self.type_uris = list(type_uris)
        self.claimed_id = claimed_id
        self.local_id = local_id
        self.service_priority = service_priority
        self.uri_priority = uri_priority
        self.user_supplied_identifier = user_supplied_identifier
        self.canonical_id = canonical_id

    @property
    def is_secure(self):
        """Whether the provider endpoint is reached over https."""
        return self.server_url.lower().startswith('https://')

    @property
    def protocol_version(self):
        if OPENID_IDP_2_0_TYPE in self.type_uris or OPENID_2_0_TYPE in self.type_uris:
            return '2.0'
        if OPENID_1_1_TYPE in self.type_uris:
            return '1.1'
        return '1.0'

    def preferred_namespace(self):
        if self.protocol_version == '2.0':
            return OPENID_2_0_MESSAGE_NS
        else:
            return OPENID_1_0_MESSAGE_NS

    def is_op_identifier(self):
        return OPENID_IDP_2_0_TYPE in self.type_uris

    def uses_extension(self, extension_uri):
        return extension_uri in self.type_uris

    def copy(self):
        """Return a copy which can be changed without affecting this endpoint."""
        endpoint = copy.copy(self)
        endpoint.type_uris = list(self.type_uris)
        return endpoint

    def get_local_id(self):
        """Return the identifier that should be sent as the
        openid.identity parameter to the server."""
        if self.local_id is None and self.canonical_id is None:
            return self.claimed_id
        else:
            return self.local_id or self.canonical_id

    @classmethod
    def from_service_element(cls, claimed_id, type_uris, uri_element, service_element, user_supplied_identifier=None):
        """Create an endpoint from an expanded XRDS service.

        @return: The endpoint or C{None} if the service is not an OpenID service.
        @rtype: Optional[ServiceEndpoint]

        @raise ProtocolError: If the service has conflicting local identifiers.
        """
        if uri_element is None or not (uri_element.text or '').strip():
            return None
        if not any(type_uri in OPENID_TYPE_URIS for type_uri in type_uris):
            return None

        endpoint = cls(uri_element.text.strip(), type_uris, service_priority=etxrd.getPriority(service_element),
                       uri_priority=etxrd.getPriority(uri_element), user_supplied_identifier=user_supplied_identifier)
        if not endpoint.is_op_identifier():
            endpoint.local_id = findOPLocalIdentifier(service_element, type_uris)
            endpoint.claimed_id = claimed_id
        return endpoint

    @classmethod
    def from_html(cls, claimed_id, html, user_supplied_identifier=None):
        """Parse the given document as HTML looking for an OpenID <link
        rel=...>

        @type html: bytes
        @rtype: List[ServiceEndpoint]
        """
        discovery_types = [
            (OPENID_2_0_TYPE, 'openid2.provider', 'openid2.local_id'),
            (OPENID_1_1_TYPE, 'openid.server', 'openid.delegate'),
        ]

        link_attrs = html_parse.parseLinkAttrs(html)
        services = []
        for type_uri, op_endpoint_rel, local_id_rel in discovery_types:
            op_endpoint_url = html_parse.findFirstHref(link_attrs, op_endpoint_rel)
            if op_endpoint_url is None:
                continue
            if not _isAbsoluteHTTPURL(op_endpoint_url):
                _LOGGER.warning('Skipping %s endpoint of %s with invalid provider URL %r', type_uri, claimed_id,
                                op_endpoint_url)
                continue

            local_id = html_parse.findFirstHref(link_attrs, local_id_rel)
            if local_id is not None and not Identifier.is_valid(local_id):
                _LOGGER.warning('Skipping %s endpoint of %s with invalid local identifier %r', type_uri, claimed_id,
                                local_id)
                continue

            services.append(cls(op_endpoint_url, [type_uri], claimed_id=claimed_id, local_id=local_id,
                                user_supplied_identifier=user_supplied_identifier))

        return services

    def __eq__(self, other):
        if not isinstance(other, ServiceEndpoint):
            return NotImplemented
        return self.__dict__ == other.__dict__

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    __hash__ = None

    def __repr__(self):
        return '<%s %s claimed_id=%r local_id=%r>' % (self.__class__.__name__, self.server_url, self.claimed_id,
                                                      self.local_id)


def findOPLocalIdentifier(service_element, type_uris):
    """Find the OP-Local Identifier for this xrd:Service element.

    This considers openid:Delegate to be a synonym for xrd:LocalID if
    both OpenID 1.X and OpenID 2.0 types are present. If only OpenID
    1.X is present, it returns the value of openid:Delegate. If only
    OpenID 2.0 is present, it returns the value of xrd:LocalID.

    @param service_element: The xrd:Service element
    @type service_element: lxml.etree._Element

    @param type_uris: The xrd:Type values present in this service
        element.
    @type type_uris: List[str]

    @raises ProtocolError: If the service holds differing local identifiers.

    @returns: The OP-Local Identifier for this service element, if one
        is present, or None otherwise.
    @rtype: Optional[str]
    """
    # Build the list of tags that could contain the OP-Local Identifier
    local_id_tags = []
    if OPENID_1_1_TYPE in type_uris or OPENID_1_0_TYPE in type_uris:
        local_id_tags.append(etxrd.nsTag(OPENID_1_0_NS, 'Delegate'))

    if OPENID_2_0_TYPE in type_uris:
        local_id_tags.append(etxrd.local_id_tag)

    # Walk through all the matching tags and make sure that they all
    # have the same value
    local_id = None
    for local_id_tag in local_id_tags:
        for local_id_element in service_element.findall(local_id_tag):
            value = (local_id_element.text or '').strip()
            if local_id is None:
                local_id = value
            elif local_id != value:
                raise ProtocolError('More than one %r tag found in one service element' % (local_id_tag,))

    return local_id


def sortEndpoints(endpoints):
    """Sort endpoints by service priority, then URI priority.

    Endpoints without a priority come after those with one.  The sort is
    stable, so ties keep their order.
    """
    return sorted(endpoints, key=lambda e: (etxrd.priorityKey(e.service_priority),
                                            etxrd.priorityKey(e.uri_priority)))


def preferOPIdentifiers(endpoints):
    """Drop the claimed identifier endpoints if there is any OP identifier endpoint."""
    op_endpoints = [e for e in endpoints if e.is_op_identifier()]
    return op_endpoints or endpoints


def endpointsFromXRDs(claimed_id, xrd_elements, user_supplied_identifier=None, canonical_id=None):
    """Return the OpenID endpoints described by XRD elements.

    @raise ProtocolError: If a service is malformed.
    """
    endpoints = []
    for xrd in xrd_elements:
        for service_element in etxrd.prioSort(xrd.findall(etxrd.service_tag)):
            for type_uris, uri_element, service in etxrd.expandService(service_element):
                endpoint = ServiceEndpoint.from_service_element(claimed_id, type_uris, uri_element, service,
                                                                user_supplied_identifier)
                if endpoint is not None:
                    endpoint.canonical_id = canonical_id
                    endpoints.append(endpoint)
    return preferOPIdentifiers(endpoints)


def _normalizeClaimedId(url):
    try:
        return urinorm(url)
    except ValueError as error:
        _LOGGER.warning('Unable to normalize claimed identifier %r: %s', url, error)
        return url


class Discoverer(object):
    """Discovers the OpenID provider endpoints of identifiers.

    An instance holds no state specific to a single identifier and may
    be used from several threads at once.

    @ivar fetcher: Fetcher of all HTTP requests.
    @type fetcher: openidcore.fetchers.HTTPFetcher
    @ivar config: Discovery settings.
    @type config: openidcore.config.DiscoveryConfig
    @ivar policy: Security policy of the relying party.
    @type policy: openidcore.config.SecurityPolicy
    @ivar cache: Optional cache of discovery results.
    @type cache: Optional[openidcore.consumer.cache.DiscoveryCache]
    """

    def __init__(self, fetcher=None, config=None, policy=None, cache=None):
        if fetcher is None:
            fetcher = getDefaultFetcher()
        if not isinstance(fetcher, ExceptionWrappingFetcher):
            fetcher = ExceptionWrappingFetcher(fetcher)
        self.fetcher = fetcher
        self.config = config or DiscoveryConfig()
        self.policy = policy or SecurityPolicy.relying_party()
        self.cache = cache
        self.host_meta = HostMetaDiscoverer(self.fetcher, self.config)
        self.xri_resolver = ProxyResolver(self.fetcher)

    def discover(self, identifier, cancel=None):
        """Discover the provider endpoints of an identifier.

        @param identifier: The identifier or the text to parse it from.
        @type identifier: Union[Identifier, str]

        @param cancel: Discovery stops once this event is set.
        @type cancel: Optional[threading.Event]

        @return: The endpoints, most preferred first.  The list is empty
            if nothing was found.
        @rtype: List[ServiceEndpoint]

        @raise IdentifierFormatError: If the text is not an identifier.
        @raise DiscoveryCancelled: If discovery was cancelled.
        """
        identifier = self.prepare(identifier)

        if self.cache is not None:
            cached = self.cache.get(identifier)
            if cached is not None:
                _LOGGER.debug('Using cached discovery result for %s', identifier)
                return cached

        endpoints = self._dispatch(identifier, cancel)
        if self.cache is not None:
            self.cache.set(identifier, endpoints)
        return endpoints

    def discover_identifier(self, identifier, cancel=None):
        """Discover an identifier without consulting the cache.

        @return: The identifier discovery ran for and its endpoints.
        @rtype: Tuple[Identifier, List[ServiceEndpoint]]
        """
        identifier = self.prepare(identifier)
        return identifier, self._dispatch(identifier, cancel)

    def prepare(self, identifier):
        """Parse the identifier and apply the SSL requirement of the policy.

        @rtype: Identifier
        """
        if isinstance(identifier, str):
            identifier = Identifier.parse(identifier)

        if self.policy.require_ssl:
            ok, identifier = identifier.try_require_ssl()
            if not ok:
                _LOGGER.warning('Identifier %s can not be discovered securely, SSL is required.', identifier)
        return identifier

    def _dispatch(self, identifier, cancel):
        if isinstance(identifier, NoDiscoveryIdentifier):
            endpoints = []
        elif isinstance(identifier, UriIdentifier):
            endpoints = self._discoverURI(identifier, cancel)
        elif isinstance(identifier, XriIdentifier):
            endpoints = self._discoverXRI(identifier, cancel)
        else:
            raise TypeError('Unsupported identifier %r' % (identifier,))

        _LOGGER.info('Discovered %d endpoints for %s', len(endpoints), identifier)
        return endpoints

    def _secureOnly(self, endpoints, identifier, branch):
        if not identifier.is_discovery_secure_end_to_end:
            return endpoints
        secure = [e for e in endpoints if e.is_secure]
        if len(secure) < len(endpoints):
            _LOGGER.warning('Dropped %d insecure %s endpoints of %s', len(endpoints) - len(secure), branch,
                            identifier)
        return secure

    def _discoverHostMeta(self, identifier, cancel):
        """Return the endpoints found through host-meta, or C{None} if it does not apply."""
        if not self.config.is_host_meta_domain(identifier.host):
            return None
        try:
            found = self.host_meta.discover(identifier, cancel)
        except HTTPFetchingError as error:
            _LOGGER.warning('Host-meta discovery of %s failed: %s', identifier, error.why)
            return None
        except (ProtocolError, etxrd.XRDSError) as error:
            _LOGGER.warning('Host-meta discovery of %s aborted: %s', identifier, error)
            return None
        if found is None:
            return None

        endpoints = []
        for xrds in found.described_by:
            try:
                endpoints.extend(endpointsFromXRDs(identifier.canonical, xrds, identifier))
            except ProtocolError as error:
                _LOGGER.warning('Skipping described-by document of %s: %s', identifier, error)

        # The OP identifiers of the host only count when no claimed identifier was described.
        if not endpoints:
            try:
                endpoints = endpointsFromXRDs(identifier.canonical, found.xrds, identifier)
            except ProtocolError as error:
                _LOGGER.warning('Host-meta XRDS of %s rejected: %s', identifier, error)

        _LOGGER.info('Host-meta discovery of %s found %d endpoints', identifier, len(endpoints))
        return self._secureOnly(endpoints, identifier, 'host-meta')

    def _discoverURI(self, identifier, cancel):
        endpoints = self._discoverHostMeta(identifier, cancel)
        if endpoints is not None:
            return sortEndpoints(endpoints)

        secure = identifier.is_discovery_secure_end_to_end
        timeout = self.config.timeout
        try:
            result = yadisDiscover(identifier.canonical, self.fetcher, timeout=timeout, require_ssl=secure,
                                   cancel=cancel)
        except HTTPFetchingError as error:
            _LOGGER.warning('Fetching %s failed: %s', identifier, error.why)
            return []
        except DiscoveryFailure as error:
            _LOGGER.warning('YADIS discovery of %s failed: %s', identifier, error)
            return []

        claimed_id = _normalizeClaimedId(result.normalized_uri)

        endpoints = []
        if result.isXRDS():
            try:
                tree = etxrd.parseXRDS(result.response_text)
                endpoints = endpointsFromXRDs(claimed_id, [etxrd.getYadisXRD(tree)], identifier)
            except (etxrd.XRDSError, ProtocolError) as error:
                _LOGGER.warning('XRDS of %s rejected: %s', identifier, error)
            endpoints = self._secureOnly(endpoints, identifier, 'XRDS')
        if endpoints:
            return sortEndpoints(endpoints)

        html = result.response_text
        if result.isXRDS():
            # The XRDS was of no use, get the page itself without content negotiation.
            try:
                response = self.fetcher.fetch(identifier.canonical, timeout=timeout, require_ssl=secure,
                                              cancel=cancel)
            except HTTPFetchingError as error:
                _LOGGER.warning('Fetching %s failed: %s', identifier, error.why)
                return []
            if not 200 <= response.status < 300:
                _LOGGER.warning('Fetching %s returned status %s', identifier, response.status)
                return []
            claimed_id = _normalizeClaimedId(response.final_url)
            html = response.body

        endpoints = ServiceEndpoint.from_html(claimed_id, html, identifier)
        return sortEndpoints(self._secureOnly(endpoints, identifier, 'HTML'))

    def _discoverXRI(self, identifier, cancel):
        try:
            canonical_id, services = self.xri_resolver.query(identifier.canonical, OPENID_TYPE_URIS,
                                                             timeout=self.config.timeout, cancel=cancel)
        except HTTPFetchingError as error:
            _LOGGER.warning('XRI resolution of %s failed: %s', identifier, error.why)
            return []
        except etxrd.XRDSError as error:
            _LOGGER.warning('XRI resolution of %s returned a bad XRDS: %s', identifier, error)
            return []

        if canonical_id is None:
            _LOGGER.warning('No CanonicalID found for XRI %s', identifier)
            return []

        endpoints = []
        for service_element in services:
            for type_uris, uri_element, service in etxrd.expandService(service_element):
                try:
                    endpoint = ServiceEndpoint.from_service_element(canonical_id, type_uris, uri_element, service,
                                                                    identifier)
                except ProtocolError as error:
                    _LOGGER.warning('Skipping service of %s: %s', identifier, error)
                    continue
                if endpoint is not None:
                    endpoint.canonical_id = canonical_id
                    endpoints.append(endpoint)
        endpoints = self._secureOnly(preferOPIdentifiers(endpoints), identifier, 'XRI')
        return sortEndpoints(endpoints)
