# -*- test-case-name: openidcore.test.test_hostmeta -*-
"""Discovery through a host-meta document and a signed XRDS.

A host, or a proxy trusted to speak for it, publishes a host-meta
document whose first line links to an XRDS document::

    Link: <https://example.com/openid.xrds>; rel="describedby http://reltype.google.com/openid/xrd-op"; type="application/xrds+xml"

The XRDS is accepted only if the C{Signature} response header holds a
valid RSA-SHA1 signature of the document, made with a certificate
issued to the expected host and anchored in a trusted root.
"""
import logging
import re
import threading
from urllib.parse import quote, urlsplit

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError

from openidcore.errors import ProtocolError
from openidcore.fetchers import HTTPFetchingError
from openidcore.oidutil import fromBase64, utcnow
from openidcore.yadis import etxrd
from openidcore.yadis.accept import getMediaType
from openidcore.yadis.constants import YADIS_CONTENT_TYPE

__all__ = ['HostMetaDiscoverer', 'HostMetaResult', 'HostMetaSignatureError', 'LOCAL_HOST_META_PATH']

_LOGGER = logging.getLogger(__name__)

LOCAL_HOST_META_PATH = '/.well-known/host-meta'

HOST_META_LINK = re.compile(r'^Link: <(?P<location>.+?)>; rel="describedby http://reltype.google.com/openid/xrd-op"; '
                            r'type="application/xrds\+xml"$')

DESCRIBED_BY_TYPE = 'http://www.iana.org/assignments/relation/describedby'
URI_TEMPLATE_VARIABLE = '{%uri}'

DSIG_NS = 'http://www.w3.org/2000/09/xmldsig#'
GOOGLE_NS = 'http://namespace.google.com/openid/xmlns'
C14N_RAW_OCTETS = 'http://docs.oasis-open.org/xri/xrd/2009/01#canonicalize-raw-octets'
RSA_SHA1 = 'http://www.w3.org/2000/09/xmldsig#rsa-sha1'

NAMESPACES = {
    'xrds': etxrd.XRDS_NS,
    'xrd': etxrd.XRD_NS_2_0,
    'ds': DSIG_NS,
    'google': GOOGLE_NS,
}

SIGNATURE_HEADER = 'Signature'


class HostMetaSignatureError(ProtocolError):
    """The signature of an XRDS document found through host-meta is not acceptable."""


class HostMetaResult(object):
    """XRD elements found through host-meta.

    @ivar xrds: The XRD elements of the signed document describing the host.
    @type xrds: List[lxml.etree._Element]

    @ivar described_by: The XRD elements describing the identifier, one
        list for each described-by document that was verified.
    @type described_by: List[List[lxml.etree._Element]]
    """

    def __init__(self, xrds, described_by):
        self.xrds = xrds
        self.described_by = described_by

    def __repr__(self):
        return '<%s %d XRDs, %d described-by documents>' % (self.__class__.__name__, len(self.xrds),
                                                            len(self.described_by))


def _isOK(response):
    return 200 <= response.status < 300


def _xpath(element, path):
    return element.xpath(path, namespaces=NAMESPACES)


def getHostLocations(identifier, proxies):
    """Return the host-meta locations of an identifier with their signing hosts.

    The trusted proxies come first, the host itself last.

    @type identifier: openidcore.identifier.UriIdentifier
    @type proxies: List[openidcore.config.HostMetaProxy]
    @rtype: List[Tuple[str, str]]
    """
    host = identifier.host
    locations = []
    for proxy in proxies:
        location = proxy.get_proxy(quote(host, safe=''))
        locations.append((location, proxy.get_signing_host(host, urlsplit(location).hostname or '')))

    secure = identifier.is_discovery_secure_end_to_end or identifier.scheme == 'https'
    local = '%s://%s%s' % ('https' if secure else 'http', host, LOCAL_HOST_META_PATH)
    locations.append((local, host))
    return locations


def getCertificateDNSName(certificate):
    """Return the DNS name a certificate is issued to.

    The first DNS name of the subject alternative names is preferred
    over the common name of the subject.

    @type certificate: cryptography.x509.Certificate
    @rtype: Optional[str]
    """
    try:
        extension = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        pass
    else:
        names = extension.value.get_values_for_type(x509.DNSName)
        if names:
            return names[0]

    common_names = certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if common_names:
        return common_names[0].value
    return None


class HostMetaDiscoverer(object):
    """Finds and verifies the XRDS documents of hosts which publish host-meta.

    @ivar fetcher: Fetcher of the host-meta and XRDS documents.
    @type fetcher: openidcore.fetchers.HTTPFetcher

    @ivar config: Discovery settings, the trusted proxies and certificates.
    @type config: openidcore.config.DiscoveryConfig
    """

    def __init__(self, fetcher, config):
        self.fetcher = fetcher
        self.config = config
        # Signing certificates that validated already, with their expiry.
        self._approved = {}
        self._approved_lock = threading.Lock()

    def discover(self, identifier, cancel=None):
        """Discover the XRD elements of an identifier through host-meta.

        @type identifier: openidcore.identifier.UriIdentifier
        @type cancel: Optional[threading.Event]

        @return: The verified XRD elements, or C{None} if the host does not
            publish a usable host-meta document.
        @rtype: Optional[HostMetaResult]

        @raise HostMetaSignatureError: If the XRDS signature is not acceptable.
        @raise XRDSError: If the XRDS document can not be parsed.
        @raise HTTPFetchingError: If the XRDS document can not be fetched.
        @raise DiscoveryCancelled: If discovery was cancelled.
        """
        location, signing_host = self.getXRDSLocation(identifier, cancel)
        if location is None:
            return None

        response = self._fetchXRDS(identifier, location, cancel)
        if response is None:
            return None

        tree = etxrd.parseXRDS(response.body)
        self.validateSignature(tree, response, signing_host)

        host = identifier.host
        xrds = [xrd for xrd in etxrd.getXRDs(tree) if (xrd.findtext(etxrd.canonicalID_tag) or '').strip() == host]
        described_by = self._getDescribedBy(identifier, xrds, cancel)
        return HostMetaResult(xrds, described_by)

    def getHostMeta(self, identifier, cancel=None):
        """Fetch the first available host-meta document of an identifier.

        @return: The response and the host which must sign the XRDS it
            links to, or C{(None, None)}.
        @rtype: Tuple[Optional[openidcore.fetchers.HTTPResponse], Optional[str]]
        """
        secure = identifier.is_discovery_secure_end_to_end
        for location, signing_host in getHostLocations(identifier, self.config.trusted_host_meta_proxies):
            try:
                response = self.fetcher.fetch(location, timeout=self.config.timeout, require_ssl=secure,
                                              cancel=cancel)
            except HTTPFetchingError as error:
                _LOGGER.warning('Could not fetch host-meta for %s from %s: %s', identifier.host, location,
                                error.why)
                continue

            if _isOK(response):
                _LOGGER.info('Found host-meta for %s at: %s', identifier.host, location)
                return response, signing_host
            _LOGGER.info('Could not obtain host-meta for %s from %s, status %s', identifier.host, location,
                         response.status)
        return None, None

    def getXRDSLocation(self, identifier, cancel=None):
        """Return the XRDS location linked from the host-meta document and its signing host.

        @rtype: Tuple[Optional[str], Optional[str]]
        """
        response, signing_host = self.getHostMeta(identifier, cancel)
        if response is None:
            return None, None

        lines = (response.body or b'').decode('utf-8', 'replace').splitlines()
        match = HOST_META_LINK.match(lines[0]) if lines else None
        if match is None:
            _LOGGER.warning('Could not find link to XRDS in host-meta document: %s', response.final_url)
            return None, None

        location = match.group('location')
        _LOGGER.info('Found link to XRDS at %s in host-meta document %s.', location, response.final_url)
        return location, signing_host

    def _fetchXRDS(self, identifier, location, cancel):
        response = self.fetcher.fetch(location, headers={'Accept': YADIS_CONTENT_TYPE}, timeout=self.config.timeout,
                                      require_ssl=identifier.is_discovery_secure_end_to_end, cancel=cancel)
        if not _isOK(response):
            _LOGGER.warning('Host-meta pointed to XRDS at %s, but it returned status %s.', location,
                            response.status)
            return None

        content_type = response.headers.get('content-type')
        if getMediaType(content_type) != YADIS_CONTENT_TYPE:
            _LOGGER.warning("Host-meta pointed to XRDS at %s, but Content-Type at that URL was unexpected value '%s'.",
                            location, content_type)
        return response

    def _getDescribedBy(self, identifier, xrds, cancel):
        """Fetch and verify the documents of the described-by services of the XRDs."""
        results = []
        for xrd in xrds:
            for service in _xpath(xrd, 'xrd:Service[xrd:Type[normalize-space(.)="%s"]]' % DESCRIBED_BY_TYPE):
                template = service.findtext(etxrd.nsTag(GOOGLE_NS, 'URITemplate'))
                if template is None:
                    continue
                next_authority = service.findtext(etxrd.nsTag(GOOGLE_NS, 'NextAuthority'))
                signing_host = next_authority.strip() if next_authority is not None else identifier.host
                location = template.strip().replace(URI_TEMPLATE_VARIABLE, quote(identifier.canonical, safe=''))

                try:
                    response = self._fetchXRDS(identifier, location, cancel)
                    if response is None:
                        continue
                    tree = etxrd.parseXRDS(response.body)
                    self.validateSignature(tree, response, signing_host)
                except (HTTPFetchingError, ProtocolError) as error:
                    _LOGGER.warning('Error while retrieving described-by XRDS document %s: %s', location, error)
                    continue
                except etxrd.XRDSError as error:
                    _LOGGER.error('Error while parsing described-by XRDS document %s: %s', location, error)
                    continue

                results.append([x for x in etxrd.getXRDs(tree)
                                if (x.findtext(etxrd.canonicalID_tag) or '').strip() == identifier.canonical])
        return results

    def validateSignature(self, tree, response, signing_host):
        """Check the XML signature of an XRDS document.

        @param tree: The parsed XRDS document.
        @type tree: lxml.etree._ElementTree

        @param response: The response the document was read from.
        @type response: openidcore.fetchers.HTTPResponse

        @param signing_host: The host the signing certificate must be issued to.
        @type signing_host: str

        @raise HostMetaSignatureError: If the signature is missing or invalid.
        """
        signatures = _xpath(tree, '/xrds:XRDS/ds:Signature')
        if not signatures:
            raise HostMetaSignatureError('Missing element Signature')
        signature = signatures[0]

        signed_info = _xpath(signature, 'ds:SignedInfo')
        if not signed_info:
            raise HostMetaSignatureError('Missing element SignedInfo')
        if not _xpath(signed_info[0], 'ds:CanonicalizationMethod[@Algorithm="%s"]' % C14N_RAW_OCTETS):
            raise HostMetaSignatureError('Unsupported canonicalization method')
        if not _xpath(signed_info[0], 'ds:SignatureMethod[@Algorithm="%s"]' % RSA_SHA1):
            raise HostMetaSignatureError('Unsupported signature method')

        cert_nodes = _xpath(signature, 'ds:KeyInfo/ds:X509Data/ds:X509Certificate')
        if not cert_nodes:
            raise HostMetaSignatureError('Missing element X509Certificate')
        try:
            certificates = [x509.load_der_x509_certificate(fromBase64((node.text or '').strip()))
                            for node in cert_nodes]
        except ValueError as error:
            raise HostMetaSignatureError('Invalid X509Certificate: %s' % error)

        host_name = getCertificateDNSName(certificates[0])
        if host_name is None or host_name.lower() != signing_host.lower():
            raise HostMetaSignatureError('Signing certificate is issued to %r, expected %r' % (host_name, signing_host))
        self.verifyCertificateChain(certificates, signing_host)

        header = response.headers.get(SIGNATURE_HEADER)
        if not header:
            raise HostMetaSignatureError('Missing %s header' % SIGNATURE_HEADER)
        try:
            signature_value = fromBase64(header.strip())
        except ValueError:
            raise HostMetaSignatureError('Malformed %s header' % SIGNATURE_HEADER)

        public_key = certificates[0].public_key()
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise HostMetaSignatureError('Signing certificate does not hold an RSA key')
        try:
            public_key.verify(signature_value, response.body, padding.PKCS1v15(), hashes.SHA1())
        except InvalidSignature:
            raise HostMetaSignatureError('Invalid signature of the XRDS document')

    def verifyCertificateChain(self, certificates, signing_host):
        """Check that the certificates form a chain to a trusted root for the signing host.

        The chain is built and checked with the web PKI profile of
        C{cryptography.x509.verification}, the certificates after the first
        serving as intermediates.  With C{allow_single_certificate_validation},
        a signing certificate issued directly by a trusted root is accepted
        when the rest of the chain does not validate.

        @type certificates: List[cryptography.x509.Certificate]
        @type signing_host: str
        @raise HostMetaSignatureError: If the chain is not trusted.
        """
        now = utcnow()
        cache_key = (certificates[0].fingerprint(hashes.SHA256()), signing_host.lower())
        if self.config.cache_certificate_validation:
            with self._approved_lock:
                expires = self._approved.get(cache_key)
                if expires is not None:
                    if now < expires:
                        return
                    del self._approved[cache_key]

        try:
            verifier = self._buildVerifier(signing_host, now)
        except ValueError as error:
            raise HostMetaSignatureError('The X.509 certificate used to sign the document is not trusted: %s' % error)

        _LOGGER.debug('Verifying the whole certificate chain.')
        try:
            verifier.verify(certificates[0], certificates[1:])
        except VerificationError as error:
            if not self.config.allow_single_certificate_validation:
                raise HostMetaSignatureError('The X.509 certificate used to sign the document is not trusted: %s'
                                             % error)
            _LOGGER.debug('Certificate chain is not trusted: %s', error)
            try:
                verifier.verify(certificates[0], [])
            except VerificationError as error:
                raise HostMetaSignatureError('The X.509 certificate used to sign the document is not trusted: %s'
                                             % error)
            _LOGGER.debug('Accepted the signing certificate without the rest of its chain.')
        _LOGGER.debug('Certificate chain verified.')

        if self.config.cache_certificate_validation:
            with self._approved_lock:
                self._approved[cache_key] = certificates[0].not_valid_after_utc

    def _buildVerifier(self, signing_host, now):
        if not self.config.trusted_certificates:
            raise ValueError('no trusted certificates')
        builder = PolicyBuilder().store(Store(self.config.trusted_certificates)).time(now)
        return builder.build_server_verifier(x509.DNSName(signing_host.lower()))
