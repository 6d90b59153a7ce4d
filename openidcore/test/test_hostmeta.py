"""Tests for `openidcore.consumer.hostmeta` module."""
import threading
import unittest
from datetime import datetime, timedelta, timezone

from cryptography.x509.verification import VerificationError
from mock import Mock, call, patch
from testfixtures import LogCapture

from openidcore.config import DiscoveryConfig, HostMetaProxy
from openidcore.consumer import hostmeta
from openidcore.consumer.hostmeta import HostMetaDiscoverer, HostMetaSignatureError, getCertificateDNSName
from openidcore.errors import DiscoveryCancelled
from openidcore.fetchers import ExceptionWrappingFetcher, HTTPFetchingError, HTTPResponse
from openidcore.identifier import Identifier
from openidcore.yadis.etxrd import XRDSError, parseXRDS

from .utils import (HOST_META_LINK_FORMAT, CertificateAuthority, MockFetcher, getKey, makeCertificate, makeService,
                    makeXRD, makeXRDS, signDocument)

HOST_META_URL = 'http://example.com/.well-known/host-meta'
XRDS_URL = 'https://example.com/openid.xrds'
USER_URL = 'https://www.example.com/user?uri=http%3A%2F%2Fexample.com%2Fuser'

SITE_XRD = makeXRD([
    makeService(['http://specs.openid.net/auth/2.0/server'], ['https://www.example.com/op'], priority=0),
    makeService(['http://www.iana.org/assignments/relation/describedby'], priority=10).replace(
        '</Service>',
        '<google:URITemplate>https://www.example.com/user?uri={%uri}</google:URITemplate>'
        '<google:NextAuthority>hosted-id.example.com</google:NextAuthority></Service>'),
], canonical_id='example.com')

USER_XRD = makeXRD([
    makeService(['http://specs.openid.net/auth/2.0/signon'], ['https://www.example.com/op'], priority=0,
                local_id='https://www.example.com/user/1'),
], canonical_id='http://example.com/user')

XRDS_HEADERS = {'Content-Type': 'application/xrds+xml'}


class HostMetaTestCase(unittest.TestCase):
    """Common set up of host-meta tests."""

    @classmethod
    def setUpClass(cls):
        cls.ca = CertificateAuthority()
        cls.site_key, cls.site_cert = cls.ca.issue('example.com')
        cls.user_key, cls.user_cert = cls.ca.issue('hosted-id.example.com')

    def setUp(self):
        self.config = DiscoveryConfig(host_meta_domains=['example.com'],
                                      trusted_certificates=[self.ca.certificate])
        self.fetcher = MockFetcher()
        self.discoverer = HostMetaDiscoverer(ExceptionWrappingFetcher(self.fetcher), self.config)
        self.identifier = Identifier.parse('http://example.com/user')

    def addXRDS(self, url, content, key, certificates, headers=None):
        body = makeXRDS(content, certificates)
        response_headers = dict(XRDS_HEADERS if headers is None else headers)
        if key is not None:
            response_headers['Signature'] = signDocument(key, body)
        self.fetcher.add(url, body, headers=response_headers)
        return body

    def addSite(self, host_meta_url=HOST_META_URL):
        self.fetcher.add(host_meta_url, (HOST_META_LINK_FORMAT % XRDS_URL).encode('utf-8'))
        self.addXRDS(XRDS_URL, SITE_XRD, self.site_key, [self.site_cert])


class TestHostLocations(unittest.TestCase):
    """Test `getHostLocations` function."""

    def test_local(self):
        identifier = Identifier.parse('http://example.com/user')
        self.assertEqual(hostmeta.getHostLocations(identifier, []), [(HOST_META_URL, 'example.com')])

    def test_local_https(self):
        identifier = Identifier.parse('https://example.com/user')
        self.assertEqual(hostmeta.getHostLocations(identifier, []),
                         [('https://example.com/.well-known/host-meta', 'example.com')])

    def test_proxies(self):
        identifier = Identifier.parse('http://example.com/user')
        proxies = [HostMetaProxy('https://proxy.example.org/host-meta?hd={host}', '{host}.{proxy_host}')]
        self.assertEqual(hostmeta.getHostLocations(identifier, proxies), [
            ('https://proxy.example.org/host-meta?hd=example.com', 'example.com.proxy.example.org'),
            (HOST_META_URL, 'example.com'),
        ])


class TestCertificateDNSName(unittest.TestCase):
    """Test `getCertificateDNSName` function."""

    def test_alternative_name(self):
        certificate = makeCertificate('Common', getKey('leaf'), dns_names=['example.com', 'example.org'])
        self.assertEqual(getCertificateDNSName(certificate), 'example.com')

    def test_common_name(self):
        certificate = makeCertificate('example.com', getKey('leaf'))
        self.assertEqual(getCertificateDNSName(certificate), 'example.com')


class TestGetXRDSLocation(HostMetaTestCase):
    """Test `HostMetaDiscoverer.getXRDSLocation` method."""

    def test_local(self):
        self.addSite()
        self.assertEqual(self.discoverer.getXRDSLocation(self.identifier), (XRDS_URL, 'example.com'))

    def test_missing(self):
        with LogCapture() as logger:
            self.assertEqual(self.discoverer.getXRDSLocation(self.identifier), (None, None))
        logger.check(('openidcore.consumer.hostmeta', 'INFO',
                      'Could not obtain host-meta for example.com from %s, status 404' % HOST_META_URL))

    def test_no_link(self):
        self.fetcher.add(HOST_META_URL, b'Link: <https://example.com/other>; rel="alternate"\n')
        self.assertEqual(self.discoverer.getXRDSLocation(self.identifier), (None, None))

    def test_link_not_first(self):
        self.fetcher.add(HOST_META_URL, b'\n' + (HOST_META_LINK_FORMAT % XRDS_URL).encode('utf-8'))
        self.assertEqual(self.discoverer.getXRDSLocation(self.identifier), (None, None))

    def test_empty(self):
        self.fetcher.add(HOST_META_URL, b'')
        self.assertEqual(self.discoverer.getXRDSLocation(self.identifier), (None, None))

    def test_proxy_first(self):
        proxy_url = 'https://proxy.example.org/host-meta?hd=example.com'
        self.config.trusted_host_meta_proxies = [HostMetaProxy('https://proxy.example.org/host-meta?hd={host}',
                                                               'signer.example.org')]
        self.addSite(proxy_url)
        self.assertEqual(self.discoverer.getXRDSLocation(self.identifier), (XRDS_URL, 'signer.example.org'))
        self.assertEqual(self.fetcher.fetched_urls, [proxy_url])

    def test_proxy_error(self):
        proxy_url = 'https://proxy.example.org/host-meta?hd=example.com'
        self.config.trusted_host_meta_proxies = [HostMetaProxy('https://proxy.example.org/host-meta?hd={host}',
                                                               'signer.example.org')]
        self.fetcher.documents[proxy_url] = ValueError('Connection refused')
        self.addSite()
        with LogCapture() as logger:
            self.assertEqual(self.discoverer.getXRDSLocation(self.identifier), (XRDS_URL, 'example.com'))
        self.assertEqual(self.fetcher.fetched_urls, [proxy_url, HOST_META_URL])
        self.assertIn('Could not fetch host-meta for example.com', str(logger))


class TestDiscover(HostMetaTestCase):
    """Test `HostMetaDiscoverer.discover` method."""

    def test_discover(self):
        self.addSite()
        self.addXRDS(USER_URL, USER_XRD, self.user_key, [self.user_cert])

        result = self.discoverer.discover(self.identifier)

        self.assertEqual(len(result.xrds), 1)
        self.assertEqual(len(result.described_by), 1)
        self.assertEqual(len(result.described_by[0]), 1)
        self.assertEqual(self.fetcher.fetched_urls, [HOST_META_URL, XRDS_URL, USER_URL])
        self.assertEqual(self.fetcher.fetchlog[1][1], {'Accept': 'application/xrds+xml'})

    def test_no_host_meta(self):
        self.assertIsNone(self.discoverer.discover(self.identifier))

    def test_no_xrds(self):
        self.fetcher.add(HOST_META_URL, (HOST_META_LINK_FORMAT % XRDS_URL).encode('utf-8'))
        with LogCapture() as logger:
            self.assertIsNone(self.discoverer.discover(self.identifier))
        self.assertIn('returned status 404', str(logger))

    def test_xrds_fetch_error(self):
        self.fetcher.add(HOST_META_URL, (HOST_META_LINK_FORMAT % XRDS_URL).encode('utf-8'))
        self.fetcher.documents[XRDS_URL] = ValueError('Connection reset')
        self.assertRaises(HTTPFetchingError, self.discoverer.discover, self.identifier)

    def test_content_type_mismatch(self):
        self.fetcher.add(HOST_META_URL, (HOST_META_LINK_FORMAT % XRDS_URL).encode('utf-8'))
        self.addXRDS(XRDS_URL, SITE_XRD, self.site_key, [self.site_cert], headers={'Content-Type': 'text/plain'})
        with LogCapture() as logger:
            result = self.discoverer.discover(self.identifier)
        self.assertEqual(len(result.xrds), 1)
        self.assertIn('Content-Type at that URL was unexpected', str(logger))

    def test_corrupt_xrds(self):
        self.fetcher.add(HOST_META_URL, (HOST_META_LINK_FORMAT % XRDS_URL).encode('utf-8'))
        self.fetcher.add(XRDS_URL, b'<xrds', headers=XRDS_HEADERS)
        self.assertRaises(XRDSError, self.discoverer.discover, self.identifier)

    def test_other_host_xrd_ignored(self):
        self.fetcher.add(HOST_META_URL, (HOST_META_LINK_FORMAT % XRDS_URL).encode('utf-8'))
        self.addXRDS(XRDS_URL, SITE_XRD.replace('<CanonicalID>example.com<', '<CanonicalID>example.org<'),
                     self.site_key, [self.site_cert])
        result = self.discoverer.discover(self.identifier)
        self.assertEqual(result.xrds, [])
        self.assertEqual(result.described_by, [])

    def test_described_by_bad_signature(self):
        self.addSite()
        # Signed by the site rather than the next authority.
        self.addXRDS(USER_URL, USER_XRD, self.site_key, [self.site_cert])
        with LogCapture() as logger:
            result = self.discoverer.discover(self.identifier)
        self.assertEqual(len(result.xrds), 1)
        self.assertEqual(result.described_by, [])
        self.assertIn('Error while retrieving described-by XRDS document', str(logger))

    def test_signed_through_non_ca_certificate(self):
        attacker_key, attacker_cert = self.ca.issue('attacker.example.org')
        forged_key = getKey('forged example.com')
        forged = makeCertificate('example.com', forged_key, issuer=attacker_cert, issuer_key=attacker_key,
                                 dns_names=['example.com'])
        self.fetcher.add(HOST_META_URL, (HOST_META_LINK_FORMAT % XRDS_URL).encode('utf-8'))
        self.addXRDS(XRDS_URL, SITE_XRD, forged_key, [forged, attacker_cert])
        with self.assertRaisesRegex(HostMetaSignatureError, 'not trusted'):
            self.discoverer.discover(self.identifier)

    def test_described_by_missing(self):
        self.addSite()
        result = self.discoverer.discover(self.identifier)
        self.assertEqual(result.described_by, [])

    def test_described_by_other_identifier(self):
        self.addSite()
        self.addXRDS(USER_URL, USER_XRD.replace('http://example.com/user<', 'http://example.com/other<'),
                     self.user_key, [self.user_cert])
        result = self.discoverer.discover(self.identifier)
        self.assertEqual(result.described_by, [[]])

    def test_cancelled(self):
        self.addSite()
        cancel = threading.Event()
        cancel.set()
        self.assertRaises(DiscoveryCancelled, self.discoverer.discover, self.identifier, cancel)


class TestValidateSignature(HostMetaTestCase):
    """Test `HostMetaDiscoverer.validateSignature` method."""

    def assertRejected(self, body, headers, signing_host='example.com', message=''):
        response = HTTPResponse(XRDS_URL, 200, headers, body)
        with self.assertRaisesRegex(HostMetaSignatureError, message):
            self.discoverer.validateSignature(parseXRDS(body), response, signing_host)

    def test_valid(self):
        body = makeXRDS(SITE_XRD, [self.site_cert])
        response = HTTPResponse(XRDS_URL, 200, {'Signature': signDocument(self.site_key, body)}, body)
        self.discoverer.validateSignature(parseXRDS(body), response, 'EXAMPLE.com')

    def test_missing_signature_element(self):
        body = makeXRDS(SITE_XRD)
        self.assertRejected(body, {'Signature': signDocument(self.site_key, body)}, message='Missing element Signature')

    def test_unsupported_c14n(self):
        body = makeXRDS(SITE_XRD, [self.site_cert], c14n='http://www.w3.org/2001/10/xml-exc-c14n#')
        self.assertRejected(body, {'Signature': signDocument(self.site_key, body)}, message='canonicalization')

    def test_unsupported_method(self):
        body = makeXRDS(SITE_XRD, [self.site_cert], method='http://www.w3.org/2001/04/xmldsig-more#rsa-sha256')
        self.assertRejected(body, {'Signature': signDocument(self.site_key, body)}, message='signature method')

    def test_invalid_certificate(self):
        body = makeXRDS(SITE_XRD, [self.site_cert]).replace(b'<ds:X509Certificate>', b'<ds:X509Certificate>AAAA')
        self.assertRejected(body, {'Signature': signDocument(self.site_key, body)}, message='Invalid X509Certificate')

    def test_missing_header(self):
        body = makeXRDS(SITE_XRD, [self.site_cert])
        self.assertRejected(body, {}, message='Missing Signature header')

    def test_malformed_header(self):
        body = makeXRDS(SITE_XRD, [self.site_cert])
        self.assertRejected(body, {'Signature': 'not*base64'}, message='Malformed Signature header')

    def test_tampered(self):
        body = makeXRDS(SITE_XRD, [self.site_cert])
        signature = signDocument(self.site_key, body)
        tampered = body.replace(b'https://www.example.com/op', b'https://evil.example.com/op')
        self.assertRejected(tampered, {'Signature': signature}, message='Invalid signature')

    def test_wrong_key(self):
        body = makeXRDS(SITE_XRD, [self.site_cert])
        self.assertRejected(body, {'Signature': signDocument(self.user_key, body)}, message='Invalid signature')

    def test_wrong_host(self):
        body = makeXRDS(SITE_XRD, [self.user_cert])
        self.assertRejected(body, {'Signature': signDocument(self.user_key, body)}, message='issued to')

    def test_untrusted(self):
        other_ca = CertificateAuthority('Other Root')
        key, certificate = other_ca.issue('example.com', key_name='other example.com')
        body = makeXRDS(SITE_XRD, [certificate])
        self.assertRejected(body, {'Signature': signDocument(key, body)}, message='not trusted')

    def test_expired(self):
        now = datetime.now(timezone.utc)
        key, certificate = self.ca.issue('example.com', not_before=now - timedelta(days=2),
                                         not_after=now - timedelta(days=1))
        body = makeXRDS(SITE_XRD, [certificate])
        self.assertRejected(body, {'Signature': signDocument(key, body)}, message='not trusted')


class TestVerifyCertificateChain(HostMetaTestCase):
    """Test `HostMetaDiscoverer.verifyCertificateChain` method."""

    def makeIntermediate(self, ca=True, **kwargs):
        key = getKey('Intermediate')
        certificate = makeCertificate('Intermediate', key, issuer=self.ca.certificate, issuer_key=self.ca.key, ca=ca,
                                      **kwargs)
        return key, certificate

    def test_leaf(self):
        self.discoverer.verifyCertificateChain([self.site_cert], 'example.com')

    def test_chain(self):
        self.discoverer.verifyCertificateChain([self.site_cert, self.ca.certificate], 'example.com')

    def test_superfluous_certificate(self):
        other_ca = CertificateAuthority('Other Root')
        self.discoverer.verifyCertificateChain([self.site_cert, other_ca.certificate], 'example.com')

    def test_intermediate(self):
        intermediate_key, intermediate = self.makeIntermediate()
        leaf = makeCertificate('example.com', getKey('example.com'), issuer=intermediate,
                               issuer_key=intermediate_key, dns_names=['example.com'])
        self.discoverer.verifyCertificateChain([leaf, intermediate], 'example.com')
        self.config.trusted_certificates = []
        self.assertRaises(HostMetaSignatureError, HostMetaDiscoverer(self.fetcher, self.config).verifyCertificateChain,
                          [leaf, intermediate], 'example.com')

    def test_missing_intermediate(self):
        intermediate_key, intermediate = self.makeIntermediate()
        leaf = makeCertificate('example.com', getKey('example.com'), issuer=intermediate,
                               issuer_key=intermediate_key, dns_names=['example.com'])
        other_ca = CertificateAuthority('Other Root')
        with self.assertRaisesRegex(HostMetaSignatureError, 'not trusted'):
            self.discoverer.verifyCertificateChain([leaf, other_ca.certificate], 'example.com')

    def test_non_ca_issuer(self):
        # A certificate for another host must not vouch for example.com.
        attacker_key, attacker_cert = self.ca.issue('attacker.example.org')
        forged = makeCertificate('example.com', getKey('forged example.com'), issuer=attacker_cert,
                                 issuer_key=attacker_key, dns_names=['example.com'])
        with self.assertRaisesRegex(HostMetaSignatureError, 'not trusted'):
            self.discoverer.verifyCertificateChain([forged, attacker_cert], 'example.com')
        self.config.allow_single_certificate_validation = True
        with self.assertRaisesRegex(HostMetaSignatureError, 'not trusted'):
            self.discoverer.verifyCertificateChain([forged, attacker_cert], 'example.com')

    def test_expired_intermediate(self):
        now = datetime.now(timezone.utc)
        intermediate_key, intermediate = self.makeIntermediate(not_before=now - timedelta(days=2),
                                                               not_after=now - timedelta(days=1))
        leaf = makeCertificate('example.com', getKey('example.com'), issuer=intermediate,
                               issuer_key=intermediate_key, dns_names=['example.com'])
        with self.assertRaisesRegex(HostMetaSignatureError, 'not trusted'):
            self.discoverer.verifyCertificateChain([leaf, intermediate], 'example.com')

    def test_other_host(self):
        with self.assertRaisesRegex(HostMetaSignatureError, 'not trusted'):
            self.discoverer.verifyCertificateChain([self.site_cert], 'example.org')

    def test_single_certificate(self):
        other_ca = CertificateAuthority('Other Root')
        self.config.allow_single_certificate_validation = True
        verifier = Mock()
        verifier.verify.side_effect = [VerificationError('unknown issuer'), [self.site_cert, self.ca.certificate]]
        with patch('openidcore.consumer.hostmeta.PolicyBuilder') as builder_mock:
            builder = builder_mock.return_value.store.return_value.time.return_value
            builder.build_server_verifier.return_value = verifier
            with LogCapture() as logger:
                self.discoverer.verifyCertificateChain([self.site_cert, other_ca.certificate], 'example.com')
        self.assertEqual(verifier.verify.call_args_list, [call(self.site_cert, [other_ca.certificate]),
                                                          call(self.site_cert, [])])
        self.assertIn('Accepted the signing certificate without the rest of its chain.', str(logger))

    def test_single_certificate_disabled(self):
        verifier = Mock()
        verifier.verify.side_effect = VerificationError('unknown issuer')
        with patch('openidcore.consumer.hostmeta.PolicyBuilder') as builder_mock:
            builder = builder_mock.return_value.store.return_value.time.return_value
            builder.build_server_verifier.return_value = verifier
            with self.assertRaisesRegex(HostMetaSignatureError, 'unknown issuer'):
                self.discoverer.verifyCertificateChain([self.site_cert], 'example.com')
        self.assertEqual(verifier.verify.call_count, 1)

    def test_single_certificate_untrusted(self):
        other_ca = CertificateAuthority('Other Root')
        key, certificate = other_ca.issue('example.com', key_name='other example.com')
        self.config.allow_single_certificate_validation = True
        with self.assertRaises(HostMetaSignatureError):
            self.discoverer.verifyCertificateChain([certificate, self.ca.certificate], 'example.com')

    def test_cache(self):
        self.discoverer.verifyCertificateChain([self.site_cert], 'example.com')
        self.config.trusted_certificates = []
        self.discoverer.verifyCertificateChain([self.site_cert], 'EXAMPLE.com')

    def test_cache_per_host(self):
        self.discoverer.verifyCertificateChain([self.site_cert], 'example.com')
        self.assertRaises(HostMetaSignatureError, self.discoverer.verifyCertificateChain, [self.site_cert],
                          'example.org')

    def test_cache_expired_leaf(self):
        self.discoverer.verifyCertificateChain([self.site_cert], 'example.com')
        later = self.site_cert.not_valid_after_utc + timedelta(seconds=1)
        with patch('openidcore.consumer.hostmeta.utcnow', return_value=later):
            self.assertRaises(HostMetaSignatureError, self.discoverer.verifyCertificateChain, [self.site_cert],
                              'example.com')
        self.assertEqual(self.discoverer._approved, {})

    def test_no_cache(self):
        self.config.cache_certificate_validation = False
        self.discoverer.verifyCertificateChain([self.site_cert], 'example.com')
        self.config.trusted_certificates = []
        self.assertRaises(HostMetaSignatureError, self.discoverer.verifyCertificateChain, [self.site_cert],
                          'example.com')
