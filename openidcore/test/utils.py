"""Test utilities."""
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from openidcore.consumer.hostmeta import C14N_RAW_OCTETS, RSA_SHA1
from openidcore.errors import DiscoveryCancelled
from openidcore.fetchers import HTTPFetcher, HTTPResponse
from openidcore.oidutil import toBase64

HOST_META_LINK_FORMAT = ('Link: <%s>; rel="describedby http://reltype.google.com/openid/xrd-op"; '
                         'type="application/xrds+xml"\n')

XRDS_FORMAT = '''<?xml version="1.0" encoding="UTF-8"?>
<xrds:XRDS xmlns:xrds="xri://$xrds" xmlns="xri://$xrd*($v*2.0)" xmlns:openid="http://openid.net/xmlns/1.0"
    xmlns:ds="http://www.w3.org/2000/09/xmldsig#" xmlns:google="http://namespace.google.com/openid/xmlns">
%s
</xrds:XRDS>
'''

SIGNATURE_FORMAT = '''<ds:Signature>
<ds:SignedInfo>
<ds:CanonicalizationMethod Algorithm="%(c14n)s"/>
<ds:SignatureMethod Algorithm="%(method)s"/>
</ds:SignedInfo>
<ds:KeyInfo><ds:X509Data>%(certificates)s</ds:X509Data></ds:KeyInfo>
</ds:Signature>'''


class MockFetcher(HTTPFetcher):
    """Fetcher serving documents from memory.

    Documents are C{(status, headers, body)} triples or exceptions to raise.
    Unknown URLs get a 404.
    """

    def __init__(self, documents=None, redirects=None):
        self.documents = dict(documents or {})
        self.redirects = dict(redirects or {})
        self.fetchlog = []

    def add(self, url, body, status=200, headers=None):
        self.documents[url] = (status, headers or {}, body)

    def fetch(self, url, body=None, headers=None, timeout=None, require_ssl=False, cancel=None):
        self.fetchlog.append((url, headers, require_ssl))
        if cancel is not None and cancel.is_set():
            raise DiscoveryCancelled('Request to %s was cancelled' % url)
        if require_ssl and not url.startswith('https://'):
            raise ValueError('URL %r is not secure but SSL is required' % url)

        final_url = self.redirects.get(url, url)
        if require_ssl and not final_url.startswith('https://'):
            raise ValueError('Redirect to %r is not secure but SSL is required' % final_url)
        document = self.documents.get(final_url)
        if document is None:
            return HTTPResponse(final_url, 404, {}, b'')
        if isinstance(document, Exception):
            raise document
        status, response_headers, content = document
        return HTTPResponse(final_url, status, response_headers, content)

    @property
    def fetched_urls(self):
        return [entry[0] for entry in self.fetchlog]


_KEYS = {}


def getKey(name):
    """Return a RSA key, generated once for each name."""
    if name not in _KEYS:
        _KEYS[name] = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return _KEYS[name]


def makeCertificate(common_name, key, issuer=None, issuer_key=None, dns_names=(), ca=False, not_before=None,
                    not_after=None):
    """Build a certificate, self-signed unless an issuer is given."""
    now = datetime.now(timezone.utc)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    builder = x509.CertificateBuilder()
    builder = builder.subject_name(subject)
    builder = builder.issuer_name(issuer.subject if issuer is not None else subject)
    builder = builder.public_key(key.public_key())
    builder = builder.serial_number(x509.random_serial_number())
    builder = builder.not_valid_before(not_before or now - timedelta(days=1))
    builder = builder.not_valid_after(not_after or now + timedelta(days=1))
    builder = builder.add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    key_usage = x509.KeyUsage(digital_signature=True, content_commitment=False, key_encipherment=not ca,
                              data_encipherment=False, key_agreement=False, key_cert_sign=ca, crl_sign=ca,
                              encipher_only=False, decipher_only=False)
    builder = builder.add_extension(key_usage, critical=True)
    builder = builder.add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
    issuer_public_key = (issuer_key or key).public_key()
    builder = builder.add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_public_key),
                                    critical=False)
    if not ca:
        builder = builder.add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
    if dns_names:
        builder = builder.add_extension(x509.SubjectAlternativeName([x509.DNSName(n) for n in dns_names]),
                                        critical=False)
    return builder.sign(issuer_key or key, hashes.SHA256())


class CertificateAuthority(object):
    """A root certificate issuing certificates for hosts."""

    def __init__(self, name='Test Root'):
        self.key = getKey(name)
        self.certificate = makeCertificate(name, self.key, ca=True)

    def issue(self, host, key_name=None, **kwargs):
        key = getKey(key_name or host)
        kwargs.setdefault('dns_names', [host])
        return key, makeCertificate(host, key, issuer=self.certificate, issuer_key=self.key, **kwargs)


def certificateToBase64(certificate):
    return toBase64(certificate.public_bytes(Encoding.DER))


def makeXRDS(content, certificates=None, c14n=C14N_RAW_OCTETS, method=RSA_SHA1):
    """Build an XRDS document, with a signature element if certificates are given.

    @rtype: bytes
    """
    if certificates:
        cert_elements = ''.join('<ds:X509Certificate>%s</ds:X509Certificate>' % certificateToBase64(c)
                                for c in certificates)
        content += SIGNATURE_FORMAT % {'c14n': c14n, 'method': method, 'certificates': cert_elements}
    return (XRDS_FORMAT % content).encode('utf-8')


def signDocument(key, body):
    """Return the value of the signature header of a document."""
    return toBase64(key.sign(body, padding.PKCS1v15(), hashes.SHA1()))


def makeService(type_uris, uris=(), priority=None, local_id=None, delegate=None):
    """Build a XRD service element as text."""
    parts = ['<Service%s>' % ('' if priority is None else ' priority="%s"' % priority)]
    parts.extend('<Type>%s</Type>' % t for t in type_uris)
    for uri in uris:
        if isinstance(uri, tuple):
            parts.append('<URI priority="%s">%s</URI>' % (uri[1], uri[0]))
        else:
            parts.append('<URI>%s</URI>' % uri)
    if local_id is not None:
        parts.append('<LocalID>%s</LocalID>' % local_id)
    if delegate is not None:
        parts.append('<openid:Delegate>%s</openid:Delegate>' % delegate)
    parts.append('</Service>')
    return ''.join(parts)


def makeXRD(services, canonical_id=None):
    canonical = '' if canonical_id is None else '<CanonicalID>%s</CanonicalID>' % canonical_id
    return '<XRD>%s%s</XRD>' % (canonical, ''.join(services))
