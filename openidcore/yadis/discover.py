# -*- test-case-name: openidcore.test.test_yadis_discover -*-
"""Locate the XRDS document of an URL using the YADIS protocol."""
import logging
from urllib.parse import urljoin

from lxml import etree

from openidcore.fetchers import HTTPFetchingError
from openidcore.yadis.accept import getMediaType
from openidcore.yadis.constants import XML_CONTENT_TYPES, YADIS_ACCEPT_HEADER, YADIS_CONTENT_TYPE, YADIS_HEADER_NAME
from openidcore.yadis.etxrd import root_tag
from openidcore.yadis.parsehtml import MetaNotFound, findHTMLMeta

__all__ = ['discover', 'DiscoveryResult', 'DiscoveryFailure']

_LOGGER = logging.getLogger(__name__)


class DiscoveryFailure(Exception):
    """Raised when a YADIS protocol error occurs in the discovery process"""

    def __init__(self, message, http_response):
        Exception.__init__(self, message)
        self.http_response = http_response


class DiscoveryResult(object):
    """Contains the result of performing Yadis discovery on a URI

    @ivar request_uri: The URI that was passed to the fetcher
    @ivar normalized_uri: The result of following redirects from the request_uri
    @ivar xrds_uri: The URI from which the response text was returned (set to
        None if there was no XRDS document found)
    @ivar content_type: The media type of the response_text
    @ivar response_text: The document returned from the xrds_uri
    @type response_text: bytes
    """

    def __init__(self, request_uri):
        """Initialize the state of the object

        sets all attributes to None except the request_uri
        """
        self.request_uri = request_uri
        self.normalized_uri = None
        self.xrds_uri = None
        self.content_type = None
        self.response_text = None

    def usedYadisLocation(self):
        """Was the Yadis protocol's indirection used?"""
        return self.xrds_uri is not None and self.normalized_uri != self.xrds_uri

    def isXRDS(self):
        """Is the response text supposed to be an XRDS document?"""
        return self.xrds_uri is not None


def _isOK(response):
    return 200 <= response.status < 300


def _looksLikeXRDS(body):
    """Whether a generic XML document has an XRDS root element."""
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(body, parser)
    except (ValueError, etree.XMLSyntaxError):
        return False
    return root.tag == root_tag


def whereIsYadis(resp):
    """Given a HTTPResponse, return the location of the Yadis document.

    May be the URL just retrieved, another URL, or None, if none is found.

    @rtype: Optional[str]
    """
    media_type = getMediaType(resp.headers.get('content-type'))

    # The content-type header must be an exact match, generic XML has to be sniffed.
    if media_type == YADIS_CONTENT_TYPE:
        return resp.final_url
    if media_type in XML_CONTENT_TYPES and _looksLikeXRDS(resp.body):
        return resp.final_url

    # Try the header
    yadis_loc = resp.headers.get(YADIS_HEADER_NAME)

    if not yadis_loc:
        # Parse as HTML if the header is missing.
        try:
            yadis_loc = findHTMLMeta(resp.body)
        except MetaNotFound:
            pass

    if not yadis_loc:
        return None
    return urljoin(resp.final_url, yadis_loc)


def _fetchYadisLocation(location, fetcher, timeout, require_ssl, cancel):
    """Fetch the XRDS document from the YADIS location.

    @return: The response, or C{None} if the location is not usable.
    @rtype: Optional[openidcore.fetchers.HTTPResponse]
    """
    if require_ssl and not location.startswith('https://'):
        _LOGGER.warning('XRDS location %s is not secure but SSL is required, ignoring it.', location)
        return None

    _LOGGER.debug('Following YADIS location %s', location)
    try:
        resp = fetcher.fetch(location, timeout=timeout, require_ssl=require_ssl, cancel=cancel)
    except HTTPFetchingError as error:
        _LOGGER.warning('Fetching XRDS location %s failed: %s', location, error.why)
        return None
    if not _isOK(resp):
        _LOGGER.warning('XRDS location %s returned status %s, ignoring it.', location, resp.status)
        return None
    return resp


def discover(uri, fetcher, timeout=None, require_ssl=False, cancel=None):
    """Discover services for a given URI.

    If the YADIS location the page points to can not be used, the result
    holds the page itself, as if it pointed nowhere.

    @param uri: The identity URI as a well-formed http or https URI.
    @type uri: str

    @param fetcher: The fetcher used for HTTP requests.
    @type fetcher: openidcore.fetchers.HTTPFetcher

    @param require_ssl: Whether the XRDS must be fetched over https.

    @return: DiscoveryResult object

    @raises HTTPFetchingError: When the fetcher fails on the URI itself.
    @raises DiscoveryFailure: When the HTTP response is not successful.
    @raises DiscoveryCancelled: When discovery was cancelled.
    """
    result = DiscoveryResult(uri)
    resp = fetcher.fetch(uri, headers={'Accept': YADIS_ACCEPT_HEADER}, timeout=timeout, require_ssl=require_ssl,
                         cancel=cancel)
    if not _isOK(resp):
        raise DiscoveryFailure(
            'HTTP Response status from identity URL host is not 2xx. '
            'Got status %r' % (resp.status,), resp)

    # Note the URL after following redirects
    result.normalized_uri = resp.final_url
    result.content_type = getMediaType(resp.headers.get('content-type'))
    result.xrds_uri = whereIsYadis(resp)

    if result.usedYadisLocation():
        xrds_resp = _fetchYadisLocation(result.xrds_uri, fetcher, timeout, require_ssl, cancel)
        if xrds_resp is None:
            result.xrds_uri = None
        else:
            resp = xrds_resp
            result.content_type = getMediaType(resp.headers.get('content-type'))

    result.response_text = resp.body
    return result
