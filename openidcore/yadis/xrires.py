# -*- test-case-name: openidcore.test.test_xrires -*-
"""XRI resolution through a proxy resolver."""
import logging
from urllib.parse import urlencode

from lxml import etree

from openidcore.yadis import etxrd
from openidcore.yadis.constants import YADIS_CONTENT_TYPE
from openidcore.yadis.xri import toURINormal

__all__ = ['ProxyResolver', 'DEFAULT_PROXY']

_LOGGER = logging.getLogger(__name__)

DEFAULT_PROXY = 'https://xri.net/'


class ProxyResolver(object):
    """Python interface to a remote XRI proxy resolver."""

    def __init__(self, fetcher, proxy_url=DEFAULT_PROXY):
        self.fetcher = fetcher
        self.proxy_url = proxy_url

    def queryURL(self, xri, service_type=None):
        """Build a URL to query the proxy resolver.

        @param xri: An XRI to resolve.
        @type xri: str

        @param service_type: The service type to resolve, if you desire
            service endpoint selection.  A service type is a URI.
        @type service_type: Optional[str]

        @rtype: str
        """
        # Trim off the xri:// prefix, the proxy resolver does not accept it.
        qxri = toURINormal(xri)[6:]
        hxri = self.proxy_url + qxri
        args = {'_xrd_r': YADIS_CONTENT_TYPE}
        if service_type:
            args['_xrd_t'] = service_type
        else:
            # Don't perform service endpoint selection.
            args['_xrd_r'] += ';sep=false'
        return _appendArgs(hxri, args)

    def query(self, xri, service_types, timeout=None, cancel=None):
        """Resolve some services for an XRI.

        The proxy is asked once per service type, since it may follow
        references differently for each.  Services already returned for
        an earlier type are not repeated.

        @param xri: An XRI to resolve.
        @type xri: str

        @param service_types: A list of services types to query for.
        @type service_types: List[str]

        @returns: tuple of (CanonicalID, Service elements)
        @rtype: Tuple[Optional[str], List[lxml.etree._Element]]

        @raises HTTPFetchingError: If the proxy can not be reached.
        @raises XRDSError: If the proxy returns a bad document.
        """
        services = []
        seen = set()
        canonicalID = None

        for service_type in service_types:
            url = self.queryURL(xri, service_type)
            response = self.fetcher.fetch(url, timeout=timeout, require_ssl=url.startswith('https://'),
                                          cancel=cancel)
            if not 200 <= response.status < 300:
                _LOGGER.warning('XRI proxy returned status %s for %s', response.status, url)
                continue
            et = etxrd.parseXRDS(response.body)
            canonicalID = etxrd.getCanonicalID(xri, et)
            for service in etxrd.iterServices(et):
                key = etree.tostring(service)
                if key not in seen:
                    seen.add(key)
                    services.append(service)
        return canonicalID, services


def _appendArgs(url, args):
    """Append some arguments to an HTTP query."""
    if not args:
        return url

    # According to XRI Resolution section "QXRI query parameters":
    #
    # """If the original QXRI had a null query component (only a leading
    #    question mark), or a query component consisting of only question
    #    marks, one additional leading question mark MUST be added when
    #    adding any XRI resolution parameters."""
    if '?' in url.rstrip('?'):
        sep = '&'
    else:
        sep = '?'

    return '%s%s%s' % (url, sep, urlencode(sorted(args.items())))
