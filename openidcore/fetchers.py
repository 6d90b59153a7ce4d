"""This module contains the HTTP fetcher interface and its implementations.

Every request carries a timeout and may be cancelled by setting a
C{threading.Event}.  The event is checked before the request is sent and
between the chunks of the response body, and the connection is always
released.
"""
import logging
import sys
from urllib.error import HTTPError as UrllibHTTPError
from urllib.parse import urljoin
from urllib.request import HTTPRedirectHandler, Request, build_opener, urlopen

import requests
from requests.structures import CaseInsensitiveDict

import openidcore
from openidcore.errors import DiscoveryCancelled

__all__ = ['getDefaultFetcher', 'setDefaultFetcher', 'HTTPResponse', 'HTTPFetcher', 'createHTTPFetcher',
           'HTTPFetchingError', 'ExceptionWrappingFetcher', 'RequestsFetcher', 'Urllib2Fetcher']

_LOGGER = logging.getLogger(__name__)

USER_AGENT = "openidcore/%s (%s)" % (openidcore.__version__, sys.platform)
MAX_RESPONSE_KB = 1024
MAX_REDIRECTS = 10
CHUNK_SIZE = 8192
REDIRECT_CODES = (301, 302, 303, 307, 308)


def createHTTPFetcher():
    """Create a default HTTP fetcher instance."""
    return RequestsFetcher()


# Contains the currently set HTTP fetcher. If it is set to None, the
# library will call createHTTPFetcher() to set it. Do not access this
# variable outside of this module.
_default_fetcher = None


def getDefaultFetcher():
    """Return the default fetcher instance
    if no fetcher has been set, it will create a default fetcher.

    @return: the default fetcher
    @rtype: HTTPFetcher
    """
    global _default_fetcher

    if _default_fetcher is None:
        setDefaultFetcher(createHTTPFetcher())

    return _default_fetcher


def setDefaultFetcher(fetcher, wrap_exceptions=True):
    """Set the default fetcher

    @param fetcher: The fetcher to use as the default HTTP fetcher
    @type fetcher: HTTPFetcher

    @param wrap_exceptions: Whether to wrap exceptions thrown by the
        fetcher with HTTPFetchingError so that they may be caught
        easier.
    @type wrap_exceptions: bool
    """
    global _default_fetcher
    if fetcher is None or not wrap_exceptions:
        _default_fetcher = fetcher
    else:
        _default_fetcher = ExceptionWrappingFetcher(fetcher)


class HTTPResponse(object):
    """A response to an HTTP request.

    @ivar final_url: The URL of the response after all redirects.
    @type final_url: str

    @ivar status: The HTTP status code.
    @type status: int

    @ivar headers: Response headers, names are case-insensitive.
    @type headers: Mapping[str, str]

    @ivar body: The response body, possibly truncated to L{MAX_RESPONSE_KB}.
    @type body: bytes
    """

    def __init__(self, final_url=None, status=None, headers=None, body=None):
        self.final_url = final_url
        self.status = status
        self.headers = CaseInsensitiveDict(headers or {})
        self.body = body

    def __repr__(self):
        return "<%s status %s for %s>" % (self.__class__.__name__,
                                          self.status,
                                          self.final_url)


class HTTPFetcher(object):
    """
    This class is the interface for HTTP fetchers.  This
    interface is only important if you need to write a new fetcher for
    some reason.
    """

    def fetch(self, url, body=None, headers=None, timeout=None, require_ssl=False, cancel=None):
        """
        This performs an HTTP POST or GET, following redirects along
        the way. If a body is specified, then the request will be a
        POST. Otherwise, it will be a GET.

        @type body: bytes

        @param headers: HTTP headers to include with the request
        @type headers: Dict[str, str]

        @param timeout: Timeout of each connection, in seconds
        @type timeout: Optional[float]

        @param require_ssl: Whether the request and all of its redirects
            must use https
        @type require_ssl: bool

        @param cancel: The request is abandoned once this event is set
        @type cancel: Optional[threading.Event]

        @return: An object representing the server's HTTP response. If
            there are network or protocol errors, an exception will be
            raised. HTTP error responses, like 404 or 500, do not
            cause exceptions.

        @rtype: L{HTTPResponse}

        @raise DiscoveryCancelled: If the request was cancelled.
        @raise Exception: Different implementations will raise
            different errors based on the underlying HTTP library.
        """
        raise NotImplementedError


def _allowedURL(url):
    return url.startswith('http://') or url.startswith('https://')


def _checkURL(url, require_ssl):
    if not _allowedURL(url):
        raise ValueError('Bad URL scheme: %r' % (url,))
    if require_ssl and not url.startswith('https://'):
        raise ValueError('URL %r is not secure but SSL is required' % (url,))


def _checkCancelled(cancel, url):
    if cancel is not None and cancel.is_set():
        raise DiscoveryCancelled('Request to %s was cancelled' % (url,))


def _readChunks(chunks, cancel, url):
    """Read body chunks until the size limit is reached."""
    limit = MAX_RESPONSE_KB * 1024
    data = bytearray()
    for chunk in chunks:
        _checkCancelled(cancel, url)
        data.extend(chunk)
        if len(data) >= limit:
            _LOGGER.debug('Response from %s truncated to %d bytes', url, limit)
            del data[limit:]
            break
    return bytes(data)


class HTTPFetchingError(Exception):
    """Exception that is wrapped around all exceptions that are raised
    by the underlying fetcher when using the ExceptionWrappingFetcher

    @ivar why: The exception that caused this exception
    """

    def __init__(self, why=None):
        Exception.__init__(self, why)
        self.why = why


class ExceptionWrappingFetcher(HTTPFetcher):
    """Fetcher wrapper which wraps all exceptions to `HTTPFetchingError`.

    Cancellation is not an error and passes through unchanged.
    """

    def __init__(self, fetcher):
        self.fetcher = fetcher

    def fetch(self, *args, **kwargs):
        try:
            return self.fetcher.fetch(*args, **kwargs)
        except (DiscoveryCancelled, HTTPFetchingError):
            raise
        except Exception as error:
            raise HTTPFetchingError(why=error)


class _SecureRedirectHandler(HTTPRedirectHandler):
    """Redirect handler which refuses to follow redirects to plain http."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        _checkURL(newurl, True)
        return HTTPRedirectHandler.redirect_request(self, req, fp, code, msg, headers, newurl)


class Urllib2Fetcher(HTTPFetcher):
    """An C{L{HTTPFetcher}} that uses urllib.

    With C{require_ssl}, every redirect is checked before it is followed.
    """

    # Parameterized for the benefit of testing frameworks.
    urlopen = staticmethod(urlopen)
    secure_urlopen = staticmethod(build_opener(_SecureRedirectHandler).open)

    def fetch(self, url, body=None, headers=None, timeout=None, require_ssl=False, cancel=None):
        assert body is None or isinstance(body, bytes)
        _checkURL(url, require_ssl)
        _checkCancelled(cancel, url)

        headers = dict(headers or {})
        headers.setdefault('User-Agent', "%s Python-urllib" % USER_AGENT)

        req = Request(url, data=body, headers=headers)
        try:
            opener = self.secure_urlopen if require_ssl else self.urlopen
            f = opener(req, timeout=timeout)
        except UrllibHTTPError as why:
            f = why
        try:
            return self._makeResponse(f, require_ssl, cancel)
        finally:
            f.close()

    def _makeResponse(self, urllib_response, require_ssl, cancel):
        final_url = urllib_response.geturl()
        # Check where urllib ended after following redirects.
        _checkURL(final_url, require_ssl)

        def chunks():
            while True:
                chunk = urllib_response.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

        body = _readChunks(chunks(), cancel, final_url)
        status = getattr(urllib_response, 'code', None) or 200
        return HTTPResponse(final_url, status, dict(urllib_response.info().items()), body)


class RequestsFetcher(HTTPFetcher):
    """A fetcher that uses C{requests} for performing HTTP requests.

    Redirects are followed by the fetcher itself so every hop can be
    checked against C{require_ssl}.
    """

    def __init__(self, session=None):
        if session is None:
            session = requests.Session()
        self.session = session

    def fetch(self, url, body=None, headers=None, timeout=None, require_ssl=False, cancel=None):
        """Perform an HTTP request

        @raises Exception: Any exception that can be raised by 'requests'

        @see: C{L{HTTPFetcher.fetch}}
        """
        assert body is None or isinstance(body, bytes)

        headers = dict(headers or {})
        headers.setdefault('User-Agent', "%s python-requests/%s" % (USER_AGENT, requests.__version__))

        method = 'POST' if body else 'GET'
        for _ in range(MAX_REDIRECTS + 1):
            _checkURL(url, require_ssl)
            _checkCancelled(cancel, url)

            response = self.session.request(method, url, data=body, headers=headers, timeout=timeout,
                                            allow_redirects=False, stream=True)
            try:
                location = response.headers.get('Location')
                if response.status_code in REDIRECT_CODES and location:
                    _LOGGER.debug('Following redirect from %s to %s', url, location)
                    url = urljoin(url, location)
                    if response.status_code == 303 or (response.status_code in (301, 302) and method == 'POST'):
                        method, body = 'GET', None
                    continue

                content = _readChunks(response.iter_content(CHUNK_SIZE), cancel, response.url)
                return HTTPResponse(response.url, response.status_code, response.headers, content)
            finally:
                response.close()

        raise requests.TooManyRedirects('Exceeded %d redirects fetching %s' % (MAX_REDIRECTS, url))
