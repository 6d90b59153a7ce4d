"""URI normalization according to RFC 3986, section 6.

Normalizing a normalized URI returns it unchanged.
"""
import string
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit, urlunsplit

__all__ = ['urinorm', 'remove_dot_segments']


GEN_DELIMS = ":/?#[]@"
SUB_DELIMS = "!$&'()*+,;="
RESERVED = GEN_DELIMS + SUB_DELIMS
UNRESERVED = string.ascii_letters + string.digits + "-._~"
_ALLOWED = frozenset(UNRESERVED + RESERVED + "%")

DEFAULT_PORTS = {'http': 80, 'https': 443}


def remove_dot_segments(path):
    """Resolve C{.} and C{..} segments, see RFC 3986, section 5.2.4."""
    output = []

    while path:
        if path.startswith('../'):
            path = path[3:]
        elif path.startswith('./'):
            path = path[2:]
        elif path.startswith('/./'):
            path = path[2:]
        elif path == '/.':
            path = '/'
        elif path.startswith('/../') or path == '/..':
            path = '/' + path[4:]
            if output:
                output.pop()
        elif path in ('.', '..'):
            path = ''
        else:
            end = path.find('/', 1 if path.startswith('/') else 0)
            if end == -1:
                end = len(path)
            output.append(path[:end])
            path = path[end:]

    return ''.join(output)


def _checkCharacters(value, part_name):
    # Rough check, not the full URI grammar.
    if set(value).difference(_ALLOWED):
        raise ValueError('Illegal characters in URI {}: {}'.format(part_name, value))


def _normalizeNetloc(scheme, split_uri):
    hostname = unquote((split_uri.hostname or '').lower())
    try:
        hostname = hostname.encode('idna').decode('ascii')
    except ValueError as error:
        raise ValueError('Invalid hostname {!r}: {}'.format(hostname, error))
    _checkCharacters(hostname, 'hostname')

    try:
        port = split_uri.port
    except ValueError as error:
        raise ValueError('Invalid port in {!r}: {}'.format(split_uri.netloc, error))

    netloc = hostname
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = '{}:{}'.format(hostname, port)

    userinfo = ':'.join(i for i in (split_uri.username, split_uri.password) if i is not None)
    if userinfo:
        _checkCharacters(userinfo, 'userinfo')
        netloc = userinfo + '@' + netloc
    return netloc


def _normalizePath(path):
    # Unquoting and quoting again normalizes the percent encoding.
    path = remove_dot_segments(quote(unquote(path), safe='/' + SUB_DELIMS)) or '/'
    _checkCharacters(path, 'path')
    return path


def urinorm(uri):
    """Return normalized URI.

    Supported URIs are absolute HTTP and HTTPS URLs.  The scheme and host
    are lower-cased, international host names are IDNA encoded, default
    ports are dropped, dot segments are resolved, an empty path becomes
    C{/} and the percent encoding is normalized.

    @type uri: str
    @rtype: str
    @raise ValueError: If URI is invalid.
    """
    split_uri = urlsplit(uri)

    scheme = split_uri.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise ValueError('Not an absolute HTTP or HTTPS URI: {!r}'.format(uri))
    if not split_uri.netloc:
        raise ValueError('Not an absolute URI: {!r}'.format(uri))

    netloc = _normalizeNetloc(scheme, split_uri)
    path = _normalizePath(split_uri.path)

    query = urlencode(parse_qsl(split_uri.query, keep_blank_values=True))
    _checkCharacters(query, 'query')

    fragment = quote(unquote(split_uri.fragment), safe='/?:@' + SUB_DELIMS)
    _checkCharacters(fragment, 'fragment')

    return urlunsplit((scheme, netloc, path, query, fragment))
