"""User-supplied identifiers: URLs and XRIs.

Use L{Identifier.parse} to turn text typed by a user into an
identifier, or L{Identifier.try_parse} when the text is untrusted and
errors should not be raised::

    identifier = Identifier.try_parse(text)
    if identifier is None:
        ...  # Not an identifier.
"""
import logging
import re
from urllib.parse import urlsplit, urlunsplit

from openidcore.urinorm import urinorm
from openidcore.yadis.xri import GLOBAL_CONTEXT_SYMBOLS as XRI_GLOBAL_CONTEXT_SYMBOLS
from openidcore.yadis.xri import stripPrefix

__all__ = ['Identifier', 'UriIdentifier', 'XriIdentifier', 'NoDiscoveryIdentifier', 'IdentifierFormatError',
           'XRI_GLOBAL_CONTEXT_SYMBOLS']

_LOGGER = logging.getLogger(__name__)

_HTTP_SCHEME_RE = re.compile(r'^https?://', re.IGNORECASE)
_OTHER_SCHEME_RE = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.-]*://')


class IdentifierFormatError(ValueError):
    """The text is not a valid identifier."""


class Identifier(object):
    """Base of the identifier variants.

    Identifiers are immutable values.  Two identifiers are equal when
    they are of the same kind and have the same canonical form.

    @ivar original_string: The text the identifier was parsed from.
    @type original_string: str

    @ivar canonical: The normalized form used for comparison and discovery.
    @type canonical: str

    @ivar is_discovery_secure_end_to_end: Whether every step of
        discovery must use secure connections.
    @type is_discovery_secure_end_to_end: bool
    """

    def __init__(self, original_string, canonical, is_discovery_secure_end_to_end):
        self.original_string = original_string
        self.canonical = canonical
        self.is_discovery_secure_end_to_end = is_discovery_secure_end_to_end

    @classmethod
    def parse(cls, text, require_ssl=False):
        """Parse text into an XRI or an URI identifier.

        @type text: str
        @param require_ssl: Whether discovery must be secure end to end.
        @rtype: Identifier
        @raise IdentifierFormatError: If the text is not an identifier.
        """
        if not isinstance(text, str):
            raise TypeError('Identifier must be parsed from text, got %r' % type(text))
        if XriIdentifier.is_xri(text):
            return XriIdentifier(text, require_ssl)
        return UriIdentifier(text, require_ssl)

    @classmethod
    def try_parse(cls, text, require_ssl=False):
        """Like L{parse}, but return C{None} for invalid text."""
        try:
            return cls.parse(text, require_ssl)
        except (IdentifierFormatError, TypeError) as error:
            _LOGGER.debug('Not an identifier %r: %s', text, error)
            return None

    @classmethod
    def is_valid(cls, text):
        return cls.try_parse(text) is not None

    def try_require_ssl(self):
        """Return an identifier which discovers over secure connections only.

        @return: Pair of success flag and the secure identifier.  On
            failure the identifier is one which discovers nothing.
        @rtype: Tuple[bool, Identifier]
        """
        raise NotImplementedError

    def trim_fragment(self):
        return self

    def __eq__(self, other):
        if type(self) != type(other):
            return NotImplemented
        return self.canonical == other.canonical

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self):
        return hash((self.__class__.__name__, self.canonical))

    def __setattr__(self, name, value):
        if name in self.__dict__:
            raise AttributeError('%s is immutable' % (self.__class__.__name__,))
        super(Identifier, self).__setattr__(name, value)

    def __str__(self):
        return self.canonical

    def __repr__(self):
        return '<%s %r>' % (self.__class__.__name__, self.canonical)


class UriIdentifier(Identifier):
    """An identifier which is an HTTP or HTTPS URL.

    @ivar scheme_implicitly_prepended: Whether the scheme was missing in
        the original text and had to be added.
    @type scheme_implicitly_prepended: bool
    """

    def __init__(self, text, require_ssl=False):
        """Normalize the text into an URL.

        @raise IdentifierFormatError: If the text is not an URL or if it
            explicitly uses C{http} while SSL is required.
        """
        stripped = text.strip()
        if not stripped:
            raise IdentifierFormatError('Empty identifier')

        if _HTTP_SCHEME_RE.match(stripped):
            implicit = False
            if require_ssl and stripped[:5].lower() == 'http:':
                raise IdentifierFormatError('Identifier %r does not use https but SSL is required' % (text,))
        elif _OTHER_SCHEME_RE.match(stripped):
            raise IdentifierFormatError('Identifier %r does not use http or https' % (text,))
        else:
            implicit = True
            stripped = ('https://' if require_ssl else 'http://') + stripped

        try:
            canonical = urinorm(stripped)
        except ValueError as error:
            raise IdentifierFormatError('Invalid identifier %r: %s' % (text, error))

        super(UriIdentifier, self).__init__(text, canonical, require_ssl)
        self.scheme_implicitly_prepended = implicit

    @classmethod
    def _copy(cls, source, canonical, secure):
        identifier = cls.__new__(cls)
        Identifier.__init__(identifier, source.original_string, canonical, secure)
        identifier.scheme_implicitly_prepended = source.scheme_implicitly_prepended
        return identifier

    @property
    def scheme(self):
        return urlsplit(self.canonical).scheme

    @property
    def host(self):
        return urlsplit(self.canonical).hostname

    def try_require_ssl(self):
        if self.is_discovery_secure_end_to_end:
            return True, self

        if self.scheme == 'https':
            return True, self._copy(self, self.canonical, True)

        if self.scheme_implicitly_prepended:
            # The default http port is dropped by normalization, so the new URL gets the https default.
            split = urlsplit(self.canonical)
            return True, self._copy(self, urinorm(urlunsplit(('https', ) + tuple(split[1:]))), True)

        return False, NoDiscoveryIdentifier(self)

    def trim_fragment(self):
        split = urlsplit(self.canonical)
        if not split.fragment:
            return self
        return self._copy(self, urlunsplit(tuple(split[:4]) + ('', )), self.is_discovery_secure_end_to_end)


class XriIdentifier(Identifier):
    """An identifier which is an XRI, such as C{=example}."""

    def __init__(self, text, require_ssl=False):
        canonical = stripPrefix(text.strip()).strip()
        if not canonical:
            raise IdentifierFormatError('Empty XRI %r' % (text,))
        if not (canonical.startswith(XRI_GLOBAL_CONTEXT_SYMBOLS) or canonical.startswith('(')):
            raise IdentifierFormatError('XRI %r does not start with a global context symbol' % (text,))
        super(XriIdentifier, self).__init__(text, canonical, require_ssl)

    @staticmethod
    def is_xri(text):
        """Whether the text looks like an XRI rather than an URL."""
        text = text.strip()
        if stripPrefix(text) != text:
            return True
        return text.startswith(XRI_GLOBAL_CONTEXT_SYMBOLS) or text.startswith('(')

    def try_require_ssl(self):
        # XRIs are always resolved through an https proxy.
        if self.is_discovery_secure_end_to_end:
            return True, self
        identifier = self.__class__(self.original_string, True)
        return True, identifier


class NoDiscoveryIdentifier(Identifier):
    """An identifier that discovers nothing.

    It stands in for an identifier which could not be made secure.
    """

    def __init__(self, wrapped):
        super(NoDiscoveryIdentifier, self).__init__(wrapped.original_string, wrapped.canonical, True)
        self.wrapped = wrapped

    def try_require_ssl(self):
        return False, self
