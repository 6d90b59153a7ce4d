# -*- test-case-name: openidcore.test.test_xri -*-
"""Normal forms and authorities of XRIs.

An XRI such as C{=example} or C{@example*sub} is written with or without
the C{xri://} scheme.  Comparisons use the form with the scheme, as
returned by L{XRI}.

@see: XRI Syntax v2.0 at the
      U{OASIS XRI Technical Committee<http://www.oasis-open.org/committees/tc_home.php?wg_abbrev=xri>}
"""
import re
from urllib.parse import quote

from openidcore.urinorm import GEN_DELIMS, SUB_DELIMS

__all__ = ['XRI', 'XRI_PREFIX', 'GLOBAL_CONTEXT_SYMBOLS', 'stripPrefix', 'toURINormal', 'toIRINormal', 'iriToURI',
           'rootAuthority', 'providerIsAuthoritative']

XRI_PREFIX = 'xri://'
GLOBAL_CONTEXT_SYMBOLS = ('=', '@', '+', '$', '!')

# Characters which escape the cross-references of an IRI.
_XREF_ESCAPES = {'/': '%2F', '?': '%3F', '#': '%23'}
_XREF_RE = re.compile(r'\((.*?)\)')


def stripPrefix(xri):
    """Return the XRI without its C{xri://} scheme, matched without regard to case.

    @type xri: str
    @rtype: str
    """
    if xri[:len(XRI_PREFIX)].lower() == XRI_PREFIX:
        return xri[len(XRI_PREFIX):]
    return xri


def XRI(xri):
    """Return the XRI with the C{xri://} scheme, for comparisons.

    @type xri: str
    @rtype: str
    """
    return XRI_PREFIX + stripPrefix(xri)


def _escapeXref(match):
    return ''.join(_XREF_ESCAPES.get(char, char) for char in match.group())


def toIRINormal(xri):
    """Transform an XRI to IRI-normal form.

    Percent signs are escaped first, then the delimiters inside
    cross-references, so that they are not taken for delimiters of the
    XRI itself.
    """
    return _XREF_RE.sub(_escapeXref, XRI(xri).replace('%', '%25'))


def iriToURI(iri):
    """Transform an IRI to a URI by escaping characters outside ASCII.

    According to RFC 3987, section 3.1, "Mapping of IRIs to URIs"

    @type iri: str
    @rtype: str
    """
    return quote(iri, GEN_DELIMS + SUB_DELIMS + '%')


def toURINormal(xri):
    return iriToURI(toIRINormal(xri))


def rootAuthority(xri):
    """Return the root authority for an XRI.

    Example::

        rootAuthority("xri://@example") == "xri://@"

    @type xri: str
    @rtype: str
    """
    authority = stripPrefix(xri).split('/', 1)[0]
    if authority.startswith('('):
        # Cross-reference. Nested cross-references are not supported.
        return XRI(authority[:authority.index(')') + 1])
    if authority[:1] in GLOBAL_CONTEXT_SYMBOLS:
        return XRI(authority[0])
    # IRI authority, up to the first subsegment.
    return XRI(re.split(r'[!*]', authority, 1)[0])


def providerIsAuthoritative(providerID, canonicalID):
    """Whether the provider ID is the parent of the canonical ID.

    @rtype: bool
    """
    return canonicalID.rsplit('!', 1)[0] == providerID
