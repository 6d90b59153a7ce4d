# -*- test-case-name: openidcore.test.test_etxrd -*-
"""
ElementTree interface to an XRD document.

Documents are parsed with C{lxml}.  The parser neither resolves
entities nor touches the network.
"""
import logging

from lxml import etree

from openidcore.yadis import xri

__all__ = [
    'XRDSError',
    'XRDSFraud',
    'nsTag',
    'mkXRDTag',
    'mkXRDSTag',
    'isXRDS',
    'parseXRDS',
    'getCanonicalID',
    'getYadisXRD',
    'getXRDs',
    'getPriority',
    'prioSort',
    'iterServices',
    'sortedURIs',
    'getTypeURIs',
    'expandService',
]

_LOGGER = logging.getLogger(__name__)


class XRDSError(Exception):
    """An error with the XRDS document."""

    # The exception that triggered this exception
    reason = None


class XRDSFraud(XRDSError):
    """Raised when there's an assertion in the XRDS that it does not have
    the authority to make.
    """


XRD_NS_2_0 = 'xri://$xrd*($v*2.0)'
XRDS_NS = 'xri://$xrds'


def nsTag(ns, t):
    return '{%s}%s' % (ns, t)


def mkXRDTag(t):
    """Create a tag name in the XRD 2.0 XML namespace suitable for using
    with ElementTree
    """
    return nsTag(XRD_NS_2_0, t)


def mkXRDSTag(t):
    """Create a tag name in the XRDS XML namespace suitable for using
    with ElementTree
    """
    return nsTag(XRDS_NS, t)


# Tags that are used in Yadis documents
root_tag = mkXRDSTag('XRDS')
service_tag = mkXRDTag('Service')
xrd_tag = mkXRDTag('XRD')
type_tag = mkXRDTag('Type')
uri_tag = mkXRDTag('URI')
local_id_tag = mkXRDTag('LocalID')

# Other XRD tags
canonicalID_tag = mkXRDTag('CanonicalID')


def _makeParser():
    return etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True,
                           remove_pis=True, huge_tree=False)


def parseXRDS(text):
    """Parse the given text as an XRDS document.

    @type text: bytes
    @return: ElementTree containing an XRDS document

    @raises XRDSError: When there is a parse error or the document does
        not contain an XRDS.
    """
    try:
        element = etree.fromstring(text, _makeParser())
    except (ValueError, etree.XMLSyntaxError) as why:
        _LOGGER.error('Error parsing document as XML: %s', why)
        exc = XRDSError('Error parsing document as XML')
        exc.reason = why
        raise exc

    tree = etree.ElementTree(element)
    if not isXRDS(tree):
        raise XRDSError('Not an XRDS document')

    return tree


def isXRDS(xrd_tree):
    """Is this document an XRDS document?"""
    root = xrd_tree.getroot()
    return root is not None and root.tag == root_tag


def getXRDs(xrd_tree):
    """Return all the XRD elements of the document, in document order."""
    return xrd_tree.getroot().findall(xrd_tag)


def getYadisXRD(xrd_tree):
    """Return the XRD element that should contain the Yadis services"""
    xrds = getXRDs(xrd_tree)
    # The last XRD is the final one in a chain of resolution.
    if not xrds:
        raise XRDSError('No XRD present in tree')
    return xrds[-1]


def getCanonicalID(iname, xrd_tree):
    """Return the CanonicalID from this XRDS document.

    @param iname: the XRI being resolved.
    @type iname: str

    @param xrd_tree: The XRDS output from the resolver.
    @type xrd_tree: ElementTree

    @returns: The XRI CanonicalID or None.
    @rtype: Optional[str]

    @raises XRDSFraud: If an XRD in the chain claims an identifier its
        parent is not authoritative for.
    """
    xrd_list = list(reversed(getXRDs(xrd_tree)))

    try:
        canonicalID = xri.XRI(xrd_list[0].findall(canonicalID_tag)[0].text)
    except IndexError:
        return None

    childID = canonicalID.lower()

    for xrd in xrd_list[1:]:
        parent_sought = childID.rsplit('!', 1)[0]
        parent = xri.XRI(xrd.findtext(canonicalID_tag) or '')
        if parent_sought != parent.lower():
            raise XRDSFraud("%r can not come from %s" % (childID, parent))

        childID = parent_sought

    root = xri.rootAuthority(iname)
    if not xri.providerIsAuthoritative(root, childID):
        raise XRDSFraud("%r can not come from root %r" % (childID, root))

    return canonicalID


def getPriority(element):
    """Get the priority of this element.

    Returns C{None} if no priority is specified or the priority value is
    not a non-negative integer.

    @rtype: Optional[int]
    """
    prio_str = element.get('priority')
    if prio_str is None:
        return None
    try:
        prio_val = int(prio_str)
    except ValueError:
        _LOGGER.debug('Ignoring invalid priority %r', prio_str)
        return None
    if prio_val < 0:
        _LOGGER.debug('Ignoring negative priority %r', prio_str)
        return None
    return prio_val


def priorityKey(priority):
    """Return a sort key which places C{None} after every explicit priority."""
    return (priority is None, priority or 0)


def prioSort(elements):
    """Sort a list of elements that have priority attributes.

    The sort is stable: elements with equal priority keep their document
    order.  Elements without a priority come last.
    """
    return sorted(elements, key=lambda e: priorityKey(getPriority(e)))


def iterServices(xrd_tree):
    """Return an iterable over the Service elements in the Yadis XRD

    sorted by priority"""
    xrd = getYadisXRD(xrd_tree)
    return prioSort(xrd.findall(service_tag))


def sortedURIs(service_element):
    """Given a Service element, return a list of the URI elements in priority order."""
    return prioSort(service_element.findall(uri_tag))


def getTypeURIs(service_element):
    """Given a Service element, return a list of the contents of all
    Type tags"""
    return [(type_element.text or '').strip() for type_element in service_element.findall(type_tag)]


def expandService(service_element):
    """Take a service element and expand it into a list of:
    ([type_uri], uri_element, service_element)

    The URI element is C{None} for a service without URIs.
    """
    uris = sortedURIs(service_element) or [None]
    type_uris = getTypeURIs(service_element)
    return [(type_uris, uri, service_element) for uri in uris]
