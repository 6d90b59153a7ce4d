"""
This module implements the HTML discovery of OpenID providers: the
C{<link rel="...">} tags in the head of the page of an identifier.

Example::

    <html><head>
      <link rel="openid2.provider openid.server" href="https://example.com/server">
      <link rel="openid2.local_id openid.delegate" href="https://example.com/user">
    </head></html>

The C{rel} attribute is a space separated list of relations, each
matched without regard to case.  Only links in the head count.
"""
from openidcore.yadis.parsehtml import parseHTML

__all__ = ['parseLinkAttrs', 'findLinksRel', 'findFirstHref']


def parseLinkAttrs(html):
    """Find all link tags in the head of an HTML document and
    return a list of their attributes.

    @param html: the page to parse
    @type html: bytes

    @return: A list of dictionaries of attributes, one for each link tag
    @rtype: List[Dict[str, str]]
    """
    document = parseHTML(html)
    if document is None:
        return []
    return [dict(link.attrib) for link in document.xpath('/html/head/link')]


def relMatches(rel_attr, target_rel):
    """Does this target_rel appear in the rel_str?"""
    return target_rel.lower() in (rel.lower() for rel in rel_attr.split())


def linkHasRel(link_attrs, target_rel):
    """Does this link have target_rel as a relationship?"""
    rel_attr = link_attrs.get('rel')
    return bool(rel_attr) and relMatches(rel_attr, target_rel)


def findLinksRel(link_attrs_list, target_rel):
    """Filter the list of link attributes on whether it has target_rel
    as a relationship."""
    return [attrs for attrs in link_attrs_list if linkHasRel(attrs, target_rel)]


def findFirstHref(link_attrs_list, target_rel):
    """Return the value of the href attribute for the first link tag
    in the list that has target_rel as a relationship."""
    matches = findLinksRel(link_attrs_list, target_rel)
    if not matches:
        return None
    href = matches[0].get('href')
    return href.strip() if href else None
