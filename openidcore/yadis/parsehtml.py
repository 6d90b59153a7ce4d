"""Utilities to parse YADIS header from HTML."""
from io import BytesIO

from lxml import etree

from openidcore.yadis.constants import YADIS_HEADER_NAME

__all__ = ['findHTMLMeta', 'MetaNotFound', 'parseHTML']


class MetaNotFound(Exception):
    """Yadis meta tag not found in the HTML page."""


def xpath_lower_case(context, values):
    """Return lower cased values in XPath."""
    return [v.lower() for v in values]


def parseHTML(body):
    """Parse an HTML page leniently.

    @type body: bytes
    @return: The document or C{None} if nothing could be parsed.
    @rtype: Optional[lxml.etree._ElementTree]
    """
    parser = etree.HTMLParser(no_network=True)
    try:
        html = etree.parse(BytesIO(body), parser)
    except (ValueError, etree.XMLSyntaxError):
        return None

    # Invalid input may return element with no content
    if html.getroot() is None:
        return None
    return html


def findHTMLMeta(body):
    """Look for a meta http-equiv tag with the YADIS header name.

    @param body: Source of the html page
    @type body: bytes

    @return: The URI from which to fetch the XRDS document
    @rtype: str

    @raises MetaNotFound: If the page can not be parsed or it has no such tag.
    """
    html = parseHTML(body)
    if html is None:
        raise MetaNotFound("Couldn't parse HTML page.")

    # Create a XPath evaluator with a local function to lowercase values.
    xpath_evaluator = etree.XPathEvaluator(html, extensions={(None, 'lower-case'): xpath_lower_case})
    # Find YADIS meta tag, case insensitive to the header name.
    yadis_headers = xpath_evaluator('/html/head/meta[lower-case(@http-equiv)="{}"]'.format(YADIS_HEADER_NAME.lower()))
    if not yadis_headers:
        raise MetaNotFound('Yadis meta tag not found.')

    yadis_url = yadis_headers[0].get('content')
    if yadis_url is None:
        raise MetaNotFound('Attribute "content" missing in yadis meta tag.')
    return yadis_url
