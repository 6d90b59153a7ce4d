"""Constants of the YADIS protocol."""
from openidcore.yadis.accept import generateAcceptHeader

__all__ = ['YADIS_HEADER_NAME', 'YADIS_CONTENT_TYPE', 'YADIS_ACCEPT_HEADER', 'XML_CONTENT_TYPES']

YADIS_HEADER_NAME = 'X-XRDS-Location'
YADIS_CONTENT_TYPE = 'application/xrds+xml'

# Generic XML types which may carry an XRDS document as well.
XML_CONTENT_TYPES = ('text/xml', 'application/xml')

# A value suitable for using as an accept header when performing YADIS
# discovery, unless the application has special requirements
YADIS_ACCEPT_HEADER = generateAcceptHeader(
    ('text/html', 0.3),
    ('application/xhtml+xml', 0.5),
    (YADIS_CONTENT_TYPE, 1.0),
)
