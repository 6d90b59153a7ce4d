"""
This package implements the parts of OpenID that sit below the
message layer: identifier normalization, discovery of provider
endpoints, and the negotiation, storage and use of associations.

For discovery, see the C{L{openidcore.consumer.discover}} module.  For
associations, see C{L{openidcore.association}} and the stores in
C{L{openidcore.store}}.
"""

__version__ = '1.0.0'

# Parse the version info
try:
    version_info = tuple(int(part) for part in __version__.split('.'))
except ValueError:
    version_info = (None, None, None)
else:
    if len(version_info) != 3:
        version_info = (None, None, None)
