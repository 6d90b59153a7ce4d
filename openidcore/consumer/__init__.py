"""
This package contains the portions of the library used by a relying
party: discovery of the provider endpoints for an identifier.  See
L{openidcore.consumer.discover}.
"""

__all__ = ['cache', 'discover', 'hostmeta', 'html_parse']
