"""
This package contains the YADIS protocol: locating and parsing the
XRDS document which describes the services of an identifier.
"""

__all__ = ['accept', 'constants', 'discover', 'etxrd', 'parsehtml', 'xri', 'xrires']
