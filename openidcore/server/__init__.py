"""
This package contains the portions of the library used only when
implementing an OpenID provider.  See L{openidcore.server.signatory}.
"""
__all__ = ['signatory']
