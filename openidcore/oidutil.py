"""This module contains general utility code that is used throughout
the library.
"""
import binascii
from datetime import datetime, timezone

__all__ = ['toBase64', 'fromBase64', 'force_text', 'utcnow']


def toBase64(s):
    """Return string s as base64, omitting newlines.

    @type s: bytes
    @rtype str
    """
    return binascii.b2a_base64(s)[:-1].decode('utf-8')


def fromBase64(s):
    """Return binary data from base64 encoded string.

    @type s: str
    @rtype bytes
    """
    try:
        return binascii.a2b_base64(s)
    except binascii.Error as why:
        # Convert to a common exception type
        raise ValueError(str(why))


def force_text(value):
    """
    Return a text object representing value in UTF-8 encoding.
    """
    if isinstance(value, str):
        # It's already a text, just return it.
        return value
    elif isinstance(value, bytes):
        # It's a byte string, decode it.
        return value.decode('utf-8')
    else:
        # It's not a string, convert it.
        return str(value)


def utcnow():
    """Return the current time as an aware UTC datetime, cut to the second."""
    return datetime.now(timezone.utc).replace(microsecond=0)
