"""Conversions between integers, big-endian byte strings and base64 used
by the Diffie-Hellman exchange.
"""
import codecs

from openidcore.oidutil import fromBase64, toBase64

__all__ = [
    'base64ToLong',
    'longToBase64',
    'int_to_bytes',
    'bytes_to_int',
    'fix_btwoc',
]


def bytes_to_int(value):
    """
    Convert byte string to integer.

    @type value: bytes
    @rtype: int
    """
    return int(codecs.encode(value, 'hex'), 16)


def fix_btwoc(value):
    """
    Utility function to ensure the output conforms the `btwoc` function output.

    The value is a big-endian magnitude which must read as unsigned in
    two's complement, so a zero byte is prepended when the top bit is set.
    See http://openid.net/specs/openid-authentication-2_0.html#btwoc for details.

    @type value: bytes or bytearray
    @rtype: bytes
    @raise ValueError: If the value is empty.
    """
    array = bytearray(value)
    if not array:
        raise ValueError('Cannot convert an empty value to btwoc.')
    # First bit must be zero. If it isn't, the bytes must be prepended by zero byte.
    if array[0] > 127:
        array = bytearray([0]) + array
    return bytes(array)


def int_to_bytes(value):
    """
    Convert integer to byte string.

    @type value: int
    @rtype: bytes
    """
    hex_value = '{:x}'.format(value)
    if len(hex_value) % 2:
        hex_value = '0' + hex_value
    array = bytearray.fromhex(hex_value)
    # The output must be `btwoc` compatible
    return fix_btwoc(array)


def longToBase64(value):
    return toBase64(int_to_bytes(value))


def base64ToLong(s):
    return bytes_to_int(fromBase64(s))
