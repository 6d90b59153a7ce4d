"""Functions for generating Accept: headers and reading Content-Type: headers."""

__all__ = ['generateAcceptHeader', 'getMediaType']


def generateAcceptHeader(*elements):
    """Generate an accept header value

    Elements are either a media type or a pair of media type and its
    preference factor.  Types are listed in the order of increasing
    preference.

    [str or (str, float)] -> str
    """
    parts = []
    for element in elements:
        if isinstance(element, str):
            qs = "1.0"
            mtype = element
        else:
            mtype, q = element
            q = float(q)
            if q > 1 or q <= 0:
                raise ValueError('Invalid preference factor: %r' % q)

            qs = '%0.1f' % (q,)

        parts.append((qs, mtype))

    parts.sort()
    chunks = []
    for q, mtype in parts:
        if q == '1.0':
            chunks.append(mtype)
        else:
            chunks.append('%s; q=%s' % (mtype, q))

    return ', '.join(chunks)


def getMediaType(content_type):
    """Return the lower cased media type of a Content-Type header value, without parameters.

    >>> getMediaType('Application/XRDS+XML; charset=UTF-8')
    'application/xrds+xml'

    Optional[str] -> Optional[str]
    """
    if not content_type:
        return None
    return content_type.split(';', 1)[0].strip().lower()
