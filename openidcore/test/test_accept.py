"""Test `openidcore.yadis.accept` module."""
import unittest

from openidcore.yadis import accept
from openidcore.yadis.constants import YADIS_ACCEPT_HEADER


class TestGenerateAcceptHeader(unittest.TestCase):
    """Test `generateAcceptHeader` function."""

    def test_single(self):
        self.assertEqual(accept.generateAcceptHeader('text/html'), 'text/html')
        self.assertEqual(accept.generateAcceptHeader(('text/html', 0.5)), 'text/html; q=0.5')

    def test_order(self):
        header = accept.generateAcceptHeader('application/xrds+xml', ('text/html', 0.3),
                                             ('application/xhtml+xml', 0.5))
        self.assertEqual(header, 'text/html; q=0.3, application/xhtml+xml; q=0.5, application/xrds+xml')

    def test_yadis(self):
        self.assertEqual(YADIS_ACCEPT_HEADER, 'text/html; q=0.3, application/xhtml+xml; q=0.5, application/xrds+xml')

    def test_invalid_preference(self):
        self.assertRaises(ValueError, accept.generateAcceptHeader, ('text/html', 0))
        self.assertRaises(ValueError, accept.generateAcceptHeader, ('text/html', 1.5))


class TestGetMediaType(unittest.TestCase):
    """Test `getMediaType` function."""

    def test_media_type(self):
        self.assertEqual(accept.getMediaType('application/xrds+xml'), 'application/xrds+xml')
        self.assertEqual(accept.getMediaType('Application/XRDS+XML; charset=UTF-8'), 'application/xrds+xml')
        self.assertEqual(accept.getMediaType(' text/html ;charset=iso-8859-1'), 'text/html')

    def test_empty(self):
        self.assertIsNone(accept.getMediaType(None))
        self.assertIsNone(accept.getMediaType(''))
