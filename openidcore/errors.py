"""Exceptions shared by the discovery and association code."""

__all__ = ['OpenIDError', 'ProtocolError', 'SecurityPolicyViolation', 'InternalInvariantError',
           'DiscoveryCancelled']


class OpenIDError(Exception):
    """Base class of the library's own exceptions."""


class ProtocolError(OpenIDError):
    """A remote party sent well-formed data which is not valid for the protocol.

    Malformed XRDS documents, bad XML signatures and unknown association
    or session types all end up here.
    """


class SecurityPolicyViolation(OpenIDError):
    """An association or session type falls outside the active security policy."""


class InternalInvariantError(OpenIDError):
    """Stored data does not match what this code can read.

    This is never caught by the library itself.
    """


class DiscoveryCancelled(OpenIDError):
    """Discovery was cancelled by the caller."""
