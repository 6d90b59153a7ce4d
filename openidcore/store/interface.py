"""
This module contains the definition of the C{L{AssociationStore}}
interface.
"""

__all__ = ['AssociationStore']


class AssociationStore(object):
    """
    This is the interface for the association stores the library uses.

    Associations are partitioned by a distinguishing key: the provider
    endpoint URL for relying parties, the smart or dumb mode for
    providers.  Handles are only unique within one partition.

    Implementations must be safe for use from several threads at once.

    @sort: store_association, get_best_association, get_association,
        remove_association, sweep_expired
    """

    def store_association(self, key, association):
        """
        This method puts a C{L{Association
        <openidcore.association.Association>}} object into storage,
        retrievable by key and handle.  An association already stored
        under the same key and handle is replaced.


        @param key: The partition of the association.  Because of the
            way the library uses this interface, don't assume there are
            any limitations on the character set of the input string.

        @type key: C{str}


        @param association: The C{L{Association
            <openidcore.association.Association>}} to store.

        @type association: C{L{Association
            <openidcore.association.Association>}}


        @return: C{None}
        """
        raise NotImplementedError

    def get_best_association(self, key, policy):
        """
        This method returns the most recently issued association of the
        partition whose strength lies within the security policy.  As
        all the associations of a type share the same lifetime, it is
        also the one which stays valid longest.

        Expired associations are never returned.


        @param key: The partition to search.

        @type key: C{str}


        @param policy: The security policy the association must satisfy.

        @type policy: C{L{SecurityPolicy <openidcore.config.SecurityPolicy>}}


        @rtype: C{L{Association <openidcore.association.Association>}}
            or C{NoneType}
        """
        raise NotImplementedError

    def get_association(self, key, handle):
        """
        This method returns the association with the given handle from
        the partition, or C{None}.  The security policy is not applied.
        Expired associations are never returned.


        @type key: C{str}

        @type handle: C{str}


        @rtype: C{L{Association <openidcore.association.Association>}}
            or C{NoneType}
        """
        raise NotImplementedError

    def remove_association(self, key, handle):
        """
        This method removes the matching association if it's found,
        and returns whether the association was removed or not.


        @type key: C{str}

        @type handle: C{str}


        @return: Returns whether or not the given association existed.

        @rtype: C{bool}
        """
        raise NotImplementedError

    def sweep_expired(self):
        """Remove the expired associations of all partitions.

        @return: The number of associations removed.
        @rtype: C{int}
        """
        raise NotImplementedError
