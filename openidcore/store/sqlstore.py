"""
This module contains an C{L{AssociationStore}} implementation backed by
an SQLite database.

Only the durable form of an association is persisted: its handle, its
expiry and its private data.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone

from openidcore.association import Association
from openidcore.store.interface import AssociationStore

__all__ = ['SQLiteStore']

_LOGGER = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MICROSECOND = timedelta(microseconds=1)


def _inTxn(func):
    def wrapped(self, *args, **kwargs):
        return self._callInTransaction(func, self, *args, **kwargs)

    if hasattr(func, '__name__'):
        wrapped.__name__ = func.__name__[4:]

    if hasattr(func, '__doc__'):
        wrapped.__doc__ = func.__doc__

    return wrapped


def _toMicroseconds(moment):
    return (moment - EPOCH) // MICROSECOND


def _fromMicroseconds(value):
    return EPOCH + value * MICROSECOND


class SQLiteStore(AssociationStore):
    """
    This is an SQLite-based association store.

    The table name used is determined by the class variable
    C{L{associations_table}}.  To change the name of the table used,
    pass a new table name into the constructor.

    To create the table with the proper schema, see the
    C{L{createTables}} method.

    All methods other than C{L{__init__}} and C{L{createTables}}
    should be considered implementation details of the
    C{L{AssociationStore}} interface.

    @cvar associations_table: This is the default name of the table to
        keep associations in.

    @sort: __init__, createTables
    """

    associations_table = 'oid_associations'

    create_assoc_sql = """
    CREATE TABLE %(associations)s
    (
        assoc_key VARCHAR(2047),
        handle VARCHAR(255),
        expires INTEGER,
        private_data BLOB(64),
        PRIMARY KEY (assoc_key, handle)
    );
    """

    set_assoc_sql = ('INSERT OR REPLACE INTO %(associations)s '
                     'VALUES (?, ?, ?, ?);')
    get_assocs_sql = ('SELECT handle, expires, private_data '
                      'FROM %(associations)s WHERE assoc_key = ? AND expires > ?;')
    get_assoc_sql = ('SELECT handle, expires, private_data '
                     'FROM %(associations)s WHERE assoc_key = ? AND handle = ? AND expires > ?;')
    remove_assoc_sql = ('DELETE FROM %(associations)s '
                        'WHERE assoc_key = ? AND handle = ?;')
    clean_assoc_sql = 'DELETE FROM %(associations)s WHERE expires <= ?;'

    def __init__(self, conn, associations_table=None):
        """
        This creates a new SQLiteStore instance.  It requires an
        established database connection be given to it, and it allows
        overriding the default table name.


        @param conn: An established C{sqlite3} connection.  It is shared
            by all the threads using the store, so it must be opened
            with C{check_same_thread=False} for multi-threaded use.

        @type conn: C{sqlite3.Connection}


        @param associations_table: This is an optional parameter to
            specify the name of the table used for storing
            associations.  The default value is specified in
            C{L{SQLiteStore.associations_table}}.

        @type associations_table: C{str}
        """
        self.conn = conn
        self.cur = None
        self._lock = threading.RLock()
        self._statement_cache = {}
        self._table_names = {
            'associations': associations_table or self.associations_table,
        }

    def _getSQL(self, sql_name):
        try:
            return self._statement_cache[sql_name]
        except KeyError:
            sql = getattr(self, sql_name)
            sql %= self._table_names
            self._statement_cache[sql_name] = sql
            return sql

    def _execSQL(self, sql_name, *args):
        sql = self._getSQL(sql_name)
        self.cur.execute(sql, args)

    def __getattr__(self, attr):
        # if the attribute starts with db_, use a default
        # implementation that looks up the appropriate SQL statement
        # as an attribute of this object and executes it.
        if attr[:3] == 'db_':
            sql_name = attr[3:] + '_sql'

            def func(*args):
                return self._execSQL(sql_name, *args)
            setattr(self, attr, func)
            return func
        else:
            raise AttributeError('Attribute %r not found' % (attr,))

    def _callInTransaction(self, func, *args, **kwargs):
        """Execute the given function inside of a transaction, with an
        open cursor. If no exception is raised, the transaction is
        comitted, otherwise it is rolled back."""
        with self._lock:
            # No nesting of transactions
            self.conn.rollback()

            try:
                self.cur = self.conn.cursor()
                try:
                    ret = func(*args, **kwargs)
                finally:
                    self.cur.close()
                    self.cur = None
            except BaseException:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()

            return ret

    def txn_createTables(self):
        """
        This method creates the database table necessary for this
        store to work.  It should not be called if the table already
        exists.
        """
        self.db_create_assoc()

    createTables = _inTxn(txn_createTables)

    def _rowToAssociation(self, row):
        handle, expires, private_data = row
        return Association.deserialize(handle, _fromMicroseconds(expires), bytes(private_data))

    def txn_store_association(self, key, association):
        """Set the association for the partition, replacing one with the same handle."""
        self.db_set_assoc(key, association.handle, _toMicroseconds(association.expires),
                          association.serialize_private_data())

    store_association = _inTxn(txn_store_association)

    def txn_get_best_association(self, key, policy):
        """Get the association of the partition which expires last and is within the policy.

        The issue time is not persisted.  All the associations of a type
        share the same lifetime, so the one which expires last is the one
        issued most recently.
        """
        now = _toMicroseconds(datetime.now(timezone.utc))
        self.db_get_assocs(key, now)
        associations = [self._rowToAssociation(row) for row in self.cur.fetchall()]
        associations = [a for a in associations if policy.is_in_permitted_range(a)]
        if not associations:
            return None
        return max(associations, key=lambda a: a.expires)

    get_best_association = _inTxn(txn_get_best_association)

    def txn_get_association(self, key, handle):
        now = _toMicroseconds(datetime.now(timezone.utc))
        self.db_get_assoc(key, handle, now)
        row = self.cur.fetchone()
        if row is None:
            return None
        return self._rowToAssociation(row)

    get_association = _inTxn(txn_get_association)

    def txn_remove_association(self, key, handle):
        """Remove the association for the given partition and handle,
        returning whether the association existed at all.

        (str, str) -> bool
        """
        self.db_remove_assoc(key, handle)
        return self.cur.rowcount > 0  # -1 is undefined

    remove_association = _inTxn(txn_remove_association)

    def txn_sweep_expired(self):
        self.db_clean_assoc(_toMicroseconds(datetime.now(timezone.utc)))
        removed = max(self.cur.rowcount, 0)
        _LOGGER.debug('Swept %d expired associations', removed)
        return removed

    sweep_expired = _inTxn(txn_sweep_expired)
