from .native import (
    load_library, sqlite_version,
    SQLITE_OK, SQLITE_ROW, SQLITE_DONE, SQLITE_ERROR, SQLITE_BUSY, SQLITE_LOCKED,
    SQLITE_CONSTRAINT, SQLITE_IOERR, SQLITE_CANTOPEN, SQLITE_READONLY, SQLITE_FULL,
    SQLITE_PERM, SQLITE_NOTADB, SQLITE_CORRUPT, SQLITE_MISUSE, SQLITE_RANGE,
    SQLITE_NULL,
    SQLITE_OPEN_READONLY, SQLITE_OPEN_READWRITE, SQLITE_OPEN_CREATE,
    SQLITE_TRANSIENT,
)
import ctypes
import enum
import json
import logging
import os
import weakref

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

# Path that opens a private, transient in-memory database.
MEMORY = ":memory:"

_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1

# Exceptions
class Error(Exception):
    pass

class Warning(Exception):
    pass

class InterfaceError(Error):
    pass

class NotOpenError(InterfaceError):
    def __init__(self, message="Database has not been opened yet."):
        super().__init__(message)

class AlreadyOpenError(InterfaceError):
    def __init__(self, message="A database has been opened already."):
        super().__init__(message)

class NotPreparedError(InterfaceError):
    def __init__(self, message="The statement has not been prepared or it has been finalized."):
        super().__init__(message)

class UnknownColumnError(InterfaceError, KeyError):
    """Name-based column lookup against a name the current row does not carry.

    Raised as well when no row has been fetched since ``prepare``, since the
    name index is only built from the first row.
    """

    def __init__(self, column, known=()):
        self.column = column
        if known:
            msg = f"Unknown column {column!r}; known columns: {', '.join(known)}"
        else:
            msg = f"Unknown column {column!r}; no row has been fetched since prepare"
        super().__init__(msg)

    def __str__(self):
        return str(self.args[0])

class UnfinalizedReuseWarning(Warning):
    def __init__(self, message="The statement has not been finalized; call finalize() before preparing new SQL."):
        super().__init__(message)

class DatabaseError(Error):
    pass

class EngineError(DatabaseError):
    """The engine reported a failure.

    ``code`` is the primary result code, ``message`` the engine's diagnostic
    text as captured at the failure site (without the context suffix).
    """

    def __init__(self, msg, code=SQLITE_ERROR, message=None):
        super().__init__(msg)
        self.code = code
        self.message = msg if message is None else message

class IntegrityError(EngineError):
    pass

class OperationalError(EngineError):
    pass

class ProgrammingError(EngineError):
    pass

_OPERATIONAL_CODES = frozenset({
    SQLITE_BUSY, SQLITE_LOCKED, SQLITE_IOERR, SQLITE_CANTOPEN, SQLITE_READONLY,
    SQLITE_FULL, SQLITE_PERM, SQLITE_NOTADB, SQLITE_CORRUPT,
})
_PROGRAMMING_CODES = frozenset({SQLITE_ERROR, SQLITE_MISUSE, SQLITE_RANGE})

def _format_value_for_error(v, *, max_str=200):
    if v is None or isinstance(v, (bool, int, float)):
        return v
    if isinstance(v, str):
        if len(v) <= max_str:
            return v
        return v[:max_str] + "…"
    # Fall back to capped repr
    s = repr(v)
    if len(s) <= max_str:
        return s
    return s[:max_str] + "…"

def _raise_error(db_handle, code=None, *, sql=None, **context):
    lib = load_library()
    if code is None:
        code = lib.sqlite3_errcode(db_handle) if db_handle else SQLITE_ERROR
    # sqlite3_errmsg(NULL) reports "out of memory"; only ask a live handle.
    msg = lib.sqlite3_errmsg(db_handle) if db_handle else None
    if not msg:
        msg = lib.sqlite3_errstr(code)
    message = msg.decode('utf-8', errors='replace') if msg else f"Unknown error {code}"

    msg_str = message
    if sql is not None:
        ctx = {"native_code": int(code), "sql": sql}
        for key, value in context.items():
            ctx[key] = _format_value_for_error(value)
        msg_str = msg_str + "\nContext: " + json.dumps(ctx, ensure_ascii=False)

    primary = code & 0xFF
    if primary == SQLITE_CONSTRAINT:
        raise IntegrityError(msg_str, code=primary, message=message)
    elif primary in _OPERATIONAL_CODES:
        raise OperationalError(msg_str, code=primary, message=message)
    elif primary in _PROGRAMMING_CODES:
        raise ProgrammingError(msg_str, code=primary, message=message)
    else:
        raise EngineError(msg_str, code=primary, message=message)


class OpenMode(enum.Enum):
    READ_ONLY = SQLITE_OPEN_READONLY
    READ_WRITE = SQLITE_OPEN_READWRITE
    READ_WRITE_CREATE = SQLITE_OPEN_READWRITE | SQLITE_OPEN_CREATE

class TransactionMode(enum.Enum):
    DEFERRED = "DEFERRED"
    IMMEDIATE = "IMMEDIATE"
    EXCLUSIVE = "EXCLUSIVE"

class StepResult(enum.Enum):
    ROW = "row"
    DONE = "done"
    UNKNOWN = "unknown"

def _coerce(enum_cls, value):
    # Accept the member itself or its name ("read_only", "IMMEDIATE", ...).
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls[value.upper()]
        except KeyError:
            raise ValueError(f"Invalid {enum_cls.__name__}: {value!r}") from None
    return enum_cls(value)


class PreparedStatement:
    """One compiled SQL statement bound to an open :class:`Connection`.

    The statement keeps only a weak reference to its connection; once the
    connection is closed (or collected) every operation that needs the
    engine fails with :class:`NotOpenError` or, for an already released
    statement, :class:`NotPreparedError`.

    Typical use::

        st = PreparedStatement(conn)
        st.prepare("SELECT name FROM users WHERE id = ?")
        st.bind_integer(1, 7)
        while st.fetch_row():
            print(st.get_text("name"))
        st.finalize()
    """

    def __init__(self, connection):
        connection._require_open()
        self._connection = weakref.ref(connection)
        self._lib = connection._lib
        self._stmt = None
        self._sql = None
        self._last_code = SQLITE_OK

        # Column name -> index, built from the first row after prepare.
        self._columns = {}
        self._has_row = False
        # True only while the cursor sits on a row the engine returned.
        self._on_row = False

        connection._statements.add(self)

    def _db(self):
        conn = self._connection()
        if conn is None or not conn.is_open:
            raise NotOpenError("The connection of this statement has been closed.")
        return conn._db

    def _check_prepared(self):
        if self._stmt is None:
            raise NotPreparedError()
        return self._stmt

    @property
    def connection(self):
        """The owning connection, or ``None`` once it has been collected."""
        return self._connection()

    @property
    def is_finalized(self):
        return self._stmt is None

    @property
    def sql(self):
        return self._sql

    @property
    def column_count(self):
        return self._lib.sqlite3_column_count(self._check_prepared())

    @property
    def column_names(self):
        stmt = self._check_prepared()
        names = []
        for i in range(self._lib.sqlite3_column_count(stmt)):
            name = self._lib.sqlite3_column_name(stmt, i)
            names.append(name.decode('utf-8') if name else "")
        return names

    @property
    def bind_parameter_count(self):
        return self._lib.sqlite3_bind_parameter_count(self._check_prepared())

    def prepare(self, sql):
        if self._stmt is not None:
            raise UnfinalizedReuseWarning()

        db = self._db()
        encoded = sql.encode('utf-8')
        stmt_ptr = ctypes.c_void_p()
        res = self._lib.sqlite3_prepare_v2(db, encoded, len(encoded), ctypes.byref(stmt_ptr), None)
        if res != SQLITE_OK:
            # prepare_v2 leaves the output pointer NULL on failure.
            _raise_error(db, res, sql=sql)
        if not stmt_ptr.value:
            raise InterfaceError(f"No SQL statement to prepare in {sql!r}")

        self._stmt = stmt_ptr.value
        self._sql = sql
        self._last_code = SQLITE_OK
        self._columns = {}
        self._has_row = False
        self._on_row = False
        logger.debug("prepared %r", sql)

    # Binding. Positions are 1-based in placeholder order.

    def _check_bind(self, res, position, value=None):
        if res != SQLITE_OK:
            _raise_error(self._db(), res, sql=self._sql, position=position, value=value)

    def bind_integer(self, position, value):
        stmt = self._check_prepared()
        value = int(value)
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise OverflowError(f"Integer {value} does not fit in 64 bits")
        self._check_bind(self._lib.sqlite3_bind_int64(stmt, position, value), position, value)

    def bind_real(self, position, value):
        stmt = self._check_prepared()
        value = float(value)
        self._check_bind(self._lib.sqlite3_bind_double(stmt, position, value), position, value)

    def bind_text(self, position, value):
        stmt = self._check_prepared()
        b = value.encode('utf-8')
        res = self._lib.sqlite3_bind_text(stmt, position, b, len(b), SQLITE_TRANSIENT)
        self._check_bind(res, position, value)

    def bind_null(self, position):
        stmt = self._check_prepared()
        self._check_bind(self._lib.sqlite3_bind_null(stmt, position), position)

    def bind(self, *values):
        """Bind ``values`` to positions 1..n, choosing the binder by type."""
        for position, value in enumerate(values, 1):
            if value is None:
                self.bind_null(position)
            elif isinstance(value, int):
                self.bind_integer(position, value)
            elif isinstance(value, float):
                self.bind_real(position, value)
            elif isinstance(value, str):
                self.bind_text(position, value)
            else:
                raise TypeError(f"Cannot bind {type(value).__name__} at position {position}")

    def clear_bindings(self):
        self._lib.sqlite3_clear_bindings(self._check_prepared())

    def reset(self):
        # The return value repeats the last step() failure, already reported.
        self._lib.sqlite3_reset(self._check_prepared())
        self._on_row = False

    # Execution

    def step(self):
        """Advance the cursor by one row.

        Returns ``StepResult.ROW`` or ``StepResult.DONE``.
        ``StepResult.UNKNOWN`` is returned only when the engine reports the
        database busy or locked, a state the caller may retry after
        :meth:`reset`. Every other engine status is a failure and raises the
        matching :class:`EngineError` subclass rather than reporting UNKNOWN.
        """
        stmt = self._check_prepared()
        self._on_row = False
        res = self._lib.sqlite3_step(stmt)
        self._last_code = res

        if res == SQLITE_ROW:
            if not self._has_row:
                self._index_columns(stmt)
            self._on_row = True
            return StepResult.ROW
        if res == SQLITE_DONE:
            return StepResult.DONE
        if (res & 0xFF) in (SQLITE_BUSY, SQLITE_LOCKED):
            logger.debug("step on %r returned %d", self._sql, res)
            return StepResult.UNKNOWN
        _raise_error(self._db(), res, sql=self._sql)

    def _index_columns(self, stmt):
        columns = {}
        for index in range(self._lib.sqlite3_column_count(stmt)):
            name = self._lib.sqlite3_column_name(stmt, index)
            # First occurrence wins for duplicated names.
            columns.setdefault(name.decode('utf-8') if name else "", index)
        self._columns = columns
        self._has_row = True

    def fetch_row(self):
        return self.step() is StepResult.ROW

    def exec(self):
        """Run the statement once and finalize it, whatever the outcome."""
        self._check_prepared()
        try:
            if self.step() is StepResult.UNKNOWN:
                _raise_error(self._db(), self._last_code, sql=self._sql)
        finally:
            self.finalize()

    # Column access

    def _resolve(self, stmt, column):
        if isinstance(column, str):
            try:
                index = self._columns[column]
            except KeyError:
                raise UnknownColumnError(column, tuple(self._columns)) from None
        else:
            count = self._lib.sqlite3_column_count(stmt)
            if not 0 <= column < count:
                raise IndexError(f"Column index {column} out of range for {count} columns")
            index = column
        # Column values are undefined unless the last step() produced a row.
        if not self._on_row:
            raise InterfaceError("No current row: call step() or fetch_row() until it yields a row")
        return index

    def get_integer(self, column):
        stmt = self._check_prepared()
        return self._lib.sqlite3_column_int64(stmt, self._resolve(stmt, column))

    def get_real(self, column):
        stmt = self._check_prepared()
        return self._lib.sqlite3_column_double(stmt, self._resolve(stmt, column))

    def get_text(self, column, null=None):
        """Column value as text; SQL NULL yields ``null``."""
        stmt = self._check_prepared()
        index = self._resolve(stmt, column)
        ptr = self._lib.sqlite3_column_text(stmt, index)
        if not ptr:
            return null
        length = self._lib.sqlite3_column_bytes(stmt, index)
        return ctypes.string_at(ptr, length).decode('utf-8', errors='replace')

    def is_null(self, column):
        stmt = self._check_prepared()
        return self._lib.sqlite3_column_type(stmt, self._resolve(stmt, column)) == SQLITE_NULL

    def finalize(self):
        if self._stmt is None:
            return
        stmt, self._stmt = self._stmt, None
        # The result code repeats the last step() failure, already reported.
        self._lib.sqlite3_finalize(stmt)
        self._columns = {}
        self._has_row = False
        self._on_row = False
        logger.debug("finalized %r", self._sql)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finalize()

    def __del__(self):
        try:
            self.finalize()
        except Exception:
            logger.debug("finalize during teardown failed", exc_info=True)

    def __repr__(self):
        state = "finalized" if self._stmt is None else "prepared"
        return f"<PreparedStatement {state} sql={self._sql!r}>"


class Connection:
    """A single connection to an SQLite database.

    ``Connection()`` creates an unopened object; ``Connection(path, mode)``
    opens immediately. Transactions are tracked on the object and never
    nest: a second :meth:`begin_transaction` while one is active is a no-op.
    """

    def __init__(self, path=None, mode=OpenMode.READ_WRITE_CREATE):
        self._lib = load_library()
        self._db = None
        self._in_transaction = False
        self.path = None
        # Statements compiled against this handle; finalized before close.
        self._statements = weakref.WeakSet()
        if path is not None:
            self.open(path, mode)

    @property
    def is_open(self):
        return self._db is not None

    @property
    def in_transaction(self):
        return self._in_transaction

    def _require_open(self):
        if self._db is None:
            raise NotOpenError()
        return self._db

    def open(self, path, mode=OpenMode.READ_WRITE_CREATE):
        if self._db is not None:
            raise AlreadyOpenError()
        mode = _coerce(OpenMode, mode)
        path = os.fspath(path)

        handle = ctypes.c_void_p()
        res = self._lib.sqlite3_open_v2(path.encode('utf-8'), ctypes.byref(handle), mode.value, None)
        if res != SQLITE_OK:
            # The engine usually hands back a handle even on failure; it
            # carries the message and must still be released.
            try:
                _raise_error(handle.value, res)
            finally:
                if handle.value:
                    self._lib.sqlite3_close_v2(handle.value)

        self._db = handle.value
        self._in_transaction = False
        self.path = path
        logger.debug("opened %s (%s)", path, mode.name)

    def _sync_transaction(self):
        # SQL issued through execute() ("COMMIT", "ROLLBACK") can end the
        # engine transaction behind the flag; the engine is authoritative.
        if self._in_transaction and self._lib.sqlite3_get_autocommit(self._db):
            logger.debug("transaction on %s already ended in the engine", self.path)
            self._in_transaction = False

    def close(self):
        if self._db is None:
            return
        try:
            for stmt in list(self._statements):
                stmt.finalize()
            self._sync_transaction()
            if self._in_transaction:
                self.rollback()
        finally:
            self._lib.sqlite3_close_v2(self._db)
            self._db = None
            self._in_transaction = False
            logger.debug("closed %s", self.path)

    def execute(self, sql):
        """Run one or more ``;``-separated statements without parameters.

        Returns the number of rows changed by the most recent
        INSERT/UPDATE/DELETE of the batch.
        """
        db = self._require_open()
        res = self._lib.sqlite3_exec(db, sql.encode('utf-8'), None, None, None)
        if res != SQLITE_OK:
            _raise_error(db, res, sql=sql)
        return self._lib.sqlite3_changes(db)

    def begin_transaction(self, mode=TransactionMode.DEFERRED):
        self._require_open()
        if self._in_transaction:
            return
        mode = _coerce(TransactionMode, mode)
        self.execute(f"BEGIN {mode.value} TRANSACTION;")
        self._in_transaction = True
        logger.debug("began %s transaction on %s", mode.name, self.path)

    def end_transaction(self):
        if not self._in_transaction:
            return
        self.execute("END TRANSACTION;")
        self._in_transaction = False
        logger.debug("committed transaction on %s", self.path)

    commit = end_transaction

    def rollback(self):
        if not self._in_transaction:
            return
        try:
            self.execute("ROLLBACK;")
        finally:
            self._in_transaction = False
            logger.debug("rolled back transaction on %s", self.path)

    def last_insert_rowid(self):
        return self._lib.sqlite3_last_insert_rowid(self._require_open())

    def set_foreign_key_enforcement(self, enabled):
        self.execute(f"PRAGMA foreign_keys = {'ON' if enabled else 'OFF'};")

    def activate_foreign_keys(self):
        self.set_foreign_key_enforcement(True)

    def deactivate_foreign_keys(self):
        self.set_foreign_key_enforcement(False)

    def prepare(self, sql):
        """Shortcut for a :class:`PreparedStatement` already prepared with ``sql``."""
        stmt = PreparedStatement(self)
        stmt.prepare(sql)
        return stmt

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if self._db is not None:
                self._sync_transaction()
                if exc_type:
                    self.rollback()
                else:
                    self.end_transaction()
        finally:
            self.close()

    def __del__(self):
        try:
            self.close()
        except Exception:
            logger.debug("close during teardown failed", exc_info=True)

    def __repr__(self):
        state = "open" if self._db is not None else "closed"
        return f"<Connection {state} path={self.path!r}>"


def connect(path, mode=OpenMode.READ_WRITE_CREATE, foreign_keys=None):
    conn = Connection(path, mode)
    if foreign_keys is not None:
        conn.set_foreign_key_enforcement(foreign_keys)
    return conn
