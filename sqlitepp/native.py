import ctypes
import ctypes.util
import logging
import os
import sys
from ctypes import c_int, c_int64, c_double, c_char_p, c_void_p, POINTER

logger = logging.getLogger(__name__)

# Primary result codes (must match sqlite3.h).
SQLITE_OK = 0
SQLITE_ERROR = 1
SQLITE_INTERNAL = 2
SQLITE_PERM = 3
SQLITE_ABORT = 4
SQLITE_BUSY = 5
SQLITE_LOCKED = 6
SQLITE_NOMEM = 7
SQLITE_READONLY = 8
SQLITE_INTERRUPT = 9
SQLITE_IOERR = 10
SQLITE_CORRUPT = 11
SQLITE_NOTFOUND = 12
SQLITE_FULL = 13
SQLITE_CANTOPEN = 14
SQLITE_PROTOCOL = 15
SQLITE_EMPTY = 16
SQLITE_SCHEMA = 17
SQLITE_TOOBIG = 18
SQLITE_CONSTRAINT = 19
SQLITE_MISMATCH = 20
SQLITE_MISUSE = 21
SQLITE_NOLFS = 22
SQLITE_AUTH = 23
SQLITE_FORMAT = 24
SQLITE_RANGE = 25
SQLITE_NOTADB = 26
SQLITE_ROW = 100
SQLITE_DONE = 101

# sqlite3_open_v2 flags
SQLITE_OPEN_READONLY = 0x00000001
SQLITE_OPEN_READWRITE = 0x00000002
SQLITE_OPEN_CREATE = 0x00000004

# Fundamental datatypes reported by sqlite3_column_type
SQLITE_INTEGER = 1
SQLITE_FLOAT = 2
SQLITE_TEXT = 3
SQLITE_BLOB = 4
SQLITE_NULL = 5

# Destructor sentinel: the engine copies bound text before the call returns.
SQLITE_TRANSIENT = c_void_p(-1)

_lib = None


def _candidate_names():
    names = []

    found = ctypes.util.find_library("sqlite3")
    if found:
        names.append(found)

    if sys.platform == "darwin":
        names += ["libsqlite3.dylib", "/usr/lib/libsqlite3.dylib"]
    elif sys.platform == "win32":
        names += ["sqlite3.dll", "winsqlite3.dll"]
    else:
        names += ["libsqlite3.so.0", "libsqlite3.so"]

    # Fall back to whatever the interpreter's own sqlite3 module was built
    # against. On Windows the engine ships next to the extension as a DLL; on
    # POSIX the extension's dependency tree is searched by dlsym.
    try:
        import _sqlite3
    except ImportError:
        return names
    ext_path = getattr(_sqlite3, "__file__", None)
    if ext_path:
        if sys.platform == "win32":
            names.append(os.path.join(os.path.dirname(ext_path), "sqlite3.dll"))
        else:
            names.append(ext_path)
    return names


def _open_first(candidates):
    for name in candidates:
        try:
            lib = ctypes.CDLL(name)
        except OSError as e:
            logger.debug("sqlite candidate %s rejected: %s", name, e)
            continue
        if hasattr(lib, "sqlite3_open_v2") and hasattr(lib, "sqlite3_prepare_v2"):
            logger.debug("loaded sqlite from %s", name)
            return lib
        logger.debug("sqlite candidate %s lacks the C API", name)
    return None


def load_library():
    global _lib
    if _lib is not None:
        return _lib

    lib_path = os.environ.get("SQLITEPP_NATIVE_LIB")

    if lib_path:
        try:
            lib = ctypes.CDLL(lib_path)
        except OSError as e:
            raise RuntimeError(f"Failed to load sqlite native library at {lib_path}: {e}")
    else:
        lib = _open_first(_candidate_names())

    if lib is None:
        raise RuntimeError("Could not find the sqlite3 native library. Set SQLITEPP_NATIVE_LIB env var.")

    # Define signatures

    lib.sqlite3_libversion.argtypes = []
    lib.sqlite3_libversion.restype = c_char_p

    # Connections
    lib.sqlite3_open_v2.argtypes = [c_char_p, POINTER(c_void_p), c_int, c_char_p]
    lib.sqlite3_open_v2.restype = c_int

    lib.sqlite3_close_v2.argtypes = [c_void_p]
    lib.sqlite3_close_v2.restype = c_int

    lib.sqlite3_exec.argtypes = [c_void_p, c_char_p, c_void_p, c_void_p, c_void_p]
    lib.sqlite3_exec.restype = c_int

    lib.sqlite3_changes.argtypes = [c_void_p]
    lib.sqlite3_changes.restype = c_int

    lib.sqlite3_last_insert_rowid.argtypes = [c_void_p]
    lib.sqlite3_last_insert_rowid.restype = c_int64

    lib.sqlite3_get_autocommit.argtypes = [c_void_p]
    lib.sqlite3_get_autocommit.restype = c_int

    # Diagnostics
    lib.sqlite3_errcode.argtypes = [c_void_p]
    lib.sqlite3_errcode.restype = c_int

    lib.sqlite3_errmsg.argtypes = [c_void_p]
    lib.sqlite3_errmsg.restype = c_char_p

    lib.sqlite3_errstr.argtypes = [c_int]
    lib.sqlite3_errstr.restype = c_char_p

    # Statements
    lib.sqlite3_prepare_v2.argtypes = [c_void_p, c_char_p, c_int, POINTER(c_void_p), c_void_p]
    lib.sqlite3_prepare_v2.restype = c_int

    lib.sqlite3_step.argtypes = [c_void_p]
    lib.sqlite3_step.restype = c_int

    lib.sqlite3_reset.argtypes = [c_void_p]
    lib.sqlite3_reset.restype = c_int

    lib.sqlite3_clear_bindings.argtypes = [c_void_p]
    lib.sqlite3_clear_bindings.restype = c_int

    lib.sqlite3_finalize.argtypes = [c_void_p]
    lib.sqlite3_finalize.restype = c_int

    # Bindings
    lib.sqlite3_bind_parameter_count.argtypes = [c_void_p]
    lib.sqlite3_bind_parameter_count.restype = c_int

    lib.sqlite3_bind_null.argtypes = [c_void_p, c_int]
    lib.sqlite3_bind_null.restype = c_int

    lib.sqlite3_bind_int64.argtypes = [c_void_p, c_int, c_int64]
    lib.sqlite3_bind_int64.restype = c_int

    lib.sqlite3_bind_double.argtypes = [c_void_p, c_int, c_double]
    lib.sqlite3_bind_double.restype = c_int

    lib.sqlite3_bind_text.argtypes = [c_void_p, c_int, c_char_p, c_int, c_void_p]
    lib.sqlite3_bind_text.restype = c_int

    # Columns
    lib.sqlite3_column_count.argtypes = [c_void_p]
    lib.sqlite3_column_count.restype = c_int

    lib.sqlite3_column_name.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_name.restype = c_char_p

    lib.sqlite3_column_type.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_type.restype = c_int

    lib.sqlite3_column_int64.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_int64.restype = c_int64

    lib.sqlite3_column_double.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_double.restype = c_double

    # Raw pointer so text with embedded NULs survives; length comes from
    # sqlite3_column_bytes, which must be called after sqlite3_column_text.
    lib.sqlite3_column_text.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_text.restype = c_void_p

    lib.sqlite3_column_bytes.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_bytes.restype = c_int

    _lib = lib
    return _lib


def sqlite_version():
    """Version string of the loaded engine, e.g. ``"3.45.1"``."""
    return load_library().sqlite3_libversion().decode("ascii")
