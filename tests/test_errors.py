import json

import pytest
import sqlitepp

def test_hierarchy():
    for cls in (sqlitepp.NotOpenError, sqlitepp.AlreadyOpenError,
                sqlitepp.NotPreparedError, sqlitepp.UnknownColumnError):
        assert issubclass(cls, sqlitepp.InterfaceError)
        assert issubclass(cls, sqlitepp.Error)

    for cls in (sqlitepp.IntegrityError, sqlitepp.OperationalError, sqlitepp.ProgrammingError):
        assert issubclass(cls, sqlitepp.EngineError)
        assert issubclass(cls, sqlitepp.DatabaseError)

    assert issubclass(sqlitepp.UnknownColumnError, KeyError)
    assert issubclass(sqlitepp.UnfinalizedReuseWarning, sqlitepp.Warning)
    assert not issubclass(sqlitepp.UnfinalizedReuseWarning, sqlitepp.Error)

def test_errors_are_fresh_per_failure():
    conn = sqlitepp.Connection()
    with pytest.raises(sqlitepp.NotOpenError) as first:
        conn.execute("SELECT 1")
    with pytest.raises(sqlitepp.NotOpenError) as second:
        conn.last_insert_rowid()
    assert first.value is not second.value
    assert str(first.value) == "Database has not been opened yet."

def test_engine_error_context(conn):
    with pytest.raises(sqlitepp.ProgrammingError) as excinfo:
        conn.execute("SELEC 1")

    err = excinfo.value
    assert err.code == sqlitepp.SQLITE_ERROR
    assert "syntax error" in err.message
    assert "Context:" not in err.message

    msg = str(err)
    assert msg.startswith(err.message)
    ctx = json.loads(msg.split("\nContext: ", 1)[1])
    assert ctx["native_code"] == sqlitepp.SQLITE_ERROR
    assert ctx["sql"] == "SELEC 1"

def test_bind_error_context_truncates_values(conn):
    st = conn.prepare("SELECT ?")
    with pytest.raises(sqlitepp.ProgrammingError) as excinfo:
        st.bind_text(5, "v" * 500)
    ctx = json.loads(str(excinfo.value).split("\nContext: ", 1)[1])
    assert ctx["position"] == 5
    assert ctx["value"] == "v" * 200 + "…"
    st.finalize()

def test_constraint_maps_to_integrity_error(conn):
    conn.execute("CREATE TABLE t (a INTEGER PRIMARY KEY)")
    conn.execute("INSERT INTO t VALUES (1)")
    with pytest.raises(sqlitepp.IntegrityError) as excinfo:
        conn.execute("INSERT INTO t VALUES (1)")
    assert excinfo.value.code == sqlitepp.SQLITE_CONSTRAINT
    assert "UNIQUE" in excinfo.value.message

def test_unknown_column_message():
    err = sqlitepp.UnknownColumnError("missing", ("a", "b"))
    assert err.column == "missing"
    assert str(err) == "Unknown column 'missing'; known columns: a, b"
