import gc

import pytest
import sqlitepp

def _count(conn, table="t"):
    st = conn.prepare(f"SELECT count(*) FROM {table}")
    try:
        assert st.fetch_row()
        return st.get_integer(0)
    finally:
        st.finalize()

def test_begin_is_idempotent(conn):
    conn.execute("CREATE TABLE t (a INTEGER)")
    conn.begin_transaction()
    assert conn.in_transaction
    conn.begin_transaction()  # no nesting, no error
    conn.begin_transaction(sqlitepp.TransactionMode.EXCLUSIVE)
    assert conn.in_transaction

    conn.execute("INSERT INTO t VALUES (1)")
    conn.end_transaction()
    assert not conn.in_transaction
    assert _count(conn) == 1

def test_commit_and_rollback(conn):
    conn.execute("CREATE TABLE t (a INTEGER)")

    conn.begin_transaction(sqlitepp.TransactionMode.IMMEDIATE)
    conn.execute("INSERT INTO t VALUES (1)")
    conn.commit()
    assert not conn.in_transaction

    conn.begin_transaction("deferred")
    conn.execute("INSERT INTO t VALUES (2)")
    conn.rollback()
    assert not conn.in_transaction

    assert _count(conn) == 1

def test_end_and_rollback_without_transaction_are_noops(conn):
    conn.end_transaction()
    conn.rollback()
    assert not conn.in_transaction

    closed = sqlitepp.Connection()
    closed.end_transaction()
    closed.rollback()

def test_close_rolls_back_open_transaction(db_path):
    conn = sqlitepp.Connection(db_path)
    conn.execute("CREATE TABLE t (a INTEGER)")
    conn.execute("INSERT INTO t VALUES (1)")

    conn.begin_transaction()
    conn.execute("INSERT INTO t VALUES (2)")
    conn.execute("INSERT INTO t VALUES (3)")
    conn.close()
    assert not conn.is_open
    assert not conn.in_transaction

    conn.open(db_path)
    assert _count(conn) == 1
    conn.close()

def test_close_with_pending_statement_rolls_back(db_path):
    conn = sqlitepp.Connection(db_path)
    conn.execute("CREATE TABLE t (a INTEGER)")
    conn.begin_transaction()
    conn.execute("INSERT INTO t VALUES (1)")
    st = conn.prepare("SELECT a FROM t")
    assert st.fetch_row()
    conn.close()
    assert st.is_finalized

    conn = sqlitepp.Connection(db_path)
    assert _count(conn) == 0
    conn.close()

def test_failed_commit_keeps_transaction(conn):
    conn.activate_foreign_keys()
    conn.execute("CREATE TABLE parent (id INTEGER PRIMARY KEY)")
    conn.execute(
        "CREATE TABLE child (id INTEGER, parent_id INTEGER "
        "REFERENCES parent(id) DEFERRABLE INITIALLY DEFERRED)"
    )

    conn.begin_transaction()
    conn.execute("INSERT INTO child VALUES (1, 7)")
    with pytest.raises(sqlitepp.IntegrityError):
        conn.end_transaction()
    assert conn.in_transaction

    # Repairing the violation lets the same transaction commit.
    conn.execute("INSERT INTO parent VALUES (7)")
    conn.end_transaction()
    assert not conn.in_transaction
    assert _count(conn, "child") == 1

def test_rollback_clears_flag_even_when_engine_fails(conn):
    conn.execute("CREATE TABLE t (a INTEGER)")
    conn.begin_transaction()
    # End the engine transaction behind the object's back.
    conn.execute("COMMIT")
    assert conn.in_transaction

    with pytest.raises(sqlitepp.EngineError):
        conn.rollback()
    assert not conn.in_transaction

def test_immediate_transaction_blocks_second_writer(db_path):
    first = sqlitepp.Connection(db_path)
    first.execute("CREATE TABLE t (a INTEGER)")
    second = sqlitepp.Connection(db_path)

    first.begin_transaction(sqlitepp.TransactionMode.IMMEDIATE)
    with pytest.raises(sqlitepp.OperationalError) as excinfo:
        second.begin_transaction(sqlitepp.TransactionMode.IMMEDIATE)
    assert excinfo.value.code == sqlitepp.SQLITE_BUSY
    assert not second.in_transaction

    first.rollback()
    second.begin_transaction(sqlitepp.TransactionMode.IMMEDIATE)
    assert second.in_transaction
    second.close()
    first.close()

def test_collected_connection_rolls_back(db_path):
    conn = sqlitepp.Connection(db_path)
    conn.execute("CREATE TABLE t (a INTEGER)")
    conn.begin_transaction()
    conn.execute("INSERT INTO t VALUES (1)")
    del conn
    gc.collect()

    conn = sqlitepp.Connection(db_path)
    assert _count(conn) == 0
    # The handle was released, so a writer lock is available again.
    conn.begin_transaction(sqlitepp.TransactionMode.EXCLUSIVE)
    conn.rollback()
    conn.close()

def test_close_after_commit_through_execute(db_path):
    conn = sqlitepp.Connection(db_path)
    conn.execute("CREATE TABLE t (a INTEGER)")
    conn.begin_transaction()
    conn.execute("INSERT INTO t VALUES (1)")
    conn.execute("COMMIT")
    assert conn.in_transaction

    conn.close()
    assert not conn.is_open
    assert not conn.in_transaction

    conn.open(db_path)
    assert _count(conn) == 1
    conn.close()

def test_context_exit_after_rollback_through_execute(db_path):
    with sqlitepp.Connection(db_path) as conn:
        conn.execute("CREATE TABLE t (a INTEGER)")
        conn.begin_transaction()
        conn.execute("INSERT INTO t VALUES (1)")
        conn.execute("ROLLBACK")
    assert not conn.is_open

    with sqlitepp.Connection(db_path) as conn:
        assert _count(conn) == 0
