"""Example: basic sqlitepp usage.

sqlitepp talks to the system SQLite library through ctypes. If it cannot be
found automatically, point at it explicitly:
    SQLITEPP_NATIVE_LIB=/path/to/libsqlite3.so python example.py
"""

import sqlitepp


def main():
    print("Opening an in-memory database...")
    db = sqlitepp.Connection(sqlitepp.MEMORY)

    print("Creating table...")
    db.execute("CREATE TABLE users (name TEXT, password TEXT);")

    print("Inserting data directly...")
    db.execute("INSERT INTO users (name, password) VALUES ('paul', 'test');")

    print("Inserting data by prepared statement...")
    st = sqlitepp.PreparedStatement(db)
    st.prepare("INSERT INTO users (name, password) VALUES (?, ?);")
    st.bind_text(1, "steve")
    st.bind_text(2, "this_is_a_password")
    st.exec()

    print("Selecting all users...")
    st.prepare("SELECT * FROM users;")
    while st.fetch_row():
        print(f"  Username: {st.get_text('name')}, password: {st.get_text('password')}")
    st.finalize()

    # Misuse is reported, not ignored.
    try:
        sqlitepp.Connection().execute("COMMIT;")
        print("Exceptions don't work.")
    except sqlitepp.NotOpenError as e:
        print(f"Exceptions work: {e}")

    try:
        sqlitepp.PreparedStatement(db).bind_integer(1, 4)
        print("Exceptions don't work.")
    except sqlitepp.NotPreparedError as e:
        print(f"Exceptions work: {e}")

    db.close()
    print("\nDone.")


if __name__ == "__main__":
    main()
