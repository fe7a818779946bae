import pytest
import sqlitepp

@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "test.db")

@pytest.fixture
def conn():
    c = sqlitepp.Connection(sqlitepp.MEMORY)
    yield c
    c.close()
