import pytest

from berryrecord.adapters import SQLiteAdapter
from berryrecord.database import DATABASE_URL_ENV, Database, get_active_database, set_active_database
from berryrecord.errors import ConfigurationError
from tests.records import Post


@pytest.fixture
def no_active_database(monkeypatch):
    set_active_database(None)
    monkeypatch.delenv(DATABASE_URL_ENV, raising=False)
    yield
    set_active_database(None)


def test_missing_database_is_a_configuration_error(no_active_database):
    with pytest.raises(ConfigurationError):
        get_active_database()


def test_active_database_from_environment(no_active_database, monkeypatch):
    monkeypatch.setenv(DATABASE_URL_ENV, 'sqlite://')
    database = get_active_database()
    assert isinstance(database.adapter, SQLiteAdapter)
    assert get_active_database() is database
    database.close()


def test_from_url_round_trip():
    database = Database.from_url('sqlite://')
    try:
        assert database.execute('CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT)') is not None
        assert database.execute('INSERT INTO notes (body) VALUES (:b)', {'b': 'hello'}) == 1
        assert database.query('SELECT * FROM notes') == [{'id': 1, 'body': 'hello'}]
        assert database.query_scalar('SELECT COUNT(*) FROM notes') == 1
        table = database.schema.get_table('notes')
        assert table.primary_key == 'id'
        assert table.columns['id'].auto_increment
        assert database.schema.get_table('missing') is None

        builder = database.command_builder
        assert builder.create_insert_command(table, {'id': None, 'body': 'again'}).execute() == 1
        assert builder.get_last_insert_id(table) == 2
        assert database.query_scalar('SELECT body FROM notes WHERE id=2') == 'again'
    finally:
        database.close()


def test_record_class_can_pin_its_database(populated_db):
    class PinnedPost(Post):
        db = populated_db

    set_active_database(None)
    try:
        assert PinnedPost.get_db() is populated_db
        assert PinnedPost.model().count() == 3
    finally:
        set_active_database(populated_db)
