import re

import pytest

from berryrecord.adapters import (
    BaseAdapter,
    MSSQLAdapter,
    MySQLAdapter,
    PostgresAdapter,
    SQLiteAdapter,
    get_adapter,
)
from berryrecord.core.criteria import Criteria
from berryrecord.errors import SchemaMismatchError, StateError
from berryrecord.sql.builders import Command, CommandBuilder, normalize_params
from tests.spies import FakeDatabase


@pytest.fixture
def builder():
    return CommandBuilder(FakeDatabase())


@pytest.fixture
def posts(builder):
    return builder.db.schema.tables['posts']


def _placeholders(sql):
    return re.findall(r':(\w+)', sql)


def _sql(command):
    return ' '.join(command.sql.split())


def _bound_values(builder, command):
    return set(command.statement.compile(dialect=builder.db.dialect).params.values())


def test_find_command_clauses(builder, posts):
    criteria = Criteria(condition='status=:s', params={':s': 1}, order='views DESC', limit=10, offset=20)
    command = builder.create_find_command(posts, criteria)
    assert re.fullmatch(
        r'SELECT \* FROM posts AS t WHERE status=:s ORDER BY views DESC LIMIT :\w+ OFFSET :\w+', _sql(command)
    )
    assert {10, 20} <= _bound_values(builder, command)
    assert command.params == {'s': 1}


def test_find_command_without_paging_has_no_limit(builder, posts):
    command = builder.create_find_command(posts, Criteria())
    assert _sql(command) == 'SELECT * FROM posts AS t'


def test_find_command_offset_only_is_rendered_by_the_dialect(builder, posts):
    command = builder.create_find_command(posts, Criteria(offset=5))
    assert re.search(r'LIMIT :\w+ OFFSET :\w+$', _sql(command))
    assert {-1, 5} <= _bound_values(builder, command)


def test_find_command_alias_select_and_join(builder, posts):
    criteria = Criteria(join='JOIN users u ON u.id=p.author_id', distinct=True, alias='p', group='p.id', having='COUNT(*)>1')
    command = builder.create_find_command(posts, criteria)
    assert _sql(command) == (
        'SELECT DISTINCT "p".* FROM "posts" "p" JOIN users u ON u.id=p.author_id '
        'GROUP BY p.id HAVING COUNT(*)>1'
    )

    listed = builder.create_find_command(posts, Criteria(select=['id', 'title']))
    assert _sql(listed) == 'SELECT id, title FROM posts AS t'


def test_count_command(builder, posts):
    plain = builder.create_count_command(posts, Criteria(condition='views>:v', params={'v': 3}, order='id', limit=2))
    assert _sql(plain) == 'SELECT count(*) AS count_1 FROM posts AS t WHERE views>:v'
    assert plain.params == {'v': 3}

    grouped = builder.create_count_command(posts, Criteria(group='author_id', order='id', limit=2))
    assert _sql(grouped) == 'SELECT count(*) AS count_1 FROM (SELECT * FROM posts AS t GROUP BY author_id) AS sq'


def test_grouped_count_keeps_the_alias_usable(builder, posts):
    criteria = Criteria(group='t.author_id', condition='t.views > :v', params={'v': 1})
    command = builder.create_count_command(posts, criteria)
    assert _sql(command) == (
        'SELECT count(*) AS count_1 FROM '
        '(SELECT * FROM posts AS t WHERE t.views > :v GROUP BY t.author_id) AS sq'
    )
    assert command.params == {'v': 1}


def test_insert_skips_unset_generated_key_and_unknown_columns(builder, posts):
    command = builder.create_insert_command(posts, {'id': None, 'title': 'Hi', 'nope': 1, 'views': '7'})
    assert _sql(command) == 'INSERT INTO posts (title, views) VALUES (:bi1, :bi3)'
    assert command.params == {'bi1': 'Hi', 'bi3': 7}


def test_insert_without_columns_uses_default_values(builder, posts):
    command = builder.create_insert_command(posts, {'id': None})
    assert _sql(command) == 'INSERT INTO posts DEFAULT VALUES'
    assert command.params == {}


def test_update_command(builder, posts):
    criteria = builder.create_pk_criteria(posts, 3)
    command = builder.create_update_command(posts, {'title': 'New', 'ghost': 1}, criteria)
    assert _sql(command).startswith('UPDATE posts SET title=:bu0 WHERE "id"=:')
    assert command.params['bu0'] == 'New'
    assert 3 in command.params.values()


def test_update_without_known_columns_raises(builder, posts):
    with pytest.raises(StateError):
        builder.create_update_command(posts, {'ghost': 1}, Criteria())


def test_update_counter_command(builder, posts):
    command = builder.create_update_counter_command(posts, {'views': 1, 'status': -1}, Criteria(condition='id=1'))
    sql = _sql(command)
    assert sql.startswith('UPDATE posts SET ')
    assert re.search(r'views=\(?(posts\.)?views \+ :bc0\)?', sql)
    assert re.search(r'status=\(?(posts\.)?status \+ :bc1\)?', sql)
    assert sql.endswith(' WHERE id=1')
    assert command.params == {'bc0': 1, 'bc1': -1}


def test_update_counter_unknown_column_raises(builder, posts):
    with pytest.raises(SchemaMismatchError):
        builder.create_update_counter_command(posts, {'likes': 1}, Criteria())


def test_delete_command(builder, posts):
    command = builder.create_delete_command(posts, Criteria())
    assert _sql(command) == 'DELETE FROM posts'


def test_sql_table_mirrors_the_schema(builder, posts):
    sql_table = builder.sql_table(posts)
    assert [c.name for c in sql_table.primary_key] == ['id']
    assert sql_table.c.id.autoincrement is True
    assert [c.name for c in sql_table.columns] == list(posts.columns)

    link = builder.sql_table(builder.db.schema.tables['post_tag'])
    assert [c.name for c in link.primary_key] == ['post_id', 'tag_id']


def test_pk_criteria_single_and_many(builder, posts):
    one = builder.create_pk_criteria(posts, 5, 'status=1', prefix='"t".')
    (name,) = _placeholders(one.condition)
    assert one.condition == f'("t"."id"=:{name}) AND (status=1)'
    assert one.params == {name: 5}

    many = builder.create_pk_criteria(posts, [1, 2])
    assert many.condition.startswith('"id" IN (')
    assert sorted(many.params.values()) == [1, 2]

    none = builder.create_pk_criteria(posts, [])
    assert none.condition == '0=1'


def test_composite_pk_criteria(builder):
    table = builder.db.schema.tables['post_tag']
    criteria = builder.create_pk_criteria(table, [{'post_id': 1, 'tag_id': 2}, {'post_id': 1, 'tag_id': 3}])
    assert criteria.condition.count(' OR ') == 1
    assert criteria.condition.count('"post_id"=:') == 2
    assert sorted(criteria.params.values()) == [1, 1, 2, 3]

    with pytest.raises(StateError):
        builder.create_pk_criteria(table, {'post_id': 1})


def test_pk_criteria_requires_primary_key(builder):
    from berryrecord.core.schema import TableSchema

    with pytest.raises(SchemaMismatchError):
        builder.create_pk_criteria(TableSchema(name='logs'), 1)


def test_column_criteria(builder, posts):
    criteria = builder.create_column_criteria(posts, {'author_id': '2', 'status': [0, 1], 'body': None})
    assert '"body" IS NULL' in criteria.condition
    assert '"status" IN (' in criteria.condition
    assert sorted(criteria.params.values()) == [0, 1, 2]

    with pytest.raises(SchemaMismatchError):
        builder.create_column_criteria(posts, {'likes': 1})


def test_create_criteria_copies(builder):
    original = Criteria(condition='a=1')
    copy = builder.create_criteria(original)
    copy.add_condition('b=2')
    assert original.condition == 'a=1'
    assert builder.create_criteria({'order': 'id'}).order == 'id'
    assert builder.create_criteria('x=:x', {'x': 1}).params == {'x': 1}


def test_command_keeps_only_bound_params(builder):
    command = Command(builder.db, 'SELECT * FROM t WHERE a=:a AND b::text = :b', {':a': 1, 'b': 2, 'c': 3})
    assert command.params == {'a': 1, 'b': 2}
    assert normalize_params({':x': 1, 'y': 2}) == {'x': 1, 'y': 2}


@pytest.mark.parametrize('name, expected', [
    ('sqlite', SQLiteAdapter),
    ('postgresql', PostgresAdapter),
    ('mysql', MySQLAdapter),
    ('mariadb', MySQLAdapter),
    ('mssql', MSSQLAdapter),
])
def test_get_adapter(name, expected):
    assert type(get_adapter(name)) is expected


def test_unknown_dialect_falls_back_to_base(caplog):
    with caplog.at_level('WARNING', logger='berryrecord.adapters'):
        adapter = get_adapter('firebird')
    assert type(adapter) is BaseAdapter
    assert 'firebird' in caplog.text


def test_identifier_quoting():
    assert BaseAdapter().quote_column_name('t.title') == '"t"."title"'
    assert BaseAdapter().quote_column_name('COUNT(*)') == 'COUNT(*)'
    assert BaseAdapter().quote_table_name('main.posts') == '"main"."posts"'
    assert MySQLAdapter().quote_simple_name('posts') == '`posts`'
    assert MSSQLAdapter().quote_simple_name('posts') == '[posts]'
