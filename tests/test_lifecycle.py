import re

import pytest

from berryrecord import LifecycleEvent, ModelEvent, hooks
from berryrecord.errors import StateError
from tests.records import Post, User


calls = []


def _stamp(event):
    calls.append(('class', event.event))


class HookedPost(Post):
    hooks = hooks(before_save=_stamp, after_find=[_stamp])


def _persisted(model_cls, **attributes):
    return model_cls.model().populate_record(attributes)


@pytest.fixture(autouse=True)
def _reset_calls():
    calls.clear()
    yield
    calls.clear()


def test_cancelled_before_save_touches_nothing(fake_db):
    post = Post()
    post.title = 'Hello'
    post.on(LifecycleEvent.BEFORE_SAVE, lambda e: e.cancel())
    assert post.save() is False
    assert fake_db.command_builder.calls == []
    assert fake_db.executed == []
    assert post.is_new_record


def test_insert_fills_generated_key_and_snapshots_it(fake_db):
    post = Post()
    post.title = 'Hello'
    assert post.save() is True
    assert fake_db.command_builder.calls == ['insert', 'last_insert_id']
    sql, params = fake_db.executed[0]
    assert sql == 'INSERT INTO posts (title, status, views) VALUES (:bi2, :bi0, :bi1)'
    assert params == {'bi0': 1, 'bi1': 0, 'bi2': 'Hello'}
    assert post.id == 100
    assert post.old_primary_key == 100
    assert not post.is_new_record
    assert post.scenario == 'update'


def test_insert_keeps_explicit_key(fake_db):
    post = Post()
    post.id = 42
    post.title = 'Hello'
    assert post.insert() is True
    assert 'last_insert_id' not in fake_db.command_builder.calls
    assert post.id == 42


def test_insert_on_persisted_record_raises(fake_db):
    post = _persisted(Post, id=1, title='x')
    with pytest.raises(StateError):
        post.insert()


@pytest.mark.parametrize('operation', ['update', 'delete'])
def test_update_and_delete_on_new_record_raise(fake_db, operation):
    with pytest.raises(StateError):
        getattr(Post(), operation)()


def test_save_attributes_on_new_record_raises(fake_db):
    with pytest.raises(StateError):
        Post().save_attributes({'title': 'x'})


def test_validation_failure_returns_false(fake_db):
    user = User()
    assert user.save() is False
    assert user.get_errors('name') == ['Name cannot be blank.']
    assert fake_db.command_builder.calls == []


def test_save_without_validation_skips_rules(fake_db):
    user = User()
    assert user.save(run_validation=False) is True
    assert fake_db.command_builder.calls[0] == 'insert'


def test_update_uses_old_key_and_refreshes_snapshot(fake_db):
    post = _persisted(Post, id=1, title='x')
    post.id = 5
    assert post.save(run_validation=False) is True
    sql, params = fake_db.executed[0]
    assert sql.startswith('UPDATE posts SET')
    assert 1 in params.values()
    assert post.old_primary_key == 5


def test_after_handlers_run_in_order_until_handled(fake_db):
    seen = []
    post = Post()
    post.title = 'x'

    def first(event):
        seen.append('first')
        event.handled = True

    post.on('after_save', first)
    post.on('after_save', lambda e: seen.append('second'))
    post.save()
    assert seen == ['first']


def test_cancel_stops_remaining_before_handlers(fake_db):
    seen = []
    post = Post()
    post.title = 'x'
    post.on('before_save', lambda e: (seen.append('first'), e.cancel()))
    post.on('before_save', lambda e: seen.append('second'))
    assert post.save() is False
    assert seen == ['first']


def test_after_save_not_fired_when_cancelled(fake_db):
    seen = []
    post = Post()
    post.title = 'x'
    post.on('before_save', lambda e: e.cancel())
    post.on('after_save', lambda e: seen.append(e))
    post.save()
    assert seen == []


def test_off_removes_handler(fake_db):
    post = Post()
    handler = lambda e: e.cancel()  # noqa: E731
    post.on('before_save', handler)
    assert post.off('before_save', handler) is True
    assert post.off('before_save', handler) is False
    assert not post.has_event_handler('before_save')


def test_non_callable_handler_rejected(fake_db):
    with pytest.raises(TypeError):
        Post().on('before_save', 'not callable')


def test_delete_cancel_and_after_delete(fake_db):
    post = _persisted(Post, id=1)
    post.on('before_delete', lambda e: e.cancel())
    assert post.delete() is False
    assert fake_db.command_builder.calls == []

    seen = []
    other = _persisted(Post, id=2)
    other.on('after_delete', lambda e: seen.append(e.event))
    fake_db.rowcount = 0
    assert other.delete() is False
    assert seen == []
    fake_db.rowcount = 1
    assert other.delete() is True
    assert seen == [LifecycleEvent.AFTER_DELETE]


def test_cancelled_before_find_returns_empty_results(fake_db):
    model = Post.model()
    handler = lambda e: e.cancel()  # noqa: E731
    model.on('before_find', handler)
    model.published()
    assert model.find() is None
    assert model.get_db_criteria(False) is None
    assert model.find_all() == []
    assert model.count() == 0
    assert model.exists() is False
    assert model.find_all_by_sql('SELECT * FROM posts') == []
    assert fake_db.executed == []
    model.off('before_find', handler)


def test_before_find_handler_can_edit_criteria(fake_db):
    model = Post.model()

    def restrict(event: ModelEvent):
        event.criteria.add_condition('views > 0')

    model.on('before_find', restrict)
    model.find_all()
    sql, _ = fake_db.executed[0]
    assert 'WHERE views > 0' in sql


def test_class_hooks_run_before_instance_handlers(fake_db):
    post = HookedPost()
    post.title = 'x'
    post.on('before_save', lambda e: calls.append(('instance', e.event)))
    post.save(run_validation=False)
    assert calls == [('class', LifecycleEvent.BEFORE_SAVE), ('instance', LifecycleEvent.BEFORE_SAVE)]


def test_after_find_fires_for_populated_records(fake_db):
    fake_db.rows = [{'id': 1, 'title': 'x'}, {'id': 2, 'title': 'y'}]
    records = HookedPost.model().find_all()
    assert [r.id for r in records] == [1, 2]
    assert calls == [('class', LifecycleEvent.AFTER_FIND)] * 2


def test_save_counters_updates_local_values(fake_db):
    post = _persisted(Post, id=1, views=3)
    assert post.save_counters({'views': 2}) is True
    sql, params = fake_db.executed[0]
    assert re.search(r'views=\(?(posts\.)?views \+ :bc0\)?', sql)
    assert params['bc0'] == 2
    assert post.views == 5


def test_save_attributes_skips_events_and_validation(fake_db):
    post = _persisted(Post, id=1, title='x')
    post.on('before_save', lambda e: e.cancel())
    assert post.save_attributes({'title': ''}) is True
    assert post.title == ''
    assert fake_db.command_builder.calls == ['update']
