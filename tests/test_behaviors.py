from berryrecord import Behavior, LifecycleEvent, RecordBehavior
from berryrecord.core.behaviors import Capability
from tests.records import Post


class ReadOnlyBehavior(RecordBehavior):
    def before_save(self, event):
        event.cancel()

    def before_delete(self, event):
        event.cancel()


class SlugBehavior(RecordBehavior):
    exposes = ('slug',)

    def __init__(self, **config):
        self.slug = None
        self.separator = '-'
        super().__init__(**config)

    def before_save(self, event):
        title = event.sender.title or ''
        self.slug = self.separator.join(title.lower().split())


class TrackedPost(Post):
    def behaviors(self):
        return {'slug': (SlugBehavior, {'separator': '_'})}


def test_behavior_satisfies_capability_protocol():
    assert isinstance(SlugBehavior(), Capability)


def test_record_behavior_cancels_persistence(fake_db):
    post = Post()
    post.title = 'x'
    post.attach_behavior('ro', ReadOnlyBehavior)
    assert post.save() is False
    assert fake_db.command_builder.calls == []


def test_detach_unsubscribes_handlers(fake_db):
    post = Post()
    post.title = 'x'
    post.attach_behavior('ro', ReadOnlyBehavior())
    post.detach_behavior('ro')
    assert not post.has_event_handler(LifecycleEvent.BEFORE_SAVE)
    assert post.save() is True


def test_disabling_a_behavior_unsubscribes_it(fake_db):
    post = Post()
    post.title = 'x'
    behavior = post.attach_behavior('ro', ReadOnlyBehavior())
    behavior.enabled = False
    assert post.save() is True
    behavior.enabled = True
    assert post.has_event_handler('before_save')


def test_declared_behaviors_are_configured_per_record(fake_db):
    first = TrackedPost()
    second = TrackedPost()
    assert first.as_behavior('slug') is not second.as_behavior('slug')
    assert first.as_behavior('slug').separator == '_'

    first.title = 'Hello Big World'
    first.save()
    assert first.slug == 'hello_big_world'
    assert second.slug is None


def test_populated_records_get_behaviors(fake_db):
    record = TrackedPost.model().populate_record({'id': 1, 'title': 'x'})
    assert isinstance(record.as_behavior('slug'), SlugBehavior)


def test_static_model_gets_behaviors(fake_db):
    assert isinstance(TrackedPost.model().as_behavior('slug'), SlugBehavior)


def test_reattaching_replaces_previous_behavior(fake_db):
    post = Post()
    old = post.attach_behavior('ro', ReadOnlyBehavior())
    new = post.attach_behavior('ro', ReadOnlyBehavior())
    assert old.owner is None
    assert new.owner is post
    post.title = 'x'
    assert post.save() is False


def test_behavior_without_exposed_name_does_not_answer():
    behavior = Behavior()
    assert behavior.get_property('anything') == (None, False)
    assert behavior.set_property('anything', 1) is False
