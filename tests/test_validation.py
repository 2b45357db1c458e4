import pytest

from berryrecord import LengthValidator, RequiredValidator, Validator
from berryrecord.core.validation import InlineValidator, create_validator
from berryrecord.errors import ConfigurationError, SchemaMismatchError
from tests.records import Post, User


def _no_spaces(record, attribute):
    if ' ' in (getattr(record, attribute) or ''):
        record.add_error(attribute, f"{record.get_attribute_label(attribute)} must not contain spaces.")


class SignupUser(User):
    def rules(self):
        return [
            ('name', 'required'),
            ('email', 'required', {'on': 'signup'}),
            ('name', 'length', {'min': 3, 'max': 8, 'except_on': 'import'}),
            ('name', _no_spaces),
            ('email', 'check_domain'),
            ('status', 'required', {'safe': False}),
        ]

    def check_domain(self, attribute):
        value = getattr(self, attribute)
        if value and not value.endswith('@example.com'):
            self.add_error(attribute, 'Unknown domain.')


class BrokenUser(User):
    def rules(self):
        return [('nickname', 'required')]


def test_required_and_length_messages(fake_db):
    user = SignupUser()
    user.name = 'Al'
    assert user.validate() is False
    assert user.get_errors('name') == ['Name is too short (minimum is 3 characters).']

    user.name = 'Alexander the Great'
    user.validate()
    assert user.get_errors('name') == [
        'Name is too long (maximum is 8 characters).',
        'Name must not contain spaces.',
    ]


def test_blank_string_is_empty_for_required(fake_db):
    user = SignupUser()
    user.name = '   '
    user.validate()
    assert user.get_error('name') == 'Name cannot be blank.'


def test_method_validator(fake_db):
    user = SignupUser()
    user.name = 'alice'
    user.email = 'alice@elsewhere.org'
    assert user.validate() is False
    assert user.get_errors() == {'email': ['Unknown domain.']}


def test_scenario_filters_validators(fake_db):
    user = SignupUser()
    user.name = 'alice'
    assert user.validate() is True

    user.scenario = 'signup'
    assert user.validate() is False
    assert user.get_error('email') == 'E-mail address cannot be blank.'

    user.scenario = 'import'
    user.name = 'a very long name'
    user.validate()
    assert user.get_errors('name') == ['Name must not contain spaces.']


def test_validate_clears_previous_errors(fake_db):
    user = SignupUser()
    user.add_error('name', 'stale')
    user.name = 'alice'
    assert user.validate() is True
    assert not user.has_errors()


def test_validate_selected_attributes(fake_db):
    user = SignupUser()
    user.email = 'x@elsewhere.org'
    assert user.validate(['name']) is False
    assert list(user.get_errors()) == ['name']


def test_unknown_rule_attribute_is_a_schema_mismatch(fake_db):
    with pytest.raises(SchemaMismatchError):
        BrokenUser().validate()


def test_safe_attribute_names_exclude_unsafe_rules(fake_db):
    user = SignupUser()
    assert user.get_safe_attribute_names() == ['name', 'email']
    assert user.is_attribute_safe('name')
    assert not user.is_attribute_safe('status')
    user.scenario = 'signup'
    assert user.is_attribute_safe('email')


def test_is_attribute_required(fake_db):
    user = SignupUser()
    assert user.is_attribute_required('name')
    assert not user.is_attribute_required('email')
    user.scenario = 'signup'
    assert user.is_attribute_required('email')


def test_error_api(fake_db):
    post = Post()
    post.add_errors({'title': ['a', 'b'], 'body': 'c'})
    assert post.has_errors('title')
    assert post.get_error('title') == 'a'
    post.clear_errors('title')
    assert post.get_errors() == {'body': ['c']}
    post.clear_errors()
    assert not post.has_errors()


def test_cancelled_before_validate_fails_validation(fake_db):
    user = SignupUser()
    user.name = 'alice'
    user.on('before_validate', lambda e: e.cancel())
    assert user.validate() is False
    assert user.save() is False


def test_create_validator_forms(fake_db):
    user = User()
    existing = RequiredValidator('name')
    assert create_validator(existing, user) is existing
    assert isinstance(create_validator(('name', LengthValidator, {'max': 3}), user), LengthValidator)
    assert isinstance(create_validator(('name', _no_spaces), user), InlineValidator)

    validator = create_validator(('name, email', 'required', {'on': 'insert, update'}), user)
    assert validator.attributes == ['name', 'email']
    assert validator.on == {'insert', 'update'}


@pytest.mark.parametrize('rule', [('name',), 'name', ('name', 'no_such_validator'), ('name', 42)])
def test_create_validator_rejects_bad_rules(fake_db, rule):
    with pytest.raises(ConfigurationError):
        create_validator(rule, User())


def test_custom_message(fake_db):
    validator = RequiredValidator('name', message='Please tell us your {attribute}.')
    user = User()
    validator.validate(user)
    assert user.get_error('name') == 'Please tell us your Name.'


def test_base_validator_requires_override(fake_db):
    with pytest.raises(NotImplementedError):
        Validator('name').validate(User())
