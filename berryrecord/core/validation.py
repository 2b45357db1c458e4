from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional, Sequence

from ..errors import ConfigurationError, SchemaMismatchError
from .naming import split_names

__all__ = ['Validator', 'RequiredValidator', 'LengthValidator', 'InlineValidator', 'BUILTIN_VALIDATORS', 'create_validator']


class Validator:
    """Base validator.

    Args:
        attributes: Attribute names (list or comma separated string).
        on: Scenarios the validator applies to; empty means every scenario.
        except_on: Scenarios the validator is skipped in.
        skip_on_error: Skip attributes that already carry an error.
        message: Error message; ``{attribute}`` is replaced by the attribute label.
    """

    default_message = '{attribute} is invalid.'

    def __init__(self, attributes: Any, *, on: Any = None, except_on: Any = None,
                 skip_on_error: bool = False, message: Optional[str] = None, safe: bool = True):
        self.attributes: List[str] = split_names(attributes)
        self.on = set(split_names(on))
        self.except_on = set(split_names(except_on))
        self.skip_on_error = skip_on_error
        self.message = message
        self.safe = safe

    def applies_to(self, scenario: str) -> bool:
        if scenario in self.except_on:
            return False
        return not self.on or scenario in self.on

    def validate(self, record: Any, attributes: Optional[Iterable[str]] = None) -> None:
        wanted = None if attributes is None else set(attributes)
        for attribute in self.attributes:
            if wanted is not None and attribute not in wanted:
                continue
            if not record.has_attribute(attribute) and not record.is_declared_field(attribute):
                raise SchemaMismatchError(
                    f"{type(record).__name__} has no attribute {attribute!r} referenced by {type(self).__name__}"
                )
            if self.skip_on_error and record.has_errors(attribute):
                continue
            self.validate_attribute(record, attribute)

    def validate_attribute(self, record: Any, attribute: str) -> None:
        raise NotImplementedError

    def add_error(self, record: Any, attribute: str, message: Optional[str] = None, **params: Any) -> None:
        text = message or self.message or self.default_message
        params.setdefault('attribute', record.get_attribute_label(attribute))
        record.add_error(attribute, text.format(**params))

    @staticmethod
    def is_empty(value: Any, trim: bool = False) -> bool:
        if value is None or value == [] or value == {}:
            return True
        if isinstance(value, str):
            return (value.strip() if trim else value) == ''
        return False


class RequiredValidator(Validator):
    default_message = '{attribute} cannot be blank.'

    def validate_attribute(self, record: Any, attribute: str) -> None:
        if self.is_empty(getattr(record, attribute), trim=True):
            self.add_error(record, attribute)


class LengthValidator(Validator):
    default_message = '{attribute} has an invalid length.'

    def __init__(self, attributes: Any, *, min: Optional[int] = None, max: Optional[int] = None,
                 allow_empty: bool = True, **kwargs: Any):
        super().__init__(attributes, **kwargs)
        self.min = min
        self.max = max
        self.allow_empty = allow_empty

    def validate_attribute(self, record: Any, attribute: str) -> None:
        value = getattr(record, attribute)
        if self.allow_empty and self.is_empty(value):
            return
        length = len(str(value)) if value is not None else 0
        if self.min is not None and length < self.min:
            self.add_error(record, attribute, self.message or '{attribute} is too short (minimum is {min} characters).', min=self.min)
        if self.max is not None and length > self.max:
            self.add_error(record, attribute, self.message or '{attribute} is too long (maximum is {max} characters).', max=self.max)


class InlineValidator(Validator):
    """Validator delegating to ``fn(record, attribute)``; the function calls ``record.add_error``."""

    def __init__(self, attributes: Any, fn: Callable[[Any, str], Any], **kwargs: Any):
        super().__init__(attributes, **kwargs)
        self.fn = fn

    def validate_attribute(self, record: Any, attribute: str) -> None:
        self.fn(record, attribute)


BUILTIN_VALIDATORS = {
    'required': RequiredValidator,
    'length': LengthValidator,
}


def create_validator(rule: Any, record: Any) -> Validator:
    """Build a validator from a rule declared by ``rules()``.

    A rule is a :class:`Validator` instance or a sequence
    ``(attributes, validator, options)`` where ``validator`` is a builtin name,
    a :class:`Validator` subclass, a callable ``fn(record, attribute)`` or the
    name of a method on the record.
    """
    if isinstance(rule, Validator):
        return rule
    if not isinstance(rule, Sequence) or isinstance(rule, str) or len(rule) < 2:
        raise ConfigurationError(
            f"{type(record).__name__} has an invalid validation rule {rule!r}. "
            "The rule must specify attributes to be validated and the validator name."
        )
    attributes, kind = rule[0], rule[1]
    options = dict(rule[2]) if len(rule) > 2 and rule[2] else {}
    if isinstance(kind, type) and issubclass(kind, Validator):
        return kind(attributes, **options)
    if isinstance(kind, str):
        if kind in BUILTIN_VALIDATORS:
            return BUILTIN_VALIDATORS[kind](attributes, **options)
        method = getattr(type(record), kind, None)
        if callable(method):
            return InlineValidator(attributes, lambda r, a, _m=kind: getattr(r, _m)(a), **options)
        raise ConfigurationError(f"Unknown validator {kind!r} on {type(record).__name__}")
    if callable(kind):
        return InlineValidator(attributes, kind, **options)
    raise ConfigurationError(f"Unknown validator {kind!r} on {type(record).__name__}")
