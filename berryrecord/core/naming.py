from __future__ import annotations

import re
from typing import Any, List

__all__ = [
    'from_camel',
    'generate_label',
    'split_names',
]

_camel_to_snake_pattern = re.compile(r'(?<!^)(?=[A-Z])')
_label_word_pattern = re.compile(r'(?<![A-Z])[A-Z]')


def from_camel(name: str) -> str:
    """Convert lower/upper camelCase to snake_case."""
    if not name:
        return name
    return _camel_to_snake_pattern.sub('_', str(name)).lower()


def generate_label(name: str) -> str:
    """Human readable label for an attribute name: ``first_name`` -> ``First Name``."""
    spaced = _label_word_pattern.sub(lambda m: ' ' + m.group(0), str(name))
    for sep in ('-', '_', '.'):
        spaced = spaced.replace(sep, ' ')
    return ' '.join(w.capitalize() for w in spaced.lower().split())


def split_names(value: Any) -> List[str]:
    """Split a comma separated column list; lists pass through stripped."""
    if value is None:
        return []
    if isinstance(value, str):
        return [p.strip() for p in value.split(',') if p.strip()]
    return [str(p).strip() for p in value]
