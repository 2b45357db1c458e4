from __future__ import annotations
from .base import BaseAdapter


class SQLiteAdapter(BaseAdapter):
    name = 'sqlite'
