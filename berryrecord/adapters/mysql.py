from __future__ import annotations
from .base import BaseAdapter


class MySQLAdapter(BaseAdapter):
    name = 'mysql'

    def quote_simple_name(self, name: str) -> str:
        if self.dialect is not None:
            return super().quote_simple_name(name)
        return '`' + str(name).replace('`', '``') + '`'
