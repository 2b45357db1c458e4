from __future__ import annotations
from .base import BaseAdapter


class MSSQLAdapter(BaseAdapter):
    name = 'mssql'

    def quote_simple_name(self, name: str) -> str:
        if self.dialect is not None:
            return super().quote_simple_name(name)
        return '[' + str(name).replace(']', ']]') + ']'
