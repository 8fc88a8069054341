"""Store abstraction — the query builder handle every backend implements."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

Rows = dict[str, list[dict[str, Any]]]


class StoreQuery(ABC):
    """A query under construction against one measurement."""

    @abstractmethod
    def set_range(self, start: str | None = None, end: str | None = None) -> None: ...

    @abstractmethod
    def add_function(self, name: str, *args: str) -> None: ...

    @abstractmethod
    def add_group(self, tag: str) -> None: ...

    @abstractmethod
    def where(self, key: str, value: Any, operator: str = "=") -> None: ...

    @abstractmethod
    def set_format(self, fmt: str) -> None: ...

    @abstractmethod
    def to_select(self) -> str:
        """Rendered query text, available before execution."""
        ...

    @abstractmethod
    async def execute(self) -> Rows:
        """Run the query and return rows keyed by measurement name."""
        ...


class StoreClient(ABC):
    """Connection to one logical database."""

    @abstractmethod
    def query(self, measurement: str) -> StoreQuery: ...

    async def close(self) -> None:
        """Release network resources. Override when the client holds any."""
