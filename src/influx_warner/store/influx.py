"""InfluxDB 1.x query client over the HTTP ``/query`` endpoint.

Builds InfluxQL ``SELECT`` statements piece by piece and returns the
result as plain row dicts, with series tags merged into every row::

    client = InfluxClient("http://127.0.0.1:8086/telegraf", timeout=5)
    query = client.query("login")
    query.add_function("count", "account")
    query.where("result", "success")
    rows = await query.execute()   # {"login": [{"time": ..., "account_count": 12}]}
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any
from urllib.parse import unquote, urlsplit

import aiohttp

from ..exceptions import QueryError
from .base import Rows, StoreClient, StoreQuery

logger = logging.getLogger("influx-warner")

_NUMERIC_ARG_RE = re.compile(r"^-?\d+(\.\d+)?$")
_RELATIVE_TIME_RE = re.compile(r"^([-+])\s*(\d+(?:ns|u|µ|ms|s|m|h|d|w))$")
_FORMATS = ("json", "raw")


def quote_ident(name: str) -> str:
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def quote_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    text = str(value)
    if len(text) >= 2 and text.startswith("/") and text.endswith("/"):
        return text
    return "'" + text.replace("\\", "\\\\").replace("'", "\\'") + "'"


def render_time(value: str) -> str:
    """Render a time bound: ``-1h`` becomes ``now() - 1h``."""
    value = str(value).strip()
    if value.startswith("now()") or value.isdigit():
        return value
    m = _RELATIVE_TIME_RE.match(value)
    if m:
        return f"now() {m.group(1)} {m.group(2)}"
    return quote_value(value)


def _is_field(arg: str) -> bool:
    return arg != "*" and not _NUMERIC_ARG_RE.match(arg) and not arg.startswith(("'", "/"))


def _render_arg(arg: str) -> str:
    if not _is_field(arg) or arg.startswith('"'):
        return arg
    return quote_ident(arg)


class InfluxQuery(StoreQuery):
    """One InfluxQL select against a single measurement."""

    def __init__(self, client: InfluxClient, measurement: str) -> None:
        self._client = client
        self.measurement = measurement
        self.start: str | None = None
        self.end: str | None = None
        self.format = "json"
        self._fields: list[str] = []
        self._groups: list[str] = []
        self._conditions: list[str] = []

    def set_range(self, start: str | None = None, end: str | None = None) -> None:
        self.start = start
        self.end = end

    def add_function(self, name: str, *args: str) -> None:
        rendered = f"{name}({', '.join(_render_arg(a) for a in args)})"
        # count(account) is returned as the "account_count" column
        column = next((a.strip('"') for a in args if _is_field(a)), None)
        if column:
            rendered += f" AS {quote_ident(f'{column}_{name}')}"
        self._fields.append(rendered)

    def add_group(self, tag: str) -> None:
        tag = tag.strip()
        self._groups.append(tag if tag.startswith("time(") else quote_ident(tag))

    def where(self, key: str, value: Any, operator: str = "=") -> None:
        self._conditions.append(f"{quote_ident(key)} {operator} {quote_value(value)}")

    def set_format(self, fmt: str) -> None:
        if fmt not in _FORMATS:
            raise ValueError(f"unsupported format '{fmt}', expected one of {_FORMATS}")
        self.format = fmt

    def to_select(self) -> str:
        fields = ", ".join(self._fields) or "*"
        ql = f"SELECT {fields} FROM {quote_ident(self.measurement)}"
        conditions = []
        if self.start:
            conditions.append(f"time >= {render_time(self.start)}")
        if self.end:
            conditions.append(f"time <= {render_time(self.end)}")
        conditions.extend(self._conditions)
        if conditions:
            ql += " WHERE " + " AND ".join(conditions)
        if self._groups:
            ql += " GROUP BY " + ", ".join(self._groups)
        return ql

    async def execute(self) -> Rows:
        ql = self.to_select()
        body = await self._client.request(ql)
        if self.format == "raw":
            return body
        rows = to_rows(body, ql)
        logger.debug(f"ql: {ql}, rows: {rows}")
        return rows


def to_rows(body: dict[str, Any], ql: str = "") -> Rows:
    """Flatten an InfluxDB ``/query`` response into rows per measurement."""
    if "error" in body:
        raise QueryError(str(body["error"]), ql)
    data: Rows = {}
    for result in body.get("results", []):
        if "error" in result:
            raise QueryError(str(result["error"]), ql)
        for series in result.get("series", []):
            tags = series.get("tags") or {}
            columns = series.get("columns", [])
            rows = data.setdefault(series.get("name", ""), [])
            for values in series.get("values", []):
                rows.append({**tags, **dict(zip(columns, values))})
    return data


class InfluxClient(StoreClient):
    """Query client bound to one database URL."""

    def __init__(self, url: str, timeout: float | None = None) -> None:
        parts = urlsplit(url)
        self.database = parts.path.strip("/")
        if not self.database:
            raise ValueError(f"no database in InfluxDB url '{url}'")
        # netloc minus userinfo, so IPv6 literals stay bracketed
        host = parts.netloc.rpartition("@")[2]
        self.base_url = f"{parts.scheme or 'http'}://{host}"
        self._auth = (
            aiohttp.BasicAuth(unquote(parts.username), unquote(parts.password or ""))
            if parts.username
            else None
        )
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    def query(self, measurement: str) -> InfluxQuery:
        return InfluxQuery(self, measurement)

    async def request(self, ql: str) -> dict[str, Any]:
        """GET ``/query`` and return the decoded JSON body."""
        session = self._get_session()
        params = {"db": self.database, "q": ql}
        try:
            async with session.get(f"{self.base_url}/query", params=params, auth=self._auth) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = {}
                if resp.status >= 300:
                    detail = body.get("error", "") if isinstance(body, dict) else ""
                    raise QueryError(f"HTTP {resp.status} {detail}".strip(), ql)
        except QueryError:
            raise
        except asyncio.TimeoutError as e:
            raise QueryError(f"query timed out after {self.timeout}s", ql) from e
        except aiohttp.ClientError as e:
            raise QueryError(f"request failed: {e}", ql) from e
        if not isinstance(body, dict):
            raise QueryError("unexpected response body", ql)
        return body

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session:
            await self._session.close()
            self._session = None
