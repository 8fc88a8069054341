"""Tests for RuleRunner — one rule, one store, one tick."""

from __future__ import annotations

import logging
from datetime import datetime

import pytest

from fakes import FakeInfluxClient
from influx_warner.config import RuleEntry
from influx_warner.events import EventBus
from influx_warner.exceptions import ConfigError, EvaluationError, QueryError
from influx_warner.rules.models import RuleDescriptor
from influx_warner.runner import RuleRunner, RunState
from influx_warner.stats import StatsTracker

_SUNDAY_NOON = datetime(2024, 1, 7, 12, 0)


def _make_entry(measurement: str = "login", **kwargs) -> RuleEntry:
    data = {
        "func": "count(account)",
        "where": "result = success",
        "check": "matched = account_count < 5",
        "text": "low success logins",
    }
    data.update(kwargs)
    return RuleEntry("warner", measurement, 0, RuleDescriptor.from_mapping(data))


def _make_bus() -> tuple[EventBus, list[dict], list[dict]]:
    bus = EventBus()
    warns: list[dict] = []
    errors: list[dict] = []
    bus.subscribe("warn", warns.append)
    bus.subscribe("error", errors.append)
    return bus, warns, errors


class TestRuleRunner:
    @pytest.mark.asyncio
    async def test_matching_row_emits_warn(self):
        client = FakeInfluxClient({"login": [{"account_count": 2}]})
        bus, warns, errors = _make_bus()
        runner = RuleRunner(_make_entry(), client, bus)

        assert await runner.run() is RunState.DONE
        assert errors == []
        assert len(warns) == 1
        assert warns[0]["measurement"] == "login"
        assert warns[0]["text"] == "low success logins"
        assert warns[0]["row"] == {"account_count": 2}
        assert warns[0]["ql"] == runner.ql == client.queries[0]
        assert 'count("account") AS "account_count"' in runner.ql

    @pytest.mark.asyncio
    async def test_non_matching_row_is_silent(self):
        client = FakeInfluxClient({"login": [{"account_count": 50}]})
        bus, warns, errors = _make_bus()
        assert await RuleRunner(_make_entry(), client, bus).run() is RunState.DONE
        assert warns == [] and errors == []

    @pytest.mark.asyncio
    async def test_every_matching_row_alerts(self):
        rows = [{"type": "vip", "account_count": 1}, {"type": "normal", "account_count": 9},
                {"type": "other", "account_count": 0}]
        bus, warns, _ = _make_bus()
        runner = RuleRunner(_make_entry(), FakeInfluxClient({"login": rows}), bus)
        await runner.run()
        assert [w["row"]["type"] for w in warns] == ["vip", "other"]
        assert runner.alerts == 2

    @pytest.mark.asyncio
    async def test_pass_skips_without_query(self):
        client = FakeInfluxClient({"login": [{"account_count": 2}]})
        bus, warns, _ = _make_bus()
        runner = RuleRunner(_make_entry(**{"pass": True}), client, bus)
        assert await runner.run() is RunState.SKIPPED
        assert client.queries == [] and warns == []

    @pytest.mark.asyncio
    async def test_outside_day_window_skips(self):
        client = FakeInfluxClient({"login": [{"account_count": 2}]})
        bus, _, _ = _make_bus()
        runner = RuleRunner(_make_entry(day="2-6"), client, bus, now=_SUNDAY_NOON)
        assert await runner.run() is RunState.SKIPPED
        assert client.queries == []

    @pytest.mark.asyncio
    async def test_outside_time_window_skips(self):
        client = FakeInfluxClient({"login": [{"account_count": 2}]})
        bus, _, _ = _make_bus()
        runner = RuleRunner(_make_entry(time="18:00-23:00"), client, bus, now=_SUNDAY_NOON)
        assert await runner.run() is RunState.SKIPPED

    @pytest.mark.asyncio
    async def test_inside_windows_runs(self):
        client = FakeInfluxClient({"login": [{"account_count": 2}]})
        bus, warns, _ = _make_bus()
        entry = _make_entry(day=["1-1", "7"], time="09:00-18:00")
        assert await RuleRunner(entry, client, bus, now=_SUNDAY_NOON).run() is RunState.DONE
        assert len(warns) == 1

    @pytest.mark.asyncio
    async def test_query_failure_goes_to_error_channel(self):
        client = FakeInfluxClient(fail={"login": QueryError("HTTP 401 authorization failed")})
        bus, warns, errors = _make_bus()
        runner = RuleRunner(_make_entry(), client, bus)

        assert await runner.run() is RunState.FAILED
        assert warns == []
        assert len(errors) == 1
        assert isinstance(errors[0]["error"], QueryError)
        assert errors[0]["ql"] == runner.ql
        assert errors[0]["error"].ql == runner.ql
        assert errors[0]["measurement"] == "login"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self):
        client = FakeInfluxClient(fail={"login": RuntimeError("boom")})
        bus, _, errors = _make_bus()
        assert await RuleRunner(_make_entry(), client, bus).run() is RunState.FAILED
        assert isinstance(errors[0]["error"], QueryError)
        assert "boom" in str(errors[0]["error"])

    @pytest.mark.asyncio
    async def test_evaluation_failure_goes_to_error_channel(self):
        client = FakeInfluxClient({"login": [{"account_count": 2}]})
        bus, warns, errors = _make_bus()
        runner = RuleRunner(_make_entry(check="matched = missing > 1"), client, bus)
        assert await runner.run() is RunState.FAILED
        assert warns == []
        assert isinstance(errors[0]["error"], EvaluationError)
        assert errors[0]["ql"] == runner.ql

    @pytest.mark.asyncio
    async def test_string_formatting_row_is_evaluation_failure(self):
        client = FakeInfluxClient({"login": [{"fmt": "%c", "code": 2000000}]})
        bus, warns, errors = _make_bus()
        runner = RuleRunner(_make_entry(check="matched = fmt % code"), client, bus)
        assert await runner.run() is RunState.FAILED
        assert warns == []
        assert len(errors) == 1
        assert isinstance(errors[0]["error"], EvaluationError)
        assert errors[0]["ql"] == runner.ql != ""

    @pytest.mark.asyncio
    async def test_build_failure_goes_to_error_channel(self):
        rule = RuleDescriptor.model_construct(check=["a > 1"], where=["result=success"])
        entry = RuleEntry("warner", "login", 0, rule)
        client = FakeInfluxClient()
        bus, _, errors = _make_bus()
        assert await RuleRunner(entry, client, bus).run() is RunState.FAILED
        assert isinstance(errors[0]["error"], ConfigError)
        assert client.queries == []

    @pytest.mark.asyncio
    async def test_designated_value_field(self):
        client = FakeInfluxClient({"login": [{"account_count": 2, "type": "vip"}]})
        bus, warns, _ = _make_bus()
        await RuleRunner(_make_entry(value="account_count"), client, bus).run()
        assert warns[0]["value"] == 2
        assert "row" not in warns[0]

    @pytest.mark.asyncio
    async def test_per_branch_text(self):
        client = FakeInfluxClient({"login": [{"account_count": 500}]})
        bus, warns, _ = _make_bus()
        entry = _make_entry(
            check=["account_count < 5", "account_count > 100"],
            text=["too few logins", "too many logins"],
        )
        await RuleRunner(entry, client, bus).run()
        assert warns[0]["text"] == "too many logins"

    @pytest.mark.asyncio
    async def test_rows_of_other_measurements_ignored(self):
        client = FakeInfluxClient({"login": [{"account_count": 2}]})
        bus, warns, _ = _make_bus()
        await RuleRunner(_make_entry(measurement="http"), client, bus).run()
        assert warns == []

    @pytest.mark.asyncio
    async def test_unobserved_error_is_logged(self, caplog):
        client = FakeInfluxClient(fail={"login": QueryError("down")})
        bus = EventBus()
        with caplog.at_level(logging.WARNING, logger="influx-warner"):
            assert await RuleRunner(_make_entry(), client, bus).run() is RunState.FAILED
        assert "Unhandled error [warner/login[0]]: down" in caplog.text

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_fail_rule(self):
        client = FakeInfluxClient({"login": [{"account_count": 2}]})
        bus = EventBus()

        def bad_handler(event):
            raise RuntimeError("handler broke")

        bus.subscribe("warn", bad_handler)
        assert await RuleRunner(_make_entry(), client, bus).run() is RunState.DONE

    @pytest.mark.asyncio
    async def test_stats_recorded(self):
        stats = StatsTracker()
        bus, _, _ = _make_bus()
        client = FakeInfluxClient({"login": [{"account_count": 2}]})
        await RuleRunner(_make_entry(), client, bus, stats=stats).run()
        summary = stats.summary()
        assert summary["queries"] == 1
        assert summary["alerts"] == 1
        assert summary["outcomes"] == {"done": 1}
