"""
Unit tests for the in-memory metric store.
"""
from datetime import timedelta

import pytest

from prompt_analytics.exceptions import StoreTerminalError
from prompt_analytics.models import DateRange, MetricFilter, MetricType

from conftest import BASE_TIME, make_record


class TestInMemoryMetricStore:
    """Tests for metric persistence and queries."""

    @pytest.mark.asyncio
    async def test_connect_and_health(self, metric_store):
        assert await metric_store.health_check() is False
        await metric_store.connect()
        assert await metric_store.health_check() is True
        await metric_store.disconnect()
        assert await metric_store.health_check() is False

    @pytest.mark.asyncio
    async def test_duplicate_id_is_terminal(self, metric_store):
        record = make_record(1)
        await metric_store.create(record)

        with pytest.raises(StoreTerminalError):
            await metric_store.create(record)

    @pytest.mark.asyncio
    async def test_find_by_prompt_newest_first(self, metric_store):
        for day in (0, 2, 1):
            await metric_store.create(make_record(day, days=day))
        await metric_store.create(make_record(9, prompt_id="prompt-2"))

        results = await metric_store.find_by_prompt("prompt-1")

        assert [r.value for r in results] == [2, 1, 0]

    @pytest.mark.asyncio
    async def test_find_by_date_range_with_filter(self, metric_store):
        await metric_store.create(make_record(1, days=0))
        await metric_store.create(make_record(2, days=10))
        await metric_store.create(make_record(3, days=0, metric_type=MetricType.ERROR_RATE))
        window = DateRange(start=BASE_TIME - timedelta(hours=1), end=BASE_TIME + timedelta(days=1))

        results = await metric_store.find_by_date_range(
            window, MetricFilter(metric_type=MetricType.USAGE),
        )

        assert [r.value for r in results] == [1]

    @pytest.mark.asyncio
    async def test_aggregate_by_workspace(self, metric_store):
        for value in (10, 30):
            await metric_store.create(make_record(value))
        await metric_store.create(make_record(95, metric_type=MetricType.SUCCESS_RATE))
        await metric_store.create(make_record(500, workspace_id="ws-2"))

        rows = await metric_store.aggregate_by_workspace("ws-1")

        by_type = {row.group["metric_type"]: row for row in rows}
        assert by_type["USAGE"].average == 20
        assert by_type["USAGE"].sum == 40
        assert by_type["USAGE"].count == 2
        assert by_type["SUCCESS_RATE"].max == 95

    @pytest.mark.asyncio
    async def test_aggregate_restricted_to_metric_types(self, metric_store):
        await metric_store.create(make_record(10))
        await metric_store.create(make_record(95, metric_type=MetricType.SUCCESS_RATE))

        rows = await metric_store.aggregate_by_workspace(
            "ws-1", metric_types=[MetricType.SUCCESS_RATE],
        )

        assert [row.group["metric_type"] for row in rows] == ["SUCCESS_RATE"]

    @pytest.mark.asyncio
    async def test_delete_by_filter(self, metric_store):
        await metric_store.create(make_record(1))
        await metric_store.create(make_record(2, prompt_id="prompt-2"))

        deleted = await metric_store.delete_by_filter(MetricFilter(prompt_id="prompt-1"))

        assert deleted == 1
        assert await metric_store.find_by_prompt("prompt-1") == []
        assert len(await metric_store.find_by_prompt("prompt-2")) == 1
