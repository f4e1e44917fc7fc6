"""
Prompt Analytics - Statistics Engine.

Pure functions over in-memory metric records: descriptive statistics, grouped
summaries, time-series bucketing, trend detection, confidence scoring and ROI.
"""
from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from .models import (
    AggregateRow,
    AggregateSummary,
    AggregationType,
    AggregationWindow,
    MetricRecord,
    MetricStatistics,
    MetricType,
    RoiFigures,
    TimeSeriesPoint,
    Trend,
    TrendDirection,
)

SMOOTHING_WINDOW = 3
SUCCESS_RATE_TARGET = 90.0
RESPONSE_TIME_TARGET_MS = 2000.0
ROI_TARGET_PERCENT = 100.0
PAYBACK_TARGET = 90.0


@dataclass(frozen=True)
class TimeWindow:
    """Immutable time window for bucketing."""
    start: datetime
    end: datetime
    window_type: AggregationWindow

    @classmethod
    def containing(cls, dt: datetime, window_type: AggregationWindow) -> TimeWindow:
        """Create the window of the given width that contains dt."""
        if window_type == AggregationWindow.MINUTE:
            start = dt.replace(second=0, microsecond=0)
            return cls(start, start + timedelta(minutes=1), window_type)
        if window_type == AggregationWindow.HOUR:
            start = dt.replace(minute=0, second=0, microsecond=0)
            return cls(start, start + timedelta(hours=1), window_type)
        day = dt.replace(hour=0, minute=0, second=0, microsecond=0)
        if window_type == AggregationWindow.DAY:
            return cls(day, day + timedelta(days=1), window_type)
        if window_type == AggregationWindow.WEEK:
            start = day - timedelta(days=day.weekday())
            return cls(start, start + timedelta(weeks=1), window_type)
        start = day.replace(day=1)
        end = start.replace(year=start.year + 1, month=1) if start.month == 12 else start.replace(month=start.month + 1)
        return cls(start, end, window_type)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def describe(values: Iterable[float]) -> MetricStatistics:
    """Mean, median, population standard deviation, min, max and count."""
    data = sorted(values)
    n = len(data)
    if n == 0:
        return MetricStatistics()
    mean = sum(data) / n
    mid = n // 2
    median = data[mid] if n % 2 else (data[mid - 1] + data[mid]) / 2
    variance = sum((v - mean) ** 2 for v in data) / n
    return MetricStatistics(
        mean=mean, median=median, std_dev=math.sqrt(variance),
        min=data[0], max=data[-1], count=n,
    )


def aggregate(records: Sequence[MetricRecord], group_by: str = "metric_type") -> AggregateSummary:
    """Summarise records per group plus an overall block.

    aggregate([]) returns a zeroed summary rather than failing.
    """
    if not records:
        return AggregateSummary()
    groups: dict[str, list[float]] = defaultdict(list)
    for record in records:
        groups[record.field_value(group_by)].append(record.value)
    timestamps = [r.timestamp for r in records]
    return AggregateSummary(
        total=len(records),
        start=min(timestamps),
        end=max(timestamps),
        metrics={key: describe(values) for key, values in sorted(groups.items())},
        overall=describe(r.value for r in records),
    )


def aggregate_rows(records: Sequence[MetricRecord], group_by: Sequence[str]) -> list[AggregateRow]:
    """Group records by the given fields into average/sum/min/max/count rows."""
    groups: dict[tuple[str, ...], list[float]] = defaultdict(list)
    for record in records:
        groups[tuple(record.field_value(f) for f in group_by)].append(record.value)
    rows = []
    for key, values in sorted(groups.items()):
        rows.append(AggregateRow(
            group=dict(zip(group_by, key)),
            average=_mean(values), sum=sum(values),
            min=min(values), max=max(values), count=len(values),
        ))
    return rows


def _reduce(values: list[float], aggregation_type: AggregationType) -> float:
    if aggregation_type == AggregationType.SUM:
        return sum(values)
    if aggregation_type == AggregationType.MIN:
        return min(values)
    if aggregation_type == AggregationType.MAX:
        return max(values)
    return _mean(values)


def bucket_time_series(
    records: Sequence[MetricRecord],
    interval: AggregationWindow = AggregationWindow.HOUR,
    aggregation_type: AggregationType = AggregationType.AVG,
    smoothing: bool = False,
) -> list[TimeSeriesPoint]:
    """Bucket records by interval start, ordered chronologically.

    Smoothing replaces each value by the mean of itself and up to two
    preceding buckets.
    """
    buckets: dict[datetime, list[float]] = defaultdict(list)
    for record in records:
        buckets[TimeWindow.containing(record.timestamp, interval).start].append(record.value)
    points = [
        TimeSeriesPoint(timestamp=start, value=_reduce(values, aggregation_type), count=len(values))
        for start, values in sorted(buckets.items())
    ]
    if not smoothing:
        return points
    raw = [p.value for p in points]
    return [
        p.model_copy(update={"value": _mean(raw[max(0, i - SMOOTHING_WINDOW + 1):i + 1])})
        for i, p in enumerate(points)
    ]


def trend(records: Sequence[MetricRecord], threshold_percent: float = 1.0) -> Trend:
    """Compare the first and last chronological values.

    Volatility is the population standard deviation of all values.
    """
    n = len(records)
    volatility = round(describe(r.value for r in records).std_dev, 2)
    if n < 2:
        return Trend(sample_count=n, volatility=volatility)
    ordered = sorted(records, key=lambda r: r.timestamp)
    first, last = ordered[0].value, ordered[-1].value
    if first == 0:
        return Trend(sample_count=n, volatility=volatility)
    change = (last - first) / first * 100
    if change > threshold_percent:
        direction = TrendDirection.UP
    elif change < -threshold_percent:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.STABLE
    return Trend(direction=direction, change_percent=round(change, 2), sample_count=n,
                 volatility=volatility)


def confidence_score(records: Sequence[MetricRecord]) -> float:
    """Score in [0, 100] from sample size, variability and time span."""
    if not records:
        return 0.0
    std_dev = describe(r.value for r in records).std_dev
    timestamps = [r.timestamp for r in records]
    span_days = (max(timestamps) - min(timestamps)).days
    score = (
        min(math.log10(len(records)) * 20, 100)
        + max(0.0, 100 - std_dev) * 0.4
        + min(span_days, 30) / 30 * 40
    )
    return round(min(100.0, score), 2)


def roi(
    cost_records: Sequence[MetricRecord],
    benefit_records: Sequence[MetricRecord],
    sample_count: int | None = None,
) -> RoiFigures:
    """Return on investment and payback period.

    Zero cost yields roi 0 and zero benefit yields payback 0, so the figures
    stay finite for sparse workspaces.
    """
    total_cost = sum(r.value for r in cost_records)
    total_benefit = sum(r.value for r in benefit_records)
    count = sample_count if sample_count is not None else len(cost_records) + len(benefit_records)
    roi_percent = (total_benefit - total_cost) / total_cost * 100 if total_cost else 0.0
    payback = total_cost / (total_benefit / count) if total_benefit and count else 0.0
    return RoiFigures(
        roi=round(roi_percent, 2),
        payback_period=round(payback, 2),
        total_cost=total_cost,
        total_benefit=total_benefit,
        net_benefit=total_benefit - total_cost,
    )


def generate_insights(rows: Sequence[AggregateRow], overall_trend: Trend | None = None) -> list[str]:
    if not rows:
        return ["No metrics data available for analysis"]
    insights = [
        f"Average {row.group.get('metric_type', '/'.join(row.group.values()))}: {row.average:.2f}"
        for row in rows
    ]
    if overall_trend is not None and overall_trend.sample_count >= 2:
        word = "decrease" if overall_trend.change_percent < 0 else "increase"
        insights.append(f"Overall trend shows {word} of {abs(overall_trend.change_percent):.2f}%")
    return insights


def generate_recommendations(records: Sequence[MetricRecord]) -> list[str]:
    recommendations = []
    success = [r.value for r in records if r.metric_type == MetricType.SUCCESS_RATE]
    response = [r.value for r in records if r.metric_type == MetricType.RESPONSE_TIME]
    if success and _mean(success) < SUCCESS_RATE_TARGET:
        recommendations.append(
            "Consider reviewing and optimizing prompt templates to improve success rate"
        )
    if response and _mean(response) > RESPONSE_TIME_TARGET_MS:
        recommendations.append(
            "Response times are above target. Consider implementing caching or optimization strategies"
        )
    return recommendations


def roi_recommendations(figures: RoiFigures) -> list[str]:
    recommendations = []
    if figures.roi < ROI_TARGET_PERCENT:
        recommendations.append("Consider optimizing prompt usage to improve ROI")
    if figures.payback_period > PAYBACK_TARGET:
        recommendations.append("Review cost structure to improve payback period")
    return recommendations
