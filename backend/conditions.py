"""
Study Tracker - Milestone condition evaluation
"""

from typing import Mapping

from models import MetricName, ProgressSnapshot


def evaluate_condition(condition: Mapping[MetricName, float], snapshot: ProgressSnapshot) -> bool:
    """True if any metric named in the condition meets its threshold.

    Metrics are checked independently, so a milestone with
    {total_hours: 1, total_pages: 1000} fires on total_hours alone.
    Metrics absent from the condition are never compared, and an empty
    condition never fires.
    """
    for metric, threshold in condition.items():
        if snapshot.metric(MetricName(metric)) >= threshold:
            return True
    return False


def satisfied_metrics(condition: Mapping[MetricName, float], snapshot: ProgressSnapshot) -> list:
    """Metric names whose thresholds are met, for logging."""
    return [
        MetricName(metric).value
        for metric, threshold in condition.items()
        if snapshot.metric(MetricName(metric)) >= threshold
    ]
