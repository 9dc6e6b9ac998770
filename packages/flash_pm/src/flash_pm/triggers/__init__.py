"""
Cron capability behind the recurrence calculator.

Evaluators are pure functions of (expression, timezone, reference instant).
No I/O, no clock reads, no side effects.
"""

from .base import CronEvaluator
from .cron import CronExpression, CronField, StandardCronEvaluator, parse_cron

__all__ = [
    "CronEvaluator",
    "CronExpression",
    "CronField",
    "StandardCronEvaluator",
    "parse_cron",
]
