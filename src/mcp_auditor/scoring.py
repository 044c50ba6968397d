"""
Grade computation.

A server's grade is a severity-weighted pass rate over its checks: passes earn
their full weight, warnings half, failures and errors nothing. The audit grade
averages the per-server letters.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .models import CheckStatus, Grade, SecurityCheck, Severity

SEVERITY_WEIGHTS: Dict[Severity, int] = {
    Severity.CRITICAL: 10,
    Severity.HIGH: 8,
    Severity.MEDIUM: 5,
    Severity.LOW: 2,
    Severity.INFO: 1,
}

PERCENTAGE_THRESHOLDS = [
    (90.0, Grade.EXCELLENT),
    (80.0, Grade.GOOD),
    (60.0, Grade.FAIR),
    (40.0, Grade.POOR),
]

GRADE_VALUES: Dict[Grade, int] = {
    Grade.EXCELLENT: 5,
    Grade.GOOD: 4,
    Grade.FAIR: 3,
    Grade.POOR: 2,
    Grade.CRITICAL: 1,
}

AVERAGE_THRESHOLDS = [
    (4.5, Grade.EXCELLENT),
    (3.5, Grade.GOOD),
    (2.5, Grade.FAIR),
    (1.5, Grade.POOR),
]


def severity_weight(severity: object) -> int:
    try:
        return SEVERITY_WEIGHTS[Severity(severity)]
    except ValueError:
        return 1


def score_percentage(checks: Iterable[SecurityCheck]) -> Optional[float]:
    """Weighted pass percentage in [0, 100], or None when there is nothing to score."""
    total = 0.0
    maximum = 0
    for check in checks:
        weight = severity_weight(check.severity)
        maximum += weight
        if check.status == CheckStatus.PASS:
            total += weight
        elif check.status == CheckStatus.WARNING:
            total += weight * 0.5
    if maximum == 0:
        return None
    return total * 100 / maximum


def grade_for_percentage(percentage: float) -> Grade:
    for threshold, grade in PERCENTAGE_THRESHOLDS:
        if percentage >= threshold:
            return grade
    return Grade.CRITICAL


def calculate_grade(checks: Iterable[SecurityCheck]) -> Grade:
    percentage = score_percentage(checks)
    if percentage is None:
        return Grade.FAIR
    return grade_for_percentage(percentage)


def aggregate_grade(grades: List[Grade]) -> Grade:
    if not grades:
        return Grade.FAIR
    average = sum(GRADE_VALUES[Grade(g)] for g in grades) / len(grades)
    for threshold, grade in AVERAGE_THRESHOLDS:
        if average >= threshold:
            return grade
    return Grade.CRITICAL
