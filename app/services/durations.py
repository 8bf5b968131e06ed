"""
Duration rules shared by the catalog, the composer and the recorder.

All values are minutes. Sums go through math.fsum so fractional rest values
accumulated over many timers don't drift.
"""
import math
from typing import Any, Iterable, Mapping, Optional


def timer_duration(timer: Mapping[str, Any]) -> float:
    """Work time of every repetition plus the rests between them."""
    duration = timer.get("duration") or 0
    repetitions = timer.get("repetitions", 1)
    rest = timer.get("restBetween") or 0
    return math.fsum([duration * repetitions, rest * (repetitions - 1)])


def timers_duration(timers: Iterable[Mapping[str, Any]]) -> float:
    return math.fsum(timer_duration(t) for t in timers)


def exercise_duration(
    is_multi_timer: bool,
    duration: Optional[float],
    timers: Optional[list[Mapping[str, Any]]],
) -> float:
    if is_multi_timer and timers:
        return timers_duration(timers)
    return float(duration or 0)


def instance_duration(duration_override: Optional[float], exercise_effective: float) -> float:
    if duration_override is not None:
        return float(duration_override)
    return float(exercise_effective)


def sum_durations(values: Iterable[float]) -> float:
    return math.fsum(values)
