import pytest

from app.services.durations import exercise_duration, instance_duration, sum_durations, timer_duration, timers_duration


def test_timer_counts_rest_between_repetitions_only():
    assert timer_duration({"name": "rounds", "duration": 3, "repetitions": 3, "restBetween": 1}) == 11


def test_single_repetition_has_no_rest():
    assert timer_duration({"name": "burst", "duration": 2, "repetitions": 1, "restBetween": 5}) == 2


def test_fractional_rests_do_not_drift():
    timers = [{"name": f"t{i}", "duration": 0.1, "repetitions": 1, "restBetween": 0} for i in range(10)]
    assert timers_duration(timers) == 1.0


def test_multi_timer_ignores_flat_duration():
    timers = [{"name": "a", "duration": 3, "repetitions": 2, "restBetween": 0.5}]
    assert exercise_duration(True, 99, timers) == pytest.approx(6.5)


def test_flat_duration_when_not_multi_timer():
    assert exercise_duration(False, 12, [{"name": "a", "duration": 1, "repetitions": 1}]) == 12


def test_override_wins_over_exercise_duration():
    assert instance_duration(15, 10) == 15
    assert instance_duration(None, 10) == 10


def test_sum_of_nothing_is_zero():
    assert sum_durations([]) == 0


def test_fractional_rest_is_exact():
    assert exercise_duration(True, 0, [{"name": "shadow", "duration": 1, "repetitions": 3, "restBetween": 0.5}]) == 4
