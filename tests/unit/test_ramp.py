"""
Unit tests for arrival-offset computation and the arrival scheduler.

Key SDET Concepts Demonstrated:
- Known-answer tests derived by hand from the rate integral
- Property checks (ordering, count) over the shipped profiles
- Bounded-pool behaviour: tokens queue, the pool never grows
"""

from __future__ import annotations

import math

import pytest

from zkbench.config import get_config
from zkbench.profiles import LoadProfile, Stage, load_profiles
from zkbench.ramp import ArrivalScheduler, arrival_offsets, iter_arrival_offsets

pytestmark = pytest.mark.unit


def _tiny_profile(rate: float = 50.0, duration: float = 0.1) -> LoadProfile:
    return LoadProfile(
        name="tiny",
        start_rate=rate,
        stages=(Stage(target=rate, duration=duration),),
        pre_allocated_workers=2,
        graceful_stop=0.1,
    )


def test_constant_rate_spreads_arrivals_evenly():
    """Test that 2/s held for 3s yields 6 arrivals every half second."""
    offsets = arrival_offsets(2, [Stage(target=2, duration=3)])

    assert offsets == pytest.approx([0.5, 1.0, 1.5, 2.0, 2.5, 3.0])


def test_linear_ramp_from_zero_follows_square_root():
    """Test that a 0 → 10/s ramp over 2s places arrival n at sqrt(n / 2.5)."""
    offsets = arrival_offsets(0, [Stage(target=10, duration=2)])

    assert len(offsets) == 10
    assert offsets == pytest.approx([math.sqrt(n / 2.5) for n in range(1, 11)])


def test_ramp_continues_from_previous_stage_target():
    # Arrange: hold 2/s for 1s, then ramp 2 → 4/s over 1s (3 more arrivals).
    stages = [Stage(target=2, duration=1), Stage(target=4, duration=1)]

    # Act
    offsets = arrival_offsets(2, stages)

    # Assert
    assert offsets == pytest.approx([0.5, 1.0, 1.0 + math.sqrt(2) - 1, 1.0 + math.sqrt(3) - 1, 2.0])


def test_ramp_down_decelerates():
    offsets = arrival_offsets(4, [Stage(target=0, duration=2)])

    assert offsets == pytest.approx([2 - math.sqrt(4 - n) for n in range(1, 5)])


def test_zero_rate_produces_no_arrivals():
    assert arrival_offsets(0, [Stage(target=0, duration=5)]) == []


def test_time_unit_scales_rates():
    """Test that 60 per minute is one arrival per second."""
    offsets = arrival_offsets(60, [Stage(target=60, duration=2)], time_unit=60)

    assert offsets == pytest.approx([1.0, 2.0])


def test_invalid_time_unit_is_rejected():
    with pytest.raises(ValueError):
        list(iter_arrival_offsets(1, [Stage(target=1, duration=1)], time_unit=0))


@pytest.mark.parametrize("name", ["light", "average", "stress"])
def test_shipped_profiles_schedule_integral_arrivals_in_order(name):
    """Test that each shipped profile yields floor(area under the rate curve) ordered arrivals."""
    # Arrange
    profile = load_profiles(get_config("local").PROFILES_FILE)[name]
    area, rate = 0.0, profile.start_rate
    for stage in profile.stages:
        area += (rate + stage.target) / 2 * stage.duration
        rate = stage.target

    # Act
    offsets = arrival_offsets(profile.start_rate, profile.stages, profile.time_unit)

    # Assert
    assert len(offsets) == math.floor(area + 1e-9)
    assert all(a <= b for a, b in zip(offsets, offsets[1:]))
    assert offsets[-1] <= profile.total_duration + 1e-9


def test_scheduler_queues_tokens_beyond_busy_workers():
    """Test that arrivals queue as backlog instead of creating workers."""
    # Arrange
    scheduler = ArrivalScheduler(_tiny_profile())

    # Act: nobody takes tokens while the schedule runs.
    scheduler.run()

    # Assert
    assert scheduler.finished.is_set()
    assert scheduler.scheduled == 5
    assert scheduler.backlog == 5
    assert scheduler.peak_backlog == 5


def test_scheduler_tracks_active_and_completed_iterations():
    scheduler = ArrivalScheduler(_tiny_profile())
    scheduler.run()

    assert scheduler.take(timeout=0.1)
    assert scheduler.take(timeout=0.1)
    assert scheduler.active == 2
    scheduler.done()

    assert scheduler.active == 1
    assert scheduler.completed == 1
    assert scheduler.peak_active == 2
    assert not scheduler.drained


def test_stop_discards_queued_tokens_as_dropped():
    """Test that stopping drops whatever is still queued and reports the count."""
    # Arrange
    scheduler = ArrivalScheduler(_tiny_profile())
    scheduler.run()
    scheduler.take(timeout=0.1)

    # Act
    dropped = scheduler.stop()

    # Assert
    assert dropped == 4
    assert scheduler.dropped == 4
    assert scheduler.backlog == 0
    assert not scheduler.take(timeout=0.01)


def test_stopped_scheduler_emits_nothing():
    scheduler = ArrivalScheduler(_tiny_profile(rate=10.0, duration=1.0))
    scheduler.stop()

    scheduler.run()

    assert scheduler.scheduled == 0
    assert scheduler.finished.is_set()


def test_scheduler_is_drained_once_all_iterations_finish():
    scheduler = ArrivalScheduler(_tiny_profile(rate=20.0, duration=0.1))
    scheduler.run()

    while scheduler.take(timeout=0.01):
        scheduler.done()

    assert scheduler.completed == 2
    assert scheduler.drained
