"""Phase clock: pure phase sequencing and duration lookup.

This is the only place that decides which phase follows which. The session
state machine, the scheduler and restart recovery all go through it.
"""

from collections.abc import Iterator
from datetime import timedelta

from pomocop.pomo.types import Phase, PhaseConfig, PhaseKind


def first_phase() -> Phase:
    """The phase every session starts in."""
    return Phase.work(0)


def next_phase(phase: Phase, config: PhaseConfig) -> Phase:
    """Return the phase that follows ``phase``.

    ``Work(i)`` is followed by a long break when ``i + 1`` is a multiple of
    the cycle length, otherwise by a short break. Any break is followed by
    ``Work(i + 1)``.
    """
    if phase.is_work:
        if (phase.index + 1) % config.cycle_length == 0:
            return Phase.long_break(phase.index)
        return Phase.short_break(phase.index)
    return Phase.work(phase.index + 1)


def phase_duration(phase: Phase, config: PhaseConfig) -> timedelta:
    match phase.kind:
        case PhaseKind.WORK:
            return config.work
        case PhaseKind.SHORT_BREAK:
            return config.short_break
        case PhaseKind.LONG_BREAK:
            return config.long_break
    raise ValueError(f"unknown phase kind: {phase.kind!r}")


def phases_after(phase: Phase, config: PhaseConfig) -> Iterator[Phase]:
    """Yield the phases following ``phase``, forever."""
    current = phase
    while True:
        current = next_phase(current, config)
        yield current


def until_long_break(phase: Phase, config: PhaseConfig) -> timedelta:
    """Time between the end of ``phase`` and the start of the next long break.

    When ``phase`` is itself a long break, this is the length of the full
    cycle that follows it.
    """
    total = timedelta(0)
    for upcoming in phases_after(phase, config):
        if upcoming.kind == PhaseKind.LONG_BREAK:
            return total
        total += phase_duration(upcoming, config)
    raise AssertionError("unreachable")
