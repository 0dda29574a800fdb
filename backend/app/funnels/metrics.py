from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Sequence


@dataclass(frozen=True)
class StepDefinition:
    id: int
    name: str
    step_order: int


@dataclass(frozen=True)
class Transition:
    from_step: str
    to_step: str
    count: int
    percentage: float


@dataclass
class PathStats:
    total_sessions: int
    transitions: list[Transition] = field(default_factory=list)
    step_visits: dict[str, int] = field(default_factory=dict)
    entry_points: list[tuple[str, int]] = field(default_factory=list)
    exit_points: list[tuple[str, int]] = field(default_factory=list)


@dataclass(frozen=True)
class StepStats:
    step_id: int
    step_name: str
    step_order: int
    visitors: int
    dropoff: float


@dataclass
class FunnelStats:
    steps: list[StepStats]
    conversion_rate: float
    total_visitors: int
    conversions: int


def round_half_up(value: float, digits: int) -> float:
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percentage(part: int, whole: int, digits: int = 2) -> float:
    if whole <= 0:
        return 0.0
    return round_half_up(part / whole * 100.0, digits)


def compute_dropoff(previous_visitors: int, visitors: int) -> float:
    """Share of the previous step's visitors missing from this step, never negative."""
    if previous_visitors <= 0:
        return 0.0
    return max(0.0, percentage(previous_visitors - visitors, previous_visitors))


def compute_conversion_rate(first_visitors: int, last_visitors: int) -> float:
    return percentage(last_visitors, first_visitors)


def step_visitors(paths: Mapping[str, Sequence[str]]) -> dict[str, int]:
    counts: Counter[str] = Counter()
    for path in paths.values():
        counts.update(set(path))
    return dict(counts)


def count_transitions(paths: Mapping[str, Sequence[str]]) -> Counter[tuple[str, str]]:
    # Literal adjacent pairs, so back navigation counts as its own transition.
    counts: Counter[tuple[str, str]] = Counter()
    for path in paths.values():
        for index in range(len(path) - 1):
            counts[(path[index], path[index + 1])] += 1
    return counts


def _ranked(counts: Counter) -> list:
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)


def _tally(steps: Iterable[str]) -> list[tuple[str, int]]:
    return _ranked(Counter(steps))


def compute_path_stats(paths: Mapping[str, Sequence[str]]) -> PathStats:
    live_paths = {sid: path for sid, path in paths.items() if path}
    total = len(live_paths)
    transitions = [
        Transition(
            from_step=pair[0],
            to_step=pair[1],
            count=count,
            percentage=percentage(count, total, digits=1),
        )
        for pair, count in _ranked(count_transitions(live_paths))
    ]
    return PathStats(
        total_sessions=total,
        transitions=transitions,
        step_visits=step_visitors(live_paths),
        entry_points=_tally(path[0] for path in live_paths.values()),
        exit_points=_tally(path[-1] for path in live_paths.values()),
    )


def compute_step_stats(
    steps: Sequence[StepDefinition],
    paths: Mapping[str, Sequence[str]],
) -> FunnelStats:
    """Visitors and drop-off along the declared step order, not the observed paths."""
    visitors = step_visitors(paths)
    ordered = sorted(steps, key=lambda step: step.step_order)
    stats: list[StepStats] = []
    previous = 0
    for index, step in enumerate(ordered):
        count = visitors.get(step.name, 0)
        stats.append(
            StepStats(
                step_id=step.id,
                step_name=step.name,
                step_order=step.step_order,
                visitors=count,
                dropoff=compute_dropoff(previous, count) if index > 0 else 0.0,
            )
        )
        previous = count

    first = stats[0].visitors if stats else 0
    last = stats[-1].visitors if stats else 0
    return FunnelStats(
        steps=stats,
        conversion_rate=compute_conversion_rate(first, last),
        total_visitors=first,
        conversions=last,
    )
