"""Cross-product adoption matrix."""
from datetime import datetime
from itertools import product
from typing import Callable, Iterable

from .models import CrossProductMatrix, MatrixCell, UnifiedUserProfile
from .recency import days_since

Predicate = Callable[[str], bool]


def activity_matrix(predicates: dict[str, Predicate], universe: Iterable[str]) -> CrossProductMatrix:
    """Count emails by which surfaces they are active on.

    Only emails true for at least one predicate are counted, each exactly once,
    so the all-inactive cell stays at zero.
    """
    surfaces = list(predicates)
    cells = {
        flags: MatrixCell(flags=dict(zip(surfaces, flags)))
        for flags in product((False, True), repeat=len(surfaces))
    }

    total = 0
    for email in set(universe):
        flags = tuple(bool(predicates[s](email)) for s in surfaces)
        if not any(flags):
            continue
        cells[flags].count += 1
        total += 1

    return CrossProductMatrix(surfaces=surfaces, cells=list(cells.values()), total=total)


def cross_product_matrix(
    predicate_a: Predicate,
    predicate_b: Predicate,
    universe: Iterable[str],
    names: tuple[str, str] = ("a", "b"),
) -> CrossProductMatrix:
    """2x2 case of :func:`activity_matrix`."""
    return activity_matrix({names[0]: predicate_a, names[1]: predicate_b}, universe)


def active_on_surface(
    profiles: dict[str, UnifiedUserProfile],
    surface: str,
    now: datetime,
    within_days: int | None = None,
) -> Predicate:
    """Predicate: the user has activity on ``surface`` (optionally within N days)."""
    def predicate(email: str) -> bool:
        profile = profiles.get(email)
        if profile is None:
            return False
        days = days_since(profile.surface_last_seen.get(surface), now)
        if days is None:
            return False
        return within_days is None or days <= within_days

    return predicate
