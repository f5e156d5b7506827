"""
Technician matching: category -> specialization -> eligible technician.

Pure selection over an already-loaded directory snapshot. The caller is
responsible for reserving capacity atomically afterwards; a snapshot can
be stale by the time the reservation runs, which is why selection takes
an `exclude` set for retrying after a lost race.

Selection order:
1. For each specialization mapped to the category, the eligible
   technicians whose specialization matches exactly (case-insensitive)
2. Otherwise any eligible technician
3. Otherwise nobody (a normal outcome, retried later)
"""
import logging
from typing import Iterable, Optional, Protocol, Sequence
from uuid import UUID

logger = logging.getLogger(__name__)


CATEGORY_TO_SPECIALIZATION: dict[str, tuple[str, ...]] = {
    "electrical": ("Electrical",),
    "electricity": ("Electrical",),
    "water": ("Plumbing",),
    "it": ("IT",),
    "hostel": ("General", "HVAC"),
    "garbage": ("General",),
}
FALLBACK_SPECIALIZATIONS: tuple[str, ...] = ("General",)


class MatchStrategy:
    """How to order candidates within a tier."""

    FIRST_MATCH = "first_match"  # Directory order; critical alerts
    LEAST_LOADED = "least_loaded"  # Fewest current assignments, stable


class Candidate(Protocol):
    id: UUID
    specialization: str
    current_assignments: int

    def is_eligible(self) -> bool: ...


def specializations_for_category(category: str) -> tuple[str, ...]:
    """Map an incident category to the specializations that can handle it."""
    return CATEGORY_TO_SPECIALIZATION.get(category.strip().lower(), FALLBACK_SPECIALIZATIONS)


def _order(candidates: list[Candidate], strategy: str) -> list[Candidate]:
    if strategy == MatchStrategy.LEAST_LOADED:
        # sorted() is stable, so equal loads keep directory order
        return sorted(candidates, key=lambda t: t.current_assignments)
    return candidates


def rank_candidates(
    technicians: Sequence[Candidate],
    category: str,
    strategy: str = MatchStrategy.FIRST_MATCH,
    exclude: Optional[Iterable[UUID]] = None,
) -> list[Candidate]:
    """
    Every eligible technician in the order they should be tried.

    Specialists come first (tier by tier, in mapping order), then the
    remaining eligible technicians as a general fallback.
    """
    excluded = set(exclude or ())
    eligible = [t for t in technicians if t.id not in excluded and t.is_eligible()]

    ranked: list[Candidate] = []
    seen: set[UUID] = set()
    for specialization in specializations_for_category(category):
        tier = [
            t for t in eligible
            if t.id not in seen
            and (t.specialization or "").lower() == specialization.lower()
        ]
        for technician in _order(tier, strategy):
            ranked.append(technician)
            seen.add(technician.id)

    fallback = [t for t in eligible if t.id not in seen]
    ranked.extend(_order(fallback, strategy))
    return ranked


def select_technician(
    technicians: Sequence[Candidate],
    category: str,
    strategy: str = MatchStrategy.FIRST_MATCH,
    exclude: Optional[Iterable[UUID]] = None,
) -> Optional[Candidate]:
    """Best technician for the category, or None when nobody is eligible."""
    ranked = rank_candidates(technicians, category, strategy, exclude)
    if not ranked:
        logger.info(f"No eligible technician for category={category}")
        return None
    return ranked[0]
