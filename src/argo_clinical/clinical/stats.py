"""Completion stats calculator for the core clinical entities.

Each core entity (donor, specimen, primary diagnosis, treatment, follow-up)
gets a completeness fraction in [0, 1]:

* specimens: share of specimens with clinical info, forced to 0 unless the
  donor has at least one Normal and one Tumour specimen;
* everything else: 1 if any instance carries clinical info, else 0.

Two guards protect stored values. Overridden entries are skipped unless
``recalc_even_if_overridden`` is set, and entries already at 1 are skipped
unless ``recalc_even_if_complete`` is set. Specimens always recompute,
since adding specimens can lower their ratio.
"""

import copy
from dataclasses import dataclass
from datetime import date
from statistics import mean
from typing import Dict, List, Optional

from ..config.constants import (
    CORE_COMPLETION_FIELD_BY_ENTITY,
    CORE_ENTITIES,
    NORMAL,
    SPECIMEN,
    TUMOUR,
)
from ..config.logging_config import get_logger
from ..errors import InvalidArgumentError
from .accessor import get_clinical_entities
from .entities import CompletionStats, Donor

logger = get_logger("clinical.stats")


@dataclass(frozen=True)
class RecalculateFlags:
    """Force flags for a recalculation."""

    recalc_even_if_complete: bool = False
    recalc_even_if_overridden: bool = False


def empty_core_stats() -> CompletionStats:
    return CompletionStats(
        core_completion={stat: 0.0 for stat in CORE_COMPLETION_FIELD_BY_ENTITY.values()},
        overridden_core_completion=[],
        core_completion_percentage=0.0,
    )


def specimen_completion(donor: Donor) -> float:
    """Fraction of specimens with clinical info; 0 without a tumour/normal pair."""
    specimens = donor.specimens
    if not specimens:
        return 0.0
    designations = {s.tumour_normal_designation for s in specimens}
    if NORMAL not in designations or TUMOUR not in designations:
        return 0.0
    with_info = sum(1 for s in specimens if s.clinical_info)
    return with_info / len(specimens)


def entity_completion(donor: Donor, entity_type: str) -> float:
    if entity_type == SPECIMEN:
        return specimen_completion(donor)
    return 1.0 if get_clinical_entities(donor, entity_type) else 0.0


def _needs_recalculation(stats: CompletionStats, entity_type: str, flags: RecalculateFlags) -> bool:
    stat_name = CORE_COMPLETION_FIELD_BY_ENTITY[entity_type]
    if stat_name in stats.overridden_core_completion and not flags.recalc_even_if_overridden:
        return False
    if (
        entity_type != SPECIMEN
        and stats.core_completion.get(stat_name) == 1
        and not flags.recalc_even_if_complete
    ):
        return False
    return True


def _completion_percentage(core_completion: Dict[str, float]) -> float:
    values = list(core_completion.values())
    return mean(values) if values else 0.0


def _refresh_totals(donor: Donor) -> None:
    stats = donor.completion_stats
    stats.core_completion_percentage = _completion_percentage(stats.core_completion)
    if stats.core_completion_percentage == 1:
        stats.core_completion_date = (
            stats.core_completion_date or donor.updated_at or date.today().isoformat()
        )
    else:
        stats.core_completion_date = None


def recalculate(donor: Donor, entity_type: str, flags: RecalculateFlags) -> None:
    """
    Recalculate one core entity's completeness on a working copy (in place).

    Args:
        donor: Working copy of the donor; its completion stats are updated.
        entity_type: Core entity name. Non-core types are ignored.
        flags: Force flags controlling the guards.
    """
    if entity_type not in CORE_COMPLETION_FIELD_BY_ENTITY:
        return
    if donor.completion_stats is None:
        donor.completion_stats = empty_core_stats()
    stats = donor.completion_stats
    if not _needs_recalculation(stats, entity_type, flags):
        return

    stat_name = CORE_COMPLETION_FIELD_BY_ENTITY[entity_type]
    stats.core_completion[stat_name] = entity_completion(donor, entity_type)
    if stat_name in stats.overridden_core_completion:
        stats.overridden_core_completion.remove(stat_name)
    _refresh_totals(donor)


def calc_donor_core_entity_stats(donor: Donor, flags: RecalculateFlags) -> Donor:
    """Return a copy of ``donor`` with every core entity recalculated under ``flags``."""
    updated = copy.deepcopy(donor)
    if updated.completion_stats is None:
        updated.completion_stats = empty_core_stats()
    for entity_type in CORE_ENTITIES:
        recalculate(updated, entity_type, flags)
    _refresh_totals(updated)
    return updated


def recalculate_donor_stats_hold_overridden(donor: Donor) -> Donor:
    """Full recalculation that keeps manually overridden entries."""
    return calc_donor_core_entity_stats(
        donor, RecalculateFlags(recalc_even_if_complete=True, recalc_even_if_overridden=False)
    )


def update_donor_stats_from_submission_commit(donor: Donor, entity_type: str) -> Donor:
    """Recalculate the stat for a committed entity type (no-op for non-core types)."""
    updated = copy.deepcopy(donor)
    recalculate(updated, entity_type, RecalculateFlags())
    return updated


def update_donor_stats_from_registration_commit(donor: Donor) -> Donor:
    """Recalculate after new specimens/samples are registered.

    Donors without stats have no clinical submission yet and are returned
    unchanged (as a copy).
    """
    if donor.completion_stats is None:
        return copy.deepcopy(donor)
    return calc_donor_core_entity_stats(
        donor, RecalculateFlags(recalc_even_if_complete=True, recalc_even_if_overridden=False)
    )


def set_invalid_core_entity_stats_for_migration(donor: Donor, invalid_entities: List[str]) -> Donor:
    """
    Zero the completeness of core entities that fail a new dictionary.

    Donors without stats and overridden entries are left as they are.
    """
    updated = copy.deepcopy(donor)
    stats = updated.completion_stats
    if stats is None:
        return updated
    for entity_type in invalid_entities:
        stat_name = CORE_COMPLETION_FIELD_BY_ENTITY.get(entity_type)
        if stat_name is None or stat_name in stats.overridden_core_completion:
            continue
        stats.core_completion[stat_name] = 0.0
    _refresh_totals(updated)
    return updated


def _validate_override(override: Dict[str, float]) -> None:
    allowed = set(CORE_COMPLETION_FIELD_BY_ENTITY.values())
    for stat_name, value in override.items():
        if stat_name not in allowed:
            raise InvalidArgumentError(f"Invalid core stat override: unknown entry {stat_name}")
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 1:
            raise InvalidArgumentError(
                f"Invalid core stat override: {stat_name} must be a number between 0 and 1"
            )


def patch_core_completion_with_override(donor: Donor, override: Dict[str, float]) -> Donor:
    """
    Administrative correction: apply an explicit completeness map.

    Everything is recalculated without guards, then the override values are
    written and recorded as overridden.

    Raises:
        InvalidArgumentError: If the map has unknown entries or out-of-range values.
    """
    _validate_override(override)
    updated = calc_donor_core_entity_stats(
        donor, RecalculateFlags(recalc_even_if_complete=True, recalc_even_if_overridden=True)
    )
    stats = updated.completion_stats
    stats.core_completion.update({k: float(v) for k, v in override.items()})
    stats.overridden_core_completion = list(override.keys())
    _refresh_totals(updated)
    logger.info(
        f"Core completion override applied to donor {donor.submitter_id}: {sorted(override)}"
    )
    return updated


def recalc_donor_stats(donor: Donor, override: Optional[Dict[str, float]] = None) -> Donor:
    """Recalculate a donor's stats, applying ``override`` when given."""
    if override:
        return patch_core_completion_with_override(donor, override)
    return recalculate_donor_stats_hold_overridden(donor)
