"""Documentation gate: may a job move to its next state yet?

Used twice with the same logic: by the API to enable or disable the
confirmation action, and by the state machine when it commits the
transition. No side effects.
"""

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Protocol, Union

from app.models.enums import PhotoPhase, UnitType
from app.services.categories import coerce_phase, coerce_unit_type, derive_categories


class GateSubject(Protocol):
    unit_type: Optional[Union[UnitType, str]]
    features: Optional[list[str]]


@dataclass(frozen=True)
class GateResult:
    allowed: bool
    missing: list[str] = field(default_factory=list)
    required: list[str] = field(default_factory=list)
    unit_type_required: bool = False

    @property
    def reason(self) -> Optional[str]:
        if self.allowed:
            return None
        if self.unit_type_required:
            return "unit_type_required"
        return "missing_photos"


def satisfied_keys(captured: Union[Mapping[str, int], Iterable[str], None]) -> set[str]:
    """Category keys with at least one confirmed photo."""
    if not captured:
        return set()
    if isinstance(captured, Mapping):
        return {key for key, count in captured.items() if count and count > 0}
    return set(captured)


def can_transition(
    job: GateSubject,
    phase: Union[PhotoPhase, str],
    captured: Union[Mapping[str, int], Iterable[str], None],
) -> GateResult:
    """Check every required category has a photo for `phase`.

    `captured` holds only the photos of that phase, either as a mapping of
    category key to photo count or as a collection of keys. A start
    (`before`) without a unit type always fails: the unit type decides the
    required set.
    """
    phase = coerce_phase(phase)
    features = list(job.features or [])
    required = [c.key for c in derive_categories(job.unit_type, features, phase)]
    have = satisfied_keys(captured)
    missing = [key for key in required if key not in have]

    unit_type_required = (
        phase == PhotoPhase.BEFORE and coerce_unit_type(job.unit_type) is None
    )

    return GateResult(
        allowed=not missing and not unit_type_required,
        missing=missing,
        required=required,
        unit_type_required=unit_type_required,
    )
