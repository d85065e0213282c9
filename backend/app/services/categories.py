"""Category deriver: which photo categories a job must document.

This is the only place that decides what has to be photographed. Everything
else (the gate, the upload pipeline, the API's requirement listing) calls
`derive_categories` and never builds category lists of its own.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Union

from app.models.enums import CategoryGroup, PhotoPhase, UnitType
from app.services.catalog import (
    BASE_COMPARE_CATEGORIES,
    BEDROOM_COUNTS,
    CORE_GENERAL_CATEGORIES,
    FEATURES,
)


@dataclass(frozen=True)
class PhotoCategory:
    """A documentation checkpoint computed for one job."""

    key: str
    label: str
    group: CategoryGroup

    @property
    def requires_before(self) -> bool:
        return self.group == CategoryGroup.COMPARE


def coerce_unit_type(unit_type: Union[UnitType, str, None]) -> Optional[UnitType]:
    """Map raw input to a UnitType, treating unknown values as unset."""
    if unit_type is None or isinstance(unit_type, UnitType):
        return unit_type
    try:
        return UnitType(unit_type)
    except ValueError:
        return None


def coerce_phase(phase: Union[PhotoPhase, str]) -> PhotoPhase:
    return phase if isinstance(phase, PhotoPhase) else PhotoPhase(phase)


def bedroom_count(unit_type: Union[UnitType, str, None]) -> int:
    """Number of bedroom categories for a unit type (0 when not fixed)."""
    resolved = coerce_unit_type(unit_type)
    if resolved is None:
        return 0
    return BEDROOM_COUNTS.get(resolved, 0)


def compare_categories(features: Iterable[str]) -> list[PhotoCategory]:
    """Base fixtures followed by feature fixtures in catalog order."""
    selected = set(features or ())
    result = [
        PhotoCategory(c.key, c.label, CategoryGroup.COMPARE)
        for c in BASE_COMPARE_CATEGORIES
    ]
    seen = {c.key for c in result}

    for feature in FEATURES:
        spec = feature.compare_category
        if feature.key not in selected or spec is None or spec.key in seen:
            continue
        seen.add(spec.key)
        result.append(PhotoCategory(spec.key, spec.label, CategoryGroup.COMPARE))

    return result


def general_categories(
    unit_type: Union[UnitType, str, None],
    features: Iterable[str],
) -> list[PhotoCategory]:
    """Core areas, feature areas, then bedrooms in ascending order."""
    selected = set(features or ())
    result = [
        PhotoCategory(c.key, c.label, CategoryGroup.GENERAL)
        for c in CORE_GENERAL_CATEGORIES
    ]
    seen = {c.key for c in result}

    for feature in FEATURES:
        spec = feature.general_category
        if feature.key not in selected or spec is None or spec.key in seen:
            continue
        seen.add(spec.key)
        result.append(PhotoCategory(spec.key, spec.label, CategoryGroup.GENERAL))

    for index in range(1, bedroom_count(unit_type) + 1):
        result.append(
            PhotoCategory(f"bedroom_{index}", f"Bedroom {index}", CategoryGroup.GENERAL)
        )

    return result


def derive_categories(
    unit_type: Union[UnitType, str, None],
    features: Iterable[str],
    phase: Union[PhotoPhase, str],
) -> list[PhotoCategory]:
    """Ordered categories required for a transition.

    `before` (start) needs the compare fixtures only. `after` (completion)
    needs the compare fixtures plus the general areas. Unknown feature keys
    are ignored. Pure: identical inputs always give identical output.
    """
    features = list(features or ())
    categories = compare_categories(features)
    if coerce_phase(phase) == PhotoPhase.AFTER:
        categories.extend(general_categories(unit_type, features))
    return categories


def required_keys(
    unit_type: Union[UnitType, str, None],
    features: Iterable[str],
    phase: Union[PhotoPhase, str],
) -> list[str]:
    return [c.key for c in derive_categories(unit_type, features, phase)]


def find_category(
    key: str,
    unit_type: Union[UnitType, str, None],
    features: Iterable[str],
) -> Optional[PhotoCategory]:
    """Look a key up across every category the job could require."""
    for category in derive_categories(unit_type, features, PhotoPhase.AFTER):
        if category.key == key:
            return category
    return None


def category_group(
    key: str,
    unit_type: Union[UnitType, str, None],
    features: Iterable[str],
) -> Optional[CategoryGroup]:
    category = find_category(key, unit_type, features)
    return category.group if category else None


def effective_phase(
    category: PhotoCategory,
    requested: Union[PhotoPhase, str],
) -> PhotoPhase:
    """General areas are never documented before the job."""
    if category.group == CategoryGroup.GENERAL:
        return PhotoPhase.AFTER
    return coerce_phase(requested)
