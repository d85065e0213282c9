"""Feature catalog: optional amenities and the photo categories they add.

Pure data. Declaration order here is the order categories are listed in,
so append new features rather than inserting them.
"""

from dataclasses import dataclass
from typing import Optional

from app.models.enums import UnitType


@dataclass(frozen=True)
class CategorySpec:
    key: str
    label: str


@dataclass(frozen=True)
class Feature:
    key: str
    label: str
    compare_category: Optional[CategorySpec] = None
    general_category: Optional[CategorySpec] = None


# Universal fixtures, photographed before and after on every job
BASE_COMPARE_CATEGORIES: tuple[CategorySpec, ...] = (
    CategorySpec("stove", "Stove"),
    CategorySpec("stove_back", "Behind Stove"),
    CategorySpec("fridge", "Fridge"),
    CategorySpec("fridge_back", "Behind Fridge"),
    CategorySpec("toilet", "Toilet"),
    CategorySpec("bathtub", "Bathtub"),
    CategorySpec("sink", "Sink"),
)

# Whole-area shots required at completion on every job
CORE_GENERAL_CATEGORIES: tuple[CategorySpec, ...] = (
    CategorySpec("kitchen", "Kitchen"),
    CategorySpec("bathroom", "Bathroom"),
    CategorySpec("living_room", "Living Room"),
)

_AC_UNIT = CategorySpec("ac_unit", "A/C Unit")

FEATURES: tuple[Feature, ...] = (
    Feature("air_conditioner", "Air Conditioner", compare_category=_AC_UNIT),
    Feature(
        "dishwasher",
        "Dishwasher",
        compare_category=CategorySpec("dishwasher", "Dishwasher"),
    ),
    Feature(
        "microwave",
        "Microwave",
        compare_category=CategorySpec("microwave", "Microwave"),
        general_category=CategorySpec("microwave_area", "Microwave"),
    ),
    # Shares the A/C unit category with air_conditioner
    Feature(
        "laundry",
        "Washer/Dryer",
        compare_category=_AC_UNIT,
        general_category=CategorySpec("laundry_unit", "Washer / Dryer"),
    ),
    Feature(
        "freezer",
        "Freezer",
        compare_category=CategorySpec("freezer", "Freezer"),
        general_category=CategorySpec("freezer_area", "Freezer"),
    ),
    Feature("heat_pump", "Heat Pump"),
    Feature(
        "ceiling_fan",
        "Ceiling Fan",
        compare_category=CategorySpec("ceiling_fan", "Ceiling Fan"),
    ),
    Feature(
        "balcony",
        "Balcony",
        general_category=CategorySpec("balcony_area", "Balcony"),
    ),
    Feature("den", "Den / Office"),
    Feature("walkin_closet", "Walk-in Closet"),
    Feature("storage_room", "Storage Room"),
    Feature("carpeted_rooms", "Carpeted Rooms"),
    Feature("private_entrance", "Private Entrance"),
    Feature(
        "glass_shower",
        "Glass Shower",
        general_category=CategorySpec("glass_shower_area", "Glass Shower"),
    ),
    Feature(
        "double_sink",
        "Double Sink",
        general_category=CategorySpec("double_sink_area", "Double Sink"),
    ),
)

FEATURES_BY_KEY: dict[str, Feature] = {f.key: f for f in FEATURES}

BEDROOM_COUNTS: dict[UnitType, int] = {
    UnitType.ONE_BED: 1,
    UnitType.TWO_BEDS: 2,
    UnitType.THREE_BEDS: 3,
    UnitType.FOUR_BEDS: 4,
}


def is_known_feature(key: str) -> bool:
    return key in FEATURES_BY_KEY
