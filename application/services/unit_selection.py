# application/services/unit_selection.py
import random
from typing import List, Optional, Sequence

from domain.models.sales_state import Unit

class UnitSelector:
    """Chooses which available units go on a deal page"""

    def select(self, units: Sequence[Unit], count: int) -> List[Unit]:
        raise NotImplementedError

class FirstAvailableUnitSelector(UnitSelector):
    """Deterministic: the oldest available units first"""

    def select(self, units: Sequence[Unit], count: int) -> List[Unit]:
        return sorted(units, key=lambda unit: unit.created_at)[:count]

class RandomUnitSelector(UnitSelector):
    """Uniform sample without replacement; seedable for reproducible runs"""

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)

    def select(self, units: Sequence[Unit], count: int) -> List[Unit]:
        return self._random.sample(list(units), min(count, len(units)))

def build_unit_selector(strategy: str) -> UnitSelector:
    if strategy == "first":
        return FirstAvailableUnitSelector()
    if strategy == "random":
        return RandomUnitSelector()
    raise ValueError(f"Unknown unit selection strategy: {strategy}")
