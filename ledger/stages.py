from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator, Sequence

from django.core.exceptions import ImproperlyConfigured

CENT = Decimal('0.01')


@dataclass(frozen=True)
class StageDefinition:
    key: str
    label: str
    percentage: int


class StageCatalog:
    """Fixed, ordered list of payment stages whose weights add up to 100%."""

    def __init__(self, name: str, stages: Sequence[StageDefinition]):
        total = sum(stage.percentage for stage in stages)
        if total != 100:
            raise ImproperlyConfigured(f"{name} stage percentages add up to {total}, expected 100.")
        keys = [stage.key for stage in stages]
        if len(set(keys)) != len(keys):
            raise ImproperlyConfigured(f"{name} stage keys must be unique.")
        self.name = name
        self._stages = tuple(stages)
        self._positions = {stage.key: index for index, stage in enumerate(self._stages)}

    def __iter__(self) -> Iterator[StageDefinition]:
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __contains__(self, key: object) -> bool:
        return key in self._positions

    @property
    def total_percentage(self) -> int:
        return sum(stage.percentage for stage in self._stages)

    @property
    def choices(self) -> list[tuple[str, str]]:
        return [(stage.key, stage.label) for stage in self._stages]

    def get(self, key: str) -> StageDefinition:
        return self._stages[self.position(key)]

    def position(self, key: str) -> int:
        try:
            return self._positions[key]
        except KeyError:
            raise KeyError(f"Unknown {self.name} stage: {key!r}") from None

    def label(self, key: str) -> str:
        return self.get(key).label


def required_amount(total_cost: Decimal, percentage: int) -> Decimal:
    value = (Decimal(total_cost or 0) * Decimal(percentage)) / Decimal('100')
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


CLIENT_STAGES = StageCatalog(
    'client',
    (
        StageDefinition('booking', 'Booking Amount', 5),
        StageDefinition('pop_stage', 'POP Stage', 25),
        StageDefinition('plywood_stage', 'Plywood Stage', 25),
        StageDefinition('lamination_stage', 'Lamination Stage', 30),
        StageDefinition('paint_stage', 'Paint Stage', 10),
        StageDefinition('fabric_stage', 'Fabric Stage', 5),
    ),
)

VENDOR_STAGES = StageCatalog(
    'vendor',
    (
        StageDefinition('pop_work', 'POP Work Complete', 10),
        StageDefinition('material_unload', 'Material Unload (Ply + Hardware)', 20),
        StageDefinition('raw_work', 'After Raw Work Complete', 20),
        StageDefinition('laminate_work', 'After Laminate Complete', 20),
        StageDefinition('color_fabric', 'After Color & Fabric Work', 20),
        StageDefinition('final_inspection', 'Final Inspection + Post-Handover', 10),
    ),
)
