"""Packing heuristics.

A strategy turns a flat list of obligations into packages whose total mass
never exceeds the ceiling. Strategies hold no state and touch nothing but
their arguments, so the allocator can swap them freely.
"""
import logging
import math
from typing import Dict, List, Mapping, Protocol, Sequence

from fulfillment.domain.model import Line


logger = logging.getLogger(__name__)

Package = List[Line]


class PackingStrategy(Protocol):
    name: str

    def pack(
            self,
            items: Sequence[Line],
            ceiling_g: int,
            masses: Mapping[int, int],
    ) -> List[Package]:
        raise NotImplementedError


def package_mass(package: Sequence[Line], masses: Mapping[int, int]) -> int:
    return sum(masses.get(line.product_id, 0) * line.quantity for line in package)


def _packable(items: Sequence[Line], masses: Mapping[int, int]) -> List[Line]:
    return [
        line for line in items
        if line.quantity > 0 and masses.get(line.product_id, 0) > 0
    ]


class GreedyFirstFit:
    """First-fit decreasing: heaviest products are seated first."""

    name = "greedy_first_fit"

    def pack(
            self,
            items: Sequence[Line],
            ceiling_g: int,
            masses: Mapping[int, int],
    ) -> List[Package]:
        packages = []   # type: List[Dict[int, int]]
        loads = []      # type: List[int]

        ordered = sorted(
            _packable(items, masses),
            key=lambda line: masses[line.product_id],
            reverse=True,
        )

        for line in ordered:
            unit_mass = masses[line.product_id]
            remaining = line.quantity

            while remaining > 0:
                per_package = ceiling_g // unit_mass
                if per_package == 0:
                    logger.warning(
                        f"Product {line.product_id} too heavy ({unit_mass}g)"
                        f" for shipment limit ({ceiling_g}g)"
                    )
                    break

                for index, package in enumerate(packages):
                    units = min((ceiling_g - loads[index]) // unit_mass, remaining)
                    if units > 0:
                        package[line.product_id] = package.get(line.product_id, 0) + units
                        loads[index] += units * unit_mass
                        remaining -= units
                        break
                else:
                    units = min(per_package, remaining)
                    packages.append({line.product_id: units})
                    loads.append(units * unit_mass)
                    remaining -= units

        return [
            [Line(product_id, quantity) for product_id, quantity in package.items()]
            for package in packages
        ]


class WeightBalanced:
    """Spreads the load evenly over the fewest packages the ceiling allows."""

    name = "weight_balanced"

    def pack(
            self,
            items: Sequence[Line],
            ceiling_g: int,
            masses: Mapping[int, int],
    ) -> List[Package]:
        remaining = {}  # type: Dict[int, int]
        for line in _packable(items, masses):
            if masses[line.product_id] > ceiling_g:
                logger.warning(
                    f"Product {line.product_id} too heavy"
                    f" ({masses[line.product_id]}g) for shipment limit ({ceiling_g}g)"
                )
                continue
            remaining[line.product_id] = remaining.get(line.product_id, 0) + line.quantity

        total_mass = sum(masses[pid] * qty for pid, qty in remaining.items())
        if total_mass == 0:
            return []

        estimated = math.ceil(total_mass / ceiling_g)
        target = total_mass / estimated

        packages = []   # type: List[Package]
        while any(remaining.values()):
            package = self._fill(remaining, masses, min(ceiling_g, target))
            if not package:
                # nothing fits under the target any more, fall back to the ceiling
                package = self._fill(remaining, masses, ceiling_g)
            packages.append(package)

        return packages

    @staticmethod
    def _fill(
            remaining: Dict[int, int],
            masses: Mapping[int, int],
            capacity: float,
    ) -> Package:
        package = []
        load = 0
        for product_id, quantity in remaining.items():
            if quantity == 0:
                continue
            units = min(int((capacity - load) // masses[product_id]), quantity)
            if units > 0:
                package.append(Line(product_id, units))
                load += units * masses[product_id]
                remaining[product_id] -= units
        return package


STRATEGIES = {
    GreedyFirstFit.name: GreedyFirstFit,
    WeightBalanced.name: WeightBalanced,
}


def strategy_for(name: str) -> PackingStrategy:
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"Unknown packing strategy {name!r}") from None
