"""Partition due customers between the crews able to serve them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Mapping, Sequence

from ...errors import CapabilityError
from ...models.domain import Crew, Customer, UnassignedCustomer
from ..scheduling.selector import due_service_types

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CrewAssignment:
    assignments: dict[str, list[Customer]]
    unassigned: list[UnassignedCustomer] = field(default_factory=list)

    def customers_for(self, crew_id: str) -> list[Customer]:
        return self.assignments.get(crew_id, [])

    def capability_error(self) -> CapabilityError | None:
        missing = [u.customer_id for u in self.unassigned if u.reason == "no_capable_crew"]
        if not missing:
            return None
        return CapabilityError(
            f"{len(missing)} customer(s) need a service type no crew performs",
            customer_ids=missing,
        )


def _pick_crew(service_types: Sequence[str], crews: Sequence[Crew], load: Mapping[str, int]) -> Crew | None:
    best: Crew | None = None
    best_rank: tuple[int, int, str] | None = None
    for crew in crews:
        coverage = sum(1 for service_type in service_types if crew.can_perform(service_type))
        if coverage == 0:
            continue
        rank = (-coverage, load.get(crew.crew_id, 0), crew.crew_id)
        if best_rank is None or rank < best_rank:
            best, best_rank = crew, rank
    return best


def assign_customers_to_crews(
    customers: Sequence[Customer],
    crews: Mapping[str, Crew],
    target: date,
) -> CrewAssignment:
    """Send each customer to the crew covering most of its due service types.

    Ties go to the less loaded crew, then to the lower crew id. Customers no
    crew can serve are reported as ``no_capable_crew`` instead of dropped.
    """

    ordered_crews = [crews[crew_id] for crew_id in sorted(crews)]
    assignments: dict[str, list[Customer]] = {crew.crew_id: [] for crew in ordered_crews}
    load: dict[str, int] = {}
    unassigned: list[UnassignedCustomer] = []

    for customer in sorted(customers, key=lambda c: c.customer_id):
        service_types = due_service_types(customer, target) or tuple(s.service_type for s in customer.services)
        crew = _pick_crew(service_types, ordered_crews, load)
        if crew is None:
            unassigned.append(
                UnassignedCustomer(
                    customer_id=customer.customer_id,
                    reason="no_capable_crew",
                    service_types=tuple(service_types),
                )
            )
            continue
        assignments[crew.crew_id].append(customer)
        load[crew.crew_id] = load.get(crew.crew_id, 0) + 1

    if unassigned:
        logger.warning(
            f"{len(unassigned)} customer(s) have no capable crew on {target.isoformat()}: "
            f"{', '.join(u.customer_id for u in unassigned)}"
        )
    return CrewAssignment(
        assignments={crew_id: items for crew_id, items in assignments.items() if items},
        unassigned=unassigned,
    )
