"""Crew capability index built from the employee roster."""

from __future__ import annotations

import logging
from typing import Iterable

from ...models.domain import Crew, Employee

logger = logging.getLogger(__name__)

UNAVAILABLE = frozenset({"offline"})


def build_crews(employees: Iterable[Employee]) -> dict[str, Crew]:
    """Group employees by crew id and derive each crew's service-type set.

    The capability set is the union of the members' declarations. A member
    without a declaration stays on the crew but contributes nothing; a crew
    that ends up with no members or no service types is dropped.
    """

    members: dict[str, list[str]] = {}
    declared: dict[str, list[frozenset[str]]] = {}

    for employee in employees:
        if not employee.crew_id:
            continue
        if employee.availability in UNAVAILABLE:
            logger.debug(f"Skipping {employee.employee_id} for crew {employee.crew_id}: {employee.availability}")
            continue
        members.setdefault(employee.crew_id, []).append(employee.employee_id)
        types = frozenset(t.strip() for t in (employee.crew_service_types or ()) if t and t.strip())
        if not types:
            logger.warning(
                f"Employee {employee.employee_id} references crew {employee.crew_id} "
                "without declaring service types; ignoring for capabilities"
            )
            continue
        declared.setdefault(employee.crew_id, []).append(types)

    crews: dict[str, Crew] = {}
    for crew_id, member_ids in members.items():
        if not member_ids:
            continue
        declarations = declared.get(crew_id, [])
        service_types = frozenset().union(*declarations) if declarations else frozenset()
        if not service_types:
            logger.warning(f"Dropping crew {crew_id}: no member declares any service type")
            continue
        consistent = len(set(declarations)) <= 1
        if not consistent:
            logger.info(f"Crew {crew_id} members declare differing service types; using union {sorted(service_types)}")
        crews[crew_id] = Crew(
            crew_id=crew_id,
            members=tuple(sorted(member_ids)),
            service_types=service_types,
            consistent=consistent,
        )
    return crews
