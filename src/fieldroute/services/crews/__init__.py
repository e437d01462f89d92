"""Crew capability index and customer partitioning."""

from .assignment import CrewAssignment, assign_customers_to_crews
from .index import build_crews

__all__ = ["CrewAssignment", "assign_customers_to_crews", "build_crews"]
