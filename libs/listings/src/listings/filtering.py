from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, TypeVar

from common.utils import parse_amount
from pydantic import BaseModel, ConfigDict, field_validator

from listings.models import Listing, Opportunity

RecordT = TypeVar("RecordT", Listing, Opportunity)

JOB_FILTER_KEYS = (
    "location",
    "company",
    "work_type",
    "min_salary",
    "max_salary",
    "experience_level",
)
OPPORTUNITY_FILTER_KEYS = ("location", "institution", "discipline")


def contains_text(value: str | None, needle: str) -> bool:
    return bool(value) and needle.lower() in value.lower()


def matches_query(title: str | None, query: str) -> bool:
    if not query:
        return True
    return contains_text(title, query)


class FilterSet(BaseModel, ABC):
    """User-selected constraints; an empty string leaves a key unconstrained."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> FilterSet:
        return cls.model_validate(
            {key: "" if value is None else value for key, value in values.items()}
        )

    def is_empty(self) -> bool:
        return all(value == "" for value in self.model_dump().values())

    def reset(self) -> FilterSet:
        return type(self)()

    @abstractmethod
    def matches(self, record: Any) -> bool:
        """Whether ``record`` satisfies every active key."""


class JobFilters(FilterSet):
    location: str = ""
    company: str = ""
    work_type: str = ""
    min_salary: str = ""
    max_salary: str = ""
    experience_level: str = ""

    @field_validator("min_salary", "max_salary")
    @classmethod
    def validate_amount(cls, value: str) -> str:
        value = value.strip()
        if value and parse_amount(value) is None:
            raise ValueError("Salary filters must be numeric.")
        return value

    def matches(self, record: Listing) -> bool:
        if self.location and not (record.location and self.location in record.location):
            return False
        if self.company and not contains_text(record.company, self.company):
            return False
        if self.work_type and not contains_text(record.work_type, self.work_type):
            return False
        if self.experience_level and not contains_text(
            record.experience_level, self.experience_level
        ):
            return False
        # A missing or zero salary never satisfies an active salary filter.
        if self.min_salary:
            floor = parse_amount(self.min_salary)
            if not record.min_salary or record.min_salary < floor:
                return False
        if self.max_salary:
            ceiling = parse_amount(self.max_salary)
            if not record.max_salary or record.max_salary > ceiling:
                return False
        return True


class OpportunityFilters(FilterSet):
    location: str = ""
    institution: str = ""
    discipline: str = ""

    def matches(self, record: Opportunity) -> bool:
        if self.location and (record.state or "").lower() != self.location.lower():
            return False
        if self.institution and not contains_text(record.institution, self.institution):
            return False
        if self.discipline and not contains_text(record.discipline, self.discipline):
            return False
        return True


def filter_records(
    collection: Sequence[RecordT],
    query: str,
    filters: FilterSet,
) -> tuple[RecordT, ...]:
    return tuple(
        record
        for record in collection
        if matches_query(record.title, query) and filters.matches(record)
    )
