from __future__ import annotations

from typing import Any

from common.utils import normalize_whitespace, parse_amount
from pydantic import BaseModel, ConfigDict, Field, computed_field

# Opportunity sources publish titlecase, space-separated keys.
OPPORTUNITY_FIELD_MAP = {
    "id": "Id",
    "title": "Title",
    "institution": "Institution",
    "city": "Institution City",
    "state": "Institution State/Territory",
    "department": "Institution Department",
    "discipline": "Research Areas",
    "keywords": "Research Topics/Keywords",
    "url": "Site Website",
    "contact_name": "Primary Contact Name",
    "contact_email": "Primary Contact Email",
}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = normalize_whitespace(str(value))
    return cleaned or None


def _source_id(item: dict[str, Any]) -> str:
    raw = item.get("job_id")
    if raw is None:
        raw = item.get("id")
    return "" if raw is None else str(raw).strip()


def format_amount(amount: float | None, currency: str | None) -> str:
    if amount is None:
        return ""
    formatted = f"{amount:,.0f}"
    if currency == "USD":
        return f"${formatted}"
    return f"{formatted} {currency or ''}".strip()


class Listing(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable identifier assigned by the listing source")
    title: str | None = None
    company: str | None = None
    location: str | None = None
    work_type: str | None = None
    experience_level: str | None = None
    currency: str | None = None
    min_salary: float | None = None
    max_salary: float | None = None
    pay_period: str | None = None
    description: str = ""
    posting_url: str | None = None
    application_url: str | None = None
    views: int = Field(default=0, ge=0)

    @classmethod
    def from_source(cls, item: dict[str, Any]) -> Listing:
        raw_views = parse_amount(item.get("views"))
        return cls(
            id=_source_id(item),
            title=_text(item.get("title")),
            company=_text(item.get("company_name")),
            location=_text(item.get("location")),
            work_type=_text(item.get("formatted_work_type")),
            experience_level=_text(item.get("formatted_experience_level")),
            currency=_text(item.get("currency")),
            min_salary=parse_amount(item.get("min_salary")),
            max_salary=parse_amount(item.get("max_salary")),
            pay_period=_text(item.get("pay_period")),
            description=str(item.get("description") or ""),
            posting_url=_text(item.get("job_posting_url")),
            application_url=_text(item.get("application_url")),
            views=max(int(raw_views), 0) if raw_views is not None else 0,
        )

    @computed_field
    @property
    def salary(self) -> str:
        """Display range such as ``$90,000 - $150,000 YEARLY``; empty without amounts."""
        if self.min_salary is None and self.max_salary is None:
            return ""
        low = format_amount(self.min_salary, self.currency)
        high = format_amount(self.max_salary, self.currency)
        return normalize_whitespace(f"{low} - {high} {self.pay_period or ''}")


class Opportunity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str | None = None
    institution: str | None = None
    city: str | None = None
    state: str | None = None
    department: str | None = None
    discipline: str | None = None
    keywords: str | None = None
    contact_name: str | None = None
    contact_email: str | None = None
    url: str | None = None

    @classmethod
    def from_source(cls, item: dict[str, Any]) -> Opportunity:
        mapped = {
            field: _text(item.get(source_key))
            for field, source_key in OPPORTUNITY_FIELD_MAP.items()
        }
        mapped["id"] = mapped["id"] or ""
        return cls(**mapped)
