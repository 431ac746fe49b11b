from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from db.models import Review

COMPANY = "company"
EMPLOYEE = "employee"
TEAM = "team"
CONTACT = "contact"
EXTERNAL_COMPANY = "external_company"

SCOPE_TYPES = (COMPANY, EMPLOYEE, TEAM, CONTACT, EXTERNAL_COMPANY)

_REVIEW_COLUMNS = {
    EMPLOYEE: Review.employee_id,
    TEAM: Review.team_id,
    CONTACT: Review.contact_id,
    EXTERNAL_COMPANY: Review.external_company_id,
}


@dataclass(frozen=True)
class Scope:
    """A company, optionally narrowed to one employee/team/contact/external company."""

    company_id: UUID
    scope_type: str = COMPANY
    entity_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.scope_type not in SCOPE_TYPES:
            raise ValueError(f"Unsupported scope type: {self.scope_type}")
        if self.scope_type == COMPANY and self.entity_id is not None:
            raise ValueError("Company scope takes no entity id")
        if self.scope_type != COMPANY and self.entity_id is None:
            raise ValueError(f"{self.scope_type} scope requires an entity id")

    @property
    def scope_id(self) -> UUID:
        return self.entity_id if self.entity_id is not None else self.company_id

    @property
    def is_company(self) -> bool:
        return self.scope_type == COMPANY

    def as_company(self) -> "Scope":
        return Scope(self.company_id)

    def review_filters(self) -> list:
        filters = [Review.company_id == self.company_id]
        if not self.is_company:
            filters.append(_REVIEW_COLUMNS[self.scope_type] == self.entity_id)
        return filters


def scopes_for_review(review) -> list[Scope]:
    """Scopes whose day rollups a review contributes to.

    Employee rollups are not bucketed per day, so employee scope is never
    derived here.
    """
    scopes = [Scope(review.company_id)]
    if review.team_id is not None:
        scopes.append(Scope(review.company_id, TEAM, review.team_id))
    if review.contact_id is not None:
        scopes.append(Scope(review.company_id, CONTACT, review.contact_id))
    if review.external_company_id is not None:
        scopes.append(Scope(review.company_id, EXTERNAL_COMPANY, review.external_company_id))
    return scopes
