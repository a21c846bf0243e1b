"""Targeting criteria and their translation into user-population queries.

Criteria combine a role clause and a location clause with AND or OR logic;
`everyone` drops the role clause entirely. The activity bucket and any custom
filters always narrow the result further.
"""

from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy import and_, or_, true
from sqlalchemy.sql.elements import ColumnElement

from welfarehub.common.errors import ValidationError
from welfarehub.common.timeutils import as_utc
from welfarehub.common.users import User, UserPreferences

Role = Literal["admin", "moderator", "scrapper", "field_executive", "user", "everyone"]
ActivityStatus = Literal["active", "inactive", "new"]
Channel = Literal["web_push", "email", "whatsapp", "sms"]

ACTIVE_WINDOW = timedelta(days=30)
NEW_WINDOW = timedelta(days=7)

CUSTOM_FILTER_COLUMNS = {
    "role": User.role,
    "location": User.location,
    "email": User.email,
    "phone": User.phone,
    "name": User.name,
}


class CamelModel(BaseModel):
    """Base for API payloads exchanged in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TargetingCriteria(CamelModel):
    """Declarative description of a user population."""

    roles: list[Role] = Field(min_length=1)
    locations: list[str] = Field(default_factory=list)
    activity_status: ActivityStatus | None = None
    logic: Literal["AND", "OR"] = "AND"
    custom_filters: dict[str, Any] | None = None

    @field_validator("locations")
    @classmethod
    def _locations_not_blank(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value]
        if any(not item for item in cleaned):
            raise ValueError("locations must be non-empty strings")
        return cleaned

    @field_validator("custom_filters")
    @classmethod
    def _known_filter_keys(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        unknown = sorted(set(value or {}) - set(CUSTOM_FILTER_COLUMNS))
        if unknown:
            raise ValueError(f"unsupported custom filter keys: {', '.join(unknown)}")
        return value

    @property
    def targets_everyone(self) -> bool:
        return "everyone" in self.roles


def parse_criteria(raw: Any) -> TargetingCriteria:
    """Validate raw criteria, raising the service `ValidationError`."""

    if isinstance(raw, TargetingCriteria):
        return raw
    try:
        return TargetingCriteria.model_validate(raw)
    except SchemaValidationError as exc:
        raise ValidationError.from_pydantic("Invalid targeting criteria", exc) from exc


def activity_clause(status: str, now: datetime) -> ColumnElement[bool]:
    active_since = now - ACTIVE_WINDOW
    if status == "active":
        return User.last_login_at >= active_since
    if status == "inactive":
        return or_(User.last_login_at < active_since, User.last_login_at.is_(None))
    return User.created_at >= now - NEW_WINDOW


def _custom_filter_clauses(filters: dict[str, Any]) -> list[ColumnElement[bool]]:
    clauses = []
    for key, value in filters.items():
        column = CUSTOM_FILTER_COLUMNS[key]
        if value is None:
            clauses.append(column.is_(None))
        elif isinstance(value, (list, tuple)):
            clauses.append(column.in_(list(value)))
        else:
            clauses.append(column == value)
    return clauses


def build_user_filter(criteria: TargetingCriteria, now: datetime) -> ColumnElement[bool]:
    """Translate criteria into a single boolean clause over `users`."""

    role_clause = None if criteria.targets_everyone else User.role.in_(criteria.roles)
    location_clause = User.location.in_(criteria.locations) if criteria.locations else None

    clauses: list[ColumnElement[bool]] = []
    if role_clause is not None and location_clause is not None and criteria.logic == "OR":
        clauses.append(or_(role_clause, location_clause))
    else:
        clauses.extend(clause for clause in (role_clause, location_clause) if clause is not None)
    if criteria.activity_status:
        clauses.append(activity_clause(criteria.activity_status, now))
    clauses.extend(_custom_filter_clauses(criteria.custom_filters or {}))

    if not clauses:
        return true()
    return and_(*clauses)


def channel_reachable(
    user: User, preferences: UserPreferences | None, channel: str, exclude_opted_out: bool = True
) -> bool:
    """Whether `user` can receive a message on `channel`."""

    if channel == "email":
        has_contact = bool(user.email)
    elif channel in ("sms", "whatsapp"):
        has_contact = bool(user.phone)
    else:
        has_contact = True
    if not has_contact:
        return False
    if exclude_opted_out and preferences is not None and preferences.opted_out(channel):
        return False
    return True


def classify_activity(user: User, now: datetime) -> str:
    """Bucket one user as new, active or inactive (first match wins)."""

    created_at = as_utc(user.created_at)
    last_login = as_utc(user.last_login_at)
    if created_at is not None and created_at >= now - NEW_WINDOW:
        return "new"
    if last_login is not None and last_login >= now - ACTIVE_WINDOW:
        return "active"
    return "inactive"


def mask_email(email: str | None) -> str | None:
    if not email:
        return None
    local, _, domain = email.partition("@")
    return f"{local[:3]}***@{domain}"


def mask_phone(phone: str | None) -> str | None:
    if not phone:
        return None
    return f"***{phone[-4:]}"


def summarize_criteria(criteria: dict | TargetingCriteria) -> str:
    """Human-readable one-liner, e.g. `Roles: user AND Locations: Gorakhpur`."""

    criteria = parse_criteria(criteria)
    parts = ["All users" if criteria.targets_everyone else f"Roles: {', '.join(criteria.roles)}"]
    if criteria.locations:
        parts.append(f"Locations: {', '.join(criteria.locations)}")
    if criteria.activity_status:
        parts.append(f"Activity: {criteria.activity_status}")
    return f" {criteria.logic} ".join(parts)
