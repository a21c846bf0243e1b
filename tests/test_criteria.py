"""Criteria validation, clause building and summary formatting."""

from datetime import timedelta

import pytest

from welfarehub.common.errors import ValidationError
from welfarehub.common.users import User, UserPreferences
from welfarehub.services.audience.criteria import (
    build_user_filter,
    channel_reachable,
    classify_activity,
    mask_email,
    mask_phone,
    parse_criteria,
    summarize_criteria,
)
from welfarehub.services.audience.models import AudienceSegment


def _sql(criteria, now):
    return str(build_user_filter(parse_criteria(criteria), now).compile(compile_kwargs={"literal_binds": True}))


def test_everyone_drops_role_clause(now):
    """`everyone` must not restrict by role, even alongside other roles."""

    sql = _sql({"roles": ["everyone", "admin"], "locations": ["Gorakhpur"]}, now)
    assert "users.role" not in sql
    assert "users.location" in sql


def test_or_logic_unions_role_and_location(now):
    sql = _sql({"roles": ["user"], "locations": ["Gorakhpur"], "logic": "OR"}, now)
    assert " OR " in sql


def test_and_logic_intersects_role_and_location(now):
    sql = _sql({"roles": ["user"], "locations": ["Gorakhpur"]}, now)
    assert " OR " not in sql
    assert "users.role" in sql and "users.location" in sql


def test_empty_roles_rejected():
    with pytest.raises(ValidationError):
        parse_criteria({"roles": []})


def test_blank_location_rejected():
    with pytest.raises(ValidationError):
        parse_criteria({"roles": ["user"], "locations": ["  "]})


def test_unknown_custom_filter_rejected():
    with pytest.raises(ValidationError):
        parse_criteria({"roles": ["user"], "customFilters": {"passwordHash": "x"}})


def test_summary_and_logic():
    """A segment for users in Gorakhpur reads naturally."""

    assert summarize_criteria({"roles": ["user"], "locations": ["Gorakhpur"]}) == "Roles: user AND Locations: Gorakhpur"


def test_summary_everyone_with_activity_or():
    summary = summarize_criteria({"roles": ["everyone"], "activityStatus": "new", "logic": "OR"})
    assert summary == "All users OR Activity: new"


def test_masking():
    assert mask_email("ramesh.k@example.org") == "ram***@example.org"
    assert mask_phone("+919876543210") == "***3210"
    assert mask_email(None) is None


def test_channel_reachability():
    user = User(user_id="u1", role="user", email="a@b.c", phone=None)
    assert channel_reachable(user, None, "web_push")
    assert channel_reachable(user, None, "email")
    assert not channel_reachable(user, None, "sms")
    assert not channel_reachable(user, None, "whatsapp")


def test_only_explicit_false_is_an_opt_out():
    user = User(user_id="u1", role="user", email="a@b.c", phone="9999999999")
    unset = UserPreferences(user_id="u1", email_enabled=None)
    opted_out = UserPreferences(user_id="u1", email_enabled=False)
    assert channel_reachable(user, unset, "email")
    assert not channel_reachable(user, opted_out, "email")
    assert channel_reachable(user, opted_out, "email", exclude_opted_out=False)


def test_activity_classification_prefers_new(now):
    fresh = User(user_id="a", role="user", created_at=now - timedelta(days=2), last_login_at=now)
    active = User(user_id="b", role="user", created_at=now - timedelta(days=60), last_login_at=now - timedelta(days=3))
    dormant = User(user_id="c", role="user", created_at=now - timedelta(days=60), last_login_at=None)
    assert classify_activity(fresh, now) == "new"
    assert classify_activity(active, now) == "active"
    assert classify_activity(dormant, now) == "inactive"


def test_segment_staleness_boundary(now):
    """Exactly one hour old is still fresh; one second more is stale."""

    segment = AudienceSegment(last_updated=now - timedelta(seconds=3600))
    assert not segment.needs_count_update(now)
    segment.last_updated = now - timedelta(seconds=3601)
    assert segment.needs_count_update(now)
