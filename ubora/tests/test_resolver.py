"""Tests for the read-side package info resolver."""

import pytest

from ubora.core.errors import ValidationError
from ubora.models.package import UNLIMITED, PackageTier
from ubora.models.session import PackageResources, PayAsYouGoResources, SessionType
from ubora.models.standing import Applicable, NotApplicable, PackageInfo, PackageLimitsView
from ubora.tests.factories import FIXED_NOW, build_session


def _director_with(add_user, session, role="director"):
    return add_user(role=role, sessions=[session], current_session_id=session.id)


def test_director_package_info(resolver, add_user):
    session = build_session(
        "s1",
        tokens_used=1000,
        forms_created=2,
        payg=PayAsYouGoResources(forms=5, tokens=20000),
        amount_paid=35000,
    )
    user = _director_with(add_user, session)

    info = resolver.get_user_package_info(user)

    assert info.package_type == PackageTier.STARTER
    assert info.subscription_status == "active"
    assert info.days_remaining == 10
    assert info.package_forms == 4
    assert info.pay_as_you_go_forms == 5
    assert info.total_forms == 9
    assert info.forms_remaining == 7
    assert info.total_tokens == 320000
    assert info.tokens_remaining == 319000
    assert info.amount_paid == 35000
    assert info.session_type == "subscription"
    assert "basic_ai" in info.package_features


def test_unbounded_limits_absorb_extras(resolver, add_user):
    session = build_session(
        "s1",
        PackageTier.STANDARD,
        forms_created=40,
        payg=PayAsYouGoResources(forms=10),
    )
    user = _director_with(add_user, session)

    info = resolver.get_user_package_info(user)

    assert info.total_forms == UNLIMITED
    assert info.forms_remaining == UNLIMITED
    assert info.total_users == 7
    assert info.users_remaining == 7


def test_remaining_never_negative(resolver, add_user):
    session = build_session("s1", forms_created=6)
    user = _director_with(add_user, session)
    assert resolver.get_user_package_info(user).forms_remaining == 0


def test_info_is_idempotent(resolver, add_user):
    user = _director_with(add_user, build_session("s1", tokens_used=10))
    assert resolver.get_user_package_info(user) == resolver.get_user_package_info(user)


def test_lapsed_session_reports_expired(resolver, add_user):
    user = _director_with(add_user, build_session("s1", days_left=-2))
    info = resolver.get_user_package_info(user)
    assert info.subscription_status == "expired"
    assert info.days_remaining == 0


def test_director_role_alias(resolver, add_user):
    user = _director_with(add_user, build_session("s1"), role="directeur")
    assert resolver.is_director(user)
    assert resolver.get_user_package_info(user).package_type == PackageTier.STARTER


def test_non_director_resolves_to_empty_values(resolver, add_user):
    session = build_session("s1")
    user = add_user(user_id="emp_1", role="employee", sessions=[session], current_session_id="s1")

    assert resolver.get_user_package_info(user) == PackageInfo()
    assert resolver.get_package_limits(user) == PackageLimitsView()
    assert resolver.has_feature(user, "basic_forms") is False
    assert resolver.can_perform_action(user, "create_form", 0) is False
    assert resolver.get_total_available_tokens(user) == 0
    assert resolver.get_subscription_history(user).total_sessions == 0
    assert resolver.needs_package_selection(user) is False


def test_standing_tells_why_package_does_not_apply(resolver, add_user):
    employee = add_user(user_id="emp_1", role="employee")
    director = add_user(user_id="dir_2")

    assert resolver.get_package_standing(employee) == NotApplicable(reason="not_director")
    assert resolver.get_package_standing(director) == NotApplicable(reason="no_active_session")
    assert resolver.needs_package_selection(director) is True


def test_standing_carries_info_when_applicable(resolver, add_user):
    user = _director_with(add_user, build_session("s1"))
    standing = resolver.get_package_standing(user)
    assert isinstance(standing, Applicable)
    assert standing.info == resolver.get_user_package_info(user)


def test_create_form_gate_on_bounded_tier(resolver, add_user):
    user = _director_with(add_user, build_session("s1"))
    assert resolver.can_perform_action(user, "create_form", 3) is True
    assert resolver.can_perform_action(user, "create_form", 4) is False
    assert resolver.can_perform_action(user, "create_dashboard", 1) is False


def test_create_form_gate_on_unlimited_tier(resolver, add_user):
    user = _director_with(add_user, build_session("s1", PackageTier.STANDARD))
    assert resolver.can_perform_action(user, "create_form", 10_000) is True


def test_gate_counts_pay_as_you_go_extras(resolver, add_user):
    session = build_session("s1", payg=PayAsYouGoResources(users=3))
    user = _director_with(add_user, session)
    assert resolver.can_perform_action(user, "add_user", 5) is True
    assert resolver.can_perform_action(user, "add_user", 6) is False


def test_limits_come_from_session_snapshot(resolver, add_user):
    session = build_session("s1").model_copy(
        update={"package_resources": PackageResources(forms_included=2, tokens_included=1000)}
    )
    user = _director_with(add_user, session)

    limits = resolver.get_package_limits(user)

    assert limits.max_forms == 2
    assert limits.max_tokens == 1000


def test_unknown_action_and_feature_rejected(resolver, add_user):
    user = _director_with(add_user, build_session("s1"))
    with pytest.raises(ValidationError):
        resolver.can_perform_action(user, "delete_agency", 0)
    with pytest.raises(ValidationError):
        resolver.has_feature(user, "time_travel")


def test_feature_checks_follow_session_tier(resolver, add_user):
    user = _director_with(add_user, build_session("s1", PackageTier.PREMIUM))
    assert resolver.has_feature(user, "custom_branding") is True
    assert resolver.has_feature(user, "dedicated_hosting") is False


def test_token_totals(resolver, add_user):
    session = build_session("s1", payg=PayAsYouGoResources(tokens=25000))
    user = _director_with(add_user, session)
    assert resolver.get_total_pay_as_you_go_tokens(user) == 25000
    assert resolver.get_total_available_tokens(user) == 325000


def test_pay_as_you_go_session_has_no_package_grant(resolver, add_user):
    session = build_session(
        "p1",
        session_type=SessionType.PAY_AS_YOU_GO,
        payg=PayAsYouGoResources(tokens=10000),
    )
    user = _director_with(add_user, session)

    info = resolver.get_user_package_info(user)

    assert info.package_tokens == 0
    assert info.total_tokens == 10000
    assert info.total_forms == 0
    assert info.session_type == "pay_as_you_go"


def test_history_lists_every_session(resolver, add_user):
    old = build_session("s0", is_active=False, start=FIXED_NOW.replace(month=1, day=1))
    current = build_session("s1")
    user = add_user(sessions=[old, current], current_session_id="s1")

    history = resolver.get_subscription_history(user)

    assert history.total_sessions == 2
    assert history.current_session.id == "s1"
    assert [s.id for s in history.all_sessions] == ["s0", "s1"]
