"""Tests for package transition quotes and execution."""

import logging

import pytest

from ubora.core.errors import NoActiveSessionError
from ubora.features.transitions.service import (
    CARRY_OVER_METHOD,
    TRANSITION_METHOD,
    diff_tiers,
    unused_pay_as_you_go_tokens,
)
from ubora.models.package import UNLIMITED, PackageTier
from ubora.models.session import PayAsYouGoResources, ResourceKind, SessionType
from ubora.models.transition import TransitionOptions, UserNeeds
from ubora.tests.factories import build_session


@pytest.fixture
def starter_user(add_user):
    """Starter director with 10 days left in the cycle."""
    session = build_session("s1", amount_paid=35000)
    return add_user(sessions=[session], current_session_id="s1")


@pytest.fixture
def split_tokens_user(add_user):
    """Starter subscription with 5000 unused tokens plus a separate active pay-as-you-go session holding 3000."""
    subscription = build_session("s1", tokens_used=295000)
    payg = build_session(
        "p1",
        session_type=SessionType.PAY_AS_YOU_GO,
        payg=PayAsYouGoResources(tokens=3000),
    )
    return add_user(sessions=[subscription, payg], current_session_id="s1")


def test_prorated_upgrade(transitions, starter_user):
    quote = transitions.calculate_transition(starter_user, "standard")

    assert quote.days_remaining == 10
    assert quote.current_package_remaining_value == 11667
    assert quote.new_package_price == 85000
    assert quote.pay_as_you_go_total_cost == 0
    assert quote.final_amount_to_pay == 73333
    assert quote.savings == 11667
    assert quote.session_type == SessionType.UPGRADE
    assert quote.pay_as_you_go_items == []


def test_unlimited_tier_absorbs_stated_needs(transitions, starter_user):
    quote = transitions.calculate_enhanced_transition(starter_user, "standard", UserNeeds(forms=25, dashboards=12))

    assert quote.pay_as_you_go_items == []
    assert quote.pay_as_you_go_total_cost == 0
    assert quote.final_amount_to_pay == 73333


def test_user_shortfall_is_priced(transitions, starter_user):
    quote = transitions.calculate_enhanced_transition(starter_user, "standard", UserNeeds(users=10))

    assert len(quote.pay_as_you_go_items) == 1
    item = quote.pay_as_you_go_items[0]
    assert item.feature == ResourceKind.USERS
    assert item.current_limit == 7
    assert item.requested_amount == 10
    assert item.cost_per_unit == 7000
    assert item.total_cost == 21000
    assert quote.final_amount_to_pay == 85000 - 11667 + 21000
    assert quote.savings == 0


def test_needs_within_limits_cost_nothing(transitions, starter_user):
    quote = transitions.calculate_enhanced_transition(starter_user, "premium", UserNeeds(users=20, tokens=10_000_000))
    assert quote.pay_as_you_go_items == []


def test_pay_as_you_go_tokens_carry_over_package_tokens_do_not(transitions, split_tokens_user):
    quote = transitions.calculate_transition(split_tokens_user, "standard")

    assert quote.unused_package_tokens == 5000
    assert quote.unused_pay_as_you_go_tokens == 3000
    assert quote.preserved_pay_as_you_go_tokens == 3000
    assert quote.new_package_tokens == 600000
    assert quote.total_tokens_after == 603000


def test_carry_over_opt_out(transitions, split_tokens_user):
    options = TransitionOptions(preserve_unused_pay_as_you_go=False)
    quote = transitions.calculate_transition(split_tokens_user, "standard", options)

    assert quote.unused_pay_as_you_go_tokens == 3000
    assert quote.preserved_pay_as_you_go_tokens == 0
    assert quote.total_tokens_after == 600000


def test_downgrade_never_refunds(transitions, add_user):
    session = build_session("s1", PackageTier.PREMIUM, days_left=29)
    user = add_user(sessions=[session], current_session_id="s1")

    quote = transitions.calculate_transition(user, "starter")

    assert quote.current_package_remaining_value == 154667
    assert quote.final_amount_to_pay == 0
    assert quote.session_type == SessionType.DOWNGRADE


def test_same_tier_is_a_renewal(transitions, starter_user):
    quote = transitions.calculate_transition(starter_user, "starter")
    assert quote.session_type == SessionType.RENEWAL
    assert quote.feature_upgrades == []
    assert quote.feature_downgrades == []


def test_lapsed_cycle_has_no_credit(transitions, add_user):
    session = build_session("s1", days_left=-3)
    user = add_user(sessions=[session], current_session_id="s1")

    quote = transitions.calculate_transition(user, "standard")

    assert quote.days_remaining == 0
    assert quote.current_package_remaining_value == 0
    assert quote.final_amount_to_pay == 85000


def test_no_current_session_raises(transitions, add_user):
    user = add_user()
    with pytest.raises(NoActiveSessionError):
        transitions.calculate_transition(user, "standard")
    with pytest.raises(NoActiveSessionError):
        transitions.execute_transition("dir_1", "standard")


def test_feature_diff_upgrade():
    upgrades, downgrades = diff_tiers(PackageTier.STARTER, PackageTier.STANDARD)

    by_name = {change.feature: change for change in upgrades}
    assert by_name["max_forms"].to_limit == UNLIMITED
    assert by_name["max_forms"].is_unlimited
    assert by_name["max_users"].from_limit == 3
    assert by_name["max_users"].to_limit == 7
    assert by_name["advanced_ai"].to_limit is True
    assert downgrades == []


def test_feature_diff_downgrade():
    upgrades, downgrades = diff_tiers(PackageTier.PREMIUM, PackageTier.STANDARD)

    names = {change.feature for change in downgrades}
    assert {"max_users", "monthly_tokens", "predictive_ai", "custom_branding"} <= names
    assert upgrades == []


def test_preview_summary(transitions, starter_user):
    preview = transitions.get_transition_preview(starter_user, "standard")

    assert preview.quote.final_amount_to_pay == 73333
    assert "Coût: 73 333 FCFA" in preview.summary
    assert "Crédit restant: 11 667 FCFA (10 jours)" in preview.summary
    assert "Nouveaux tokens: 600 000" in preview.summary


def test_preview_warns_about_forfeited_tokens(transitions, split_tokens_user):
    preview = transitions.get_enhanced_transition_preview(split_tokens_user, "custom")

    assert "Nouveaux tokens: illimités" in preview.summary
    assert "Pay-as-you-go préservé: 3 000 tokens" in preview.summary
    assert "5 000 tokens package seront perdus" in preview.summary


def test_execute_keeps_cycle_dates_and_charges_quote(transitions, store, starter_user):
    session = transitions.execute_transition("dir_1", "standard", payment_method="orange_money")

    current = starter_user.subscription_sessions[0]
    assert session.session_type == SessionType.UPGRADE
    assert session.package_type == PackageTier.STANDARD
    assert session.start_date == current.start_date
    assert session.end_date == current.end_date
    assert session.duration_days == current.duration_days
    assert session.amount_paid == 73333
    assert session.payment_method == "orange_money"
    assert session.usage.tokens_used == 0
    assert session.package_resources.tokens_included == 600000

    user = store.get("dir_1")
    assert user.current_session_id == session.id
    assert user.package == PackageTier.STANDARD
    assert [s.id for s in user.subscription_sessions if s.is_active] == [session.id]


def test_execute_carries_over_pay_as_you_go_tokens(transitions, store, split_tokens_user):
    session = transitions.execute_transition("dir_1", "standard")

    assert session.total_tokens == 603000
    assert session.pay_as_you_go_resources.tokens == 3000
    carry = session.pay_as_you_go_resources.purchases[0]
    assert carry.payment_method == CARRY_OVER_METHOD
    assert carry.quantity == 3000
    assert carry.amount_paid == 0

    user = store.get("dir_1")
    assert [s.id for s in user.subscription_sessions if s.is_active] == [session.id]
    # The carried tokens now live on the new session only
    assert unused_pay_as_you_go_tokens(user) == 3000


def test_execute_without_carry_over(transitions, split_tokens_user):
    options = TransitionOptions(preserve_unused_pay_as_you_go=False)
    session = transitions.execute_transition("dir_1", "standard", options=options)

    assert session.total_tokens == 600000
    assert session.pay_as_you_go_resources.purchases == []


def test_execute_grants_stated_needs(transitions, starter_user):
    session = transitions.execute_transition("dir_1", "standard", needs=UserNeeds(users=10))

    assert session.amount_paid == 94333
    assert session.pay_as_you_go_resources.users == 3
    assert session.total(ResourceKind.USERS) == 10
    grant = session.pay_as_you_go_resources.purchases[0]
    assert grant.payment_method == TRANSITION_METHOD
    assert grant.item_type == ResourceKind.USERS
    assert grant.amount_paid == 0


def test_execute_logs_transition(transitions, starter_user, caplog):
    with caplog.at_level(logging.INFO, logger="ubora"):
        session = transitions.execute_transition("dir_1", "premium")

    records = [r for r in caplog.records if r.getMessage() == "[transitions] executed"]
    assert records
    assert records[0].event_type == "package_transition"
    assert records[0].session_id == session.id


def test_total_available_tokens(transitions, split_tokens_user):
    assert transitions.get_total_available_tokens(split_tokens_user, "premium") == 1503000
    assert transitions.get_total_available_tokens(split_tokens_user, "custom") == UNLIMITED
    assert transitions.get_current_total_available_tokens(split_tokens_user) == 8000


def test_overspent_pay_as_you_go_session_counts_as_zero(add_user):
    overspent = build_session(
        "p1",
        session_type=SessionType.PAY_AS_YOU_GO,
        payg=PayAsYouGoResources(tokens=1000),
        tokens_used=1500,
    )
    spare = build_session(
        "p2",
        session_type=SessionType.PAY_AS_YOU_GO,
        payg=PayAsYouGoResources(tokens=2000),
    )
    inactive = build_session(
        "p0",
        session_type=SessionType.PAY_AS_YOU_GO,
        payg=PayAsYouGoResources(tokens=9000),
        is_active=False,
    )
    user = add_user(sessions=[inactive, overspent, spare], current_session_id="p2")

    assert unused_pay_as_you_go_tokens(user) == 2000


@pytest.fixture
def add_on_user(add_user):
    """Starter director who bought 40 000 tokens and 10 users on top of the package."""
    session = build_session("s1", payg=PayAsYouGoResources(tokens=40000, users=10, forms=5))
    return add_user(sessions=[session], current_session_id="s1")


def test_quote_counts_add_ons_bought_on_the_subscription(transitions, add_on_user):
    quote = transitions.calculate_transition(add_on_user, "standard")

    assert quote.unused_package_tokens == 300000
    assert quote.unused_pay_as_you_go_tokens == 40000
    assert quote.preserved_pay_as_you_go_tokens == 40000
    assert quote.forfeited_pay_as_you_go_tokens == 0
    assert quote.total_tokens_after == 640000
    # Forms are unlimited on standard, so only the users move over
    assert quote.preserved_pay_as_you_go_resources == {ResourceKind.USERS: 10}


def test_package_allotment_is_spent_before_purchased_tokens(transitions, add_user):
    session = build_session("s1", tokens_used=320000, payg=PayAsYouGoResources(tokens=40000))
    user = add_user(sessions=[session], current_session_id="s1")

    quote = transitions.calculate_transition(user, "standard")

    assert quote.unused_package_tokens == 0
    assert quote.unused_pay_as_you_go_tokens == 20000
    assert quote.total_tokens_after == 620000


def test_opting_out_forfeits_add_ons_with_warning(transitions, add_on_user):
    options = TransitionOptions(preserve_unused_pay_as_you_go=False)
    preview = transitions.get_transition_preview(add_on_user, "standard", options)

    assert preview.quote.preserved_pay_as_you_go_tokens == 0
    assert preview.quote.forfeited_pay_as_you_go_tokens == 40000
    assert preview.quote.preserved_pay_as_you_go_resources == {}
    assert "40 000 tokens pay-as-you-go seront perdus" in preview.summary


def test_carried_users_count_against_stated_needs(transitions, add_on_user):
    quote = transitions.calculate_enhanced_transition(add_on_user, "standard", UserNeeds(users=20))

    item = quote.pay_as_you_go_items[0]
    assert item.current_limit == 17
    assert item.total_cost == 21000


def test_execute_keeps_purchased_tokens_and_users(transitions, sessions, store, add_user):
    add_user()
    sessions.create_subscription_session("dir_1", "starter")
    sessions.purchase_offer("dir_1", "tokens-40k")
    before = sessions.purchase_offer("dir_1", "users-10")
    assert before.total(ResourceKind.USERS) == 13

    preview = transitions.get_transition_preview(store.get("dir_1"), "standard")
    assert "Achats préservés: 10 utilisateurs" in preview.summary

    session = transitions.execute_transition("dir_1", "standard")

    assert session.total_tokens == 640000
    assert session.total(ResourceKind.USERS) == 17
    carried = [p for p in session.pay_as_you_go_resources.purchases if p.payment_method == CARRY_OVER_METHOD]
    assert {(p.item_type, p.quantity) for p in carried} == {
        (ResourceKind.TOKENS, 40000),
        (ResourceKind.USERS, 10),
    }
    assert "Achats préservés: 10 utilisateurs" in session.notes
