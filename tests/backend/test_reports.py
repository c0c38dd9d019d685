from __future__ import annotations

from datetime import datetime

import pytest

from campaign_backend.app.models import (
    BudgetCategory,
    BudgetLedgerDocument,
    Currency,
    ExpenseDraft,
    SmsUploadDocument,
    TargetStatsDocument,
    TargetStatsUpdateRequest,
)
from campaign_backend.app.services.budget import add_expense
from campaign_backend.app.services.contact_import import EmptyContactListError
from campaign_backend.app.services.reports import (
    build_flyer_telegram_report,
    build_sms_report,
    build_target_report,
    match_sms_phones,
    merge_target_stats,
    sms_upload_response,
    upload_sms_list,
)
from campaign_backend.app.settings import BudgetSettings

NOW = datetime(2026, 2, 5, 10, 0)
SMS_TEXT = "phone\n901111111\n+998 90 222 22 22\n12345\n998999999999"


def _ledger(*drafts: ExpenseDraft) -> BudgetLedgerDocument:
    ledger = BudgetLedgerDocument(total_budget=3000)
    for draft in drafts:
        ledger = add_expense(ledger, draft, now=NOW)
    return ledger


def test_sms_upload_matches_drivers_by_last_nine(registry) -> None:
    document = upload_sms_list(registry, SMS_TEXT, now=NOW)
    assert document.total_sent == 3
    assert document.phone_numbers == ["998901111111", "998902222222", "998999999999"]
    assert sorted(document.matched_drivers) == ["d1", "d2"]
    assert document.conversion_stats.converted == 1
    assert document.conversion_stats.pending == 1

    response = sms_upload_response(document, BudgetSettings())
    assert response.cost.uzs == 570
    assert response.cost.usd == pytest.approx(570 / 12900)
    assert response.conversion_rate == "50.0%"


def test_sms_upload_rejects_list_without_phones(registry) -> None:
    with pytest.raises(EmptyContactListError):
        upload_sms_list(registry, "phone\n123\nabc")


def test_sms_report_funnel(registry, campaign) -> None:
    document = upload_sms_list(registry, SMS_TEXT, now=NOW)
    report = build_sms_report(registry, document, campaign, BudgetSettings())
    assert report.uploaded
    assert report.funnel.contacted == 3
    assert report.funnel.with_route_filter.login == 2
    assert report.funnel.with_route_filter.full_register == 2
    assert report.funnel.with_route_filter.active == 1
    assert report.cost_per_sms_uzs == 190
    assert report.cost_per_active_usd == pytest.approx(570 / 12900)


def test_sms_match_reports_unregistered_numbers(registry, campaign) -> None:
    result = match_sms_phones(
        registry, ["901111111", "998905555555", "998900000000", " "], campaign
    )
    assert result.summary.total_sent == 3
    assert result.summary.registered == 2
    assert result.summary.in_corridor_route == 2
    assert result.summary.conversion_rate == "66.7%"
    assert result.not_registered == ["998900000000"]
    assert result.status_breakdown.active == 2
    with pytest.raises(EmptyContactListError):
        match_sms_phones(registry, ["", "  "], campaign)


def test_target_report_splits_lead_and_regular(registry, campaign) -> None:
    ledger = _ledger(
        ExpenseDraft(category_id=BudgetCategory.ads_lead, amount=10),
        ExpenseDraft(category_id=BudgetCategory.ads, amount=20),
        ExpenseDraft(category_id=BudgetCategory.ads_regular, amount=129000, currency=Currency.uzs),
    )
    manual = merge_target_stats(
        TargetStatsDocument(), TargetStatsUpdateRequest(lead_views=1000, regular_installs=40)
    )
    report = build_target_report(registry, manual, ledger, campaign, BudgetSettings())

    assert report.lead.without_route_filter.active == 1
    assert report.lead.with_route_filter.login == 1
    assert report.lead.views == 1000
    assert report.regular.without_route_filter.login == 1
    assert report.regular.without_route_filter.full_register == 0
    assert report.regular.with_route_filter.login == 0
    assert report.regular.installs == 40
    assert report.target_cost.regular_usd == pytest.approx(30)
    assert report.target_cost.lead_usd == pytest.approx(10)
    assert report.cost_per_active_usd == pytest.approx(40)
    payload = report.model_dump(by_alias=True)
    assert set(payload["targetCost"]) == {"regularUSD", "leadUSD", "totalUSD"}


def test_merge_target_stats_keeps_unset_fields() -> None:
    document = TargetStatsDocument(regular_views=5, lead_installs=2)
    merged = merge_target_stats(document, TargetStatsUpdateRequest(regular_views=9), now=NOW)
    assert merged.regular_views == 9
    assert merged.lead_installs == 2
    assert merged.updated_at == NOW


def test_flyer_telegram_report(registry, campaign) -> None:
    ledger = _ledger(
        ExpenseDraft(category_id=BudgetCategory.flyers, amount=100),
        ExpenseDraft(category_id=BudgetCategory.telegram, amount=50),
    )
    report = build_flyer_telegram_report(
        registry, SmsUploadDocument(), ledger, campaign, BudgetSettings()
    )
    assert report.flyer.without_route_filter.login == 4
    assert report.flyer.without_route_filter.full_register == 3
    assert report.flyer.with_route_filter.login == 3
    assert report.flyer.cost_per_active_usd == pytest.approx(100)
    assert report.telegram_ads.without_route_filter.active == 1
    assert report.telegram_ads.cost_usd == 50
    assert report.telegram_ads.cost_uzs == 50 * 12900
    assert report.telegram_global.cost_usd == 0
    assert report.telegram_global.cost_per_active_usd is None
    assert report.telegram_total.cost_usd == 50


def test_sms_recipients_are_not_counted_as_flyer(registry, campaign) -> None:
    sms = SmsUploadDocument(phone_numbers=["998902222222"], total_sent=1)
    report = build_flyer_telegram_report(
        registry, sms, BudgetLedgerDocument(), campaign, BudgetSettings()
    )
    assert report.flyer.without_route_filter.login == 3
