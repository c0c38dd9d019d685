from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.utcnow()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DriverStatus(str, Enum):
    pending = "pending"
    active = "active"
    inactive = "inactive"
    blocked = "blocked"


class CallCenterStatus(str, Enum):
    not_called = "not_called"
    will_register = "will_register"
    not_reachable = "not_reachable"
    wrong_route = "wrong_route"
    not_suitable = "not_suitable"
    already_registered = "already_registered"


class ReactivationCallStatus(str, Enum):
    not_called = "not_called"
    called = "called"
    no_answer = "no_answer"
    callback = "callback"
    interested = "interested"
    not_interested = "not_interested"
    converted = "converted"


class ManualContactType(str, Enum):
    driver = "driver"
    client = "client"


class Currency(str, Enum):
    usd = "USD"
    uzs = "UZS"


class BudgetCategory(str, Enum):
    ads = "ads"
    ads_regular = "ads_regular"
    ads_lead = "ads_lead"
    sms = "sms"
    flyers = "flyers"
    telegram = "telegram"


class Channel(str, Enum):
    telegram_global = "telegram_global"
    telegram_ads = "telegram_ads"
    target_lead = "target_lead"
    target_regular = "target_regular"
    flyer = "flyer"
    sms = "sms"


class CampaignChannel(str, Enum):
    sms = "sms"
    target = "target"
    telegram = "telegram"
    referral = "referral"
    organic = "organic"


class CampaignStatus(str, Enum):
    active = "active"
    paused = "paused"
    completed = "completed"


# Driver Registry rows


class InactiveReason(CamelModel):
    reason_id: str
    reason_title: str
    is_fixable: bool


class DriverRecord(CamelModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    status: DriverStatus
    role_id: str
    created_at: datetime
    region_id: Optional[str] = None
    region_name: Optional[str] = None
    sub_region_id: Optional[str] = None
    sub_region_name: Optional[str] = None
    departure_region_id: Optional[str] = None
    departure_region_name: Optional[str] = None
    departure_sub_region_id: Optional[str] = None
    arrival_region_id: Optional[str] = None
    arrival_region_name: Optional[str] = None
    arrival_sub_region_id: Optional[str] = None
    source_tag: Optional[str] = None
    inactive_reasons: list[InactiveReason] = Field(default_factory=list)

    @property
    def is_full_register(self) -> bool:
        return bool(self.first_name and self.first_name.strip())

    @property
    def full_name(self) -> Optional[str]:
        if not self.first_name:
            return None
        return f"{self.first_name} {self.last_name or ''}".strip()


class RegionItem(CamelModel):
    id: str
    name: str


class SubRegionItem(CamelModel):
    id: str
    name: str
    region_id: str


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class DriverListResponse(CamelModel):
    data: list[DriverRecord]
    pagination: Pagination


# Campaign State Store documents


class StateDocument(CamelModel):
    schema_version: int = 1


class ContactEntry(CamelModel):
    phone: str
    message: str = ""
    manual_type: Optional[ManualContactType] = None
    call_status: CallCenterStatus = CallCenterStatus.not_called
    called_at: Optional[datetime] = None
    notes: Optional[str] = None


class CallCenterDocument(StateDocument):
    entries: list[ContactEntry] = Field(default_factory=list)
    uploaded_at: Optional[datetime] = None


class ConversionStats(CamelModel):
    total_matched: int = 0
    converted: int = 0
    pending: int = 0
    inactive: int = 0


class SmsUploadDocument(StateDocument):
    phone_numbers: list[str] = Field(default_factory=list)
    uploaded_at: Optional[datetime] = None
    total_sent: int = 0
    matched_drivers: list[str] = Field(default_factory=list)
    conversion_stats: ConversionStats = Field(default_factory=ConversionStats)


class TargetStatsDocument(StateDocument):
    regular_views: int = 0
    regular_installs: int = 0
    regular_registrations: int = 0
    lead_views: int = 0
    lead_installs: int = 0
    updated_at: Optional[datetime] = None


class ExpenseEntry(CamelModel):
    id: str
    category_id: BudgetCategory
    amount: float
    currency: Currency = Currency.usd
    description: str = ""
    date: dt.date
    created_at: datetime


class BudgetLedgerDocument(StateDocument):
    total_budget: float = 0.0
    expenses: list[ExpenseEntry] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class TrackingEntry(CamelModel):
    driver_id: str
    call_status: ReactivationCallStatus = ReactivationCallStatus.not_called
    notes: str = ""
    last_contact_date: Optional[datetime] = None
    call_attempts: int = 0
    created_at: datetime
    updated_at: datetime


class TrackingStats(CamelModel):
    total_called: int = 0
    total_converted: int = 0
    last_updated: Optional[datetime] = None


class TrackingDocument(StateDocument):
    entries: dict[str, TrackingEntry] = Field(default_factory=dict)
    stats: TrackingStats = Field(default_factory=TrackingStats)


class TrackedDriversDocument(StateDocument):
    driver_ids: list[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class CampaignRecord(CamelModel):
    id: str
    name: str
    channel: CampaignChannel
    start_date: dt.date
    end_date: Optional[dt.date] = None
    budget: float = 0.0
    spent: float = 0.0
    status: CampaignStatus = CampaignStatus.active
    notes: str = ""


class SmsBatch(CamelModel):
    id: str
    campaign_id: str
    sent_date: dt.date
    phone_numbers: list[str] = Field(default_factory=list)
    total_sent: int = 0
    delivered: int = 0
    notes: str = ""


class CampaignExpense(CamelModel):
    id: str
    date: dt.date
    campaign_id: str
    amount: float
    description: str = ""


class CampaignsDocument(StateDocument):
    campaigns: list[CampaignRecord] = Field(default_factory=list)
    sms_batches: list[SmsBatch] = Field(default_factory=list)
    daily_expenses: list[CampaignExpense] = Field(default_factory=list)
    last_updated: Optional[datetime] = None


# Computed report fragments


class FunnelStats(CamelModel):
    login: int = 0
    full_register: int = 0
    active: int = 0


class ChannelFunnel(CamelModel):
    contacted: int = 0
    with_route_filter: FunnelStats = Field(default_factory=FunnelStats)
    without_route_filter: FunnelStats = Field(default_factory=FunnelStats)


class CampaignPacing(CamelModel):
    goal: int
    current: int
    progress: float
    days_passed: int
    days_remaining: int
    daily_required: float
    current_rate: float
    daily_target: float
    expected_by_today: int
    difference: int
    on_track: bool


class CategoryTotals(CamelModel):
    total_usd: float = Field(default=0.0, alias="totalUSD")
    total_uzs: float = Field(default=0.0, alias="totalUZS")
    count: int = 0


class BudgetSummary(CamelModel):
    total_budget: float
    total_spent: float
    remaining: float
    by_category: dict[str, CategoryTotals]
    exchange_rate: float


class CostBreakdown(CamelModel):
    usd: float
    uzs: float


class StatusSummary(CamelModel):
    pending: int = 0
    active: int = 0
    inactive: int = 0
    blocked: int = 0
    total: int = 0


class DailyStats(StatusSummary):
    date: dt.date


class SubRegionStats(StatusSummary):
    id: str
    name: str


class RegionStats(StatusSummary):
    region_id: str
    region_name: str


class InactiveReasonCount(CamelModel):
    reason_id: str
    reason_title: str
    count: int
    is_fixable: bool


class InactiveBreakdown(CamelModel):
    reasons: list[InactiveReasonCount] = Field(default_factory=list)
    fixable: int = 0
    not_eligible: int = 0


class StatsMeta(CamelModel):
    data_start_date: date
    from_date: date
    campaign_start: date
    campaign_end: date
    scope: str
    region: Optional[str] = None
    region_id: Optional[str] = None


class CorridorStatsResponse(CamelModel):
    summary: StatusSummary
    target: CampaignPacing
    combined_target: CampaignPacing
    reactivated_active: int
    inactive_breakdown: InactiveBreakdown
    daily: list[DailyStats]
    sub_regions: list[SubRegionStats]
    meta: StatsMeta


class AllRegionsStatsResponse(CamelModel):
    summary: StatusSummary
    old_active_drivers: int
    target: CampaignPacing
    inactive_breakdown: InactiveBreakdown
    by_region: list[RegionStats]
    daily: list[DailyStats]
    meta: StatsMeta


# SMS


class SmsUploadRequest(CamelModel):
    csv_data: str = Field(min_length=1)
    phone_column: int = Field(default=0, ge=0, le=50)


class SmsUploadResponse(CamelModel):
    success: bool = True
    total_numbers: int
    matched_drivers: int
    conversion_stats: ConversionStats
    cost: CostBreakdown
    conversion_rate: str


class SmsReportResponse(CamelModel):
    uploaded: bool
    uploaded_at: Optional[datetime] = None
    total_sent: int = 0
    matched_drivers: int = 0
    conversion_stats: ConversionStats = Field(default_factory=ConversionStats)
    funnel: ChannelFunnel = Field(default_factory=ChannelFunnel)
    cost: CostBreakdown = Field(default_factory=lambda: CostBreakdown(usd=0.0, uzs=0.0))
    cost_per_sms_uzs: float = 0.0
    cost_per_active_usd: Optional[float] = None
    conversion_rate: str = "0%"


class SmsMatchRequest(CamelModel):
    phone_numbers: list[str] = Field(default_factory=list)


class SmsMatchSummary(CamelModel):
    total_sent: int
    registered: int
    not_registered: int
    in_corridor_route: int
    conversion_rate: str


class SmsMatchResponse(CamelModel):
    summary: SmsMatchSummary
    status_breakdown: StatusSummary
    matched: list[DriverRecord]
    not_registered: list[str]


# Target ads


class TargetStatsUpdateRequest(CamelModel):
    regular_views: Optional[int] = Field(default=None, ge=0)
    regular_installs: Optional[int] = Field(default=None, ge=0)
    regular_registrations: Optional[int] = Field(default=None, ge=0)
    lead_views: Optional[int] = Field(default=None, ge=0)
    lead_installs: Optional[int] = Field(default=None, ge=0)


class TargetCost(CamelModel):
    regular_usd: float = Field(alias="regularUSD")
    lead_usd: float = Field(alias="leadUSD")
    total_usd: float = Field(alias="totalUSD")


class RegularTargetFunnel(ChannelFunnel):
    views: int = 0
    installs: int = 0
    registrations: int = 0


class LeadTargetFunnel(ChannelFunnel):
    views: int = 0
    installs: int = 0


class TargetReportResponse(CamelModel):
    lead: LeadTargetFunnel
    regular: RegularTargetFunnel
    target_cost: TargetCost
    cost_per_active_usd: Optional[float] = None


# Flyer / Telegram


class CostedFunnel(ChannelFunnel):
    cost_usd: float = Field(default=0.0, alias="costUSD")
    cost_uzs: float = Field(default=0.0, alias="costUZS")
    cost_per_active_usd: Optional[float] = None


class CostOnly(CamelModel):
    cost_usd: float = Field(alias="costUSD")
    cost_uzs: float = Field(alias="costUZS")


class FlyerTelegramResponse(CamelModel):
    flyer: CostedFunnel
    telegram_global: CostedFunnel
    telegram_ads: CostedFunnel
    telegram_total: CostOnly


# Budget


class ExpenseDraft(CamelModel):
    category_id: BudgetCategory
    amount: float = Field(gt=0)
    currency: Currency = Currency.usd
    description: str = Field(default="", max_length=250)
    date: Optional[dt.date] = None
    date_to: Optional[dt.date] = None


class BudgetUpdateRequest(CamelModel):
    total_budget: Optional[float] = Field(default=None, ge=0)
    expense: Optional[ExpenseDraft] = None


class BudgetResponse(CamelModel):
    total_budget: float
    expenses: list[ExpenseEntry]
    updated_at: Optional[datetime]
    summary: BudgetSummary
    categories: list[BudgetCategory]


# Reactivation


class ReactivationSummary(CamelModel):
    total: int
    inactive: int
    active: int
    pending: int
    conversion_rate: str


class ReactivationDriversResponse(CamelModel):
    data: list[DriverRecord]
    summary: ReactivationSummary


class TrackingUpdateRequest(CamelModel):
    driver_id: str = Field(min_length=1, max_length=120)
    call_status: Optional[ReactivationCallStatus] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class TrackingUpdateResponse(CamelModel):
    success: bool = True
    entry: TrackingEntry
    stats: TrackingStats


class TrackedDriversRequest(CamelModel):
    driver_ids: list[str] = Field(min_length=1)


class TrackedDriversResponse(CamelModel):
    driver_ids: list[str]
    added: int = 0
    updated_at: Optional[datetime] = None


# Campaigns


class CampaignCreateRequest(CamelModel):
    name: str = Field(min_length=1, max_length=120)
    channel: CampaignChannel
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    budget: float = Field(default=0, ge=0)
    spent: float = Field(default=0, ge=0)
    status: CampaignStatus = CampaignStatus.active
    notes: str = Field(default="", max_length=1000)


class CampaignUpdateRequest(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    channel: Optional[CampaignChannel] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    budget: Optional[float] = Field(default=None, ge=0)
    spent: Optional[float] = Field(default=None, ge=0)
    status: Optional[CampaignStatus] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class CampaignExpenseRequest(CamelModel):
    amount: float = Field(gt=0)
    description: str = Field(default="", max_length=250)
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None


class SmsBatchRequest(CamelModel):
    sent_date: Optional[dt.date] = None
    phone_numbers: list[str] = Field(default_factory=list)
    total_sent: Optional[int] = Field(default=None, ge=0)
    delivered: int = Field(default=0, ge=0)
    notes: str = Field(default="", max_length=1000)


# Call center


class CallCenterUploadRequest(CamelModel):
    csv_data: str = Field(min_length=1)


class CallCenterUploadResponse(CamelModel):
    success: bool = True
    total: int


class CallCenterEntryUpdateRequest(CamelModel):
    phone: str = Field(min_length=1, max_length=40)
    call_status: Optional[CallCenterStatus] = None
    manual_type: Optional[ManualContactType] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class CallCenterEntryView(CamelModel):
    phone: str
    message: str
    manual_type: Optional[ManualContactType]
    call_status: CallCenterStatus
    called_at: Optional[datetime]
    notes: Optional[str]
    is_registered: bool
    is_driver: bool
    is_full_register: bool
    driver_status: Optional[DriverStatus]
    user_name: Optional[str]


class CallConversion(CamelModel):
    registered: int
    login_only: int
    full_register: int
    drivers: int
    active_drivers: int
    conversion_rate: str


class CallCenterStats(CamelModel):
    total: int
    needs_call: int
    called: int
    full_registered: int
    will_register: int
    not_reachable: int
    drivers: int
    active_drivers: int
    call_conversion: CallConversion


class CallCenterReportResponse(CamelModel):
    uploaded: bool
    uploaded_at: Optional[datetime] = None
    stats: Optional[CallCenterStats] = None
    entries: list[CallCenterEntryView] = Field(default_factory=list)
