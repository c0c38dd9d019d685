from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from campaign_backend.app.models import (
    AllRegionsStatsResponse,
    BudgetCategory,
    BudgetLedgerDocument,
    BudgetResponse,
    BudgetUpdateRequest,
    CallCenterDocument,
    CallCenterEntryUpdateRequest,
    CallCenterReportResponse,
    CallCenterUploadRequest,
    CallCenterUploadResponse,
    CampaignCreateRequest,
    CampaignExpense,
    CampaignExpenseRequest,
    CampaignRecord,
    CampaignsDocument,
    CampaignUpdateRequest,
    CorridorStatsResponse,
    DriverListResponse,
    DriverStatus,
    FlyerTelegramResponse,
    ReactivationDriversResponse,
    RegionItem,
    SmsBatch,
    SmsBatchRequest,
    SmsMatchRequest,
    SmsMatchResponse,
    SmsReportResponse,
    SmsUploadDocument,
    SmsUploadRequest,
    SmsUploadResponse,
    SubRegionItem,
    TargetReportResponse,
    TargetStatsDocument,
    TargetStatsUpdateRequest,
    TrackedDriversDocument,
    TrackedDriversRequest,
    TrackedDriversResponse,
    TrackingDocument,
    TrackingUpdateRequest,
    TrackingUpdateResponse,
)
from campaign_backend.app.observability import MetricsRegistry, configure_logging, observe_request
from campaign_backend.app.persistence import DocumentPersistence, StateStoreUnavailableError
from campaign_backend.app.registry import DriverRegistry, RegistryUnavailableError
from campaign_backend.app.services import budget as budget_service
from campaign_backend.app.services import (
    call_center,
    campaigns,
    drivers,
    reactivation,
    reports,
    stats,
)
from campaign_backend.app.services.contact_import import EmptyContactListError
from campaign_backend.app.settings import Settings, load_settings
from campaign_backend.app.store import (
    BUDGET_KEY,
    CALL_CENTER_KEY,
    CAMPAIGNS_KEY,
    SMS_UPLOAD_KEY,
    TARGET_STATS_KEY,
    TRACKED_IDS_KEY,
    TRACKING_KEY,
    CampaignStateStore,
)

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Driver Campaign Dashboard API", version="0.1.0")
    configure_logging()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    settings = load_settings()
    persistence = (
        DocumentPersistence(settings.state_database_url) if settings.state_store_enabled else None
    )
    app.state.settings = settings
    app.state.registry = DriverRegistry(
        settings.registry_database_url, driver_role_id=settings.campaign.driver_role_id
    )
    app.state.state_store = CampaignStateStore(persistence=persistence)
    app.state.metrics = MetricsRegistry()

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    @app.exception_handler(RegistryUnavailableError)
    async def registry_unavailable(request: Request, exc: RegistryUnavailableError):
        app.state.metrics.record_dependency_failure("registry")
        logger.error("registry_unavailable path=%s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "driver registry unavailable"},
        )

    @app.exception_handler(StateStoreUnavailableError)
    async def state_store_unavailable(request: Request, exc: StateStoreUnavailableError):
        app.state.metrics.record_dependency_failure("state_store")
        logger.error("state_store_unavailable path=%s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "campaign state store unavailable"},
        )

    app.include_router(build_router())
    return app


def get_registry(request: Request) -> DriverRegistry:
    return request.app.state.registry


def get_state_store(request: Request) -> CampaignStateStore:
    return request.app.state.state_store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def ledger_default(settings: Settings) -> Callable[[], BudgetLedgerDocument]:
    return lambda: budget_service.empty_ledger(settings.budget.total_budget_usd)


def budget_response(ledger: BudgetLedgerDocument, settings: Settings) -> BudgetResponse:
    return BudgetResponse(
        total_budget=ledger.total_budget,
        expenses=ledger.expenses,
        updated_at=ledger.updated_at,
        summary=budget_service.summarize(ledger, settings.budget.usd_to_uzs),
        categories=list(BudgetCategory),
    )


def tracked_ids(store: CampaignStateStore) -> list[str]:
    return reactivation.all_tracked_ids(
        store.load(TRACKED_IDS_KEY, TrackedDriversDocument),
        store.load(TRACKING_KEY, TrackingDocument),
    )


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        if not get_registry(request).ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="driver registry unavailable",
            )
        if not get_state_store(request).ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="campaign state store unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        return PlainTextResponse(get_metrics(request).to_prometheus())

    # Lookups

    @router.get("/regions", response_model=list[RegionItem])
    def list_regions(request: Request) -> list[RegionItem]:
        return get_registry(request).list_regions()

    @router.get("/sub-regions", response_model=list[SubRegionItem])
    def list_sub_regions(request: Request, region_id: Optional[str] = None) -> list[SubRegionItem]:
        return get_registry(request).list_sub_regions(region_id)

    # Drivers

    @router.get("/drivers", response_model=DriverListResponse)
    def list_drivers(
        request: Request,
        status_filter: Optional[DriverStatus] = Query(default=None, alias="status"),
        region_id: Optional[str] = None,
        sub_region_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        route_region_id: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=500),
    ) -> DriverListResponse:
        query = drivers.driver_list_query(
            get_settings(request).campaign,
            status=status_filter,
            region_id=region_id,
            sub_region_id=sub_region_id,
            date_from=date_from,
            date_to=date_to,
            route_region_id=route_region_id,
        )
        return drivers.list_drivers(
            get_registry(request),
            query,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )

    # Statistics

    @router.get("/stats/corridor", response_model=CorridorStatsResponse)
    def corridor_stats(request: Request, from_date: Optional[date] = None) -> CorridorStatsResponse:
        settings = get_settings(request)
        return stats.corridor_stats(
            get_registry(request),
            settings.campaign,
            tracked_ids=tracked_ids(get_state_store(request)),
            from_date=from_date,
        )

    @router.get("/stats/all-regions", response_model=AllRegionsStatsResponse)
    def all_regions_stats(
        request: Request, from_date: Optional[date] = None
    ) -> AllRegionsStatsResponse:
        return stats.all_regions_stats(
            get_registry(request), get_settings(request).campaign, from_date=from_date
        )

    # SMS

    @router.post("/sms/match", response_model=SmsMatchResponse)
    def match_sms(payload: SmsMatchRequest, request: Request) -> SmsMatchResponse:
        try:
            return reports.match_sms_phones(
                get_registry(request), payload.phone_numbers, get_settings(request).campaign
            )
        except EmptyContactListError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    @router.get("/reactivation/sms", response_model=SmsReportResponse)
    def sms_report(request: Request) -> SmsReportResponse:
        store = get_state_store(request)
        if not store.exists(SMS_UPLOAD_KEY):
            return SmsReportResponse(uploaded=False)
        settings = get_settings(request)
        return reports.build_sms_report(
            get_registry(request),
            store.load(SMS_UPLOAD_KEY, SmsUploadDocument),
            settings.campaign,
            settings.budget,
        )

    @router.post("/reactivation/sms", response_model=SmsUploadResponse)
    def upload_sms(payload: SmsUploadRequest, request: Request) -> SmsUploadResponse:
        try:
            document = reports.upload_sms_list(
                get_registry(request), payload.csv_data, phone_column=payload.phone_column
            )
        except EmptyContactListError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        get_state_store(request).save(SMS_UPLOAD_KEY, document)
        return reports.sms_upload_response(document, get_settings(request).budget)

    @router.delete("/reactivation/sms")
    def clear_sms(request: Request) -> dict[str, bool]:
        get_state_store(request).delete(SMS_UPLOAD_KEY)
        return {"success": True}

    # Target ads

    @router.get("/reactivation/target", response_model=TargetReportResponse)
    def target_report(request: Request) -> TargetReportResponse:
        settings = get_settings(request)
        store = get_state_store(request)
        return reports.build_target_report(
            get_registry(request),
            store.load(TARGET_STATS_KEY, TargetStatsDocument),
            store.load(BUDGET_KEY, BudgetLedgerDocument, ledger_default(settings)),
            settings.campaign,
            settings.budget,
        )

    @router.post("/reactivation/target", response_model=TargetStatsDocument)
    def update_target_stats(
        payload: TargetStatsUpdateRequest, request: Request
    ) -> TargetStatsDocument:
        return get_state_store(request).update(
            TARGET_STATS_KEY,
            TargetStatsDocument,
            lambda document: reports.merge_target_stats(document, payload),
        )

    # Flyer / Telegram

    @router.get("/reactivation/flyer-telegram", response_model=FlyerTelegramResponse)
    def flyer_telegram_report(request: Request) -> FlyerTelegramResponse:
        settings = get_settings(request)
        store = get_state_store(request)
        return reports.build_flyer_telegram_report(
            get_registry(request),
            store.load(SMS_UPLOAD_KEY, SmsUploadDocument),
            store.load(BUDGET_KEY, BudgetLedgerDocument, ledger_default(settings)),
            settings.campaign,
            settings.budget,
        )

    # Budget

    @router.get("/reactivation/budget", response_model=BudgetResponse)
    def get_budget(request: Request) -> BudgetResponse:
        settings = get_settings(request)
        ledger = get_state_store(request).load(
            BUDGET_KEY, BudgetLedgerDocument, ledger_default(settings)
        )
        return budget_response(ledger, settings)

    @router.post("/reactivation/budget", response_model=BudgetResponse)
    def update_budget(payload: BudgetUpdateRequest, request: Request) -> BudgetResponse:
        settings = get_settings(request)

        def apply(ledger: BudgetLedgerDocument) -> BudgetLedgerDocument:
            if payload.total_budget is not None:
                ledger = budget_service.set_total_budget(ledger, payload.total_budget)
            if payload.expense is not None:
                ledger = budget_service.add_expense(ledger, payload.expense)
            return ledger

        try:
            ledger = get_state_store(request).update(
                BUDGET_KEY, BudgetLedgerDocument, apply, ledger_default(settings)
            )
        except budget_service.InvalidExpenseError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return budget_response(ledger, settings)

    @router.delete("/reactivation/budget/expenses/{expense_id}", response_model=BudgetResponse)
    def delete_expense(expense_id: str, request: Request) -> BudgetResponse:
        settings = get_settings(request)

        def remove(ledger: BudgetLedgerDocument) -> BudgetLedgerDocument:
            ledger, removed = budget_service.remove_expense(ledger, expense_id)
            if not removed:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"expense not found: {expense_id}",
                )
            return ledger

        ledger = get_state_store(request).update(
            BUDGET_KEY, BudgetLedgerDocument, remove, ledger_default(settings)
        )
        return budget_response(ledger, settings)

    # Reactivation

    @router.get("/reactivation/drivers", response_model=ReactivationDriversResponse)
    def reactivation_drivers(
        request: Request,
        status_filter: Optional[DriverStatus] = Query(default=None, alias="status"),
    ) -> ReactivationDriversResponse:
        drivers = reactivation.reactivation_candidates(
            get_registry(request),
            get_settings(request).campaign,
            tracked_ids=tracked_ids(get_state_store(request)),
            status=status_filter,
        )
        return ReactivationDriversResponse(
            data=drivers, summary=reactivation.summarize_candidates(drivers)
        )

    @router.get("/reactivation/tracking", response_model=TrackingDocument)
    def get_tracking(request: Request) -> TrackingDocument:
        return get_state_store(request).load(TRACKING_KEY, TrackingDocument)

    @router.post("/reactivation/tracking", response_model=TrackingUpdateResponse)
    def update_tracking(payload: TrackingUpdateRequest, request: Request) -> TrackingUpdateResponse:
        document = get_state_store(request).update(
            TRACKING_KEY,
            TrackingDocument,
            lambda current: reactivation.update_tracking_entry(current, payload),
        )
        return TrackingUpdateResponse(
            entry=document.entries[payload.driver_id], stats=document.stats
        )

    @router.delete("/reactivation/tracking/{driver_id}", response_model=TrackingDocument)
    def delete_tracking(driver_id: str, request: Request) -> TrackingDocument:
        def remove(document: TrackingDocument) -> TrackingDocument:
            document, removed = reactivation.remove_tracking_entry(document, driver_id)
            if not removed:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"tracking entry not found: {driver_id}",
                )
            return document

        return get_state_store(request).update(TRACKING_KEY, TrackingDocument, remove)

    @router.get("/reactivation/tracked", response_model=TrackedDriversResponse)
    def get_tracked(request: Request) -> TrackedDriversResponse:
        document = get_state_store(request).load(TRACKED_IDS_KEY, TrackedDriversDocument)
        return TrackedDriversResponse(
            driver_ids=document.driver_ids, updated_at=document.updated_at
        )

    @router.post("/reactivation/tracked", response_model=TrackedDriversResponse)
    def add_tracked(payload: TrackedDriversRequest, request: Request) -> TrackedDriversResponse:
        added: list[int] = []

        def add(document: TrackedDriversDocument) -> TrackedDriversDocument:
            document, count = reactivation.add_tracked_ids(document, payload.driver_ids)
            added.append(count)
            return document

        document = get_state_store(request).update(TRACKED_IDS_KEY, TrackedDriversDocument, add)
        return TrackedDriversResponse(
            driver_ids=document.driver_ids, added=added[-1], updated_at=document.updated_at
        )

    @router.delete("/reactivation/tracked/{driver_id}", response_model=TrackedDriversResponse)
    def remove_tracked(driver_id: str, request: Request) -> TrackedDriversResponse:
        def remove(document: TrackedDriversDocument) -> TrackedDriversDocument:
            document, removed = reactivation.remove_tracked_id(document, driver_id)
            if not removed:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"driver not tracked: {driver_id}",
                )
            return document

        document = get_state_store(request).update(
            TRACKED_IDS_KEY, TrackedDriversDocument, remove
        )
        return TrackedDriversResponse(
            driver_ids=document.driver_ids, updated_at=document.updated_at
        )

    @router.post("/reactivation/tracked/sync", response_model=TrackedDriversResponse)
    def sync_tracked(request: Request) -> TrackedDriversResponse:
        candidates = reactivation.reactivation_candidates(
            get_registry(request), get_settings(request).campaign
        )
        added: list[int] = []

        def sync(document: TrackedDriversDocument) -> TrackedDriversDocument:
            document, count = reactivation.sync_tracked_ids(document, candidates)
            added.append(count)
            return document

        document = get_state_store(request).update(TRACKED_IDS_KEY, TrackedDriversDocument, sync)
        return TrackedDriversResponse(
            driver_ids=document.driver_ids, added=added[-1], updated_at=document.updated_at
        )

    # Campaigns

    @router.get("/campaigns", response_model=CampaignsDocument)
    def get_campaigns(request: Request) -> CampaignsDocument:
        return get_state_store(request).load(CAMPAIGNS_KEY, CampaignsDocument)

    @router.post("/campaigns", response_model=CampaignRecord)
    def create_campaign(payload: CampaignCreateRequest, request: Request) -> CampaignRecord:
        offset = get_settings(request).campaign.utc_offset_hours
        created: list[CampaignRecord] = []

        def create(document: CampaignsDocument) -> CampaignsDocument:
            document, record = campaigns.create_campaign(
                document, payload, utc_offset_hours=offset
            )
            created.append(record)
            return document

        get_state_store(request).update(CAMPAIGNS_KEY, CampaignsDocument, create)
        return created[-1]

    @router.put("/campaigns/{campaign_id}", response_model=CampaignRecord)
    def update_campaign(
        campaign_id: str, payload: CampaignUpdateRequest, request: Request
    ) -> CampaignRecord:
        updated: list[CampaignRecord] = []

        def apply(document: CampaignsDocument) -> CampaignsDocument:
            document, record = campaigns.update_campaign(document, campaign_id, payload)
            updated.append(record)
            return document

        try:
            get_state_store(request).update(CAMPAIGNS_KEY, CampaignsDocument, apply)
        except campaigns.CampaignNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return updated[-1]

    @router.post("/campaigns/{campaign_id}/expenses", response_model=list[CampaignExpense])
    def add_campaign_expense(
        campaign_id: str, payload: CampaignExpenseRequest, request: Request
    ) -> list[CampaignExpense]:
        offset = get_settings(request).campaign.utc_offset_hours
        booked: list[CampaignExpense] = []

        def apply(document: CampaignsDocument) -> CampaignsDocument:
            document, expenses = campaigns.add_expense(
                document, campaign_id, payload, utc_offset_hours=offset
            )
            booked.extend(expenses)
            return document

        try:
            get_state_store(request).update(CAMPAIGNS_KEY, CampaignsDocument, apply)
        except campaigns.CampaignNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except budget_service.InvalidExpenseError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return booked

    @router.post("/campaigns/{campaign_id}/sms-batches", response_model=SmsBatch)
    def add_sms_batch(campaign_id: str, payload: SmsBatchRequest, request: Request) -> SmsBatch:
        offset = get_settings(request).campaign.utc_offset_hours
        batches: list[SmsBatch] = []

        def apply(document: CampaignsDocument) -> CampaignsDocument:
            document, batch = campaigns.add_sms_batch(
                document, campaign_id, payload, utc_offset_hours=offset
            )
            batches.append(batch)
            return document

        try:
            get_state_store(request).update(CAMPAIGNS_KEY, CampaignsDocument, apply)
        except campaigns.CampaignNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return batches[-1]

    # Call center

    @router.get("/call-center", response_model=CallCenterReportResponse)
    def call_center_report(request: Request) -> CallCenterReportResponse:
        store = get_state_store(request)
        if not store.exists(CALL_CENTER_KEY):
            return CallCenterReportResponse(uploaded=False)
        return call_center.build_report(
            store.load(CALL_CENTER_KEY, CallCenterDocument),
            get_registry(request).fetch_phone_directory(),
            driver_role_id=get_settings(request).campaign.driver_role_id,
        )

    @router.post("/call-center", response_model=CallCenterUploadResponse)
    def upload_call_list(
        payload: CallCenterUploadRequest, request: Request
    ) -> CallCenterUploadResponse:
        try:
            document = call_center.import_call_list(payload.csv_data)
        except EmptyContactListError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        get_state_store(request).save(CALL_CENTER_KEY, document)
        return CallCenterUploadResponse(total=len(document.entries))

    @router.post("/call-center/entries")
    def update_call_entry(
        payload: CallCenterEntryUpdateRequest, request: Request
    ) -> dict[str, bool]:
        store = get_state_store(request)
        if not store.exists(CALL_CENTER_KEY):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="no call list uploaded"
            )
        try:
            store.update(
                CALL_CENTER_KEY,
                CallCenterDocument,
                lambda document: call_center.update_entry(document, payload),
            )
        except call_center.ContactNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return {"success": True}

    @router.delete("/call-center")
    def delete_call_list(request: Request, action: Optional[str] = None) -> dict[str, Any]:
        store = get_state_store(request)
        if action == "reset_calls":
            if store.exists(CALL_CENTER_KEY):
                store.update(CALL_CENTER_KEY, CallCenterDocument, call_center.reset_calls)
            return {"success": True, "action": "reset_calls"}
        store.delete(CALL_CENTER_KEY)
        return {"success": True, "action": "delete_all"}

    return router
