from __future__ import annotations

SMS_CSV = "phone\n901111111\n+998 90 222 22 22\n12345\n998999999999"
CALL_CSV = "telefon,xabar\n901111111,salom\n998907777777,assalomu alaykum\n998900000000,\n"


def test_health_and_lookups(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/health/ready").json() == {"status": "ready"}

    regions = client.get("/regions").json()
    assert [r["name"] for r in regions] == ["Samarqand", "Toshkent Shahri", "Toshkent Viloyati"]
    subs = client.get("/sub-regions", params={"region_id": "9"}).json()
    assert subs == [
        {"id": "92", "name": "Angren", "regionId": "9"},
        {"id": "91", "name": "Chirchiq", "regionId": "9"},
    ]


def test_corridor_stats_include_reactivated_drivers(client) -> None:
    before = client.get("/stats/corridor").json()
    assert before["summary"]["active"] == 2
    assert before["reactivatedActive"] == 0
    assert before["combinedTarget"]["current"] == 2
    assert before["meta"]["regionId"] == "9"
    assert before["inactiveBreakdown"] == {"reasons": [], "fixable": 0, "notEligible": 0}

    tracked = client.post("/reactivation/tracked", json={"driverIds": ["o4"]})
    assert tracked.status_code == 200
    assert tracked.json()["added"] == 1

    after = client.get("/stats/corridor").json()
    assert after["reactivatedActive"] == 1
    assert after["combinedTarget"]["current"] == 3
    assert after["target"]["current"] == 2


def test_stats_accept_from_date(client) -> None:
    response = client.get("/stats/corridor", params={"from_date": "2026-01-30"})
    assert response.status_code == 200
    assert response.json()["summary"]["total"] == 2
    assert client.get("/stats/corridor", params={"from_date": "yesterday"}).status_code == 422


def test_all_regions_stats(client) -> None:
    data = client.get("/stats/all-regions").json()
    assert data["summary"]["total"] == 7
    assert data["oldActiveDrivers"] == 1
    assert [r["regionId"] for r in data["byRegion"]] == ["9", "5"]
    assert data["meta"]["scope"] == "all_regions"


def test_sms_upload_report_and_clear(client) -> None:
    empty = client.get("/reactivation/sms").json()
    assert empty["uploaded"] is False

    upload = client.post("/reactivation/sms", json={"csvData": SMS_CSV})
    assert upload.status_code == 200
    body = upload.json()
    assert body["totalNumbers"] == 3
    assert body["matchedDrivers"] == 2
    assert body["cost"]["uzs"] == 570

    report = client.get("/reactivation/sms").json()
    assert report["uploaded"] is True
    assert report["funnel"]["contacted"] == 3
    assert report["funnel"]["withRouteFilter"] == {"login": 2, "fullRegister": 2, "active": 1}
    assert report["conversionRate"] == "50.0%"

    assert client.delete("/reactivation/sms").json() == {"success": True}
    assert client.get("/reactivation/sms").json()["uploaded"] is False


def test_sms_upload_validation(client) -> None:
    assert client.post("/reactivation/sms", json={"csvData": "phone\n12"}).status_code == 400
    assert client.post("/reactivation/sms", json={}).status_code == 422
    assert client.post("/sms/match", json={"phoneNumbers": []}).status_code == 400


def test_sms_match(client) -> None:
    response = client.post(
        "/sms/match", json={"phoneNumbers": ["+998 90 111 11 11", "998900000000"]}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["summary"]["registered"] == 1
    assert data["notRegistered"] == ["998900000000"]
    assert data["matched"][0]["id"] == "d1"


def test_budget_ledger_flow(client) -> None:
    initial = client.get("/reactivation/budget").json()
    assert initial["totalBudget"] == 3000
    assert initial["expenses"] == []
    assert "flyers" in initial["categories"]

    created = client.post(
        "/reactivation/budget",
        json={
            "expense": {
                "categoryId": "flyers",
                "amount": 100,
                "description": "Chirchiq bozor",
                "date": "2026-02-01",
                "dateTo": "2026-02-03",
            }
        },
    )
    assert created.status_code == 200
    data = created.json()
    assert [e["amount"] for e in data["expenses"]] == [33, 33, 34]
    assert data["summary"]["totalSpent"] == 100
    assert data["summary"]["remaining"] == 2900
    assert data["summary"]["byCategory"]["flyers"]["totalUSD"] == 100

    resized = client.post("/reactivation/budget", json={"totalBudget": 4000}).json()
    assert resized["totalBudget"] == 4000
    assert len(resized["expenses"]) == 3

    expense_id = data["expenses"][0]["id"]
    removed = client.delete(f"/reactivation/budget/expenses/{expense_id}")
    assert removed.status_code == 200
    assert len(removed.json()["expenses"]) == 2
    assert client.delete(f"/reactivation/budget/expenses/{expense_id}").status_code == 404


def test_budget_rejects_bad_expenses(client) -> None:
    reversed_range = client.post(
        "/reactivation/budget",
        json={
            "expense": {
                "categoryId": "sms",
                "amount": 10,
                "date": "2026-02-03",
                "dateTo": "2026-02-01",
            }
        },
    )
    assert reversed_range.status_code == 400
    negative = client.post(
        "/reactivation/budget", json={"expense": {"categoryId": "sms", "amount": -5}}
    )
    assert negative.status_code == 422
    unknown = client.post(
        "/reactivation/budget", json={"expense": {"categoryId": "radio", "amount": 5}}
    )
    assert unknown.status_code == 422
    assert client.get("/reactivation/budget").json()["expenses"] == []


def test_target_report_uses_manual_stats_and_budget(client) -> None:
    saved = client.post("/reactivation/target", json={"leadViews": 500, "regularInstalls": 12})
    assert saved.status_code == 200
    assert saved.json()["leadViews"] == 500

    client.post("/reactivation/budget", json={"expense": {"categoryId": "ads_lead", "amount": 25}})
    report = client.get("/reactivation/target").json()
    assert report["lead"]["views"] == 500
    assert report["regular"]["installs"] == 12
    assert report["lead"]["withoutRouteFilter"]["active"] == 1
    assert report["targetCost"]["leadUSD"] == 25
    assert report["costPerActiveUsd"] == 25


def test_flyer_telegram_report(client) -> None:
    data = client.get("/reactivation/flyer-telegram").json()
    assert data["flyer"]["withoutRouteFilter"]["login"] == 4
    assert data["flyer"]["withRouteFilter"]["login"] == 3
    assert data["telegramAds"]["withoutRouteFilter"]["active"] == 1
    assert data["telegramTotal"] == {"costUSD": 0.0, "costUZS": 0.0}


def test_reactivation_drivers_and_sync(client) -> None:
    listed = client.get("/reactivation/drivers").json()
    assert [d["id"] for d in listed["data"]] == ["o3", "o2", "o1"]
    assert listed["summary"]["total"] == 3
    assert listed["data"][2]["inactiveReasons"][0]["reasonId"] == "59"

    active = client.get("/reactivation/drivers", params={"status": "active"}).json()
    assert [d["id"] for d in active["data"]] == ["o4"]
    assert client.get("/reactivation/drivers", params={"status": "gone"}).status_code == 422

    synced = client.post("/reactivation/tracked/sync").json()
    assert synced["driverIds"] == ["o3", "o1"]
    assert synced["added"] == 2

    removed = client.delete("/reactivation/tracked/o3")
    assert removed.json()["driverIds"] == ["o1"]
    assert client.delete("/reactivation/tracked/o3").status_code == 404
    assert client.get("/reactivation/tracked").json()["driverIds"] == ["o1"]


def test_tracking_entries(client) -> None:
    first = client.post(
        "/reactivation/tracking", json={"driverId": "o1", "callStatus": "no_answer"}
    )
    assert first.status_code == 200
    assert first.json()["entry"]["callAttempts"] == 1
    assert first.json()["stats"]["totalCalled"] == 1

    client.post("/reactivation/tracking", json={"driverId": "o1", "callStatus": "interested"})
    document = client.get("/reactivation/tracking").json()
    assert document["entries"]["o1"]["callAttempts"] == 2
    assert document["entries"]["o1"]["callStatus"] == "interested"

    # Tracked through call notes, so it feeds the reactivated count.
    client.post("/reactivation/tracking", json={"driverId": "o4", "callStatus": "converted"})
    assert client.get("/stats/corridor").json()["reactivatedActive"] == 1

    assert client.delete("/reactivation/tracking/o1").status_code == 200
    assert client.delete("/reactivation/tracking/o1").status_code == 404
    assert client.post("/reactivation/tracking", json={"callStatus": "called"}).status_code == 422


def test_call_center_flow(client) -> None:
    assert client.get("/call-center").json()["uploaded"] is False
    missing = client.post("/call-center/entries", json={"phone": "901111111"})
    assert missing.status_code == 404

    upload = client.post("/call-center", json={"csvData": CALL_CSV})
    assert upload.status_code == 200
    assert upload.json()["total"] == 3

    report = client.get("/call-center").json()
    assert report["stats"]["total"] == 3
    assert report["stats"]["needsCall"] == 1
    assert report["entries"][0]["userName"] == "Ali Valiyev"

    updated = client.post(
        "/call-center/entries",
        json={"phone": "901111111", "callStatus": "will_register", "manualType": "driver"},
    )
    assert updated.json() == {"success": True}
    report = client.get("/call-center").json()
    assert report["stats"]["called"] == 1
    assert report["entries"][0]["manualType"] == "driver"
    assert report["stats"]["callConversion"]["conversionRate"] == "100.0%"

    unknown = client.post("/call-center/entries", json={"phone": "998911111111"})
    assert unknown.status_code == 404

    reset = client.delete("/call-center", params={"action": "reset_calls"})
    assert reset.json() == {"success": True, "action": "reset_calls"}
    assert client.get("/call-center").json()["stats"]["called"] == 0

    assert client.delete("/call-center").json()["action"] == "delete_all"
    assert client.get("/call-center").json()["uploaded"] is False


def test_call_center_rejects_empty_upload(client) -> None:
    response = client.post("/call-center", json={"csvData": "telefon\nnone"})
    assert response.status_code == 400


def test_driver_list(client) -> None:
    response = client.get(
        "/drivers",
        params={"status": "inactive", "sort_by": "first_name", "sort_order": "asc"},
    )
    assert response.status_code == 200
    body = response.json()
    assert [d["id"] for d in body["data"]] == ["d6", "o1", "o2", "o5"]
    assert body["pagination"] == {"page": 1, "limit": 20, "total": 4, "totalPages": 1}
    assert body["data"][1]["inactiveReasons"] == [
        {"reasonId": "59", "reasonTitle": "Shaxsiy ma'lumotlarda xato", "isFixable": True}
    ]

    routed = client.get(
        "/drivers", params={"route_region_id": "9", "date_to": "2026-01-30", "limit": 2}
    ).json()
    assert [d["id"] for d in routed["data"]] == ["d3", "d2"]
    assert (routed["pagination"]["total"], routed["pagination"]["totalPages"]) == (6, 3)

    assert client.get("/drivers", params={"page": 0}).status_code == 422
    assert client.get("/drivers", params={"status": "gone"}).status_code == 422


def test_campaign_ledger_flow(client) -> None:
    assert client.get("/campaigns").json()["campaigns"] == []

    created = client.post(
        "/campaigns",
        json={"name": "Fevral SMS", "channel": "sms", "startDate": "2026-01-29", "budget": 500},
    )
    assert created.status_code == 200
    campaign = created.json()
    assert (campaign["spent"], campaign["status"], campaign["endDate"]) == (0, "active", None)
    campaign_id = campaign["id"]

    expenses = client.post(
        f"/campaigns/{campaign_id}/expenses",
        json={
            "amount": 100,
            "description": "SMS",
            "dateFrom": "2026-02-01",
            "dateTo": "2026-02-03",
        },
    )
    assert expenses.status_code == 200
    assert [e["amount"] for e in expenses.json()] == [33, 33, 34]

    batch = client.post(
        f"/campaigns/{campaign_id}/sms-batches",
        json={"phoneNumbers": ["998901111111", "998902222222"], "sentDate": "2026-02-01"},
    )
    assert batch.json()["totalSent"] == 2

    updated = client.put(
        f"/campaigns/{campaign_id}", json={"status": "paused", "endDate": "2026-02-27"}
    )
    assert updated.status_code == 200
    assert (updated.json()["status"], updated.json()["budget"]) == ("paused", 500)

    ledger = client.get("/campaigns").json()
    assert ledger["campaigns"][0]["spent"] == 100
    assert ledger["campaigns"][0]["endDate"] == "2026-02-27"
    assert len(ledger["dailyExpenses"]) == 3
    assert len(ledger["smsBatches"]) == 1
    assert ledger["lastUpdated"] is not None


def test_campaign_ledger_rejects_bad_requests(client) -> None:
    created = client.post("/campaigns", json={"name": "Flyer", "channel": "organic"})
    campaign_id = created.json()["id"]
    assert client.put("/campaigns/missing", json={"budget": 10}).status_code == 404
    missing = client.post("/campaigns/missing/expenses", json={"amount": 10})
    assert missing.status_code == 404
    assert client.post("/campaigns/missing/sms-batches", json={}).status_code == 404
    reversed_range = client.post(
        f"/campaigns/{campaign_id}/expenses",
        json={"amount": 10, "dateFrom": "2026-02-03", "dateTo": "2026-02-01"},
    )
    assert reversed_range.status_code == 400
    assert client.post("/campaigns", json={"name": "TV", "channel": "tv"}).status_code == 422
    assert client.get("/campaigns").json()["campaigns"][0]["spent"] == 0
