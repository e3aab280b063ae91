import pytest
from bson import ObjectId

import advertising

CAMPAIGN = {
    "advertiserId": "adv-1",
    "campaignName": "Spring Sale",
    "budget": 1000,
    "bidAmount": 1000,
    "bidType": "CPC",
    "imageUrl": "https://cdn.example.com/banner.png",
    "placementType": "vendor_store",
}


def test_event_cost():
    assert advertising.event_cost("CPM", 2000, "impression") == 2
    assert advertising.event_cost("CPM", 2000, "click") == 0
    assert advertising.event_cost("CPC", 150, "click") == 150
    assert advertising.event_cost("cpc", 0, "click") == 1
    assert advertising.event_cost("CPC", 150, "impression") == 0


def test_impression_revenue_split():
    result = advertising.calculate_impression_revenue(1000, 100, "vendor_store")
    assert result["totalAdSpend"] == 100
    assert result["platformRevenue"] == 60
    assert result["vendorRevenue"] == 40

    # bids under the floor are charged at the minimum CPM
    floored = advertising.calculate_impression_revenue(1000, 10, "homepage")
    assert floored["totalAdSpend"] == 50
    assert floored["vendorRevenue"] == 0


def test_click_revenue_uses_minimum_cpc():
    result = advertising.calculate_click_revenue(10, 2, "category")
    assert result["totalAdSpend"] == 50
    assert result["platformRevenue"] == 50


def test_platform_revenue_totals():
    campaigns = [
        {"placementType": "homepage", "impressions": 1000, "clicks": 10, "conversions": 1, "totalSpend": 100},
        {"placementType": "vendor_store", "impressions": 1000, "clicks": 30, "conversions": 0, "totalSpend": 100},
    ]
    report = advertising.calculate_platform_revenue(campaigns, [{"totalSpend": 100, "impressions": 1000}])
    assert report["totalRevenue"] == pytest.approx(160)
    assert report["revenueByPlacement"]["vendor_store"] == pytest.approx(60)
    assert report["metrics"]["totalClicks"] == 40
    assert report["metrics"]["overallCTR"] == pytest.approx(2)
    assert report["growth"]["impressionGrowth"] == pytest.approx(100)


def _fund(client, amount=1000):
    response = client.post("/api/advertiser/add-funds", json={"userId": "adv-1", "amount": amount,
                                                              "reference": "pay-1"})
    assert response.status_code == 200


def _create(client, **overrides):
    response = client.post("/api/advertiser/campaigns", json=dict(CAMPAIGN, **overrides))
    assert response.status_code == 201, response.json()
    return response.json()["campaignId"]


def test_campaign_creation_rules(client, db):
    response = client.post("/api/advertiser/campaigns", json=dict(CAMPAIGN, placementType="homepage"))
    assert response.status_code == 400
    assert response.json()["error"] == "Minimum budget for homepage is ₦50,000"

    response = client.post("/api/advertiser/campaigns", json=CAMPAIGN)
    assert response.status_code == 404
    assert response.json()["error"] == "Advertiser profile not found"

    _fund(client, 500)
    response = client.post("/api/advertiser/campaigns", json=CAMPAIGN)
    assert response.status_code == 400
    assert response.json()["error"].startswith("Insufficient balance")

    _fund(client, 500)
    campaign_id = _create(client)
    campaign = db["adCampaigns"].find_one({"_id": ObjectId(campaign_id)})
    assert campaign["status"] == "pending_review"
    assert campaign["budget"]["remaining"] == 1000
    assert db["transactions"].count_documents({"userId": "adv-1", "type": "credit"}) == 2

    listed = client.get("/api/advertiser/campaigns", params={"advertiserId": "adv-1"}).json()["campaigns"]
    assert [c["id"] for c in listed] == [campaign_id]


def test_approval_reserves_funds(client, db, admin_headers):
    _fund(client)
    campaign_id = _create(client)

    response = client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "approve"})
    assert response.status_code == 403

    response = client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "approve"},
                            headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["message"] == "Campaign approved successfully"

    campaign = db["adCampaigns"].find_one({"_id": ObjectId(campaign_id)})
    assert campaign["status"] == "active"
    assert campaign["fundsReserved"] is True
    assert db["advertisers"].find_one({"_id": "adv-1"})["accountBalance"] == 0
    assert db["transactions"].count_documents({"type": "debit", "campaignId": campaign_id}) == 1
    assert db["auditLogs"].count_documents({"action": "ads.approve"}) == 1
    assert db["notifications"].count_documents({"userId": "adv-1", "type": "campaign_approved"}) == 1

    response = client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "approve"},
                            headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Campaign is not pending review"


def test_approval_fails_when_balance_dropped(client, db, admin_headers):
    _fund(client)
    campaign_id = _create(client)
    db["advertisers"].update_one({"_id": "adv-1"}, {"$set": {"accountBalance": 10}})

    response = client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "approve"},
                            headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Insufficient advertiser balance"
    assert db["adCampaigns"].find_one({"_id": ObjectId(campaign_id)})["status"] == "pending_review"
    assert db["advertisers"].find_one({"_id": "adv-1"})["accountBalance"] == 10


def test_pause_and_resume_permissions(client, db, admin_headers):
    _fund(client)
    campaign_id = _create(client)
    client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "approve"},
                 headers=admin_headers)

    moderator = {"X-Admin-Id": "mod-1", "X-Admin-Role": "moderator"}
    response = client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "pause"},
                            headers=moderator)
    assert response.status_code == 403

    response = client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "pause"},
                            headers=admin_headers)
    assert response.status_code == 200
    assert db["adCampaigns"].find_one({"_id": ObjectId(campaign_id)})["status"] == "paused"

    response = client.post("/api/advertising/track-click", json={"campaignId": campaign_id, "placement": "store"})
    assert response.status_code == 400
    assert response.json()["error"] == "Campaign not active"

    response = client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "resume"},
                            headers=admin_headers)
    assert response.status_code == 200

    response = client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "delete"},
                            headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid action"


def test_click_exhausts_budget(client, db, admin_headers):
    _fund(client)
    campaign_id = _create(client)
    client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "approve"},
                 headers=admin_headers)

    response = client.post("/api/advertising/track-impression",
                           json={"campaignId": campaign_id, "placement": "vendor_store", "vendorId": "vendor-1"})
    assert response.status_code == 200
    assert response.json()["campaignStatus"] == "active"

    response = client.post("/api/advertising/track-click", json={"campaignId": campaign_id, "placement": "store"})
    assert response.status_code == 200
    assert response.json()["campaignStatus"] == "completed"

    campaign = db["adCampaigns"].find_one({"_id": ObjectId(campaign_id)})
    assert campaign["stats"]["impressions"] == 1
    assert campaign["stats"]["clicks"] == 1
    assert campaign["stats"]["ctr"] == 100
    assert campaign["budget"]["remaining"] == 0
    assert campaign["completionReason"] == "budget_exhausted"
    assert db["notifications"].count_documents({"userId": "adv-1", "type": "campaign_completed"}) == 1

    response = client.post("/api/advertising/track-impression", json={"campaignId": campaign_id, "placement": "x"})
    assert response.status_code == 400


def test_cpm_impressions_draw_down_budget(client, db, admin_headers):
    _fund(client, 5000)
    campaign_id = _create(client, bidType="CPM", bidAmount=2000, budget=5000, placementType="sponsored_product")
    client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "approve"},
                 headers=admin_headers)

    for _ in range(3):
        client.post("/api/advertising/track-impression", json={"campaignId": campaign_id, "placement": "search"})

    campaign = db["adCampaigns"].find_one({"_id": ObjectId(campaign_id)})
    assert campaign["budget"]["spent"] == pytest.approx(6)
    assert campaign["budget"]["remaining"] == pytest.approx(4994)
    assert db["adImpressions"].count_documents({"campaignId": campaign_id}) == 3


def test_admin_listing_and_revenue_report(client, admin_headers):
    _fund(client)
    _create(client)

    assert client.get("/api/admin/advertising").status_code == 403
    body = client.get("/api/admin/advertising", params={"status": "pending_review"}, headers=admin_headers).json()
    assert body["pagination"]["total"] == 1
    assert body["campaigns"][0]["advertiserInfo"]["accountBalance"] == 1000

    report = client.get("/api/admin/advertising/revenue", params={"period": "week"}, headers=admin_headers).json()
    assert report["success"] is True
    assert report["revenue"]["totalRevenue"] == 0
    assert report["config"]["placementRates"]["vendor_store"] == {"platformShare": 60, "vendorShare": 40}


def test_impression_earnings_never_exceed_charge(client, db, admin_headers):
    _fund(client)
    campaign_id = _create(client, bidType="CPM", bidAmount=10)
    client.patch("/api/admin/advertising", json={"campaignId": campaign_id, "action": "approve"},
                 headers=admin_headers)

    response = client.post("/api/advertising/track-impression",
                           json={"campaignId": campaign_id, "placement": "vendor_store", "vendorId": "vendor-1"})
    assert response.status_code == 200

    impression = db["adImpressions"].find_one({"campaignId": campaign_id})
    assert impression["cost"] == pytest.approx(0.01)
    assert impression["platformEarning"] == pytest.approx(0.006)
    assert impression["vendorEarning"] == pytest.approx(0.004)
    assert impression["platformEarning"] + impression["vendorEarning"] == pytest.approx(impression["cost"])
