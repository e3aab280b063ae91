import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo import ReturnDocument
from pymongo.database import Database

import advertising
import transitions
from database import as_utc, create_document, get_db, get_documents, serialize, to_obj_id, utcnow
from notifications import notify, record_audit_log
from permissions import StaffIdentity, get_staff, require_permission
from schemas import AddFundsRequest, CampaignAction, CampaignCreate, TrackEventRequest

logger = logging.getLogger(__name__)

router = APIRouter()

# action -> (permission, target status, notification kind, timestamp field)
CAMPAIGN_ACTIONS = {
    "approve": ("ads.approve", "active", "campaign_approved", "approvedAt"),
    "reject": ("ads.reject", "rejected", "campaign_rejected", "rejectedAt"),
    "pause": ("ads.pause", "paused", "campaign_paused", "pausedAt"),
    "resume": ("ads.pause", "active", "campaign_resumed", "resumedAt"),
}

ACTION_GUARDS = {
    "approve": "Campaign is not pending review",
    "reject": "Campaign is not pending review",
    "pause": "Campaign is not active",
    "resume": "Campaign is not paused",
}


def _campaign(db: Database, campaign_id: str) -> dict:
    doc = db["adCampaigns"].find_one({"_id": to_obj_id(campaign_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return doc


# Advertiser side

@router.post("/api/advertiser/campaigns", status_code=201)
def create_campaign(payload: CampaignCreate, db: Database = Depends(get_db)):
    min_budget = advertising.MIN_BUDGETS[payload.placement_type]
    if payload.budget < min_budget:
        raise HTTPException(status_code=400,
                            detail=f"Minimum budget for {payload.placement_type} is ₦{min_budget:,}")

    advertiser = db["advertisers"].find_one({"_id": payload.advertiser_id})
    if not advertiser:
        raise HTTPException(status_code=404, detail="Advertiser profile not found")
    balance = advertiser.get("accountBalance", 0)
    if balance < min_budget:
        raise HTTPException(
            status_code=400,
            detail=f"Insufficient balance. You need at least ₦{min_budget:,} but only have ₦{balance:,}",
        )

    campaign_id = create_document(db, "adCampaigns", {
        "advertiserId": payload.advertiser_id,
        "campaignName": payload.campaign_name,
        "budget": {
            "total": payload.budget,
            "dailyLimit": payload.daily_limit,
            "spent": 0,
            "remaining": payload.budget,
        },
        "bidding": {"type": payload.bid_type, "bidAmount": payload.bid_amount},
        "creative": {
            "imageUrl": payload.image_url,
            "title": payload.title,
            "description": payload.description,
            "ctaText": payload.cta_text,
            "destinationUrl": payload.destination_url,
        },
        "targeting": payload.targeting or {
            "locations": [],
            "categories": [],
            "devices": ["desktop", "mobile"],
            "storeTypes": ["all"],
        },
        "placement": {
            "type": payload.placement_type,
            "targetVendors": payload.target_vendors,
            "targetCategories": payload.target_categories,
            "minBudget": min_budget,
        },
        "stats": {"impressions": 0, "clicks": 0, "conversions": 0, "ctr": 0, "conversionRate": 0},
        "status": "pending_review",
        "fundsReserved": False,
    })
    return {"success": True, "campaignId": campaign_id, "message": "Campaign created successfully"}


@router.get("/api/advertiser/campaigns")
def advertiser_campaigns(advertiser_id: Optional[str] = Query(None, alias="advertiserId"),
                         db: Database = Depends(get_db)):
    if not advertiser_id:
        raise HTTPException(status_code=400, detail="Missing advertiserId")
    docs = get_documents(db, "adCampaigns", {"advertiserId": advertiser_id}, sort=[("createdAt", -1)])
    return {"success": True, "campaigns": [serialize(d) for d in docs]}


@router.post("/api/advertiser/add-funds")
def add_funds(payload: AddFundsRequest, db: Database = Depends(get_db)):
    db["advertisers"].update_one(
        {"_id": payload.user_id},
        {"$inc": {"accountBalance": payload.amount}, "$set": {"updatedAt": utcnow()}},
        upsert=True,
    )
    create_document(db, "transactions", {
        "userId": payload.user_id,
        "type": "credit",
        "amount": payload.amount,
        "reference": payload.reference,
        "description": "Account top-up",
        "status": "completed",
    })
    return {"success": True, "message": "Funds added successfully"}


# Delivery tracking

def _charge(db: Database, campaign: dict, event: str, stat: str) -> dict:
    bidding = campaign.get("bidding") or {}
    cost = advertising.event_cost(bidding.get("type"), bidding.get("bidAmount") or 0, event)
    inc = {f"stats.{stat}": 1}
    if cost:
        inc.update({"budget.spent": cost, "budget.remaining": -cost})
    updated = db["adCampaigns"].find_one_and_update(
        {"_id": campaign["_id"]},
        {"$inc": inc, "$set": {"updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )

    remaining = (updated.get("budget") or {}).get("remaining", 0)
    if remaining <= 0 and updated.get("status") == "active":
        transitions.campaigns.check("active", "completed")
        res = db["adCampaigns"].update_one(
            {"_id": campaign["_id"], "status": "active"},
            {"$set": {"status": "completed", "completedAt": utcnow(), "completionReason": "budget_exhausted"}},
        )
        if res.modified_count:
            updated["status"] = "completed"
            notify(db, campaign.get("advertiserId"), "campaign_completed",
                   {"campaignName": campaign.get("campaignName"), "campaignId": str(campaign["_id"]),
                    "reason": "budget_exhausted"})
    return dict(updated, cost=cost)


def _deliverable(db: Database, campaign_id: str) -> dict:
    campaign = _campaign(db, campaign_id)
    if campaign.get("status") != "active":
        raise HTTPException(status_code=400, detail="Campaign not active")
    if (campaign.get("budget") or {}).get("remaining", 0) <= 0:
        raise HTTPException(status_code=400, detail="Campaign budget exhausted")
    return campaign


@router.post("/api/advertising/track-impression")
def track_impression(payload: TrackEventRequest, db: Database = Depends(get_db)):
    campaign = _deliverable(db, payload.campaign_id)
    updated = _charge(db, campaign, "impression", "impressions")

    placement = (campaign.get("placement") or {}).get("type", "homepage")
    platform_earning, vendor_earning = advertising.split_earnings(updated["cost"], placement)
    impression_id = create_document(db, "adImpressions", {
        "campaignId": payload.campaign_id,
        "advertiserId": campaign.get("advertiserId"),
        "placement": payload.placement,
        "vendorId": payload.vendor_id,
        "category": payload.category,
        "deviceType": payload.device_type,
        "userAgent": payload.user_agent,
        "cost": updated["cost"],
        "platformEarning": platform_earning,
        "vendorEarning": vendor_earning,
        "clicked": False,
        "converted": False,
        "timestamp": utcnow(),
    })
    return {"success": True, "impressionId": impression_id, "campaignStatus": updated["status"]}


@router.post("/api/advertising/track-click")
def track_click(payload: TrackEventRequest, db: Database = Depends(get_db)):
    campaign = _deliverable(db, payload.campaign_id)
    updated = _charge(db, campaign, "click", "clicks")

    stats = updated.get("stats") or {}
    impressions = stats.get("impressions", 0)
    ctr = stats.get("clicks", 0) / impressions * 100 if impressions else 0
    db["adCampaigns"].update_one({"_id": campaign["_id"]}, {"$set": {"stats.ctr": ctr}})

    click_id = create_document(db, "adClicks", {
        "campaignId": payload.campaign_id,
        "advertiserId": campaign.get("advertiserId"),
        "placement": payload.placement,
        "vendorId": payload.vendor_id,
        "category": payload.category,
        "deviceType": payload.device_type,
        "userAgent": payload.user_agent,
        "cost": updated["cost"],
        "timestamp": utcnow(),
    })
    return {"success": True, "clickId": click_id, "campaignStatus": updated["status"]}


# Admin review

@router.get("/api/admin/advertising")
def admin_campaigns(status: Optional[str] = None, limit: int = 50, offset: int = 0,
                    staff: StaffIdentity = Depends(get_staff), db: Database = Depends(get_db)):
    require_permission(staff, "ads.view")
    query = {"status": status} if status and status != "all" else {}
    docs = list(db["adCampaigns"].find(query).sort("createdAt", -1).skip(offset).limit(limit))

    advertiser_ids = list({d.get("advertiserId") for d in docs if d.get("advertiserId")})
    advertisers = {a["_id"]: a for a in db["advertisers"].find({"_id": {"$in": advertiser_ids}})}
    campaigns = []
    for doc in docs:
        item = serialize(doc)
        advertiser = advertisers.get(doc.get("advertiserId"))
        item["advertiserInfo"] = {
            "companyName": advertiser.get("companyName", "Unknown Company"),
            "contactEmail": advertiser.get("contactEmail", "No email"),
            "phone": advertiser.get("phone", "No phone"),
            "accountBalance": advertiser.get("accountBalance", 0),
        } if advertiser else None
        campaigns.append(item)

    total = db["adCampaigns"].count_documents(query)
    return {
        "campaigns": campaigns,
        "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + limit < total},
    }


def _reserve_funds(db: Database, campaign: dict) -> float:
    """Debit the campaign budget from the advertiser, failing when the balance is short."""
    advertiser_id = campaign.get("advertiserId")
    budget = (campaign.get("budget") or {}).get("total", 0)
    res = db["advertisers"].update_one(
        {"_id": advertiser_id, "accountBalance": {"$gte": budget}},
        {"$inc": {"accountBalance": -budget, "totalSpent": budget}, "$set": {"updatedAt": utcnow()}},
    )
    if res.matched_count == 0:
        if not db["advertisers"].find_one({"_id": advertiser_id}, {"_id": 1}):
            raise HTTPException(status_code=404, detail="Advertiser not found")
        raise HTTPException(status_code=400, detail="Insufficient advertiser balance")
    return budget


def _release_funds(db: Database, advertiser_id: str, amount: float) -> None:
    db["advertisers"].update_one(
        {"_id": advertiser_id},
        {"$inc": {"accountBalance": amount, "totalSpent": -amount}, "$set": {"updatedAt": utcnow()}},
    )


@router.patch("/api/admin/advertising")
def review_campaign(payload: CampaignAction, staff: StaffIdentity = Depends(get_staff),
                    db: Database = Depends(get_db)):
    if payload.action not in CAMPAIGN_ACTIONS:
        raise HTTPException(status_code=400, detail="Invalid action")
    permission, target, kind, stamp = CAMPAIGN_ACTIONS[payload.action]
    require_permission(staff, permission)

    campaign = _campaign(db, payload.campaign_id)
    current = campaign.get("status")
    transitions.campaigns.check(current, target, ACTION_GUARDS[payload.action])

    now = utcnow()
    update = {"status": target, stamp: now, "reviewedBy": staff.admin_id, "reviewedAt": now, "updatedAt": now}
    if payload.reason:
        update["reviewReason"] = payload.reason

    reserved = 0
    if payload.action == "approve":
        reserved = _reserve_funds(db, campaign)
        update["fundsReserved"] = True

    res = db["adCampaigns"].update_one({"_id": campaign["_id"], "status": current}, {"$set": update})
    if res.matched_count == 0:
        if reserved:
            _release_funds(db, campaign.get("advertiserId"), reserved)
        raise HTTPException(status_code=400, detail="Campaign status changed, please retry")

    if reserved:
        create_document(db, "transactions", {
            "userId": campaign.get("advertiserId"),
            "type": "debit",
            "amount": reserved,
            "description": f"Campaign approved: {campaign.get('campaignName')}",
            "campaignId": payload.campaign_id,
            "status": "completed",
        })

    notify(db, campaign.get("advertiserId"), kind, {
        "campaignName": campaign.get("campaignName"),
        "campaignId": payload.campaign_id,
        "reason": payload.reason or "No reason given",
    })
    record_audit_log(db, staff.admin_id, f"ads.{payload.action}", {
        "campaignId": payload.campaign_id,
        "from": current,
        "to": target,
        "reason": payload.reason,
    })
    logger.info("Campaign %s %s by %s", payload.campaign_id, payload.action, staff.admin_id)

    past = {"approve": "approved", "reject": "rejected", "pause": "paused", "resume": "resumed"}[payload.action]
    return {"success": True, "message": f"Campaign {past} successfully", "campaignId": payload.campaign_id}


# Revenue report

def _period(period: str, start_date: Optional[str], end_date: Optional[str]):
    now = utcnow()
    if start_date and end_date:
        try:
            start = as_utc(datetime.fromisoformat(start_date))
            end = as_utc(datetime.fromisoformat(end_date))
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid date range")
        return start, end
    if period == "week":
        return now - timedelta(days=7), now
    if period == "year":
        return now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0), now
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0), now


def _tally(events, campaign_stats: dict) -> None:
    for event in events:
        stats = campaign_stats.setdefault(event["campaignId"], {
            "impressions": 0, "clicks": 0, "conversions": 0, "totalSpend": 0,
        })
        if event.get("kind") == "impression":
            stats["impressions"] += 1
            stats["conversions"] += 1 if event.get("converted") else 0
        else:
            stats["clicks"] += 1
        stats["totalSpend"] += event.get("cost") or 0


def _events(db: Database, start: datetime, end: datetime, end_op: str = "$lte"):
    window = {"timestamp": {"$gte": start, end_op: end}}
    impressions = [dict(d, kind="impression") for d in db["adImpressions"].find(window)]
    clicks = [dict(d, kind="click") for d in db["adClicks"].find(window)]
    return impressions, clicks


@router.get("/api/admin/advertising/revenue")
def advertising_revenue(period: str = "month", start_date: Optional[str] = Query(None, alias="startDate"),
                        end_date: Optional[str] = Query(None, alias="endDate"),
                        staff: StaffIdentity = Depends(get_staff), db: Database = Depends(get_db)):
    require_permission(staff, "ads.view")
    start, end = _period(period, start_date, end_date)

    campaigns = {}
    for doc in db["adCampaigns"].find({"status": {"$in": ["active", "paused", "completed"]}}):
        campaigns[str(doc["_id"])] = {
            "id": str(doc["_id"]),
            "campaignName": doc.get("campaignName"),
            "placementType": (doc.get("placement") or {}).get("type", "homepage"),
            "impressions": 0, "clicks": 0, "conversions": 0, "totalSpend": 0,
        }

    impressions, clicks = _events(db, start, end)
    current = {}
    _tally(impressions + clicks, current)
    for campaign_id, stats in current.items():
        if campaign_id in campaigns:
            campaigns[campaign_id].update(stats)
    active = [c for c in campaigns.values() if c["impressions"] or c["clicks"]]

    previous = {}
    before_impressions, before_clicks = _events(db, start - (end - start), start, "$lt")
    _tally(before_impressions + before_clicks, previous)

    report = advertising.calculate_platform_revenue(active, previous.values())
    ranked = sorted(
        (dict(c, revenue=advertising.calculate_campaign_revenue(c)) for c in active),
        key=lambda c: c["revenue"]["platformRevenue"],
        reverse=True,
    )

    daily = {}
    for event in impressions + clicks:
        campaign = campaigns.get(event["campaignId"])
        if not campaign:
            continue
        day = as_utc(event["timestamp"]).date().isoformat()
        share = advertising.DEFAULT_CONFIG.placement_rates.get(
            campaign["placementType"], advertising.DEFAULT_CONFIG.placement_rates["homepage"]).platform_share
        entry = daily.setdefault(day, {"date": day, "revenue": 0.0, "impressions": 0, "clicks": 0})
        entry["revenue"] += (event.get("cost") or 0) * share / 100
        entry["impressions" if event["kind"] == "impression" else "clicks"] += 1

    return {
        "success": True,
        "period": {"start": start.isoformat(), "end": end.isoformat(), "type": period},
        "revenue": report,
        "topCampaigns": ranked[:10],
        "dailyRevenue": [daily[k] for k in sorted(daily)],
        "config": advertising.config_as_dict(),
    }
