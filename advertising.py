"""
Advertising economics

Placement minimum budgets, per-event charging and the platform revenue
calculator used by the admin revenue report.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

MIN_BUDGETS = {
    "homepage": 50000,
    "category": 20000,
    "sponsored_product": 5000,
    "vendor_store": 1000,
}

PLACEMENTS = tuple(MIN_BUDGETS)


@dataclass(frozen=True)
class PlacementShare:
    platform_share: float
    vendor_share: float


@dataclass(frozen=True)
class AdRevenueConfig:
    platform_commission_rate: float = 30
    vendor_commission_rate: float = 20
    minimum_cpm: float = 50
    minimum_cpc: float = 5
    placement_rates: Dict[str, PlacementShare] = field(default_factory=lambda: {
        "homepage": PlacementShare(100, 0),
        "vendor_store": PlacementShare(60, 40),
        "category": PlacementShare(100, 0),
        "sponsored_product": PlacementShare(100, 0),
    })


DEFAULT_CONFIG = AdRevenueConfig()


def event_cost(bid_type: Optional[str], bid_amount: float, event: str) -> float:
    """Charge for one impression or click under the campaign's bidding model."""
    bid_type = (bid_type or "").upper()
    if event == "impression" and bid_type == "CPM":
        return bid_amount / 1000
    if event == "click" and bid_type == "CPC":
        return bid_amount or 1
    return 0


def split_earnings(total: float, placement: str, config: AdRevenueConfig = DEFAULT_CONFIG):
    """Divide an amount already charged between the platform and the hosting vendor."""
    share = config.placement_rates.get(placement, config.placement_rates["homepage"])
    return total * share.platform_share / 100, total * share.vendor_share / 100


def _calculation(total, platform, vendor, impression=0.0, click=0.0, conversion=0.0,
                 cpm=0.0, cpc=0.0, conversion_rate=0.0, per_conversion=0.0):
    return {
        "totalAdSpend": total,
        "platformRevenue": platform,
        "vendorRevenue": vendor,
        "advertiserCost": total,
        "breakdown": {
            "impressionRevenue": impression,
            "clickRevenue": click,
            "conversionRevenue": conversion,
        },
        "metrics": {
            "effectiveCPM": cpm,
            "effectiveCPC": cpc,
            "conversionRate": conversion_rate,
            "revenuePerConversion": per_conversion,
        },
    }


def calculate_impression_revenue(impressions: int, cpm_rate: float, placement: str,
                                 config: AdRevenueConfig = DEFAULT_CONFIG) -> Dict:
    total = impressions / 1000 * max(cpm_rate, config.minimum_cpm)
    platform, vendor = split_earnings(total, placement, config)
    return _calculation(total, platform, vendor, impression=total, cpm=cpm_rate)


def calculate_click_revenue(clicks: int, cpc_rate: float, placement: str,
                            config: AdRevenueConfig = DEFAULT_CONFIG) -> Dict:
    total = clicks * max(cpc_rate, config.minimum_cpc)
    platform, vendor = split_earnings(total, placement, config)
    return _calculation(total, platform, vendor, click=total, cpc=cpc_rate)


def calculate_campaign_revenue(stats: Dict, config: AdRevenueConfig = DEFAULT_CONFIG) -> Dict:
    impressions = stats.get("impressions", 0)
    clicks = stats.get("clicks", 0)
    conversions = stats.get("conversions", 0)
    spend = stats.get("totalSpend", 0)
    platform, vendor = split_earnings(spend, stats.get("placementType", "homepage"), config)
    return _calculation(
        spend, platform, vendor,
        # spend attribution by model is an estimate: 60/35/5
        impression=spend * 0.6,
        click=spend * 0.35,
        conversion=spend * 0.05,
        cpm=spend / impressions * 1000 if impressions else 0,
        cpc=spend / clicks if clicks else 0,
        conversion_rate=conversions / impressions * 100 if impressions else 0,
        per_conversion=spend / conversions if conversions else 0,
    )


def _growth(current: float, previous: float) -> float:
    return (current - previous) / previous * 100 if previous > 0 else 0


def calculate_platform_revenue(campaigns: Iterable[Dict], previous: Iterable[Dict] = (),
                               config: AdRevenueConfig = DEFAULT_CONFIG) -> Dict:
    campaigns: List[Dict] = list(campaigns)
    previous = list(previous)

    by_placement = {p: 0.0 for p in PLACEMENTS}
    by_model = {"cpm": 0.0, "cpc": 0.0, "cpa": 0.0}
    total_revenue = 0.0
    impressions = clicks = conversions = 0
    spend = 0.0

    for campaign in campaigns:
        placement = campaign.get("placementType", "homepage")
        revenue = calculate_campaign_revenue(campaign, config)
        share = config.placement_rates.get(placement, config.placement_rates["homepage"]).platform_share / 100
        total_revenue += revenue["platformRevenue"]
        by_placement[placement] = by_placement.get(placement, 0.0) + revenue["platformRevenue"]
        by_model["cpm"] += revenue["breakdown"]["impressionRevenue"] * share
        by_model["cpc"] += revenue["breakdown"]["clickRevenue"] * share
        by_model["cpa"] += revenue["breakdown"]["conversionRevenue"] * share
        impressions += campaign.get("impressions", 0)
        clicks += campaign.get("clicks", 0)
        conversions += campaign.get("conversions", 0)
        spend += campaign.get("totalSpend", 0)

    previous_revenue = sum(c.get("totalSpend", 0) for c in previous) * config.platform_commission_rate / 100
    previous_impressions = sum(c.get("impressions", 0) for c in previous)
    previous_clicks = sum(c.get("clicks", 0) for c in previous)

    return {
        "totalRevenue": total_revenue,
        "revenueByPlacement": by_placement,
        "revenueByModel": by_model,
        "metrics": {
            "totalImpressions": impressions,
            "totalClicks": clicks,
            "totalConversions": conversions,
            "averageCPM": spend / impressions * 1000 if impressions else 0,
            "averageCPC": spend / clicks if clicks else 0,
            "averageCPA": spend / conversions if conversions else 0,
            "overallCTR": clicks / impressions * 100 if impressions else 0,
            "overallConversionRate": conversions / impressions * 100 if impressions else 0,
        },
        "growth": {
            "revenueGrowth": _growth(total_revenue, previous_revenue),
            "impressionGrowth": _growth(impressions, previous_impressions),
            "clickGrowth": _growth(clicks, previous_clicks),
        },
    }


def config_as_dict(config: AdRevenueConfig = DEFAULT_CONFIG) -> Dict:
    return {
        "platformCommissionRate": config.platform_commission_rate,
        "vendorCommissionRate": config.vendor_commission_rate,
        "minimumCPM": config.minimum_cpm,
        "minimumCPC": config.minimum_cpc,
        "placementRates": {
            name: {"platformShare": s.platform_share, "vendorShare": s.vendor_share}
            for name, s in config.placement_rates.items()
        },
    }
