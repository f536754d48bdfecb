from collections import Counter
from datetime import timedelta
from typing import Optional

from database import utcnow
from listings import COLLECTION

PERIODS = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_PERIOD = "30d"
TOP_DONORS = 10


def listing_stats(database, period: str = DEFAULT_PERIOD, user_id: Optional[str] = None, now=None) -> dict:
    """Aggregate listings created inside the period window, optionally for one donor."""
    if period not in PERIODS:
        period = DEFAULT_PERIOD
    now = now or utcnow()
    start = now - timedelta(days=PERIODS[period])
    match = {"created_at": {"$gte": start}}
    if user_id:
        match["donor_id"] = user_id

    collection = database[COLLECTION]
    summary = {
        "total_listings": collection.count_documents(match),
        "available_listings": collection.count_documents({**match, "status": "available"}),
        "claimed_listings": collection.count_documents({**match, "status": "claimed"}),
        "reserved_listings": collection.count_documents({**match, "status": "reserved"}),
    }

    by_type = collection.aggregate([
        {"$match": match},
        {"$group": {"_id": "$food_type", "count": {"$sum": 1}}},
        {"$sort": {"_id": 1}},
    ])
    top = collection.aggregate([
        {"$match": match},
        {"$group": {"_id": "$donor", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
        {"$limit": TOP_DONORS},
    ])

    daily = Counter(
        doc["created_at"].strftime("%Y-%m-%d")
        for doc in collection.find(match, {"created_at": 1})
    )

    return {
        "period": period,
        "summary": summary,
        "food_type_distribution": [{"food_type": r["_id"], "count": r["count"]} for r in by_type],
        "daily_listings": [{"date": day, "count": daily[day]} for day in sorted(daily)],
        "top_donors": [{"donor": r["_id"], "count": r["count"]} for r in top],
    }
