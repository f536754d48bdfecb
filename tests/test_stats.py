from datetime import datetime, timedelta

from stats import listing_stats

NOW = datetime(2026, 10, 18, 12, 0)


def add(db, donor, days_ago, status="available", food_type="cooked", donor_id=None):
    db["foodlisting"].insert_one({
        "title": "t",
        "donor": donor,
        "donor_id": donor_id or donor.lower(),
        "status": status,
        "food_type": food_type,
        "is_active": True,
        "created_at": NOW - timedelta(days=days_ago),
    })


def test_seven_day_window(db):
    add(db, "Ann", 1, status="claimed")
    add(db, "Ann", 2, status="reserved", food_type="fresh")
    add(db, "Ben", 6)
    add(db, "Ben", 8)
    add(db, "Cat", 40)

    stats = listing_stats(db, period="7d", now=NOW)

    assert stats["period"] == "7d"
    assert stats["summary"] == {
        "total_listings": 3,
        "available_listings": 1,
        "claimed_listings": 1,
        "reserved_listings": 1,
    }
    assert stats["food_type_distribution"] == [
        {"food_type": "cooked", "count": 2},
        {"food_type": "fresh", "count": 1},
    ]
    assert stats["daily_listings"] == [
        {"date": "2026-10-12", "count": 1},
        {"date": "2026-10-16", "count": 1},
        {"date": "2026-10-17", "count": 1},
    ]


def test_unknown_period_falls_back_to_thirty_days(db):
    add(db, "Ann", 20)
    add(db, "Ann", 45)
    stats = listing_stats(db, period="1y", now=NOW)
    assert stats["period"] == "30d"
    assert stats["summary"]["total_listings"] == 1
    assert listing_stats(db, period="90d", now=NOW)["summary"]["total_listings"] == 2


def test_top_donors_sorted_and_truncated(db):
    for i in range(12):
        for _ in range(i + 1):
            add(db, f"Donor{i:02d}", 1)

    top = listing_stats(db, now=NOW)["top_donors"]

    assert len(top) == 10
    counts = [d["count"] for d in top]
    assert counts == sorted(counts, reverse=True)
    assert top[0] == {"donor": "Donor11", "count": 12}


def test_filter_by_donor(db):
    add(db, "Ann", 1, donor_id="ann")
    add(db, "Ben", 1, donor_id="ben")
    stats = listing_stats(db, user_id="ann", now=NOW)
    assert stats["summary"]["total_listings"] == 1
    assert stats["top_donors"] == [{"donor": "Ann", "count": 1}]
