"""Shared pytest fixtures for campusgraph tests.

Provides:
- A fake clock pinned to 2026-03-01 00:00 UTC
- A small seeded catalog with deliberate integrity problems
- A catalog engine wired over the seeded in-memory store
"""

from datetime import datetime, timedelta, timezone

import pytest

from campusgraph.cache import Clock
from campusgraph.services import CatalogEngine
from campusgraph.store import InMemoryCatalogStore

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


class FakeClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = NOW):
        self._now = start.timestamp()

    def time(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds


# =========================
# Seed data
# =========================

SAMPLE_REGIONS = [
    {"id": "KA", "code": "KA", "name": "Karnataka"},
    {"id": "TN", "code": "TN", "name": "Tamil Nadu"},
]

SAMPLE_COLLEGES = [
    {
        "id": "MED0001",
        "name": "A J INSTITUTE OF MEDICAL SCIENCES",
        "region": "KA",
        "locality": "Mangalore",
        "category": "Private",
        "rank": 120,
        "stream": "Medical",
    },
    {
        "id": "ENG0001",
        "name": "RV College of Engineering",
        "region": "KA",
        "locality": "Bangalore",
        "category": "Private",
        "rank": 10,
        "stream": "Engineering",
    },
    {
        "id": "ENG0002",
        "name": "BMS College of Engineering",
        "region": "KA",
        "locality": "Bangalore",
        "category": "Private",
        "rank": 30,
        "stream": "Engineering",
    },
    {
        "id": "ENG0003",
        "name": "PSG College of Technology",
        "region": "TN",
        "locality": "Coimbatore",
        "category": "Private",
        "rank": 40,
        "stream": "Engineering",
    },
    # ENG0004 and ENG0005 share a name within KA (duplicate)
    {
        "id": "ENG0004",
        "name": "Government Engineering College",
        "region": "KA",
        "locality": "Hassan",
        "category": "Government",
        "rank": 200,
    },
    {
        "id": "ENG0005",
        "name": "Government  Engineering College",
        "region": "KA",
        "locality": "Mysore",
        "category": "Government",
        "rank": 210,
    },
]

SAMPLE_COURSES = [
    {
        "id": "CRS0035",
        "name": "MBBS",
        "college_id": "MED0001",
        "college_name": "A J INSTITUTE OF MEDICAL SCIENCES",
        "stream": "Medical",
        "branch": "Medicine",
        "seats": 150,
    },
    {
        "id": "CRS0101",
        "name": "Computer Science Engineering",
        "college_id": "ENG0001",
        "college_name": "RV College of Engineering",
        "stream": "Engineering",
        "branch": "CSE",
        "seats": 180,
    },
    # Stale denormalized college name (mismatch)
    {
        "id": "CRS0102",
        "name": "Mechanical Engineering",
        "college_id": "ENG0001",
        "college_name": "R V College of Engg",
        "stream": "Engineering",
        "branch": "MECH",
        "seats": 60,
    },
    {
        "id": "CRS0201",
        "name": "Computer Science Engineering",
        "college_id": "ENG0002",
        "college_name": "BMS College of Engineering",
        "stream": "Engineering",
        "branch": "CSE",
        "seats": 120,
    },
    {
        "id": "CRS0301",
        "name": "Computer Science Engineering",
        "college_id": "ENG0003",
        "college_name": "PSG College of Technology",
        "stream": "Engineering",
        "branch": "CSE",
        "seats": 90,
    },
    # Owned by a college that does not exist (orphan)
    {
        "id": "CRS0901",
        "name": "Electrical Engineering",
        "college_id": "ENG9999",
        "college_name": "BMS College of Engineering",
        "stream": "Engineering",
        "branch": "EEE",
        "seats": 40,
    },
]

SAMPLE_CUTOFFS = [
    {
        "id": "CUT0001",
        "college_id": "ENG0001",
        "course_id": "CRS0101",
        "year": 2025,
        "category": "GM",
        "opening_rank": 1,
        "closing_rank": 450,
    },
    {
        "id": "CUT0002",
        "college_id": "ENG0002",
        "course_id": "CRS0201",
        "year": 2025,
        "category": "GM",
        "opening_rank": 200,
        "closing_rank": 900,
    },
    # References a missing course (orphan)
    {
        "id": "CUT0099",
        "college_id": "ENG0001",
        "course_id": "CRS9999",
        "year": 2024,
        "category": "GM",
    },
]

SAMPLE_REGION_COLLEGE_LINKS = [
    {
        "college_id": "ENG0001",
        "region_id": "KA",
        "composite_college_key": "RV College of Engineering Bangalore Karnataka",
    },
    {
        "college_id": "ENG0002",
        "region_id": "KA",
        "composite_college_key": "BMS College of Engineering Bangalore Karnataka",
    },
    {
        "college_id": "ENG0003",
        "region_id": "TN",
        "composite_college_key": "PSG College of Technology Coimbatore Tamil Nadu",
    },
    # Points at a college that does not exist
    {
        "college_id": "ENG7777",
        "region_id": "KA",
        "composite_college_key": "Ghost College Karnataka",
    },
]

SAMPLE_COURSE_LINKS = [
    {"college_id": "ENG0001", "course_id": "CRS0101", "region_id": "KA", "stream": "Engineering"},
    {"college_id": "ENG0002", "course_id": "CRS0201", "region_id": "KA", "stream": "Engineering"},
    {"college_id": "ENG0002", "course_id": "CRS0101", "region_id": "KA", "stream": "Engineering"},
    {"college_id": "ENG0003", "course_id": "CRS0301", "region_id": "TN", "stream": "Engineering"},
]


def _favorite(user_id: str, college_id: str, days_ago: int) -> dict:
    return {
        "user_id": user_id,
        "college_id": college_id,
        "created_at": NOW - timedelta(days=days_ago),
    }


SAMPLE_FAVORITES = [
    _favorite("u1", "ENG0001", 2),
    _favorite("u1", "ENG0002", 1),
    _favorite("u2", "ENG0001", 3),
    _favorite("u2", "ENG0002", 5),
    _favorite("u2", "ENG0003", 10),
    # Outside the 30 day trending window
    _favorite("u3", "ENG0003", 40),
]

SAMPLE_USER_PROFILES = [
    {"user_id": "u2", "preferred_regions": ["TN"]},
]


def sample_catalog() -> dict:
    """Seed data in the in-memory store's JSON layout."""
    return {
        "colleges": SAMPLE_COLLEGES,
        "courses": SAMPLE_COURSES,
        "cutoffs": SAMPLE_CUTOFFS,
        "regions": SAMPLE_REGIONS,
        "region_college_links": SAMPLE_REGION_COLLEGE_LINKS,
        "region_course_college_links": SAMPLE_COURSE_LINKS,
        "favorites": SAMPLE_FAVORITES,
        "user_profiles": SAMPLE_USER_PROFILES,
    }


# =========================
# Fixtures
# =========================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryCatalogStore:
    """Seeded in-memory catalog store (also the interaction store)."""
    return InMemoryCatalogStore.from_dict(sample_catalog())


@pytest.fixture
def engine(store, clock) -> CatalogEngine:
    """Catalog engine over the seeded store with an in-memory cache."""
    return CatalogEngine.build(store=store, clock=clock)
