import asyncio
import fnmatch
import os
import sys
from typing import Any, Dict, List, Optional

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from models.vehicle import VehicleFields
from services.bmw_intelligence import BMWIntelligence, load_reference_dataset
from services.cache_store import CacheStore
from services.chat_responder import ChatResponder
from services.vehicle_resolver import VehicleResolver

CURRENT_YEAR = 2026


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis (decode_responses=True)."""

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.ttls: Dict[str, int] = {}
        self.closed = False

    async def ping(self):
        return True

    async def get(self, key):
        value = self.data.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key, value):
        self.data[key] = value
        self.ttls.pop(key, None)
        return True

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def exists(self, key):
        return int(key in self.data)

    async def ttl(self, key):
        if key not in self.data:
            return -2
        return self.ttls.get(key, -1)

    async def incr(self, key):
        self.data[key] = str(int(self.data.get(key, "0")) + 1)
        return int(self.data[key])

    async def keys(self, pattern):
        return [key for key in self.data if fnmatch.fnmatchcase(key, pattern)]

    async def lpush(self, key, value):
        self.data.setdefault(key, []).insert(0, value)
        return len(self.data[key])

    async def lrange(self, key, start, stop):
        items = self.data.get(key, [])
        return items[start:] if stop == -1 else items[start : stop + 1]

    async def expire(self, key, seconds):
        if key not in self.data:
            return False
        self.ttls[key] = seconds
        return True

    async def zadd(self, key, mapping):
        zset = self.data.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    async def zrange(self, key, start, stop):
        members = [m for m, _ in sorted(self.data.get(key, {}).items(), key=lambda kv: kv[1])]
        return members[start:] if stop == -1 else members[start : stop + 1]

    async def info(self):
        return {"redis_version": "7.2.0"}

    async def aclose(self):
        self.closed = True


class StubSource:
    """Scraper / fallback double that records every call."""

    def __init__(self, result: Optional[VehicleFields] = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: List[str] = []

    async def _lookup(self, registration_number: str) -> Optional[VehicleFields]:
        self.calls.append(registration_number)
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        return self.result

    async def scrape(self, registration_number: str) -> Optional[VehicleFields]:
        return await self._lookup(registration_number)

    async def fetch(self, registration_number: str) -> Optional[VehicleFields]:
        return await self._lookup(registration_number)


def bmw_320i(year: int = 2008) -> VehicleFields:
    return VehicleFields(
        make="BMW",
        model="320i",
        year=year,
        color="Musta",
        engine_size="1995 cm3",
        fuel_type="Bensiini",
        power="125 kW",
        co2_emissions="152 g/km",
        euro_class="EURO 4",
        vehicle_class="M1",
        mass="1460 kg",
        seats=5,
        next_inspection="12.05.2027",
        tax_class="A",
    )


def toyota_corolla() -> VehicleFields:
    return VehicleFields(make="Toyota", model="Corolla", year=2015, fuel_type="Bensiini")


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return CacheStore(client=fake_redis)


@pytest.fixture
def intelligence(cache):
    return BMWIntelligence(load_reference_dataset(), cache, clock=lambda: CURRENT_YEAR)


@pytest.fixture
def scraper():
    return StubSource()


@pytest.fixture
def fallback():
    return StubSource()


@pytest.fixture
def resolver(cache, scraper, fallback, intelligence):
    return VehicleResolver(cache=cache, scraper=scraper, fallback=fallback, intelligence=intelligence)


@pytest.fixture
def responder(cache, resolver, intelligence):
    return ChatResponder(
        cache=cache,
        resolver=resolver,
        intelligence=intelligence,
        shop={"phone": "050 123 4567", "email": "test@example.com", "hourly_rate": 89},
        new_session_id=lambda: "session-1",
    )
