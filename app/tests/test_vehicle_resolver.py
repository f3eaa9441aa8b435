import asyncio
import json

import pytest

from models.vehicle import VehicleFields
from services.bmw_intelligence import BMWIntelligence, load_reference_dataset
from services.cache_store import CacheStore
from services.exceptions import VehicleNotFoundError
from services.vehicle_resolver import (
    VEHICLE_CACHE_TTL,
    VehicleResolver,
    is_valid_registration,
    normalize_registration,
)
from conftest import CURRENT_YEAR, StubSource, bmw_320i, toyota_corolla


@pytest.mark.parametrize(
    "raw",
    ["ABC-123", "abc-123", " Abc 123 ", "a-b-c 1 2 3", "ABC123", "abc\t-123\n"],
)
def test_normalization_is_uppercase_and_separator_free(raw):
    assert normalize_registration(raw) == "ABC123"
    assert normalize_registration(normalize_registration(raw)) == "ABC123"


@pytest.mark.parametrize(
    "raw,valid",
    [
        ("ABC-123", True),
        ("A-1", True),
        ("ab-12", True),
        ("ABC-123X", True),
        ("ABCD-123", False),
        ("ABC-1234", False),
        ("123-ABC", False),
        ("", False),
    ],
)
def test_finnish_plate_format(raw, valid):
    assert is_valid_registration(raw) is valid


@pytest.mark.asyncio
async def test_registry_hit_for_bmw_attaches_profile_and_caches(resolver, scraper, fallback, fake_redis):
    scraper.result = bmw_320i(2008)

    record = await resolver.resolve("abc-123")

    assert record.registration_number == "ABC123"
    assert record.data_source == "registry"
    assert record.confidence == 1.0
    assert record.bmw_specific is not None
    assert record.bmw_specific.chassis_code == "E90/E91/E92/E93"
    assert scraper.calls == ["ABC123"]
    assert fallback.calls == []

    assert fake_redis.ttls["vehicle:ABC123"] == VEHICLE_CACHE_TTL
    stored = json.loads(fake_redis.data["vehicle:ABC123"])
    assert stored["registrationNumber"] == "ABC123"
    assert stored["dataSource"] == "registry"


@pytest.mark.asyncio
async def test_second_resolve_is_served_from_cache(resolver, scraper, fallback):
    scraper.result = bmw_320i(2008)

    first = await resolver.resolve("ABC-123")
    second = await resolver.resolve("abc 123")

    assert second.data_source == "cache"
    assert second.model_dump(exclude={"data_source"}) == first.model_dump(exclude={"data_source"})
    assert len(scraper.calls) == 1
    assert fallback.calls == []


@pytest.mark.asyncio
async def test_cached_confidence_is_kept(resolver, cache):
    stored = {
        "registrationNumber": "XYZ789",
        "make": "Audi",
        "model": "A4",
        "dataSource": "fallback-api",
        "timestamp": "2026-01-01T00:00:00+00:00",
        "confidence": 0.42,
    }
    await cache.set("vehicle:XYZ789", json.dumps(stored))

    record = await resolver.resolve("XYZ-789")

    assert record.data_source == "cache"
    assert record.confidence == 0.42


@pytest.mark.asyncio
async def test_incomplete_scrape_falls_back_once_then_not_found(resolver, scraper, fallback, fake_redis):
    scraper.result = VehicleFields(make="BMW", model="")
    fallback.result = None

    with pytest.raises(VehicleNotFoundError):
        await resolver.resolve("ABC-123")

    assert scraper.calls == ["ABC123"]
    assert fallback.calls == ["ABC123"]
    assert "vehicle:ABC123" not in fake_redis.data


@pytest.mark.asyncio
async def test_fallback_result_for_non_bmw(resolver, scraper, fallback):
    fallback.result = toyota_corolla()

    record = await resolver.resolve("XYZ-789")

    assert record.data_source == "fallback-api"
    assert record.confidence == 0.95
    assert record.bmw_specific is None
    assert len(scraper.calls) == 1


@pytest.mark.asyncio
async def test_incomplete_fallback_counts_as_failure(resolver, fallback):
    fallback.result = VehicleFields(make="", model="Corolla")

    with pytest.raises(VehicleNotFoundError):
        await resolver.resolve("XYZ-789")


@pytest.mark.asyncio
async def test_invalid_format_is_still_looked_up(resolver, scraper):
    scraper.result = toyota_corolla()

    record = await resolver.resolve("xyz-12345")

    assert record.registration_number == "XYZ12345"
    assert scraper.calls == ["XYZ12345"]


@pytest.mark.asyncio
async def test_concurrent_resolves_share_one_lookup(resolver, scraper):
    scraper.result = bmw_320i(2008)

    first, second = await asyncio.gather(
        resolver.resolve("ABC-123"), resolver.resolve("abc123")
    )

    assert len(scraper.calls) == 1
    assert first.registration_number == second.registration_number == "ABC123"


@pytest.mark.asyncio
async def test_get_cached_and_clear_cache(resolver, scraper):
    assert await resolver.get_cached("ABC-123") is None

    scraper.result = toyota_corolla()
    await resolver.resolve("ABC-123")

    cached = await resolver.get_cached("abc 123")
    assert cached is not None and cached.data_source == "cache"

    assert await resolver.clear_cache("ABC-123") is True
    assert await resolver.get_cached("ABC-123") is None
    assert len(scraper.calls) == 1


@pytest.mark.asyncio
async def test_unreadable_cache_entry_is_ignored(resolver, cache, scraper):
    await cache.set("vehicle:ABC123", "not json")
    scraper.result = toyota_corolla()

    record = await resolver.resolve("ABC-123")

    assert record.data_source == "registry"
    assert scraper.calls == ["ABC123"]


@pytest.mark.asyncio
async def test_resolves_without_reachable_cache():
    offline = CacheStore(url="redis://unreachable:6379")
    scraper = StubSource(result=bmw_320i(2008))
    resolver = VehicleResolver(
        cache=offline,
        scraper=scraper,
        fallback=StubSource(),
        intelligence=BMWIntelligence(load_reference_dataset(), offline, clock=lambda: CURRENT_YEAR),
    )

    first = await resolver.resolve("ABC-123")
    second = await resolver.resolve("ABC-123")

    assert first.data_source == second.data_source == "registry"
    assert first.bmw_specific.chassis_code == "E90/E91/E92/E93"
    assert scraper.calls == ["ABC123", "ABC123"]
    assert await resolver.get_cached("ABC-123") is None
    assert await resolver.clear_cache("ABC-123") is False
