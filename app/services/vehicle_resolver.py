"""
Vehicle Resolver
Registration number -> VehicleRecord.

Order: cache -> Traficom scrape (free) -> 02 Rekkari API (paid) -> cache write.
The two external sources are tried one after the other, never in parallel,
so the paid API is only called when the free source definitively failed.
BMW vehicles get a ManufacturerProfile and a confidence bonus.
"""

import asyncio
import logging
import re
from typing import Dict, Optional

from pydantic import ValidationError

from models.vehicle import DataSource, VehicleFields, VehicleRecord, utc_now_iso
from services.bmw_intelligence import BMWIntelligence, bmw_intelligence
from services.cache_store import CacheStore, cache_store
from services.exceptions import VehicleNotFoundError
from services.registry_scraper import RegistryScraper, registry_scraper
from services.rekkari_client import RekkariClient, rekkari_client

logger = logging.getLogger(__name__)

VEHICLE_CACHE_TTL = 30 * 24 * 60 * 60  # 30 days
BMW_CONFIDENCE_BONUS = 0.1
SOURCE_CONFIDENCE: Dict[str, float] = {
    "registry": 0.9,
    "fallback-api": 0.95,
}

# Finnish plates: ABC-123 style, optional trailing letter
FINNISH_PLATE_PATTERN = re.compile(r"^[A-Z]{1,3}\d{1,3}[A-Z]?$")
SEPARATORS_PATTERN = re.compile(r"[\s-]")


def normalize_registration(registration_number: str) -> str:
    """Remove whitespace and hyphens, uppercase."""
    return SEPARATORS_PATTERN.sub("", registration_number or "").upper()


def is_valid_registration(registration_number: str) -> bool:
    return bool(FINNISH_PLATE_PATTERN.match(normalize_registration(registration_number)))


def vehicle_cache_key(registration_number: str) -> str:
    return f"vehicle:{normalize_registration(registration_number)}"


class VehicleResolver:
    def __init__(
        self,
        cache: CacheStore,
        scraper: RegistryScraper,
        fallback: RekkariClient,
        intelligence: BMWIntelligence,
    ):
        self.cache = cache
        self.scraper = scraper
        self.fallback = fallback
        self.intelligence = intelligence
        self._inflight: Dict[str, "asyncio.Task[VehicleRecord]"] = {}

    async def resolve(self, registration_number: str) -> VehicleRecord:
        """
        Resolve a registration number to a vehicle record.

        Concurrent calls for the same plate share a single lookup.
        Raises VehicleNotFoundError when no source has data.
        """
        clean = normalize_registration(registration_number)
        if not FINNISH_PLATE_PATTERN.match(clean):
            # Lenient: warn but still look it up
            logger.warning(f"Invalid registration number format: {registration_number}")

        task = self._inflight.get(clean)
        if task is None:
            task = asyncio.ensure_future(self._resolve(clean))
            self._inflight[clean] = task

            def _forget(done: "asyncio.Task[VehicleRecord]", key: str = clean) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]

            task.add_done_callback(_forget)

        return await asyncio.shield(task)

    async def _resolve(self, clean: str) -> VehicleRecord:
        cache_key = vehicle_cache_key(clean)

        cached = await self._read_cache(cache_key)
        if cached is not None:
            logger.info(f"Vehicle data found in cache for {clean}")
            return cached

        source: DataSource = "registry"
        fields = await self.scraper.scrape(clean)
        if fields is None or not fields.is_complete:
            logger.warning(f"Traficom scraping failed for {clean}, trying 02 Rekkari")
            source = "fallback-api"
            fields = await self.fallback.fetch(clean)

        if fields is None or not fields.is_complete:
            logger.error(f"Vehicle lookup failed for {clean}: no source returned data")
            raise VehicleNotFoundError(clean)

        record = self._build_record(clean, fields, source)

        if record.is_bmw:
            profile = await self.intelligence.lookup(record.make, record.model, record.year)
            record = record.model_copy(
                update={
                    "bmw_specific": profile,
                    "confidence": round(min(record.confidence + BMW_CONFIDENCE_BONUS, 1.0), 4),
                }
            )

        await self.cache.set_with_ttl(
            cache_key, record.model_dump_json(by_alias=True), VEHICLE_CACHE_TTL
        )
        logger.info(f"Vehicle lookup completed successfully for {clean} via {source}")
        return record

    @staticmethod
    def _build_record(clean: str, fields: VehicleFields, source: DataSource) -> VehicleRecord:
        return VehicleRecord(
            **fields.model_dump(),
            registration_number=clean,
            data_source=source,
            timestamp=utc_now_iso(),
            confidence=SOURCE_CONFIDENCE[source],
        )

    async def _read_cache(self, cache_key: str) -> Optional[VehicleRecord]:
        cached = await self.cache.get(cache_key)
        if not cached:
            return None
        try:
            record = VehicleRecord.model_validate_json(cached)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable vehicle cache entry {cache_key}: {e}")
            return None
        return record.model_copy(update={"data_source": "cache"})

    async def get_cached(self, registration_number: str) -> Optional[VehicleRecord]:
        """Cached record only - never triggers a scrape or API call."""
        return await self._read_cache(vehicle_cache_key(registration_number))

    async def clear_cache(self, registration_number: str) -> bool:
        cleared = await self.cache.delete(vehicle_cache_key(registration_number))
        if cleared:
            logger.info(f"Cache cleared for vehicle {normalize_registration(registration_number)}")
        return cleared


vehicle_resolver = VehicleResolver(
    cache=cache_store,
    scraper=registry_scraper,
    fallback=rekkari_client,
    intelligence=bmw_intelligence,
)
