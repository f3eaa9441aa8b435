"""
Traficom Registry Scraper
FREE primary source - drives the public Traficom vehicle information page
with a headless Chromium via Playwright.

Field extraction is declarative: FIELD_LABELS lists the Finnish/English label
variants for every field, and `extract_fields` scans the result rows for them.
Any failure returns None so the caller can move on to the paid fallback.
"""

import asyncio
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from config import settings
from models.vehicle import VehicleFields

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

NAVIGATION_TIMEOUT_MS = 30_000
INPUT_TIMEOUT_MS = 10_000
RESULTS_TIMEOUT_MS = 15_000
CANDIDATE_TIMEOUT_MS = 2_000

INPUT_SELECTORS = (
    'input[name="registrationNumber"]',
    'input[id*="reg"]',
    'input[placeholder*="rekisteri"]',
    'input[type="text"]',
)
SUBMIT_SELECTORS = (
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Hae")',
    'button:has-text("Search")',
)
RESULTS_SELECTOR = ".vehicle-info, .result, .tiedot"

# Label alternatives per field, tried in order
FIELD_LABELS: Dict[str, Tuple[str, ...]] = {
    "make": ("merkki", "make", "valmistaja"),
    "model": ("malli", "model", "mallimerkintä"),
    "year": ("vuosimalli", "year", "käyttöönotto"),
    "color": ("väri", "color"),
    "engine_size": ("sylinteritilavuus", "engine", "moottori"),
    "fuel_type": ("käyttövoima", "fuel", "polttoaine"),
    "power": ("teho", "power", "kw"),
    "co2_emissions": ("co2", "päästö"),
    "euro_class": ("euro", "päästöluokka"),
    "vehicle_class": ("ajoneuvoluokka", "class"),
    "mass": ("massa", "weight", "paino"),
    "seats": ("istumapaikka", "seats", "paikka"),
    "next_inspection": ("katsastus", "inspection"),
    "tax_class": ("veroluokka", "tax"),
}

# Collects each result row as a list of trimmed cell texts
ROWS_SCRIPT = """
() => Array.from(document.querySelectorAll('tr, .field, .data-row')).map(row =>
    Array.from(row.querySelectorAll('th, td, .label, .value, span'))
        .map(cell => (cell.textContent || '').trim())
)
"""

YEAR_PATTERN = re.compile(r"\b(19|20)\d{2}\b")
INT_PATTERN = re.compile(r"\d+")


def _clean_label(text: str) -> str:
    return text.strip().rstrip(":").strip().lower()


def _value_for_label(rows: Sequence[Sequence[str]], label: str, exact: bool) -> str:
    for cells in rows:
        if len(cells) < 2:
            continue
        if exact:
            hit = _clean_label(cells[0]) == label
        else:
            hit = label in " ".join(cells).lower()
        if hit and cells[1].strip():
            return cells[1].strip()
    return ""


def extract_value(rows: Sequence[Sequence[str]], labels: Iterable[str]) -> str:
    """
    Find the value cell for the first matching label.

    A row whose first cell *is* one of the labels wins over a row that merely
    contains a label somewhere in its text ("Vuosimalli" contains "malli").
    """
    labels = [label.lower() for label in labels]
    for exact in (True, False):
        for label in labels:
            value = _value_for_label(rows, label, exact)
            if value:
                return value
    return ""


def parse_year(value: str) -> int:
    match = YEAR_PATTERN.search(value or "")
    return int(match.group(0)) if match else 0


def parse_int(value: str) -> int:
    match = INT_PATTERN.search(value or "")
    return int(match.group(0)) if match else 0


def extract_fields(
    rows: Sequence[Sequence[str]],
    field_labels: Dict[str, Tuple[str, ...]] = FIELD_LABELS,
) -> VehicleFields:
    raw = {field: extract_value(rows, labels) for field, labels in field_labels.items()}
    raw["year"] = parse_year(raw.get("year", ""))
    raw["seats"] = parse_int(raw.get("seats", ""))
    return VehicleFields(**raw)


class RegistryScraper:
    """One browser per process, one page per lookup."""

    def __init__(self, url: Optional[str] = None, headless: Optional[bool] = None):
        self.url = url or settings.traficom_url
        self.headless = settings.scraper_headless if headless is None else headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._browser_lock = asyncio.Lock()

    async def _get_browser(self) -> Browser:
        """Lazy-init single browser instance, relaunched if it has crashed."""
        async with self._browser_lock:
            if self._browser is not None and not self._browser.is_connected():
                logger.warning("Playwright browser disconnected, relaunching")
                self._browser = None

            if self._browser is None:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                try:
                    self._browser = await self._playwright.chromium.launch(
                        headless=self.headless,
                        args=[
                            "--no-sandbox",
                            "--disable-setuid-sandbox",
                            "--disable-dev-shm-usage",
                            "--disable-gpu",
                            "--no-first-run",
                            "--no-zygote",
                        ],
                    )
                except Exception:
                    await self._stop_playwright()
                    raise
                logger.info("Playwright browser initialized successfully")
            return self._browser

    async def _stop_playwright(self) -> None:
        if self._playwright is not None:
            playwright, self._playwright = self._playwright, None
            await playwright.stop()

    async def _fill_first(self, page: Page, selectors: Iterable[str], value: str) -> bool:
        for selector in selectors:
            try:
                await page.fill(selector, value, timeout=CANDIDATE_TIMEOUT_MS)
                return True
            except PlaywrightError:
                continue
        return False

    async def _click_first(self, page: Page, selectors: Iterable[str]) -> bool:
        for selector in selectors:
            try:
                await page.click(selector, timeout=CANDIDATE_TIMEOUT_MS)
                return True
            except PlaywrightError:
                continue
        return False

    async def _read_rows(self, page: Page) -> List[List[str]]:
        rows: Any = await page.evaluate(ROWS_SCRIPT)
        return [list(cells) for cells in rows or []]

    async def scrape(self, registration_number: str) -> Optional[VehicleFields]:
        page: Optional[Page] = None
        try:
            browser = await self._get_browser()
            page = await browser.new_page(user_agent=USER_AGENT)

            await page.goto(self.url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS)
            await page.wait_for_selector(", ".join(INPUT_SELECTORS[:3]), timeout=INPUT_TIMEOUT_MS)

            if not await self._fill_first(page, INPUT_SELECTORS, registration_number):
                logger.warning(f"Registration number input not found on {self.url}")
                return None

            if not await self._click_first(page, SUBMIT_SELECTORS):
                await page.keyboard.press("Enter")

            await page.wait_for_selector(RESULTS_SELECTOR, timeout=RESULTS_TIMEOUT_MS)
            fields = extract_fields(await self._read_rows(page))

            if not fields.is_complete:
                logger.warning(f"Incomplete vehicle data from Traficom for {registration_number}")
                return None

            logger.info(f"Successfully scraped Traficom data for {registration_number}")
            return fields

        except Exception as e:
            logger.error(f"Traficom scraping failed for {registration_number}: {e}")
            return None
        finally:
            if page is not None:
                try:
                    await page.close()
                except Exception as e:
                    logger.warning(f"Failed to close scraper page: {e}")

    async def shutdown(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
            logger.info("Browser closed successfully")
        await self._stop_playwright()


registry_scraper = RegistryScraper()
