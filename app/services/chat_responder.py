"""
Chat Responder
Rule-based Finnish-language chat assistant for the BMW workshop website.

No language understanding: the first matching rule wins.
1. A registration-number-shaped token -> vehicle lookup reply.
2. Keyword categories in priority order: booking, pricing, BMW.
3. Default greeting/help text.

Conversation history lives in the cache under chat:<session_id> for one hour
after the last message.
"""

import logging
import re
import uuid
from typing import Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from config import settings
from models.chat import MAX_MESSAGE_LENGTH, ChatResponse, ChatSession, Message
from models.vehicle import ManufacturerProfile, VehicleRecord, utc_now_iso
from services.bmw_intelligence import BMWIntelligence, bmw_intelligence
from services.cache_store import CacheStore, cache_store
from services.exceptions import VehicleNotFoundError
from services.vehicle_resolver import (
    VehicleResolver,
    is_valid_registration,
    vehicle_resolver,
)

logger = logging.getLogger(__name__)

SESSION_TTL = 60 * 60  # 1 hour idle window

REGISTRATION_TOKEN = re.compile(r"\b[A-Z]{2,3}-?\d{1,4}\b", re.IGNORECASE)

# Checked in this order, first hit wins
KEYWORD_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("booking", ("varaus", "aika")),
    ("pricing", ("hinta", "hinnat")),
    ("bmw", ("bmw", "erikois")),
)

TEMPLATES: Dict[str, str] = {
    "booking": """Varaa aika huoltoon tai korjaukseen:

📞 **Soita:** {phone} (ma-pe 8-17)
📧 **Sähköposti:** {email}

Voit myös antaa rekisterinumerosi, niin voin hakea autosi tiedot ja arvioida huoltotarpeen!""",
    "pricing": """Hinnoittelumme on reilu ja läpinäkyvä:

💶 **Työtuntihinta: {hourly_rate}€/h** (alv 0%)

**Yleisimmät huollot:**
• Öljynvaihto: 150-300€
• Jarrut (levyt + palat): 600-1200€
• Jarruneste: 80-150€
• Ilmansuodatin: 80-150€
• Sähköinen diagnoosi: sisältyy huoltoon

Isommat työt sovitaan aina erikseen ja annamme tarkan kustannusarvion ennen töiden aloitusta.

Anna rekisterinumerosi, niin voin antaa tarkemman arvion autosi huoltotarpeesta! 🔧""",
    "bmw": """Olemme BMW-erikoiskorjaamo Helsingissä! 🏎️

**Miksi valita meidät:**
• Pitkä kokemus BMW-autoista
• BMW-spesifit työkalut ja diagnoosilaitteet
• Aidon BMW-osien käyttö
• Sähköisen huoltokirjan päivitys
• Henkilökohtainen palvelu

**Huollamme kaikki BMW-mallit:**
• 1-, 2-, 3-, 4-, 5-, 6-, 7-sarja
• X-mallit (X1, X3, X5, X7)
• M-mallit
• i-mallit (sähkö/hybridi)

Anna autosi rekisterinumero, niin haen tarkat tiedot ja huoltohistorian!""",
    "default": '''Hei! Olen Bemufixin virtuaalinen assistentti. 👋

Voin auttaa sinua:
• 🔍 Ajoneuvotietojen haussa (anna rekisterinumero)
• 🔧 Huoltotarpeen arvioinnissa
• 📅 Ajan varaamisessa
• 💶 Hintatietojen antamisessa

**Aloitetaan:** Anna autosi rekisterinumero (esim. ABC-123), niin haen tiedot ja kerron mitä autosi tarvitsee!

Tai kysy suoraan esim:
- "Paljonko maksaa öljynvaihto?"
- "Haluan varata ajan"
- "Mitä BMW-erikoisuuksia teillä on?"''',
    "non_bmw": """Löysin ajoneuvon {registration}, mutta se on {make} {model}.

Olemme erikoistuneet BMW-merkkisten autojen huoltoon ja korjauksiin. Voimme kuitenkin palvella myös muita merkkejä - ota yhteyttä suoraan puhelimitse: **{phone}** tai sähköpostilla, niin jutellaan lisää!""",
    "not_found": "Valitettavasti en löytänyt tietoja rekisterinumerolla {registration}. Tarkista että numero on oikein kirjoitettu (esim. ABC-123).",
    "lookup_error": "Anteeksi, tapahtui virhe haettaessa ajoneuvotietoja. Yritä hetken kuluttua uudelleen tai soita meille: {phone}",
    "bad_format": "Rekisterinumero näyttää olevan virheellisessä muodossa. Suomalainen rekisterinumero on muotoa ABC-123.",
}

UNKNOWN = "Ei tiedossa"


def session_cache_key(session_id: str) -> str:
    return f"chat:{session_id}"


def _or_unknown(value) -> str:
    return str(value) if value else UNKNOWN


def match_keyword_category(message: str) -> str:
    text = message.lower()
    for category, keywords in KEYWORD_RULES:
        if any(keyword in text for keyword in keywords):
            return category
    return "default"


def format_bmw_reply(vehicle: VehicleRecord, profile: ManufacturerProfile) -> str:
    lines = [
        "Loistavaa! Löysin ajoneuvosi tiedot:",
        "",
        f"🚗 **{vehicle.make} {vehicle.model}** ({_or_unknown(vehicle.year)})",
        f"⛽ Käyttövoima: {_or_unknown(vehicle.fuel_type)}",
        f"🔧 Moottori: {_or_unknown(vehicle.engine_size)}, {_or_unknown(vehicle.power)}",
        f"📊 CO2: {_or_unknown(vehicle.co2_emissions)}",
        f"🔍 Seuraava katsastus: {_or_unknown(vehicle.next_inspection)}",
        "",
        "**BMW-spesifiset tiedot:**",
    ]
    if profile.chassis_code:
        lines.append(f"• Alusta: {profile.chassis_code}")
    if profile.engine_code:
        lines.append(f"• Moottorikoodi: {profile.engine_code}")
    lines += [
        f"• Suositeltu öljy: {profile.recommended_oil}",
        f"• Öljymäärä: {profile.oil_capacity}",
        f"• Huoltoväli: {profile.service_intervals}",
        "",
        "**Yleisiä ongelmia tässä mallissa:**",
    ]
    lines += [f"• {issue}" for issue in profile.common_issues] or [UNKNOWN]
    lines += ["", "Voinko auttaa sinua huoltotarpeen arvioinnissa tai varauksessa? 📅"]
    return "\n".join(lines)


class ChatResponder:
    def __init__(
        self,
        cache: CacheStore,
        resolver: VehicleResolver,
        intelligence: BMWIntelligence,
        shop: Optional[Dict[str, object]] = None,
        new_session_id: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.cache = cache
        self.resolver = resolver
        self.intelligence = intelligence
        self.shop = shop or {
            "phone": settings.shop_phone,
            "email": settings.shop_email,
            "hourly_rate": settings.hourly_rate,
        }
        self._new_session_id = new_session_id

    def _render(self, template: str, **params) -> str:
        return TEMPLATES[template].format(**{**self.shop, **params})

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        cached = await self.cache.get(session_cache_key(session_id))
        if not cached:
            return None
        try:
            return ChatSession.model_validate_json(cached)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable chat session {session_id}: {e}")
            return None

    async def _load_or_create(self, session_id: Optional[str]) -> ChatSession:
        if session_id:
            session = await self.get_session(session_id)
            if session is not None:
                return session
        return ChatSession(session_id=session_id or self._new_session_id())

    async def respond(self, message: str, session_id: Optional[str] = None) -> ChatResponse:
        if not message or len(message) > MAX_MESSAGE_LENGTH:
            raise ValueError(f"Message must be 1-{MAX_MESSAGE_LENGTH} characters")

        logger.info(f"Chat message received: {message[:50]}...")

        session = await self._load_or_create(session_id)
        session.messages.append(Message(role="user", content=message))

        reply = await self._reply_for(message, session)

        session.messages.append(Message(role="assistant", content=reply))
        await self.cache.set_with_ttl(
            session_cache_key(session.session_id),
            session.model_dump_json(by_alias=True),
            SESSION_TTL,
        )

        return ChatResponse(
            session_id=session.session_id,
            message=reply,
            timestamp=utc_now_iso(),
            vehicle_data=session.vehicle_data,
        )

    async def _reply_for(self, message: str, session: ChatSession) -> str:
        token = REGISTRATION_TOKEN.search(message)
        if token:
            return await self._vehicle_reply(token.group(0), session)
        return self._render(match_keyword_category(message))

    async def _vehicle_reply(self, registration: str, session: ChatSession) -> str:
        if not is_valid_registration(registration):
            return self._render("bad_format")

        try:
            vehicle = await self.resolver.resolve(registration)
        except VehicleNotFoundError:
            return self._render("not_found", registration=registration)
        except Exception as e:
            logger.error(f"Error processing vehicle lookup for {registration}: {e}")
            return self._render("lookup_error")

        session.vehicle_data = vehicle

        if not vehicle.is_bmw:
            return self._render(
                "non_bmw", registration=registration, make=vehicle.make, model=vehicle.model
            )

        profile = vehicle.bmw_specific or await self.intelligence.lookup(
            vehicle.make, vehicle.model, vehicle.year
        )
        return format_bmw_reply(vehicle, profile)


chat_responder = ChatResponder(
    cache=cache_store,
    resolver=vehicle_resolver,
    intelligence=bmw_intelligence,
)
