"""
Farm context assembly for the advisory pipeline.

Loads the caller's profile, the farm with its crops, livestock, fish ponds and
recent finance transactions, plus live weather, and renders them into the
Bangla context block every advisory prompt starts with.
"""

import asyncio
from typing import List, Optional

from sqlalchemy import select

from errors import AdvisoryServiceError, FarmNotFound
from models import Crop, Farm, FinanceTransaction, FishPond, Livestock, Profile
from perf import ensure_utf8
from weather import WeatherService, validate_location_text

# Banglish / English farm vocabulary -> Bangla
BANGLISH_MAP = {
    "rice": "ধান", "ris": "ধান", "dhan": "ধান",
    "wheat": "গম", "gom": "গম",
    "corn": "ভুট্টা", "maize": "ভুট্টা", "bhutta": "ভুট্টা",
    "potato": "আলু", "alu": "আলু", "aloo": "আলু",
    "vegetable": "সবজি", "sabzi": "সবজি", "shaak": "শাক",
    "jute": "পাট", "pat": "পাট",
    "mustard": "সরিষা", "sarisha": "সরিষা", "sorisha": "সরিষা",
    "urea": "ইউরিয়া", "yuria": "ইউরিয়া",
    "tsp": "টিএসপি", "dap": "ডিএপি", "mop": "এমওপি",
    "fertilizer": "সার", "saar": "সার",
    "loamy": "দোঁআশ", "doash": "দোঁআশ",
    "clay": "এঁটেল", "etel": "এঁটেল",
    "sandy": "বেলে", "bele": "বেলে",
}

UNKNOWN = "অজানা"
NOT_AVAILABLE = "N/A"
NO_CROPS = "কোনো ফসল নেই"
NO_LIVESTOCK = "কোনো পশু নেই"
NO_PONDS = "কোনো পুকুর নেই"


def normalize_input(value) -> str:
    """Map a known Banglish/English term to Bangla; anything else is returned as typed."""
    if value is None or value == "":
        return ""
    text = ensure_utf8(str(value))
    return BANGLISH_MAP.get(text.strip().lower(), text)


def _or(value, fallback=NOT_AVAILABLE):
    if value is None or value == "" or value == []:
        return fallback
    return _num(value)


def _num(value):
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def summarize_finance(transactions: List[dict]) -> dict:
    revenue = sum(float(t.get("amount") or 0) for t in transactions if t.get("type") == "revenue")
    expenses = sum(float(t.get("amount") or 0) for t in transactions if t.get("type") == "expense")
    return {"revenue": revenue, "expenses": expenses, "profit": revenue - expenses}


def _crop_line(c: dict) -> str:
    variety = normalize_input(c.get("variety"))
    return (
        f"- {normalize_input(c.get('name'))} ({variety}) "
        f"| ধাপ: {_or(c.get('growth_stage'), UNKNOWN)} "
        f"| স্বাস্থ্য: {_or(c.get('health_status'), 'সুস্থ')} "
        f"| রোপণ: {_or(c.get('planting_date'))} "
        f"| শেষ সার: {_or(c.get('last_fertilizer_date'))} "
        f"| সার: {normalize_input(c.get('fertilizer_usage')) or 'অনির্দিষ্ট'} "
        f"| শেষ সেচ: {_or(c.get('last_irrigation_date'))} "
        f"| মাটি: {normalize_input(c.get('soil_type')) or NOT_AVAILABLE}"
    )


def _livestock_line(l: dict) -> str:
    return (
        f"- {normalize_input(l.get('animal_type'))} ({normalize_input(l.get('breed'))}) "
        f"| সংখ্যা: {_or(l.get('count'), 0)} "
        f"| বয়স: {_or(l.get('age_group'))} "
        f"| দৈনিক উৎপাদন: {_or(l.get('daily_production_amount'), 0)} {l.get('daily_production_unit') or ''} "
        f"| খাদ্য খরচ: ৳{_or(l.get('feed_cost'), 0)}/দিন"
    )


def _pond_line(p: dict) -> str:
    species = ", ".join(p.get("fish_species") or [])
    return (
        f"- পুকুর #{p.get('pond_number')} "
        f"| আয়তন: {_num(p.get('area_decimal'))} শতাংশ "
        f"| গভীরতা: {_or(p.get('depth_feet'))} ফুট "
        f"| পানির উৎস: {_or(p.get('water_source'))} "
        f"| প্রজাতি: {species} "
        f"| পোনা: {_or(p.get('fingerling_count'), 0)} "
        f"| গড় ওজন: {_or(p.get('current_avg_weight_g'), 0)}g "
        f"| খাদ্য: {_or(p.get('daily_feed_amount'), 0)}kg/দিন "
        f"| খাদ্য খরচ: ৳{_or(p.get('feed_cost'), 0)}/দিন "
        f"| বিক্রয় তারিখ: {_or(p.get('expected_sale_date'))}"
    )


def render_context(profile: Optional[dict], weather: Optional[dict], crops: List[dict],
                   livestock: List[dict], fish_ponds: List[dict],
                   finance: List[dict]) -> str:
    """Render the Bangla context block. Missing sections get fixed placeholder text."""
    profile = profile or {}
    current = (weather or {}).get("current") or {}
    forecast = (weather or {}).get("forecast") or []
    money = summarize_finance(finance)

    farmer_types = ", ".join(profile.get("farmer_type") or []) or "মিশ্র"
    forecast_text = ", ".join(
        f"{f.get('date')}: {f.get('weather')} {f.get('temp')}°C" for f in forecast
    ) or NOT_AVAILABLE

    crop_lines = "\n".join(_crop_line(c) for c in crops) or NO_CROPS
    livestock_lines = "\n".join(_livestock_line(l) for l in livestock) or NO_LIVESTOCK
    pond_lines = "\n".join(_pond_line(p) for p in fish_ponds) or NO_PONDS

    return f"""
## বর্তমান ডেটা:

### প্রোফাইল:
- জেলা: {_or(profile.get('district'), UNKNOWN)}
- উপজেলা: {_or(profile.get('upazila'), UNKNOWN)}
- কৃষক টাইপ: {farmer_types}
- জমির আকার: {_or(profile.get('land_size_category'), UNKNOWN)}
- সেচ উৎস: {_or(profile.get('irrigation_source'), UNKNOWN)}
- পদ্ধতি: {_or(profile.get('farming_method'), UNKNOWN)}

### আবহাওয়া (এখন):
- তাপমাত্রা: {_or(current.get('temp'))}°C
- আর্দ্রতা: {_or(current.get('humidity'))}%
- বাতাস: {_or(current.get('wind'))} km/h
- অবস্থা: {_or(current.get('description'))}
- পূর্বাভাস: {forecast_text}

### ফসল ({len(crops)}টি):
{crop_lines}

### পশু ({len(livestock)}টি):
{livestock_lines}

### মাছ চাষ ({len(fish_ponds)}টি পুকুর):
{pond_lines}

### আর্থিক সারসংক্ষেপ:
- মোট আয়: ৳{_num(money['revenue'])}
- মোট ব্যয়: ৳{_num(money['expenses'])}
- লাভ/ক্ষতি: ৳{_num(money['profit'])}
"""


class FarmContext:
    def __init__(self, text: str, weather: Optional[dict], farm: dict, profile: Optional[dict]):
        self.text = text
        self.weather = weather
        self.farm = farm
        self.profile = profile


class ContextBuilder:
    """Gathers the five farm data streams plus weather for one (user, farm)."""

    def __init__(self, session_factory, weather: Optional[WeatherService] = None,
                 finance_limit: int = 50):
        self.session_factory = session_factory
        self.weather = weather
        self.finance_limit = finance_limit

    # --- blocking loaders, run in worker threads ---

    def _load_profile(self, user_id: str) -> Optional[dict]:
        with self.session_factory() as session:
            row = session.execute(select(Profile).where(Profile.user_id == user_id)).scalars().first()
            return row.as_dict() if row else None

    def _load_farm(self, user_id: str, farm_id: str) -> Optional[dict]:
        with self.session_factory() as session:
            row = session.execute(
                select(Farm).where(Farm.id == farm_id, Farm.user_id == user_id)
            ).scalars().first()
            return row.as_dict() if row else None

    def _load_children(self, model, farm_id: str) -> List[dict]:
        with self.session_factory() as session:
            rows = session.execute(
                select(model).where(model.farm_id == farm_id).order_by(model.created_at)
            ).scalars().all()
            return [r.as_dict() for r in rows]

    def _load_finance(self, farm_id: str) -> List[dict]:
        with self.session_factory() as session:
            rows = session.execute(
                select(FinanceTransaction)
                .where(FinanceTransaction.farm_id == farm_id)
                .order_by(FinanceTransaction.transaction_date.desc())
                .limit(self.finance_limit)
            ).scalars().all()
            return [r.as_dict() for r in rows]

    async def _weather_for(self, farm_task, profile_task) -> Optional[dict]:
        farm = await farm_task
        if self.weather is None or farm is None:
            return None

        district = validate_location_text(farm.get("district"))
        upazila = validate_location_text(farm.get("upazila"))
        # the profile is only needed when the farm has no location of its own
        profile = None if district or upazila else await profile_task
        if profile:
            district = validate_location_text(profile.get("district"))
            upazila = validate_location_text(profile.get("upazila"))

        try:
            report = await self.weather.get_report(district, upazila)
        except AdvisoryServiceError as e:
            print(f"⚠️ Context weather unavailable: {e.message}")
            return None
        except Exception as e:
            print(f"⚠️ Context weather fetch failed: {e}")
            return None
        return {"current": report["current"], "forecast": report["forecast"]}

    async def build(self, user_id: str, farm_id: str) -> FarmContext:
        """
        Load the farm data and the weather snapshot, then render them. Raises FarmNotFound for foreign farms.

        The database loads run concurrently in worker threads. The weather fetch
        starts once the farm row is in, since its location comes from the farm
        (or from the profile when the farm has none), and overlaps the rest.
        """
        profile_task = asyncio.ensure_future(asyncio.to_thread(self._load_profile, user_id))
        farm_task = asyncio.ensure_future(asyncio.to_thread(self._load_farm, user_id, farm_id))

        profile, farm, crops, livestock, fish_ponds, finance, weather = await asyncio.gather(
            profile_task,
            farm_task,
            asyncio.to_thread(self._load_children, Crop, farm_id),
            asyncio.to_thread(self._load_children, Livestock, farm_id),
            asyncio.to_thread(self._load_children, FishPond, farm_id),
            asyncio.to_thread(self._load_finance, farm_id),
            self._weather_for(farm_task, profile_task),
        )

        if farm is None:
            raise FarmNotFound()

        text = render_context(profile, weather, crops, livestock, fish_ponds, finance)
        return FarmContext(text=text, weather=weather, farm=farm, profile=profile)
