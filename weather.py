"""
Location and weather resolution for Bangladeshi farms.

District names are matched against a static table of district centroids
first; anything else goes through OpenWeather geocoding. Current conditions
and the 5-day forecast come from OpenWeather, and a handful of fixed
thresholds turn them into farm alerts.
"""

import re
import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import httpx
from sqlalchemy import select

from alerts import farm_belongs_to, save_alerts
from errors import WeatherProviderError, require
from models import WeatherLog
from perf import PerformanceCache, ensure_utf8

CAPITAL = (23.8103, 90.4125, "ঢাকা")

_DISTRICT_TABLE = {
    "ঢাকা": (23.8103, 90.4125),
    "চট্টগ্রাম": (22.3569, 91.7832),
    "রাজশাহী": (24.3745, 88.6042),
    "খুলনা": (22.8456, 89.5403),
    "বরিশাল": (22.7010, 90.3535),
    "সিলেট": (24.8949, 91.8687),
    "রংপুর": (25.7439, 89.2752),
    "ময়মনসিংহ": (24.7471, 90.4203),
    "কুমিল্লা": (23.4607, 91.1809),
    "গাজীপুর": (24.0023, 90.4264),
    "নারায়ণগঞ্জ": (23.6238, 90.5000),
    "টাঙ্গাইল": (24.2513, 89.9163),
    "কিশোরগঞ্জ": (24.4449, 90.7766),
    "মানিকগঞ্জ": (23.8644, 90.0047),
    "মুন্সীগঞ্জ": (23.5422, 90.5305),
    "নরসিংদী": (23.9322, 90.7151),
    "ফরিদপুর": (23.6070, 89.8429),
    "গোপালগঞ্জ": (23.0050, 89.8266),
    "মাদারীপুর": (23.1641, 90.1978),
    "রাজবাড়ী": (23.7574, 89.6445),
    "শরীয়তপুর": (23.2423, 90.4348),
    "ব্রাহ্মণবাড়িয়া": (23.9608, 91.1115),
    "চাঁদপুর": (23.2332, 90.6712),
    "ফেনী": (23.0159, 91.3976),
    "লক্ষ্মীপুর": (22.9447, 90.8282),
    "নোয়াখালী": (22.8724, 91.0973),
    "কক্সবাজার": (21.4272, 92.0058),
    "রাঙ্গামাটি": (22.6372, 92.1840),
    "বান্দরবান": (22.1953, 92.2184),
    "খাগড়াছড়ি": (23.1193, 91.9847),
    "বগুড়া": (24.8465, 89.3773),
    "চাঁপাইনবাবগঞ্জ": (24.5965, 88.2772),
    "জয়পুরহাট": (25.0968, 89.0227),
    "নওগাঁ": (24.7936, 88.9318),
    "নাটোর": (24.4206, 89.0000),
    "নবাবগঞ্জ": (24.5965, 88.2772),
    "পাবনা": (24.0064, 89.2372),
    "সিরাজগঞ্জ": (24.4534, 89.7007),
    "যশোর": (23.1634, 89.2182),
    "ঝিনাইদহ": (23.5448, 89.1539),
    "কুষ্টিয়া": (23.9013, 89.1200),
    "মাগুরা": (23.4873, 89.4199),
    "মেহেরপুর": (23.7622, 88.6318),
    "নড়াইল": (23.1725, 89.5126),
    "সাতক্ষীরা": (22.7185, 89.0705),
    "বাগেরহাট": (22.6512, 89.7851),
    "ঝালকাঠি": (22.6406, 90.1987),
    "পটুয়াখালী": (22.3596, 90.3290),
    "পিরোজপুর": (22.5841, 89.9720),
    "ভোলা": (22.6859, 90.6482),
    "বরগুনা": (22.1530, 90.1266),
    "হবিগঞ্জ": (24.3740, 91.4163),
    "মৌলভীবাজার": (24.4821, 91.7775),
    "সুনামগঞ্জ": (25.0657, 91.3950),
    "দিনাজপুর": (25.6279, 88.6332),
    "গাইবান্ধা": (25.3288, 89.5283),
    "কুড়িগ্রাম": (25.8054, 89.6362),
    "লালমনিরহাট": (25.9923, 89.2847),
    "নীলফামারী": (25.9316, 88.8560),
    "পঞ্চগড়": (26.3411, 88.5542),
    "ঠাকুরগাঁও": (26.0336, 88.4616),
    "জামালপুর": (24.9375, 89.9372),
    "নেত্রকোণা": (24.8707, 90.7273),
    "শেরপুর": (25.0204, 90.0171),
    "চুয়াডাঙ্গা": (23.6401, 88.8420),
}

# Keys are NFC-normalized so input typed with decomposed nukta still matches
DISTRICT_COORDS: Dict[str, Tuple[float, float]] = {
    ensure_utf8(name): coords for name, coords in _DISTRICT_TABLE.items()
}

RAIN_CONDITIONS = ("Rain", "Thunderstorm")

_LOCATION_TEXT = re.compile(r"^[\u0980-\u09FF\sa-zA-Z\-,.]+$")
_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def validate_location_text(text) -> Optional[str]:
    """Return a trimmed district/upazila name, or None when it is unusable."""
    if not text or not isinstance(text, str):
        return None
    clean = ensure_utf8(text.strip()[:100])
    if not clean or not _LOCATION_TEXT.match(clean):
        return None
    return clean


def is_valid_uuid(value) -> bool:
    return isinstance(value, str) and bool(_UUID.match(value))


def kmh(speed_ms) -> float:
    return (speed_ms or 0) * 3.6


def reduce_forecast(items: List[dict], days: int = 5) -> List[dict]:
    """Collapse 3-hourly forecast buckets to the first bucket of each calendar day."""
    daily = []
    seen = set()
    for item in items or []:
        try:
            day = item["dt_txt"].split(" ")[0]
            if day in seen:
                continue
            condition = (item.get("weather") or [{}])[0]
            entry = {
                "date": day,
                "temp": round(item["main"]["temp"]),
                "humidity": item["main"].get("humidity"),
                "weather": condition.get("main"),
                "icon": condition.get("icon"),
                "description": condition.get("description"),
                "wind": round(kmh(item.get("wind", {}).get("speed"))),
            }
        except (KeyError, TypeError, AttributeError) as e:
            print(f"⚠️ Skipping malformed forecast bucket: {e}")
            continue
        seen.add(day)
        daily.append(entry)
        if len(daily) >= days:
            break
    return daily


def count_rain_days(forecast: List[dict]) -> int:
    return sum(1 for day in forecast if day.get("weather") in RAIN_CONDITIONS)


def derive_weather_alerts(temp: float, humidity: float, wind_kmh: float,
                          forecast: List[dict]) -> List[dict]:
    """Deterministic threshold alerts. All thresholds are strict comparisons."""
    alerts = []
    rain_days = count_rain_days(forecast)

    if humidity > 85:
        alerts.append({
            "type": "disease", "severity": "high",
            "title_bn": "ছত্রাক রোগের ঝুঁকি",
            "message_bn": f"আর্দ্রতা {round(humidity)}% - ধান ও সবজিতে ছত্রাক রোগের ঝুঁকি বেশি। ছত্রাকনাশক স্প্রে করুন।",
        })
    if temp > 38:
        alerts.append({
            "type": "weather", "severity": "high",
            "title_bn": "তীব্র গরম সতর্কতা",
            "message_bn": f"তাপমাত্রা {round(temp)}°C - পশুদের ছায়ায় রাখুন, পর্যাপ্ত পানি দিন।",
        })
    if wind_kmh > 40:
        alerts.append({
            "type": "weather", "severity": "medium",
            "title_bn": "ঝড়ের সতর্কতা",
            "message_bn": f"বাতাসের গতি {round(wind_kmh)} km/h - ফসল ও পশুর আশ্রয়ের ব্যবস্থা করুন।",
        })
    if rain_days >= 3:
        alerts.append({
            "type": "weather", "severity": "medium",
            "title_bn": "দীর্ঘ বৃষ্টির পূর্বাভাস",
            "message_bn": f"আগামী {rain_days} দিন বৃষ্টি হতে পারে। সেচ বন্ধ রাখুন, পানি নিষ্কাশনের ব্যবস্থা করুন।",
        })
    if temp < 10:
        alerts.append({
            "type": "weather", "severity": "medium",
            "title_bn": "শীতের সতর্কতা",
            "message_bn": f"তাপমাত্রা {round(temp)}°C - পশুদের শীতের জন্য বিশেষ ব্যবস্থা নিন।",
        })
    if rain_days == 0 and humidity < 50:
        alerts.append({
            "type": "weather", "severity": "low",
            "title_bn": "সেচ পরামর্শ",
            "message_bn": f"আর্দ্রতা {round(humidity)}% এবং আগামী দিনে বৃষ্টির সম্ভাবনা কম। ফসলে সেচ দিন।",
        })
    return alerts


def unique_by_title(alerts: List[dict]) -> List[dict]:
    seen = set()
    unique = []
    for alert in alerts:
        if alert.get("title_bn") in seen:
            continue
        seen.add(alert.get("title_bn"))
        unique.append(alert)
    return unique


class WeatherService:
    """OpenWeather client bound to one API key and one shared httpx client."""

    def __init__(self, api_key: Optional[str], http: httpx.AsyncClient,
                 base_url: str = "https://api.openweathermap.org"):
        self.api_key = api_key
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.geocode_cache = PerformanceCache(ttl_seconds=86400)

    async def geocode(self, query: str) -> Optional[Tuple[float, float]]:
        """First geocoding hit for ``query`` or None. Failures are logged, never raised."""
        cached = self.geocode_cache.get(query)
        if cached:
            return cached
        try:
            response = await self.http.get(
                f"{self.base_url}/geo/1.0/direct",
                params={"q": query, "limit": 1, "appid": self.api_key},
            )
            if response.status_code == 200:
                data = response.json()
                if data:
                    coords = (float(data[0]["lat"]), float(data[0]["lon"]))
                    self.geocode_cache.set(query, coords)
                    return coords
            else:
                print(f"⚠️ Geocoding '{query}' returned HTTP {response.status_code}")
        except Exception as e:
            print(f"⚠️ Geocoding error for '{query}': {e}")
        return None

    async def resolve_location(self, district: Optional[str] = None,
                               upazila: Optional[str] = None) -> Tuple[float, float, str]:
        lat, lon, location_name = CAPITAL

        district = ensure_utf8(district)
        if district and district in DISTRICT_COORDS:
            lat, lon = DISTRICT_COORDS[district]
            location_name = district
        elif district:
            coords = await self.geocode(f"{district},BD")
            if coords:
                lat, lon = coords
                location_name = district

        if upazila:
            coords = await self.geocode(f"{upazila},{district or ''},BD")
            if coords:
                lat, lon = coords
                location_name = upazila

        return lat, lon, location_name

    async def fetch_current(self, lat: float, lon: float) -> dict:
        response = await self.http.get(
            f"{self.base_url}/data/2.5/weather",
            params={"lat": lat, "lon": lon, "units": "metric", "appid": self.api_key},
        )
        if response.status_code != 200:
            print(f"❌ OpenWeather current error: {response.status_code} {response.text[:200]}")
            raise WeatherProviderError(f"Weather API error: {response.status_code}")
        return response.json()

    async def fetch_forecast(self, lat: float, lon: float) -> List[dict]:
        try:
            response = await self.http.get(
                f"{self.base_url}/data/2.5/forecast",
                params={"lat": lat, "lon": lon, "units": "metric", "cnt": 40, "appid": self.api_key},
            )
            if response.status_code != 200:
                print(f"⚠️ OpenWeather forecast error: {response.status_code}")
                return []
            return reduce_forecast(response.json().get("list", []))
        except Exception as e:
            print(f"⚠️ Forecast fetch failed: {e}")
            return []

    async def get_report(self, district: Optional[str] = None,
                         upazila: Optional[str] = None) -> dict:
        """
        Resolve the location and fetch current conditions plus forecast.

        Returns ``current``, ``forecast`` and ``alerts`` for the caller, and
        ``measurements`` (unrounded temperature, humidity, wind in km/h) for
        persistence.
        """
        require(self.api_key, "OPENWEATHER_API_KEY")
        lat, lon, location_name = await self.resolve_location(district, upazila)

        current, forecast = await asyncio.gather(
            self.fetch_current(lat, lon),
            self.fetch_forecast(lat, lon),
        )

        main = current.get("main", {})
        condition = (current.get("weather") or [{}])[0]
        temp = main.get("temp", 0)
        humidity = main.get("humidity", 0)
        wind_kmh = kmh(current.get("wind", {}).get("speed"))

        return {
            "location": {"lat": lat, "lon": lon, "locationName": location_name},
            "current": {
                "temp": round(temp),
                "feels_like": round(main.get("feels_like", temp)),
                "humidity": humidity,
                "wind": round(wind_kmh),
                "weather": condition.get("main"),
                "description": condition.get("description"),
                "icon": condition.get("icon"),
                "city": location_name or current.get("name"),
            },
            "forecast": forecast,
            "alerts": derive_weather_alerts(temp, humidity, wind_kmh, forecast),
            "measurements": {"temp": temp, "humidity": humidity, "wind_kmh": wind_kmh, "main": main},
        }


def record_weather(session, user_id: str, farm_id: str, report: dict, cap: int = 2,
                   now: Optional[datetime] = None) -> dict:
    """Persist weather alerts and at most one weather log per farm per rolling hour."""
    if not farm_belongs_to(session, farm_id, user_id):
        print(f"⚠️ Weather persistence skipped: farm {farm_id} is not owned by {user_id}")
        return {"alerts_saved": 0, "weather_logged": False}

    saved_alerts = save_alerts(session, user_id, farm_id, report["alerts"], cap=cap)

    now = now or datetime.utcnow()
    recent = session.execute(
        select(WeatherLog.id)
        .where(WeatherLog.farm_id == farm_id, WeatherLog.fetched_at >= now - timedelta(hours=1))
        .limit(1)
    ).first()

    logged = False
    if recent is None:
        measurements = report["measurements"]
        rain_days = count_rain_days(report["forecast"])
        session.add(WeatherLog(
            farm_id=farm_id,
            temperature=round(measurements["temp"]),
            humidity=round(measurements["humidity"]),
            wind=round(measurements["wind_kmh"]),
            rain_forecast=f"{rain_days} days" if rain_days > 0 else "none",
            raw_data={"current": measurements["main"], "forecast": report["forecast"]},
            fetched_at=now,
        ))
        session.commit()
        logged = True
    return {"alerts_saved": saved_alerts, "weather_logged": logged}
