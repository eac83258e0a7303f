"""
Market price estimates.

Daily wholesale bazaar prices are generated once per UTC day and cached in the
market_prices table; prices of farming inputs are estimated on demand.
"""

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select

from errors import ToolPayloadError
from llm import AdvisoryModel, function_tool
from models import MarketPrice
from tool_payload import extract_tool_arguments

PRICE_RETENTION = timedelta(days=7)

MARKET_PRODUCTS = (
    "ধান (মোটা), ধান (চিকন), চাল (মিনিকেট), গম, ভুট্টা, পেঁয়াজ, আলু, টমেটো, বেগুন, মরিচ (কাঁচা), "
    "রসুন, আদা, হলুদ, ডাল (মসুর), সরিষার তেল, দুধ, ডিম (হালি), মুরগি (ব্রয়লার), গরুর মাংস, "
    "মাছ (রুই), মাছ (পাঙ্গাস), পাট"
)

ESSENTIAL_ITEMS = (
    "urea_50kg", "tsp_50kg", "mop_50kg", "dap_50kg", "organic_compost_50kg", "gypsum_50kg",
    "cattle_feed_50kg", "layer_feed_50kg", "broiler_feed_50kg", "goat_feed_25kg", "fish_feed_25kg",
    "duck_feed_25kg", "pesticide_1l", "fungicide_500ml", "animal_vitamin_pack", "herbicide_1l",
)

MARKET_PRICES_TOOL = function_tool(
    "save_market_prices",
    "Save today's market prices for Bangladesh agricultural products",
    {
        "type": "object",
        "properties": {
            "prices": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "product": {"type": "string", "description": "Product name in Bangla"},
                        "price": {"type": "number", "description": "Price in BDT"},
                        "unit": {"type": "string", "description": "Unit in Bangla (e.g., কেজি, মণ, হালি, লিটার)"},
                        "source": {"type": "string", "description": "Market source name in Bangla"},
                    },
                    "required": ["product", "price", "unit", "source"],
                    "additionalProperties": False,
                },
            },
        },
        "required": ["prices"],
        "additionalProperties": False,
    },
)

ESSENTIAL_PRICES_TOOL = function_tool(
    "return_prices",
    "Return item prices as key-value pairs",
    {
        "type": "object",
        "properties": {
            "prices": {
                "type": "object",
                "description": "Map of item key to price in BDT",
                "additionalProperties": {"type": "number"},
            },
        },
        "required": ["prices"],
        "additionalProperties": False,
    },
)


class PriceQuote(BaseModel):
    product: str
    price: float
    unit: str
    source: Optional[str] = None


def _price_row(row: MarketPrice) -> dict:
    data = row.as_dict()
    data["recorded_at"] = row.recorded_at.isoformat() if row.recorded_at else None
    return data


def parse_price_quotes(arguments: dict) -> List[dict]:
    prices = arguments.get("prices")
    if not isinstance(prices, list):
        raise ToolPayloadError("Market prices payload has no price list")
    quotes = []
    for item in prices:
        try:
            quotes.append(PriceQuote.model_validate(item).model_dump())
        except ValidationError as e:
            print(f"⚠️ Dropping malformed price quote: {e.error_count()} errors")
    return quotes


class MarketPrices:
    def __init__(self, model: AdvisoryModel, session_factory):
        self.model = model
        self.session_factory = session_factory

    def _todays_prices(self, day_start: datetime) -> List[dict]:
        with self.session_factory() as session:
            rows = session.execute(
                select(MarketPrice)
                .where(MarketPrice.recorded_at >= day_start)
                .order_by(MarketPrice.recorded_at.desc())
            ).scalars().all()
            return [_price_row(r) for r in rows]

    def _replace_prices(self, quotes: List[dict], now: datetime) -> List[dict]:
        with self.session_factory() as session:
            session.execute(delete(MarketPrice).where(MarketPrice.recorded_at < now - PRICE_RETENTION))
            rows = [MarketPrice(recorded_at=now, **quote) for quote in quotes]
            session.add_all(rows)
            session.commit()
            return [_price_row(r) for r in rows]

    async def get_prices(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        day_start = datetime(now.year, now.month, now.day)

        cached = await asyncio.to_thread(self._todays_prices, day_start)
        if cached:
            return {"prices": cached, "source": "cache"}

        today = now.date().isoformat()
        messages = [
            {"role": "system", "content": (
                "You are a Bangladesh agricultural market price expert. Generate realistic current wholesale "
                "market prices for common agricultural products sold in Bangladesh bazaars.\n"
                "Use realistic prices in BDT (৳) based on current Bangladesh market trends for "
                f"{now.strftime('%B %Y')}. Prices should reflect seasonal variations and recent trends.\n"
                "Products MUST be in Bangla. Include the source bazaar name."
            )},
            {"role": "user", "content": (
                f"আজকের তারিখ: {today}। বাংলাদেশের প্রধান বাজারের পাইকারি দর দিন। নিচের পণ্যগুলোর দাম দিন:\n\n"
                f"{MARKET_PRODUCTS}\n\n"
                "প্রতিটি পণ্যের জন্য বাস্তবসম্মত দাম দিন যা বর্তমান বাজারের কাছাকাছি।"
            )},
        ]
        message = await self.model.call_tool(messages, MARKET_PRICES_TOOL)
        quotes = parse_price_quotes(extract_tool_arguments(message))

        fresh = await asyncio.to_thread(self._replace_prices, quotes, now)
        print(f"✅ Stored {len(fresh)} fresh market prices for {today}")
        return {"prices": fresh, "source": "fresh"}

    async def essential_prices(self, now: Optional[datetime] = None) -> dict:
        today = (now or datetime.utcnow()).date().isoformat()
        messages = [
            {"role": "system", "content": "You are a Bangladesh agricultural market expert. Return realistic "
                                          "average retail prices in BDT for farming essentials in Bangladesh "
                                          "for the current date."},
            {"role": "user", "content": f"Date: {today}. Give me average prices in BDT for these items in "
                                        f"Bangladesh market:\n{', '.join(ESSENTIAL_ITEMS)}"},
        ]
        message = await self.model.call_tool(messages, ESSENTIAL_PRICES_TOOL)
        try:
            prices = extract_tool_arguments(message).get("prices") or {}
        except ToolPayloadError as e:
            print(f"⚠️ Essential prices payload unusable: {e.message}")
            prices = {}
        if not isinstance(prices, dict):
            prices = {}
        return {"prices": {k: v for k, v in prices.items() if isinstance(v, (int, float))}}
