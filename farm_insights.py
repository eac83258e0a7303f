"""
One-shot AI helpers around a single farm item: photo diagnosis, production
analysis and suggestions for a freshly added crop or animal.
"""

import asyncio
import json
from typing import List, Optional

from alerts import save_alerts
from errors import InvalidRequest, ToolPayloadError
from llm import AdvisoryModel, function_tool
from models import Image
from perf import sanitize_text
from settings import Settings
from tool_payload import extract_tool_arguments, extract_tool_list

DIAGNOSIS_TYPES = ("crop", "livestock")

IMAGE_DIAGNOSIS_TOOL = function_tool(
    "image_diagnosis",
    "Return structured diagnosis from the image",
    {
        "type": "object",
        "properties": {
            "emoji": {"type": "string"},
            "title_bn": {"type": "string", "description": "Diagnosis title in Bangla"},
            "title_en": {"type": "string", "description": "Diagnosis title in English"},
            "diagnosis": {"type": "string", "description": "What was identified"},
            "diagnosis_bn": {"type": "string", "description": "Detailed diagnosis in Bangla"},
            "diagnosis_en": {"type": "string", "description": "Detailed diagnosis in English"},
            "risk_level": {"type": "string", "enum": ["low", "medium", "high"]},
            "confidence": {"type": "number", "description": "Confidence 0-100"},
            "recommendations_bn": {"type": "array", "items": {"type": "string"}, "description": "Action steps in Bangla"},
            "recommendations_en": {"type": "array", "items": {"type": "string"}, "description": "Action steps in English"},
        },
        "required": ["emoji", "title_bn", "title_en", "diagnosis", "diagnosis_bn", "diagnosis_en",
                     "risk_level", "confidence", "recommendations_bn", "recommendations_en"],
    },
)

PRODUCTION_ANALYSIS_TOOL = function_tool(
    "production_analysis",
    "Return structured production analysis",
    {
        "type": "object",
        "properties": {
            "yield_per_unit": {"type": "number"},
            "yield_comparison": {"type": "string", "enum": ["above_average", "average", "below_average"]},
            "total_revenue": {"type": "number"},
            "total_cost": {"type": "number"},
            "net_profit": {"type": "number"},
            "profit_margin_percent": {"type": "number"},
            "cost_breakdown": {
                "type": "object",
                "properties": {
                    "fertilizer": {"type": "number"}, "labor": {"type": "number"},
                    "irrigation": {"type": "number"}, "medicine": {"type": "number"},
                },
                "required": ["fertilizer", "labor", "irrigation", "medicine"],
            },
            "alerts": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string", "enum": ["warning", "info", "success"]},
                        "message": {"type": "string"},
                    },
                    "required": ["type", "message"],
                },
            },
            "recommendations": {"type": "array", "items": {"type": "string"}},
            "summary_bn": {"type": "string"},
        },
        "required": ["yield_per_unit", "total_revenue", "total_cost", "net_profit",
                     "profit_margin_percent", "alerts", "recommendations", "summary_bn"],
    },
)

SUGGESTIONS_TOOL = function_tool(
    "return_suggestions",
    "Return farming suggestions as structured data",
    {
        "type": "object",
        "properties": {
            "suggestions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "emoji": {"type": "string", "description": "A relevant emoji"},
                        "title": {"type": "string", "description": "Short title (max 8 words)"},
                        "description": {"type": "string", "description": "Detailed actionable advice (2-3 sentences)"},
                        "category": {"type": "string", "enum": ["fertilizer", "feed", "vaccine", "pesticide",
                                                                "irrigation", "health", "general"]},
                    },
                    "required": ["emoji", "title", "description", "category"],
                    "additionalProperties": False,
                },
            },
        },
        "required": ["suggestions"],
        "additionalProperties": False,
    },
)

_ANALYSIS_FORMAT = """
JSON format:
{
  "yield_per_unit": number,
  "yield_comparison": "above_average" | "average" | "below_average",
  "total_revenue": number,
  "total_cost": number,
  "net_profit": number,
  "profit_margin_percent": number,
  "cost_breakdown": { "fertilizer": number, "labor": number, "irrigation": number, "medicine": number },
  "alerts": [{ "type": "warning" | "info" | "success", "message": string }],
  "recommendations": [string],
  "summary_bn": string
}"""

ANALYSIS_PROMPT_BN = """তুমি একজন বাংলাদেশি কৃষি বিশ্লেষক। কৃষকের উৎপাদন ডেটা বিশ্লেষণ করো এবং JSON ফরম্যাটে উত্তর দাও।
তোমার বিশ্লেষণে থাকবে:
1. yield_analysis: প্রতি বিঘায় উৎপাদন হার ও জাতীয় গড়ের সাথে তুলনা
2. profit_analysis: মোট আয়, মোট খরচ, নিট লাভ, লাভের শতাংশ
3. cost_optimization: কোন খরচ বেশি এবং কীভাবে কমানো যায়
4. trend_alerts: উৎপাদন কমেছে বা খরচ বেড়েছে কিনা
5. recommendations: ৩-৫টি সুপারিশ
""" + _ANALYSIS_FORMAT

ANALYSIS_PROMPT_EN = """You are an agricultural analyst. Analyze the farmer's production data and respond in JSON.
Include:
1. yield_analysis: production rate per unit land vs national average
2. profit_analysis: revenue, cost, net profit, margin %
3. cost_optimization: which costs are high
4. trend_alerts: production drops or cost increases
5. recommendations: 3-5 actionable tips
""" + _ANALYSIS_FORMAT

MAX_ANALYSIS_RECORDS = 100
MAX_ANALYSIS_CHARS = 50000


def is_supported_image(image) -> bool:
    return isinstance(image, str) and (image.startswith("data:image/") or image.startswith("https://"))


def diagnosis_prompt(kind: str, bangla: bool) -> str:
    if bangla:
        focus = ("ফসল/পাতা/মাটির ছবি দেখে রোগ, পোকামাকড়, পুষ্টির ঘাটতি, বৃদ্ধির অবস্থা চিহ্নিত করো।"
                 if kind == "crop" else "পশুর ছবি দেখে স্বাস্থ্য, রোগের লক্ষণ, পুষ্টি অবস্থা চিহ্নিত করো।")
        return f"তুমি একজন বাংলাদেশি কৃষি বিশেষজ্ঞ AI। কৃষকের দেওয়া ছবি বিশ্লেষণ করো।\n{focus}\nবাংলায় সহজ ভাষায় উত্তর দাও।"
    focus = ("Identify diseases, pests, nutrient deficiencies, and growth status from crop/leaf/soil images."
             if kind == "crop" else "Identify health issues, disease symptoms, and nutrition status from livestock images.")
    return f"You are an agricultural expert AI for Bangladesh. Analyze the farmer's uploaded image.\n{focus}\nRespond clearly."


def limit_production_payload(harvest_records, livestock_logs) -> str:
    """Serialize at most 100 entries of each list, then cut the JSON text to 50 000 chars."""
    harvest = harvest_records[:MAX_ANALYSIS_RECORDS] if isinstance(harvest_records, list) else []
    logs = livestock_logs[:MAX_ANALYSIS_RECORDS] if isinstance(livestock_logs, list) else []
    payload = json.dumps({"harvestRecords": harvest, "livestockLogs": logs}, ensure_ascii=False, default=str)
    return payload[:MAX_ANALYSIS_CHARS]


def suggestion_prompt(item_type: str, item_name: str, growth_stage: str, soil_type: str,
                      breed: str, animal_type: str) -> str:
    if item_type == "crop":
        details = ""
        if growth_stage:
            details += f", growth stage: {growth_stage}"
        if soil_type:
            details += f", soil type: {soil_type}"
        return (
            f'A Bangladeshi farmer just added a new crop: "{item_name}"{details}.\n'
            "Give exactly 4-5 specific, practical suggestions for this crop in Bangladesh context. Include:\n"
            "- Which specific fertilizers to use and when (e.g., Urea, TSP, MOP, DAP)\n"
            "- Which pesticides/fungicides may be needed\n"
            "- Irrigation tips specific to this crop\n"
            "- Any disease prevention measures\n"
            "Each suggestion should be actionable and specific to this crop."
        )
    breed_text = f", breed: {breed}" if breed else ""
    return (
        f'A Bangladeshi farmer just added livestock: "{animal_type or item_name}"{breed_text}.\n'
        "Give exactly 4-5 specific, practical suggestions for this animal in Bangladesh context. Include:\n"
        "- What feed to provide and daily quantity\n"
        "- Which vaccines are essential and their schedule\n"
        "- Common diseases to watch for and prevention\n"
        "- Vitamins or supplements needed\n"
        "Each suggestion should be actionable and specific to this animal type."
    )


class FarmInsights:
    def __init__(self, settings: Settings, model: AdvisoryModel, session_factory):
        self.settings = settings
        self.model = model
        self.session_factory = session_factory

    async def diagnose_image(self, user_id: str, image, kind: Optional[str] = None,
                             farm_id: Optional[str] = None, storage_path: Optional[str] = None,
                             language: Optional[str] = None) -> dict:
        if not image or not isinstance(image, str):
            raise InvalidRequest("No image provided")
        if not is_supported_image(image):
            raise InvalidRequest("Invalid image format")
        kind = kind if kind in DIAGNOSIS_TYPES else "crop"
        bangla = language == "bn"

        ask = ("এই ছবিটি বিশ্লেষণ করো এবং সমস্যা ও সমাধান বলো।" if bangla
               else "Analyze this image and identify issues and solutions.")
        messages = [
            {"role": "system", "content": diagnosis_prompt(kind, bangla)},
            {"role": "user", "content": [
                {"type": "text", "text": ask},
                {"type": "image_url", "image_url": {"url": image}},
            ]},
        ]
        message = await self.model.call_tool(messages, IMAGE_DIAGNOSIS_TOOL, vision=True)
        try:
            diagnosis = extract_tool_arguments(message)
        except ToolPayloadError as e:
            print(f"⚠️ Image diagnosis returned no tool call: {e.message}")
            diagnosis = {}

        await asyncio.to_thread(self._record_diagnosis, user_id, kind, diagnosis, farm_id, storage_path)
        return diagnosis

    def _record_diagnosis(self, user_id: str, kind: str, diagnosis: dict,
                          farm_id: Optional[str], storage_path: Optional[str]):
        with self.session_factory() as session:
            if storage_path:
                session.add(Image(
                    user_id=user_id,
                    farm_id=farm_id or None,
                    storage_path=str(storage_path)[:500],
                    image_type="crop_diagnosis" if kind == "crop" else "livestock_diagnosis",
                    ai_analysis=diagnosis,
                ))
                session.commit()

            if farm_id and diagnosis.get("risk_level") == "high":
                save_alerts(session, user_id, farm_id, [{
                    "type": "crop_disease" if kind == "crop" else "livestock_health",
                    "severity": "critical",
                    "title_bn": diagnosis.get("title_bn") or "",
                    "message_bn": diagnosis.get("diagnosis_bn") or "",
                }], cap=self.settings.alert_title_daily_cap)

    async def analyze_production(self, harvest_records, livestock_logs,
                                 language: Optional[str] = None) -> dict:
        messages = [
            {"role": "system", "content": ANALYSIS_PROMPT_BN if language == "bn" else ANALYSIS_PROMPT_EN},
            {"role": "user", "content": limit_production_payload(harvest_records, livestock_logs)},
        ]
        message = await self.model.call_tool(messages, PRODUCTION_ANALYSIS_TOOL)
        try:
            return extract_tool_arguments(message)
        except ToolPayloadError:
            pass

        # some responses put the JSON in the message body instead of a tool call
        content = getattr(message, "content", None) or "{}"
        try:
            analysis = json.loads(content) if isinstance(content, str) else None
        except json.JSONDecodeError as e:
            raise ToolPayloadError(f"Production analysis is not JSON: {e}") from e
        if not isinstance(analysis, dict):
            raise ToolPayloadError("Production analysis is not an object")
        return analysis

    async def suggest_for_item(self, item_type: Optional[str], item_name=None, growth_stage=None,
                               soil_type=None, breed=None, animal_type=None,
                               language: Optional[str] = None) -> List[dict]:
        item_name = sanitize_text(item_name, 100)
        growth_stage = sanitize_text(growth_stage, 50)
        soil_type = sanitize_text(soil_type, 50)
        breed = sanitize_text(breed, 100)
        animal_type = sanitize_text(animal_type, 100)
        if not item_name and not animal_type:
            raise InvalidRequest("Item name is required")

        messages = [
            {"role": "system", "content": "You are a Bangladesh agricultural expert. Provide practical farming "
                                          f"suggestions. Always respond in {'Bangla' if language == 'bn' else 'English'}."},
            {"role": "user", "content": suggestion_prompt(item_type, item_name, growth_stage, soil_type,
                                                          breed, animal_type)},
        ]
        message = await self.model.call_tool(messages, SUGGESTIONS_TOOL)
        return [s for s in extract_tool_list(message, "suggestions") if isinstance(s, dict)]
