"""
Smart-advisory pipeline: one request type in, one of three results out.

* ``recommendations`` - structured advice, mirrored into alerts and an AI report
* ``finance_analysis`` - free-text financial analysis streamed straight through
* ``smart_schedule`` - a seven day task list written to the farm schedule
"""

import asyncio
import json
from datetime import date
from typing import List

from sqlalchemy.exc import SQLAlchemyError

from alerts import save_alerts
from context_builder import ContextBuilder, FarmContext
from errors import InvalidRequest
from llm import AdvisoryModel, function_tool
from models import AIReport, FarmTask
from perf import PerformanceMonitor
from settings import Settings
from tool_payload import extract_tool_list, shape_recommendations, shape_tasks

MODES = ("recommendations", "finance_analysis", "smart_schedule")

SYSTEM_PROMPT = """You are KrishiOS AI Decision Engine — বাংলাদেশের কৃষকদের জন্য একটি বুদ্ধিমান কৃষি সিদ্ধান্ত সিস্টেম।

আপনাকে ৫ ধরনের ডেটা দেওয়া হবে:
1. User Profile (জেলা, কৃষক টাইপ, জমির আকার, সেচ উৎস)
2. Weather Data (তাপমাত্রা, আর্দ্রতা, বৃষ্টি, বাতাস)
3. Crop Data (ফসলের নাম, রোপণ তারিখ, বৃদ্ধির ধাপ, সার, সেচ) — কৃষক বাংলা, ইংরেজি বা বাঙ্গিশ যেকোনো ভাষায় লেখেন
4. Livestock Data (পশুর ধরন, সংখ্যা, উৎপাদন, টিকাদান)
5. Financial Data (আয়, ব্যয়, লাভ/ক্ষতি)

আপনার কাজ:
- Rule-based smart logic ব্যবহার করে নির্ভুল পরামর্শ দিন
- সেচ সিদ্ধান্ত, সার প্রয়োগ সময়, রোগ ঝুঁকি, পশু স্বাস্থ্য, লাভ/ক্ষতি বিশ্লেষণ
- বাংলায় উত্তর দিন
- প্রতিটি পরামর্শে কেন এটা গুরুত্বপূর্ণ তার ব্যাখ্যা দিন
- Confidence percentage দিন"""

RECOMMENDATIONS_ASK = (
    "উপরের সব ডেটা বিশ্লেষণ করে ৪-৬টি সবচেয়ে গুরুত্বপূর্ণ পরামর্শ দিন। সেচ, সার, রোগ ঝুঁকি, "
    "পশু স্বাস্থ্য, মাছ চাষ (পানির তাপমাত্রা, অক্সিজেন, খাদ্য দক্ষতা, বৃদ্ধি পূর্বাভাস, লাভ অনুমান), "
    "এবং আর্থিক বিষয় কভার করুন।"
)
FINANCE_ASK = "বিস্তারিত আর্থিক বিশ্লেষণ দিন: লাভ/ক্ষতি, খরচ অপ্টিমাইজেশন, কোন ফসল/পশু বেশি লাভজনক।"
SCHEDULE_ASK = "আগামী ৭ দিনের জন্য কাজের তালিকা তৈরি করুন। সার প্রয়োগ, টিকা, সেচ, ফসল কাটা — সব কিছু কভার করুন।"

RECOMMENDATION_TYPES = [
    "irrigation", "fertilizer", "disease_risk", "animal_health", "financial", "harvest",
    "weather_alert", "fish_temperature", "fish_feeding", "fish_growth", "fish_profit",
]

RECOMMENDATIONS_TOOL = function_tool(
    "generate_recommendations",
    "Generate structured farming recommendations based on all data streams",
    {
        "type": "object",
        "properties": {
            "recommendations": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string", "enum": RECOMMENDATION_TYPES},
                        "emoji": {"type": "string", "description": "Relevant emoji"},
                        "title_bn": {"type": "string", "description": "Title in Bangla"},
                        "title_en": {"type": "string", "description": "Title in English"},
                        "description_bn": {"type": "string", "description": "Short description in Bangla"},
                        "description_en": {"type": "string", "description": "Short description in English"},
                        "explanation_bn": {"type": "string", "description": "Detailed explanation of why this recommendation, in Bangla"},
                        "explanation_en": {"type": "string", "description": "Detailed explanation in English"},
                        "action_steps_bn": {"type": "array", "items": {"type": "string"}, "description": "Action steps in Bangla"},
                        "urgency": {"type": "string", "enum": ["জরুরি", "মাঝারি", "তথ্যমূলক"]},
                        "confidence": {"type": "number", "description": "Confidence percentage 0-100"},
                        "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                    },
                    "required": ["type", "emoji", "title_bn", "title_en", "description_bn", "description_en",
                                 "explanation_bn", "action_steps_bn", "urgency", "confidence", "priority"],
                    "additionalProperties": False,
                },
            },
        },
        "required": ["recommendations"],
        "additionalProperties": False,
    },
)

SCHEDULE_TOOL = function_tool(
    "generate_schedule",
    "Generate a 7-day smart schedule for the farm",
    {
        "type": "object",
        "properties": {
            "tasks": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "title": {"type": "string"},
                        "title_bn": {"type": "string"},
                        "due_date": {"type": "string", "description": "ISO date YYYY-MM-DD"},
                        "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                        "task_type": {"type": "string", "enum": ["irrigation", "fertilizer", "vaccination", "harvest",
                                                                 "pest_control", "feeding", "general"]},
                        "description": {"type": "string", "description": "Brief description in Bangla"},
                    },
                    "required": ["title", "title_bn", "due_date", "priority", "task_type"],
                    "additionalProperties": False,
                },
            },
        },
        "required": ["tasks"],
        "additionalProperties": False,
    },
)

PRIORITY_SEVERITY = {"high": "high", "medium": "medium", "low": "low"}


def advisory_messages(context: FarmContext, ask: str) -> List[dict]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": f"{context.text}\n\n{ask}"},
    ]


def recommendation_alerts(recommendations: List[dict]) -> List[dict]:
    """One alert candidate per recommendation."""
    return [
        {
            "type": f"ai_{rec['type']}",
            "severity": PRIORITY_SEVERITY.get(rec.get("priority"), "medium"),
            "title_bn": rec["title_bn"],
            "message_bn": rec["description_bn"],
        }
        for rec in recommendations
    ]


def parse_due_date(value):
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


class SmartAdvisory:
    def __init__(self, settings: Settings, model: AdvisoryModel, contexts: ContextBuilder,
                 session_factory):
        self.settings = settings
        self.model = model
        self.contexts = contexts
        self.session_factory = session_factory

    async def run(self, mode: str, user_id: str, farm_id: str):
        """
        Dispatch one advisory request.

        Returns a JSON-able dict for ``recommendations`` and ``smart_schedule``
        and an ``UpstreamStream`` for ``finance_analysis``.
        """
        if mode not in MODES:
            raise InvalidRequest("Unknown type. Use: recommendations, finance_analysis, smart_schedule")

        monitor = PerformanceMonitor(f"smart-advisory/{mode}").start()
        try:
            context = await self.contexts.build(user_id, farm_id)
            monitor.checkpoint("context_built")

            if mode == "recommendations":
                result = await self.recommendations(user_id, farm_id, context, monitor)
            elif mode == "finance_analysis":
                result = await self.model.open_stream(advisory_messages(context, FINANCE_ASK))
                monitor.checkpoint("stream_opened")
            else:
                result = await self.smart_schedule(farm_id, context, monitor)
            return result
        finally:
            monitor.report()

    async def recommendations(self, user_id: str, farm_id: str, context: FarmContext,
                              monitor: PerformanceMonitor) -> dict:
        message = await self.model.call_tool(advisory_messages(context, RECOMMENDATIONS_ASK),
                                             RECOMMENDATIONS_TOOL)
        monitor.checkpoint("llm_done")

        recommendations = shape_recommendations(extract_tool_list(message, "recommendations"))
        await asyncio.to_thread(self._persist_recommendations, user_id, farm_id, recommendations)
        monitor.checkpoint("persisted")

        return {"recommendations": recommendations, "weather": context.weather}

    def _persist_recommendations(self, user_id: str, farm_id: str, recommendations: List[dict]):
        with self.session_factory() as session:
            try:
                save_alerts(session, user_id, farm_id, recommendation_alerts(recommendations),
                            cap=self.settings.alert_title_daily_cap)

                top = recommendations[0] if recommendations else {}
                session.add(AIReport(
                    user_id=user_id,
                    farm_id=farm_id,
                    report_type="smart_advisory",
                    title="Smart Advisory Report",
                    explanation_bn=json.dumps(recommendations, ensure_ascii=False),
                    action_steps=[{"title": r["title_bn"], "steps": r["action_steps_bn"]} for r in recommendations],
                    urgency=top.get("urgency") or "মাঝারি",
                    confidence=top.get("confidence") or 75,
                ))
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                print(f"❌ Failed to persist recommendations for farm {farm_id}: {e}")

    async def smart_schedule(self, farm_id: str, context: FarmContext,
                             monitor: PerformanceMonitor) -> dict:
        message = await self.model.call_tool(advisory_messages(context, SCHEDULE_ASK), SCHEDULE_TOOL)
        monitor.checkpoint("llm_done")

        tasks = shape_tasks(extract_tool_list(message, "tasks"))
        saved = await asyncio.to_thread(self._persist_tasks, farm_id, tasks)
        monitor.checkpoint("persisted")

        return {"tasks": tasks, "saved": saved}

    def _persist_tasks(self, farm_id: str, tasks: List[dict]) -> int:
        saved = 0
        with self.session_factory() as session:
            for task in tasks:
                due = parse_due_date(task.get("due_date"))
                if due is None or not task.get("title"):
                    print(f"⚠️ Skipping task without a usable title/due date: {task.get('title')!r}")
                    continue
                try:
                    session.add(FarmTask(
                        farm_id=farm_id,
                        title=task["title"],
                        title_bn=task.get("title_bn"),
                        due_date=due,
                        priority=task.get("priority") or "medium",
                        task_type=task.get("task_type") or "general",
                        description=task.get("description") or None,
                        source="ai",
                    ))
                    session.commit()
                    saved += 1
                except SQLAlchemyError as e:
                    session.rollback()
                    print(f"⚠️ Failed to save task '{task.get('title')}': {e}")
        if saved:
            print(f"✅ Saved {saved}/{len(tasks)} scheduled tasks for farm {farm_id}")
        return saved
