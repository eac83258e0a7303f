import json
from typing import List, Optional

from errors import InvalidRequest
from farm_insights import is_supported_image
from llm import AdvisoryModel, UpstreamStream
from perf import sanitize_text

CHAT_SYSTEM_PROMPT = """You are KrishiOS AI - একজন বিশেষজ্ঞ কৃষি পরামর্শদাতা (Expert Agricultural Advisor) for Bangladeshi farmers.

RULES:
1. ALWAYS respond in Bangla (বাংলা) first, with English translation if helpful
2. Give practical, actionable farming advice for Bangladesh climate and conditions
3. Consider local crop varieties (BRRI rice, local vegetables), livestock breeds (Black Bengal goat, Sonali chicken), and Bangladeshi seasons
4. Reference local units: bigha, mon, taka (৳)
5. For disease detection: describe symptoms, likely disease, treatment, and prevention
6. For weather advice: consider Bangladesh monsoon patterns
7. Be empathetic and supportive - many farmers have limited resources
8. Include urgency level and confidence when giving advice
9. Structure responses with clear action steps

When analyzing crop/livestock images:
- Identify visible symptoms or conditions
- Suggest likely diagnosis with confidence %
- Provide immediate treatment steps
- Suggest preventive measures
- Recommend when to consult a local agricultural officer"""

DISEASE_DETECT_ASK = ("এই ছবি বিশ্লেষণ করুন এবং রোগ শনাক্ত করুন। বিস্তারিত পরামর্শ দিন। "
                      "(Analyze this image and detect any disease. Give detailed advice.)")

MAX_MESSAGES = 50
MAX_MESSAGE_CHARS = 3000
MAX_CONTEXT_CHARS = 5000


def chat_history(messages) -> List[dict]:
    """Keep the first 50 turns; roles collapse to user/assistant and text is sanitized."""
    history = []
    for m in messages[:MAX_MESSAGES]:
        if not isinstance(m, dict):
            continue
        content = m.get("content")
        if isinstance(content, str):
            content = sanitize_text(content, MAX_MESSAGE_CHARS)
        history.append({"role": "assistant" if m.get("role") == "assistant" else "user", "content": content})
    return history


def build_chat_messages(kind: Optional[str], messages, image=None, farm_context=None) -> List[dict]:
    prompt = [{"role": "system", "content": CHAT_SYSTEM_PROMPT}]
    if farm_context:
        context = json.dumps(farm_context, ensure_ascii=False, default=str)[:MAX_CONTEXT_CHARS]
        prompt.append({"role": "system", "content": f"Current farm context: {context}"})

    if kind == "disease_detect" and image:
        if not is_supported_image(image):
            raise InvalidRequest("Invalid image format")
        prompt.append({"role": "user", "content": [
            {"type": "text", "text": DISEASE_DETECT_ASK},
            {"type": "image_url", "image_url": {"url": image}},
        ]})
    elif isinstance(messages, list) and messages:
        prompt.extend(chat_history(messages))
    else:
        raise InvalidRequest("No messages provided")
    return prompt


class AdvisoryChat:
    """Free-form farming Q&A, streamed back to the client."""

    def __init__(self, model: AdvisoryModel):
        self.model = model

    async def stream(self, kind: Optional[str], messages, image=None, farm_context=None) -> UpstreamStream:
        prompt = build_chat_messages(kind, messages, image, farm_context)
        return await self.model.open_stream(prompt, vision=(kind == "disease_detect"))
