import asyncio
import warnings
from contextlib import asynccontextmanager
from typing import Any, List, Optional

import httpx
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import JSONResponse

from advisory import SmartAdvisory
from auth import SupabaseAuth
from chat import AdvisoryChat
from complaints import ComplaintDesk
from context_builder import ContextBuilder
from database import init_db, make_engine, make_session_factory
from email_otp import EmailOtpService
from errors import AdvisoryServiceError, AuthError, InvalidRequest
from farm_insights import FarmInsights
from llm import AdvisoryModel, UpstreamStream
from mailer import ResendMailer
from market import MarketPrices
from payments import PaymentDesk
from settings import ALLOW_ORIGINS, APP_NAME, HOST, PORT, Settings, load_settings
from weather import (WeatherService, is_valid_uuid, record_weather, unique_by_title,
                     validate_location_text)

# Suppress Pydantic V1 style warnings
warnings.filterwarnings('ignore', category=UserWarning, message='.*Pydantic V1.*')


class Services:
    """Every collaborator the endpoints need, wired from one Settings object."""

    def __init__(self, settings: Settings, session_factory, http: httpx.AsyncClient,
                 model: Optional[AdvisoryModel] = None):
        self.settings = settings
        self.session_factory = session_factory
        self.http = http

        self.auth = SupabaseAuth(settings, http)
        self.model = model or AdvisoryModel(settings, http)
        self.weather = WeatherService(settings.openweather_api_key, http, settings.openweather_base_url)
        contexts = ContextBuilder(session_factory, self.weather, settings.finance_history_limit)
        self.advisory = SmartAdvisory(settings, self.model, contexts, session_factory)
        self.insights = FarmInsights(settings, self.model, session_factory)
        self.market = MarketPrices(self.model, session_factory)
        self.chat = AdvisoryChat(self.model)

        mailer = ResendMailer(settings, http)
        self.otp = EmailOtpService(session_factory, mailer)
        self.complaints = ComplaintDesk(settings, mailer, session_factory)
        self.payments = PaymentDesk(settings, mailer, session_factory)

    async def aclose(self):
        await self.http.aclose()


def build_services(settings: Optional[Settings] = None) -> Services:
    settings = settings or load_settings()
    engine = make_engine(settings.database_url)
    init_db(engine)
    http = httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=10.0))
    print(f"✅ {settings.app_name} services ready (model: {settings.llm_model})")
    return Services(settings, make_session_factory(engine), http)


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _services is not None:
        await _services.aclose()


app = FastAPI(
    title=APP_NAME,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOW_ORIGINS,  # configurable via env
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Type", "Accept-Language"]
)


# Middleware to ensure UTF-8 encoding in all responses
@app.middleware("http")
async def add_utf8_header(request: Request, call_next):
    response = await call_next(request)
    if "application/json" in response.headers.get("content-type", ""):
        response.headers["Content-Type"] = "application/json; charset=utf-8"
    return response


@app.exception_handler(AdvisoryServiceError)
async def advisory_error_handler(request: Request, exc: AdvisoryServiceError):
    if exc.status_code >= 500:
        print(f"❌ {request.url.path}: {type(exc).__name__}: {exc.message}")
        message = exc.public_message
    else:
        message = exc.message
    return JSONResponse(status_code=exc.status_code, content={"error": message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    print(f"⚠️ {request.url.path}: rejected body ({len(exc.errors())} errors)")
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    print(f"❌ {request.url.path}: unhandled {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Something went wrong"})


async def current_user(authorization: Optional[str] = Header(None),
                       services: Services = Depends(get_services)) -> str:
    return await services.auth.require_user(authorization)


async def json_body(request: Request) -> dict:
    """Request body as a dict; anything unparsable counts as empty."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def relay(stream: UpstreamStream) -> StreamingResponse:
    return StreamingResponse(stream.iter_bytes(), media_type=stream.media_type)


# --- Request models ---

class ImageDiagnosisRequest(BaseModel):
    image: Optional[str] = None
    type: Optional[str] = None
    farmId: Optional[str] = None
    storagePath: Optional[str] = None
    language: Optional[str] = None


class ProductionAnalysisRequest(BaseModel):
    harvestRecords: Optional[Any] = None
    livestockLogs: Optional[Any] = None
    language: Optional[str] = None


class FarmItemSuggestionRequest(BaseModel):
    itemType: Optional[str] = None
    itemName: Optional[Any] = None
    growthStage: Optional[Any] = None
    soilType: Optional[Any] = None
    breed: Optional[Any] = None
    animalType: Optional[Any] = None
    language: Optional[str] = None


class EmailOtpRequest(BaseModel):
    action: Optional[str] = None
    email: Optional[Any] = None
    otp_code: Optional[Any] = None


class AdvisoryChatRequest(BaseModel):
    type: Optional[str] = None
    messages: Optional[List[Any]] = None
    image: Optional[str] = None
    farmContext: Optional[Any] = None


class ComplaintRequest(BaseModel):
    name: Optional[Any] = None
    email: Optional[Any] = None
    phone: Optional[Any] = None
    message: Optional[Any] = None


class PaymentNotificationRequest(BaseModel):
    plan: Optional[Any] = None
    transaction_id: Optional[Any] = None
    amount: Optional[Any] = None
    payment_method: Optional[Any] = None
    sender_mobile: Optional[Any] = None


# --- Endpoints ---

@app.post("/functions/v1/smart-advisory")
async def smart_advisory(request: Request, authorization: Optional[str] = Header(None),
                         services: Services = Depends(get_services)):
    user_id = await services.auth.get_user_id(authorization)
    body = await json_body(request)
    farm_id = body.get("farmId")
    if not user_id or not farm_id or not isinstance(farm_id, str):
        raise AuthError("Unauthorized or missing farmId")

    mode = body.get("type")
    result = await services.advisory.run(mode if isinstance(mode, str) else None, user_id, farm_id)
    if isinstance(result, UpstreamStream):
        return relay(result)
    return result


@app.post("/functions/v1/weather-engine")
async def weather_engine(request: Request, user_id: str = Depends(current_user),
                         services: Services = Depends(get_services)):
    body = await json_body(request)
    district = validate_location_text(body.get("district"))
    upazila = validate_location_text(body.get("upazila"))
    farm_id = body.get("farmId") if is_valid_uuid(body.get("farmId")) else None

    report = await services.weather.get_report(district, upazila)

    if farm_id:
        def persist():
            with services.session_factory() as session:
                return record_weather(session, user_id, farm_id, report,
                                      cap=services.settings.alert_title_daily_cap)
        try:
            await asyncio.to_thread(persist)
        except SQLAlchemyError as e:
            print(f"❌ Weather persistence failed for farm {farm_id}: {e}")

    return {
        "current": report["current"],
        "forecast": report["forecast"],
        "alerts": unique_by_title(report["alerts"]),
    }


@app.post("/functions/v1/image-diagnosis")
async def image_diagnosis(req: ImageDiagnosisRequest, user_id: str = Depends(current_user),
                          services: Services = Depends(get_services)):
    return await services.insights.diagnose_image(
        user_id, req.image, kind=req.type, farm_id=req.farmId,
        storage_path=req.storagePath, language=req.language,
    )


@app.post("/functions/v1/production-analysis")
async def production_analysis(req: ProductionAnalysisRequest, user_id: str = Depends(current_user),
                              services: Services = Depends(get_services)):
    return await services.insights.analyze_production(req.harvestRecords, req.livestockLogs,
                                                      language=req.language)


@app.post("/functions/v1/farm-item-suggestions")
async def farm_item_suggestions(req: FarmItemSuggestionRequest, user_id: str = Depends(current_user),
                                services: Services = Depends(get_services)):
    suggestions = await services.insights.suggest_for_item(
        req.itemType, item_name=req.itemName, growth_stage=req.growthStage, soil_type=req.soilType,
        breed=req.breed, animal_type=req.animalType, language=req.language,
    )
    return {"suggestions": suggestions}


@app.post("/functions/v1/market-prices")
async def market_prices(user_id: str = Depends(current_user),
                        services: Services = Depends(get_services)):
    return await services.market.get_prices()


@app.post("/functions/v1/essential-prices")
async def essential_prices(user_id: str = Depends(current_user),
                           services: Services = Depends(get_services)):
    return await services.market.essential_prices()


@app.post("/functions/v1/ai-advisory")
async def ai_advisory(req: AdvisoryChatRequest, user_id: str = Depends(current_user),
                      services: Services = Depends(get_services)):
    stream = await services.chat.stream(req.type, req.messages, image=req.image,
                                        farm_context=req.farmContext)
    return relay(stream)


@app.post("/functions/v1/email-otp")
async def email_otp(req: EmailOtpRequest, services: Services = Depends(get_services)):
    if req.action == "send":
        return await services.otp.send(req.email)
    if req.action == "verify":
        if await services.otp.verify(req.email, req.otp_code):
            return {"success": True, "verified": True}
        return JSONResponse(status_code=400,
                            content={"error": "Invalid or expired OTP code", "verified": False})
    raise InvalidRequest("Invalid action")


@app.post("/functions/v1/contact-complaint")
async def contact_complaint(req: ComplaintRequest, user_id: str = Depends(current_user),
                            services: Services = Depends(get_services)):
    return await services.complaints.submit(user_id, name=req.name, email=req.email,
                                            phone=req.phone, message=req.message)


@app.post("/functions/v1/payment-notification")
async def payment_notification(req: PaymentNotificationRequest, user_id: str = Depends(current_user),
                               services: Services = Depends(get_services)):
    return await services.payments.submit(
        user_id, plan=req.plan, transaction_id=req.transaction_id, amount=req.amount,
        payment_method=req.payment_method, sender_mobile=req.sender_mobile,
    )


@app.get("/health")
async def health():
    return {"status": "ok", "app": APP_NAME}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
