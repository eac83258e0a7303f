import uuid
from datetime import datetime

from sqlalchemy import (Column, String, Float, Integer, Boolean, Date, DateTime, Text, JSON,
                        UniqueConstraint)

from database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class RowMixin:
    def as_dict(self) -> dict:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


# ---------------------------------------------------------------------------
# Farm data (read by the advisory pipeline)
# ---------------------------------------------------------------------------

class Profile(RowMixin, Base):
    __tablename__ = "profiles"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, unique=True, nullable=False)
    full_name = Column(String, default="")
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    district = Column(String, nullable=True)
    upazila = Column(String, nullable=True)
    farmer_type = Column(JSON, nullable=True)          # list of strings
    land_size_category = Column(String, nullable=True)
    irrigation_source = Column(String, nullable=True)
    farming_method = Column(String, nullable=True)
    language_pref = Column(String, default="bn")
    created_at = Column(DateTime, default=datetime.utcnow)


class Farm(RowMixin, Base):
    __tablename__ = "farms"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    type = Column(String, default="mixed")
    district = Column(String, nullable=True)
    upazila = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Crop(RowMixin, Base):
    __tablename__ = "crops"
    id = Column(String, primary_key=True, default=new_id)
    farm_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    variety = Column(String, nullable=True)
    growth_stage = Column(String, nullable=True)
    land_size = Column(Float, nullable=True)
    land_unit = Column(String, nullable=True)
    planting_date = Column(Date, nullable=True)
    estimated_harvest = Column(Date, nullable=True)
    last_irrigation_date = Column(Date, nullable=True)
    last_fertilizer_date = Column(Date, nullable=True)
    fertilizer_usage = Column(String, nullable=True)
    irrigation_method = Column(String, nullable=True)
    soil_type = Column(String, nullable=True)
    health_status = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Livestock(RowMixin, Base):
    __tablename__ = "livestock"
    id = Column(String, primary_key=True, default=new_id)
    farm_id = Column(String, index=True, nullable=False)
    animal_type = Column(String, nullable=False)
    breed = Column(String, nullable=True)
    count = Column(Integer, default=1)
    age_group = Column(String, nullable=True)
    feed_cost = Column(Float, nullable=True)
    medicine_cost = Column(Float, nullable=True)
    daily_production_amount = Column(Float, nullable=True)
    daily_production_unit = Column(String, nullable=True)
    last_illness_date = Column(Date, nullable=True)
    vaccination_history = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class FishPond(RowMixin, Base):
    __tablename__ = "fish_ponds"
    id = Column(String, primary_key=True, default=new_id)
    farm_id = Column(String, index=True, nullable=False)
    pond_number = Column(Integer, nullable=False)
    area_decimal = Column(Float, nullable=False)
    depth_feet = Column(Float, nullable=True)
    water_source = Column(String, nullable=True)
    fish_species = Column(JSON, nullable=True)         # list of strings
    fingerling_count = Column(Integer, nullable=True)
    fingerling_cost = Column(Float, nullable=True)
    daily_feed_amount = Column(Float, nullable=True)
    feed_cost = Column(Float, nullable=True)
    current_avg_weight_g = Column(Float, nullable=True)
    expected_sale_date = Column(Date, nullable=True)
    status = Column(String, default="active")
    created_at = Column(DateTime, default=datetime.utcnow)


class FinanceTransaction(RowMixin, Base):
    __tablename__ = "finance_transactions"
    id = Column(String, primary_key=True, default=new_id)
    farm_id = Column(String, index=True, nullable=False)
    type = Column(String, nullable=False)              # revenue | expense
    category = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    transaction_date = Column(Date, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# ---------------------------------------------------------------------------
# Pipeline outputs
# ---------------------------------------------------------------------------

class Alert(RowMixin, Base):
    __tablename__ = "alerts"
    __table_args__ = (
        UniqueConstraint("user_id", "farm_id", "alert_day", "content_key", name="uq_alert_content_per_day"),
        UniqueConstraint("user_id", "farm_id", "alert_day", "title_bn", "title_slot", name="uq_alert_title_slot_per_day"),
    )
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, nullable=False)
    farm_id = Column(String, index=True, nullable=True)
    alert_type = Column(String, nullable=False)
    severity = Column(String, nullable=False)
    title_bn = Column(String, nullable=False, default="")
    message_bn = Column(Text, nullable=False, default="")
    is_read = Column(Boolean, default=False)
    alert_day = Column(Date, nullable=False)
    content_key = Column(String(64), nullable=False)
    title_slot = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)


class FarmTask(RowMixin, Base):
    __tablename__ = "farm_tasks"
    id = Column(String, primary_key=True, default=new_id)
    farm_id = Column(String, index=True, nullable=False)
    title = Column(String, nullable=False)
    title_bn = Column(String, nullable=True)
    due_date = Column(Date, nullable=False)
    priority = Column(String, default="medium")
    task_type = Column(String, default="general")
    description = Column(Text, nullable=True)
    source = Column(String, default="manual")          # ai | manual
    is_completed = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class AIReport(RowMixin, Base):
    __tablename__ = "ai_reports"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, nullable=False)
    farm_id = Column(String, index=True, nullable=True)
    report_type = Column(String, nullable=False)
    title = Column(String, nullable=True)
    explanation_bn = Column(Text, nullable=True)
    action_steps = Column(JSON, nullable=True)
    urgency = Column(String, nullable=True)
    confidence = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class WeatherLog(RowMixin, Base):
    __tablename__ = "weather_logs"
    id = Column(String, primary_key=True, default=new_id)
    farm_id = Column(String, index=True, nullable=False)
    temperature = Column(Integer, nullable=True)
    humidity = Column(Integer, nullable=True)
    wind = Column(Integer, nullable=True)
    rain_forecast = Column(String, nullable=True)
    raw_data = Column(JSON, nullable=True)
    fetched_at = Column(DateTime, default=datetime.utcnow, index=True)


class Image(RowMixin, Base):
    __tablename__ = "images"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, nullable=False)
    farm_id = Column(String, nullable=True)
    storage_path = Column(String, nullable=False)
    image_type = Column(String, nullable=False)
    ai_analysis = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class MarketPrice(RowMixin, Base):
    __tablename__ = "market_prices"
    id = Column(String, primary_key=True, default=new_id)
    product = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    unit = Column(String, nullable=False)
    source = Column(String, nullable=True)
    recorded_at = Column(DateTime, default=datetime.utcnow, index=True)


class EmailOtp(RowMixin, Base):
    __tablename__ = "email_otps"
    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, index=True, nullable=False)
    otp_code = Column(String(6), nullable=False)
    verified = Column(Boolean, default=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class Complaint(RowMixin, Base):
    __tablename__ = "complaints"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, nullable=False)
    name = Column(String, default="")
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    message = Column(Text, nullable=False)
    status = Column(String, default="pending")
    created_at = Column(DateTime, default=datetime.utcnow)


class PaymentRequest(RowMixin, Base):
    __tablename__ = "payment_requests"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, nullable=False)
    plan = Column(String, nullable=False)
    transaction_id = Column(String, nullable=False)
    amount = Column(Float, nullable=True)
    payment_method = Column(String, default="bkash")
    status = Column(String, default="pending")
    created_at = Column(DateTime, default=datetime.utcnow)
