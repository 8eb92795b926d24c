"""Pydantic models for API request validation."""
import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import APPOINTMENT_STATUSES, INVENTORY_CATEGORIES, MOVEMENT_REASONS, USER_ROLES
from timeutils import DAY_NAMES, format_minutes, is_valid_time, to_minutes

EMAIL_PATTERN = r'^[^@\s]+@[^@\s]+\.[^@\s]+$'

AppointmentStatus = Literal[APPOINTMENT_STATUSES]
UserRole = Literal[USER_ROLES]
InventoryCategory = Literal[INVENTORY_CATEGORIES]
MovementReason = Literal[MOVEMENT_REASONS]
DayName = Literal[tuple(DAY_NAMES)]


def _check_time(value):
    if value is not None and not is_valid_time(value):
        raise ValueError('Invalid time format. Use HH:MM')
    # Normalise '9:00' to '09:00' so stored slots compare as strings
    return format_minutes(to_minutes(value)) if value else value


class RequestModel(BaseModel):
    """Base for request bodies: unknown keys are ignored, strings trimmed."""
    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)


class Address(RequestModel):
    street: Optional[str] = Field(None, max_length=200)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)


# ---------------- APPOINTMENTS ----------------

class AppointmentCreate(RequestModel):
    """Request schema for booking an appointment."""
    patient_id: int = Field(..., gt=0)
    clinic_id: int = Field(..., gt=0)
    dentist_id: Optional[int] = Field(None, gt=0, description="Auto-assigned when omitted")
    service_type: str = Field(..., min_length=1, max_length=100)
    date: datetime.date
    time_slot: str = Field(..., examples=["11:30"])
    duration: Optional[int] = Field(None, description="Minutes; the configured default when omitted")
    emergency: bool = False
    notes: Optional[str] = Field(None, max_length=1000)

    validate_time_slot = field_validator('time_slot')(_check_time)


class AppointmentUpdate(RequestModel):
    dentist_id: Optional[int] = Field(None, gt=0)
    service_type: Optional[str] = Field(None, min_length=1, max_length=100)
    date: Optional[datetime.date] = None
    time_slot: Optional[str] = None
    duration: Optional[int] = None
    status: Optional[AppointmentStatus] = None
    emergency: Optional[bool] = None
    notes: Optional[str] = Field(None, max_length=1000)

    validate_time_slot = field_validator('time_slot')(_check_time)


class RescheduleRequest(RequestModel):
    date: datetime.date
    time_slot: str
    duration: Optional[int] = None
    dentist_id: Optional[int] = Field(None, gt=0)
    reason: Optional[str] = Field(None, max_length=500)

    validate_time_slot = field_validator('time_slot')(_check_time)


class CancelRequest(RequestModel):
    reason: Optional[str] = Field(None, max_length=500)


class CompleteRequest(RequestModel):
    treatment_provided: Optional[str] = Field(None, max_length=2000)
    follow_up_required: bool = False
    follow_up_date: Optional[datetime.date] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode='after')
    def follow_up_needs_date(self):
        if self.follow_up_required and self.follow_up_date is None:
            raise ValueError('follow_up_date is required when follow_up_required is set')
        return self


class AutoBookRequest(RequestModel):
    patient_id: int = Field(..., gt=0)
    clinic_id: int = Field(..., gt=0)
    service_type: str = Field(..., min_length=1, max_length=100)
    date: datetime.date
    duration: Optional[int] = None
    emergency: bool = False
    notes: Optional[str] = Field(None, max_length=1000)


# ---------------- DOCTOR SCHEDULES ----------------

class ScheduleCreate(RequestModel):
    doctor_id: int = Field(..., gt=0)
    clinic_id: int = Field(..., gt=0)
    day_of_week: int = Field(..., ge=0, le=6, description="0=Sunday ... 6=Saturday")
    start_time: str
    end_time: str
    is_active: bool = True
    notes: Optional[str] = Field(None, max_length=500)
    effective_from: Optional[datetime.date] = None
    effective_until: Optional[datetime.date] = None

    validate_times = field_validator('start_time', 'end_time')(_check_time)

    @model_validator(mode='after')
    def check_ranges(self):
        if to_minutes(self.start_time) >= to_minutes(self.end_time):
            raise ValueError('End time must be after start time')
        if self.effective_from and self.effective_until and self.effective_until < self.effective_from:
            raise ValueError('effective_until must not be before effective_from')
        return self


class ScheduleUpdate(RequestModel):
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = Field(None, max_length=500)
    effective_from: Optional[datetime.date] = None
    effective_until: Optional[datetime.date] = None

    validate_times = field_validator('start_time', 'end_time')(_check_time)


class BulkScheduleCreate(RequestModel):
    schedules: List[ScheduleCreate] = Field(..., min_length=1, max_length=100)


# ---------------- CLINICS ----------------

class OperatingHoursIn(RequestModel):
    day: DayName
    open: Optional[str] = None
    close: Optional[str] = None
    closed: bool = False

    validate_times = field_validator('open', 'close')(_check_time)

    @field_validator('day', mode='before')
    @classmethod
    def lower_day(cls, value):
        return value.lower() if isinstance(value, str) else value

    @model_validator(mode='after')
    def open_before_close(self):
        if self.closed:
            return self
        if not self.open or not self.close:
            raise ValueError(f'Opening and closing times are required for {self.day}')
        if to_minutes(self.open) >= to_minutes(self.close):
            raise ValueError(f'Closing time must be after opening time for {self.day}')
        return self


def _unique_days(hours):
    if hours is not None:
        days = [h.day for h in hours]
        if len(days) != len(set(days)):
            raise ValueError('Each day may appear only once in operating hours')
    return hours


class ClinicCreate(RequestModel):
    name: str = Field(..., min_length=2, max_length=100)
    branch_name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    address: Optional[Address] = None
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    services: List[str] = Field(default_factory=list)
    operating_hours: List[OperatingHoursIn] = Field(default_factory=list)
    is_active: bool = True

    validate_hours = field_validator('operating_hours')(_unique_days)


class ClinicUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    branch_name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    address: Optional[Address] = None
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    services: Optional[List[str]] = None
    operating_hours: Optional[List[OperatingHoursIn]] = None
    is_active: Optional[bool] = None

    validate_hours = field_validator('operating_hours')(_unique_days)


class OperatingHoursReplace(RequestModel):
    operating_hours: List[OperatingHoursIn]

    validate_hours = field_validator('operating_hours')(_unique_days)


# ---------------- USERS & PATIENTS ----------------

class UserCreate(RequestModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=120)
    password: str = Field(..., min_length=8, max_length=128)
    role: UserRole = 'staff'
    specialization: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    assigned_clinics: List[int] = Field(default_factory=list)

    @field_validator('email')
    @classmethod
    def lower_email(cls, value):
        return value.lower()


class UserUpdate(RequestModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, max_length=120)
    password: Optional[str] = Field(None, min_length=8, max_length=128)
    role: Optional[UserRole] = None
    specialization: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    is_active: Optional[bool] = None

    @field_validator('email')
    @classmethod
    def lower_email(cls, value):
        return value.lower() if value else value


class PatientCreate(RequestModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, max_length=120)
    phone: Optional[str] = Field(None, max_length=20)
    date_of_birth: Optional[datetime.date] = None
    gender: Optional[Literal['male', 'female', 'other']] = None
    address: Optional[str] = Field(None, max_length=255)
    medical_history: Optional[str] = None
    allergies: List[str] = Field(default_factory=list)
    preferred_clinic_id: Optional[int] = Field(None, gt=0)

    @field_validator('date_of_birth')
    @classmethod
    def not_in_future(cls, value):
        if value and value > datetime.date.today():
            raise ValueError('Date of birth cannot be in the future')
        return value


class PatientUpdate(PatientCreate):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    allergies: Optional[List[str]] = None
    is_active: Optional[bool] = None


# ---------------- INVENTORY ----------------

class InventoryItemCreate(RequestModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category: InventoryCategory
    sku: str = Field(..., min_length=1, max_length=20)
    barcode: Optional[str] = Field(None, max_length=50)
    clinic_id: int = Field(..., gt=0)
    current_stock: int = Field(0, ge=0)
    minimum_stock: int = Field(0, ge=0)
    maximum_stock: Optional[int] = Field(None, ge=0)
    unit: str = Field('pieces', min_length=1, max_length=20)
    cost_price: float = Field(0, ge=0)
    selling_price: Optional[float] = Field(None, ge=0)
    supplier_id: Optional[int] = Field(None, gt=0)
    location: Optional[str] = Field(None, max_length=100)
    expiry_date: Optional[datetime.date] = None
    batch_number: Optional[str] = Field(None, max_length=50)

    @model_validator(mode='after')
    def max_above_min(self):
        if self.maximum_stock is not None and self.maximum_stock < self.minimum_stock:
            raise ValueError('maximum_stock must not be below minimum_stock')
        return self


class InventoryItemUpdate(RequestModel):
    """Stock level itself changes only through stock movements."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[InventoryCategory] = None
    barcode: Optional[str] = Field(None, max_length=50)
    minimum_stock: Optional[int] = Field(None, ge=0)
    maximum_stock: Optional[int] = Field(None, ge=0)
    unit: Optional[str] = Field(None, min_length=1, max_length=20)
    cost_price: Optional[float] = Field(None, ge=0)
    selling_price: Optional[float] = Field(None, ge=0)
    supplier_id: Optional[int] = Field(None, gt=0)
    location: Optional[str] = Field(None, max_length=100)
    expiry_date: Optional[datetime.date] = None
    batch_number: Optional[str] = Field(None, max_length=50)
    is_active: Optional[bool] = None


class StockUpdate(RequestModel):
    """For ``adjustment`` the quantity is the new stock level."""
    type: Literal['in', 'out', 'adjustment']
    quantity: int = Field(..., gt=0)
    reason: Optional[MovementReason] = None
    description: Optional[str] = Field(None, max_length=500)
    reference: Optional[str] = Field(None, max_length=100)
    unit_cost: Optional[float] = Field(None, ge=0)
    batch_number: Optional[str] = Field(None, max_length=50)
    expiry_date: Optional[datetime.date] = None
    notes: Optional[str] = Field(None, max_length=1000)


# ---------------- SUPPLIERS ----------------

class SupplierCreate(RequestModel):
    name: str = Field(..., min_length=1, max_length=100)
    contact_person: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, max_length=120)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[Address] = None
    tax_id: Optional[str] = Field(None, max_length=50)
    website: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=1000)
    payment_terms: Optional[str] = Field(None, max_length=100)
    credit_limit: Optional[float] = Field(None, ge=0)
    rating: Optional[int] = Field(None, ge=1, le=5)


class SupplierUpdate(SupplierCreate):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    is_active: Optional[bool] = None


class SupplierRating(RequestModel):
    rating: int = Field(..., ge=1, le=5)
