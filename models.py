from datetime import date, datetime, timedelta, timezone

import bcrypt
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

from timeutils import DAY_NAMES, format_minutes, to_minutes

db = SQLAlchemy()

APPOINTMENT_STATUSES = ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show', 'urgent')
# Statuses from which an appointment may still be cancelled or moved
OPEN_STATUSES = ('scheduled', 'confirmed', 'urgent')
USER_ROLES = ('super_admin', 'admin', 'dentist', 'staff')
INVENTORY_CATEGORIES = ('supplies', 'materials', 'equipment', 'medications', 'instruments', 'other')
MOVEMENT_TYPES = ('in', 'out', 'adjustment')
MOVEMENT_REASONS = ('purchase', 'usage', 'adjustment', 'expired', 'damaged', 'transfer', 'return', 'other')


def utc_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now, nullable=False)


user_clinic = db.Table(
    'user_clinic',
    db.Column('user_id', db.Integer, db.ForeignKey('user.id'), primary_key=True),
    db.Column('clinic_id', db.Integer, db.ForeignKey('clinic.id'), primary_key=True),
)


class Clinic(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    branch_name = db.Column(db.String(100), index=True)
    description = db.Column(db.Text)
    street = db.Column(db.String(200))
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))
    zip_code = db.Column(db.String(20))
    country = db.Column(db.String(100))
    phone = db.Column(db.String(20))
    email = db.Column(db.String(120))
    services = db.Column(db.JSON, default=list)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    operating_hours = db.relationship('OperatingHours', backref='clinic', lazy=True,
                                      cascade='all, delete-orphan')

    def hours_for_day(self, day):
        """Operating hours row for a day name ('monday'), or None."""
        day = day.lower()
        return next((h for h in self.operating_hours if h.day == day), None)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'branch_name': self.branch_name,
            'description': self.description,
            'address': {
                'street': self.street,
                'city': self.city,
                'state': self.state,
                'zip_code': self.zip_code,
                'country': self.country,
            },
            'phone': self.phone,
            'email': self.email,
            'services': self.services or [],
            'is_active': self.is_active,
            'operating_hours': [h.to_dict() for h in sorted(self.operating_hours,
                                                            key=lambda h: DAY_NAMES.index(h.day))],
        }


class OperatingHours(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey('clinic.id'), nullable=False)
    day = db.Column(db.String(10), nullable=False)  # 'monday' ... 'sunday'
    open = db.Column(db.String(5))
    close = db.Column(db.String(5))
    closed = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (db.UniqueConstraint('clinic_id', 'day', name='uq_operating_hours_day'),)

    def to_dict(self):
        return {'day': self.day, 'open': self.open, 'close': self.close, 'closed': self.closed}


class User(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(120), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='staff', index=True)
    specialization = db.Column(db.String(100))
    phone = db.Column(db.String(20))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    assigned_clinics = db.relationship('Clinic', secondary=user_clinic, lazy='subquery',
                                       backref=db.backref('staff', lazy=True))

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def set_password(self, password):
        self.password_hash = bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()

    def check_password(self, password):
        return bcrypt.checkpw(password.encode(), self.password_hash.encode())

    def is_assigned_to(self, clinic_id):
        return any(c.id == clinic_id for c in self.assigned_clinics)

    def to_dict(self):
        return {
            'id': self.id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'email': self.email,
            'role': self.role,
            'specialization': self.specialization,
            'phone': self.phone,
            'is_active': self.is_active,
            'assigned_clinics': [{'id': c.id, 'name': c.name} for c in self.assigned_clinics],
        }


class Patient(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(120), index=True)
    phone = db.Column(db.String(20))
    date_of_birth = db.Column(db.Date)
    gender = db.Column(db.String(10))
    address = db.Column(db.String(255))
    medical_history = db.Column(db.Text)
    allergies = db.Column(db.JSON, default=list)
    preferred_clinic_id = db.Column(db.Integer, db.ForeignKey('clinic.id'))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    appointments = db.relationship('Appointment', backref='patient', lazy=True)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {
            'id': self.id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'email': self.email,
            'phone': self.phone,
            'date_of_birth': _iso(self.date_of_birth),
            'gender': self.gender,
            'address': self.address,
            'medical_history': self.medical_history,
            'allergies': self.allergies or [],
            'preferred_clinic_id': self.preferred_clinic_id,
            'is_active': self.is_active,
        }


class DoctorSchedule(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    doctor_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey('clinic.id'), nullable=False, index=True)
    day_of_week = db.Column(db.Integer, nullable=False)  # 0=Sunday ... 6=Saturday
    start_time = db.Column(db.String(5), nullable=False)
    end_time = db.Column(db.String(5), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    notes = db.Column(db.String(500))
    effective_from = db.Column(db.Date)
    effective_until = db.Column(db.Date)

    doctor = db.relationship('User', lazy='joined')
    clinic = db.relationship('Clinic', lazy='joined')

    __table_args__ = (
        db.Index('ix_schedule_doctor_day', 'doctor_id', 'day_of_week'),
        db.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_schedule_day'),
    )

    @property
    def day_name(self):
        return DAY_NAMES[self.day_of_week].capitalize()

    @property
    def duration_minutes(self):
        return to_minutes(self.end_time) - to_minutes(self.start_time)

    def is_effective_on(self, target: date):
        if not self.is_active:
            return False
        if self.effective_from and target < self.effective_from:
            return False
        if self.effective_until and target > self.effective_until:
            return False
        return True

    def to_dict(self):
        return {
            'id': self.id,
            'doctor_id': self.doctor_id,
            'doctor_name': self.doctor.full_name if self.doctor else None,
            'clinic_id': self.clinic_id,
            'clinic_name': self.clinic.name if self.clinic else None,
            'day_of_week': self.day_of_week,
            'day_name': self.day_name,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'duration_minutes': self.duration_minutes,
            'is_active': self.is_active,
            'notes': self.notes,
            'effective_from': _iso(self.effective_from),
            'effective_until': _iso(self.effective_until),
        }


class Appointment(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey('patient.id'), nullable=False, index=True)
    dentist_id = db.Column(db.Integer, db.ForeignKey('user.id'), index=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey('clinic.id'), nullable=False, index=True)
    service_type = db.Column(db.String(100), nullable=False)
    date = db.Column(db.Date, nullable=False, index=True)
    time_slot = db.Column(db.String(5), nullable=False)
    duration = db.Column(db.Integer, nullable=False, default=30)
    status = db.Column(db.String(20), nullable=False, default='scheduled', index=True)
    emergency = db.Column(db.Boolean, default=False, nullable=False)
    notes = db.Column(db.Text)
    treatment_provided = db.Column(db.Text)
    follow_up_required = db.Column(db.Boolean, default=False, nullable=False)
    follow_up_date = db.Column(db.Date)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'))

    dentist = db.relationship('User', foreign_keys=[dentist_id], lazy='joined')
    clinic = db.relationship('Clinic', lazy='joined')

    __table_args__ = (
        # One live booking per dentist/date/start; cancelled rows do not count
        db.Index('uq_appointment_dentist_slot', 'dentist_id', 'date', 'time_slot', unique=True,
                 sqlite_where=db.text("status != 'cancelled'"),
                 postgresql_where=db.text("status != 'cancelled'")),
        db.Index('ix_appointment_clinic_date_status', 'clinic_id', 'date', 'status'),
        db.CheckConstraint('duration > 0', name='ck_appointment_duration'),
    )

    @property
    def start_minutes(self):
        return to_minutes(self.time_slot)

    @property
    def end_minutes(self):
        return self.start_minutes + self.duration

    @property
    def end_time(self):
        return format_minutes(self.end_minutes)

    @property
    def starts_at(self):
        return datetime.combine(self.date, datetime.min.time()) + timedelta(minutes=self.start_minutes)

    def is_past(self, now=None):
        return self.starts_at < (now or datetime.now())

    def is_today(self, today=None):
        return self.date == (today or date.today())

    def can_be_cancelled(self, now=None):
        return self.status in OPEN_STATUSES and not self.is_past(now)

    def can_be_rescheduled(self, now=None):
        return self.status in OPEN_STATUSES and not self.is_past(now)

    def to_dict(self):
        return {
            'id': self.id,
            'patient_id': self.patient_id,
            'patient_name': self.patient.full_name if self.patient else None,
            'dentist_id': self.dentist_id,
            'dentist_name': self.dentist.full_name if self.dentist else None,
            'clinic_id': self.clinic_id,
            'clinic_name': self.clinic.name if self.clinic else None,
            'service_type': self.service_type,
            'date': _iso(self.date),
            'time_slot': self.time_slot,
            'end_time': self.end_time,
            'duration': self.duration,
            'status': self.status,
            'emergency': self.emergency,
            'notes': self.notes,
            'treatment_provided': self.treatment_provided,
            'follow_up_required': self.follow_up_required,
            'follow_up_date': _iso(self.follow_up_date),
            'created_by': self.created_by,
            'created_at': _iso(self.created_at),
        }


class Supplier(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    contact_person = db.Column(db.String(100))
    email = db.Column(db.String(120))
    phone = db.Column(db.String(20))
    street = db.Column(db.String(200))
    city = db.Column(db.String(50))
    state = db.Column(db.String(50))
    zip_code = db.Column(db.String(20))
    country = db.Column(db.String(50))
    tax_id = db.Column(db.String(50))
    website = db.Column(db.String(200))
    notes = db.Column(db.Text)
    payment_terms = db.Column(db.String(100))
    credit_limit = db.Column(db.Float)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    rating = db.Column(db.Integer)
    total_orders = db.Column(db.Integer, default=0, nullable=False)
    total_spent = db.Column(db.Float, default=0, nullable=False)
    items = db.relationship('InventoryItem', backref='supplier', lazy=True)

    __table_args__ = (
        db.CheckConstraint('rating IS NULL OR (rating >= 1 AND rating <= 5)', name='ck_supplier_rating'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'contact_person': self.contact_person,
            'email': self.email,
            'phone': self.phone,
            'address': {
                'street': self.street,
                'city': self.city,
                'state': self.state,
                'zip_code': self.zip_code,
                'country': self.country,
            },
            'tax_id': self.tax_id,
            'website': self.website,
            'notes': self.notes,
            'payment_terms': self.payment_terms,
            'credit_limit': self.credit_limit,
            'is_active': self.is_active,
            'rating': self.rating,
            'total_orders': self.total_orders,
            'total_spent': self.total_spent,
        }


class InventoryItem(TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500))
    category = db.Column(db.String(20), nullable=False)
    sku = db.Column(db.String(20), nullable=False, unique=True)
    barcode = db.Column(db.String(50))
    clinic_id = db.Column(db.Integer, db.ForeignKey('clinic.id'), nullable=False, index=True)
    current_stock = db.Column(db.Integer, nullable=False, default=0)
    minimum_stock = db.Column(db.Integer, nullable=False, default=0)
    maximum_stock = db.Column(db.Integer)
    unit = db.Column(db.String(20), nullable=False, default='pieces')  # pieces, ml, boxes, ...
    cost_price = db.Column(db.Float, nullable=False, default=0)
    selling_price = db.Column(db.Float)
    supplier_id = db.Column(db.Integer, db.ForeignKey('supplier.id'))
    location = db.Column(db.String(100))
    expiry_date = db.Column(db.Date)
    batch_number = db.Column(db.String(50))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_low_stock = db.Column(db.Boolean, default=False, nullable=False, index=True)
    last_restocked = db.Column(db.DateTime)
    last_used = db.Column(db.DateTime)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'))

    clinic = db.relationship('Clinic', lazy='joined')
    movements = db.relationship('StockMovement', backref='item', lazy='dynamic',
                                order_by='StockMovement.performed_at.desc()')

    __table_args__ = (
        db.CheckConstraint('current_stock >= 0', name='ck_item_stock_non_negative'),
        db.CheckConstraint('minimum_stock >= 0', name='ck_item_minimum_non_negative'),
    )

    @property
    def stock_status(self):
        if self.current_stock <= 0:
            return 'out_of_stock'
        if self.current_stock <= self.minimum_stock:
            return 'low_stock'
        if self.maximum_stock and self.current_stock >= self.maximum_stock:
            return 'overstock'
        return 'in_stock'

    def days_until_expiry(self, today=None):
        if not self.expiry_date:
            return None
        return (self.expiry_date - (today or date.today())).days

    def refresh_low_stock(self):
        self.is_low_stock = (self.current_stock or 0) <= (self.minimum_stock or 0)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'sku': self.sku,
            'barcode': self.barcode,
            'clinic_id': self.clinic_id,
            'current_stock': self.current_stock,
            'minimum_stock': self.minimum_stock,
            'maximum_stock': self.maximum_stock,
            'unit': self.unit,
            'cost_price': self.cost_price,
            'selling_price': self.selling_price,
            'supplier_id': self.supplier_id,
            'location': self.location,
            'expiry_date': _iso(self.expiry_date),
            'days_until_expiry': self.days_until_expiry(),
            'batch_number': self.batch_number,
            'is_active': self.is_active,
            'is_low_stock': self.is_low_stock,
            'stock_status': self.stock_status,
            'last_restocked': _iso(self.last_restocked),
            'last_used': _iso(self.last_used),
        }


@event.listens_for(InventoryItem, 'before_insert')
@event.listens_for(InventoryItem, 'before_update')
def _sync_low_stock(mapper, connection, item):
    item.refresh_low_stock()
    if item.sku:
        item.sku = item.sku.strip().upper()


class StockMovement(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey('inventory_item.id'), nullable=False, index=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey('clinic.id'), nullable=False, index=True)
    type = db.Column(db.String(10), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(20), nullable=False)
    description = db.Column(db.String(500))
    reference = db.Column(db.String(100))  # PO number, treatment id, ...
    unit_cost = db.Column(db.Float)
    total_cost = db.Column(db.Float)
    batch_number = db.Column(db.String(50))
    expiry_date = db.Column(db.Date)
    performed_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    performed_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    notes = db.Column(db.Text)

    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='ck_movement_quantity'),
        db.CheckConstraint('new_stock >= 0', name='ck_movement_new_stock'),
    )

    @property
    def direction(self):
        return {'in': 'incoming', 'out': 'outgoing'}.get(self.type, 'adjustment')

    @property
    def stock_change(self):
        return self.new_stock - self.previous_stock

    def to_dict(self):
        return {
            'id': self.id,
            'inventory_item_id': self.inventory_item_id,
            'clinic_id': self.clinic_id,
            'type': self.type,
            'direction': self.direction,
            'quantity': self.quantity,
            'previous_stock': self.previous_stock,
            'new_stock': self.new_stock,
            'stock_change': self.stock_change,
            'reason': self.reason,
            'description': self.description,
            'reference': self.reference,
            'unit_cost': self.unit_cost,
            'total_cost': self.total_cost,
            'batch_number': self.batch_number,
            'expiry_date': _iso(self.expiry_date),
            'performed_by': self.performed_by,
            'performed_at': _iso(self.performed_at),
            'notes': self.notes,
        }


@event.listens_for(StockMovement, 'before_insert')
def _compute_total_cost(mapper, connection, movement):
    if movement.unit_cost is not None and movement.quantity:
        movement.total_cost = movement.unit_cost * movement.quantity
