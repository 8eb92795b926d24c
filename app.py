from datetime import date, timedelta

from flask import Flask, request
from flask_cors import CORS
from sqlalchemy import or_

from api_helpers import apply_address, arg_bool, arg_int, get_or_404, paginate, parse_body, success
from appointments_api import register_appointment_routes
from config import get_config
from errors import ConflictError, NotFoundError, ValidationError, register_error_handlers
from inventory_api import register_inventory_routes
from logging_config import RequestIDMiddleware, get_logger, setup_structured_logging
from models import (Clinic, DoctorSchedule, InventoryItem, OperatingHours, Patient, Supplier, User, db)
from schedules_api import register_schedule_routes
from schemas import (ClinicCreate, ClinicUpdate, OperatingHoursReplace, PatientCreate, PatientUpdate,
                     UserCreate, UserUpdate)

logger = get_logger(__name__)


# ---------------- HELPER FUNCTIONS ----------------
def _seed_sample_data():
    """Populate an empty database with one branch, its dentists and some stock."""
    if Clinic.query.count() > 0:
        return

    clinic = Clinic(name='DentaCare', branch_name='Downtown', city='Cairo', country='Egypt',
                    phone='+20 2 1234 5678', email='downtown@dentacare.example',
                    services=['Check-up', 'Cleaning', 'Filling', 'Root Canal', 'Whitening'])
    for day in ('saturday', 'sunday', 'monday', 'tuesday', 'wednesday', 'thursday'):
        clinic.operating_hours.append(OperatingHours(day=day, open='11:00', close='23:00'))
    clinic.operating_hours.append(OperatingHours(day='friday', closed=True))
    db.session.add(clinic)

    dentists = [
        User(first_name='Mona', last_name='Hassan', email='mona.hassan@dentacare.example',
             role='dentist', specialization='Orthodontics'),
        User(first_name='Omar', last_name='Khalil', email='omar.khalil@dentacare.example',
             role='dentist', specialization='Endodontics'),
    ]
    admin = User(first_name='Clinic', last_name='Admin', email='admin@dentacare.example', role='admin')
    for user in dentists + [admin]:
        user.set_password('change-me-please')
        user.assigned_clinics.append(clinic)
    db.session.add_all(dentists + [admin])
    db.session.flush()

    # Sunday..Thursday, split shifts for the first dentist
    for day in range(0, 5):
        db.session.add(DoctorSchedule(doctor_id=dentists[0].id, clinic_id=clinic.id, day_of_week=day,
                                      start_time='11:00', end_time='15:00'))
        db.session.add(DoctorSchedule(doctor_id=dentists[0].id, clinic_id=clinic.id, day_of_week=day,
                                      start_time='17:00', end_time='21:00'))
        db.session.add(DoctorSchedule(doctor_id=dentists[1].id, clinic_id=clinic.id, day_of_week=day,
                                      start_time='14:00', end_time='23:00'))

    supplier = Supplier(name='Nile Dental Supplies', contact_person='Youssef Adel',
                        email='orders@niledental.example', rating=4)
    db.session.add(supplier)
    db.session.flush()

    sample_inventory = [
        InventoryItem(name='Nitrile Gloves (M)', category='supplies', sku='GLV-M', clinic_id=clinic.id,
                      current_stock=40, minimum_stock=10, unit='boxes', cost_price=6.5, supplier_id=supplier.id),
        InventoryItem(name='Composite Resin A2', category='materials', sku='RES-A2', clinic_id=clinic.id,
                      current_stock=3, minimum_stock=5, unit='syringes', cost_price=18.0, supplier_id=supplier.id),
        InventoryItem(name='Lidocaine 2%', category='medications', sku='LID-2', clinic_id=clinic.id,
                      current_stock=25, minimum_stock=10, unit='cartridges', cost_price=1.2,
                      expiry_date=date.today() + timedelta(days=20), supplier_id=supplier.id),
        InventoryItem(name='Saliva Ejectors', category='supplies', sku='SAL-EJ', clinic_id=clinic.id,
                      current_stock=0, minimum_stock=50, unit='pieces', cost_price=0.05),
    ]
    db.session.add_all(sample_inventory)
    db.session.commit()
    logger.info("sample_data_seeded", clinic_id=clinic.id)


def _replace_operating_hours(clinic, hours):
    clinic.operating_hours.clear()
    if clinic.id is not None:
        # Old rows must be gone before new ones hit the per-day unique constraint
        db.session.flush()
    for h in hours:
        clinic.operating_hours.append(OperatingHours(day=h.day, open=None if h.closed else h.open,
                                                     close=None if h.closed else h.close, closed=h.closed))


def _assign_clinics(user, clinic_ids):
    for clinic_id in clinic_ids:
        clinic = get_or_404(Clinic, clinic_id)
        if not user.is_assigned_to(clinic.id):
            user.assigned_clinics.append(clinic)


def create_app(config_name=None):
    config = get_config(config_name)
    setup_structured_logging(config.LOG_LEVEL, json_logs=config.LOG_JSON)

    app = Flask(__name__)
    app.config.from_object(config)
    app.json.sort_keys = app.config['JSON_SORT_KEYS']

    CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}}, expose_headers=['X-Request-ID'])
    app.wsgi_app = RequestIDMiddleware(app.wsgi_app)

    # Initialize database
    db.init_app(app)
    register_error_handlers(app)

    with app.app_context():
        db.create_all()
        if app.config['SEED_SAMPLE_DATA']:
            _seed_sample_data()

    logger.info("app_created", config=config.__name__, database=app.config['SQLALCHEMY_DATABASE_URI'].split('://')[0])

    @app.route('/api/health')
    def api_health():
        return success({'status': 'ok'})

    # ---------------- CLINICS ----------------
    @app.route('/api/clinics')
    def api_list_clinics():
        query = Clinic.query
        active = arg_bool('is_active')
        if active is not None:
            query = query.filter_by(is_active=active)
        city = request.args.get('city')
        if city:
            query = query.filter(Clinic.city.ilike(f'%{city}%'))
        clinics, pagination = paginate(query.order_by(Clinic.name))
        return success([c.to_dict() for c in clinics], pagination=pagination)

    @app.route('/api/clinics', methods=['POST'])
    def api_create_clinic():
        body = parse_body(ClinicCreate)
        clinic = Clinic(**body.model_dump(exclude={'address', 'operating_hours'}))
        apply_address(clinic, body.address)
        _replace_operating_hours(clinic, body.operating_hours)
        db.session.add(clinic)
        db.session.commit()
        logger.info("clinic_created", clinic_id=clinic.id)
        return success(clinic.to_dict(), 'Clinic created successfully', 201)

    @app.route('/api/clinics/<int:clinic_id>')
    def api_get_clinic(clinic_id):
        return success(get_or_404(Clinic, clinic_id).to_dict())

    @app.route('/api/clinics/<int:clinic_id>', methods=['PUT'])
    def api_update_clinic(clinic_id):
        clinic = get_or_404(Clinic, clinic_id)
        body = parse_body(ClinicUpdate)
        for field, value in body.model_dump(exclude_unset=True, exclude={'address', 'operating_hours'}).items():
            setattr(clinic, field, value)
        apply_address(clinic, body.address)
        if body.operating_hours is not None:
            _replace_operating_hours(clinic, body.operating_hours)
        db.session.commit()
        return success(clinic.to_dict(), 'Clinic updated successfully')

    @app.route('/api/clinics/<int:clinic_id>', methods=['DELETE'])
    def api_delete_clinic(clinic_id):
        clinic = get_or_404(Clinic, clinic_id)
        clinic.is_active = False
        db.session.commit()
        logger.info("clinic_deactivated", clinic_id=clinic.id)
        return success(None, 'Clinic deactivated successfully')

    @app.route('/api/clinics/<int:clinic_id>/operating-hours')
    def api_get_operating_hours(clinic_id):
        return success(get_or_404(Clinic, clinic_id).to_dict()['operating_hours'])

    @app.route('/api/clinics/<int:clinic_id>/operating-hours', methods=['PUT'])
    def api_replace_operating_hours(clinic_id):
        clinic = get_or_404(Clinic, clinic_id)
        _replace_operating_hours(clinic, parse_body(OperatingHoursReplace).operating_hours)
        db.session.commit()
        return success(clinic.to_dict()['operating_hours'], 'Operating hours updated successfully')

    @app.route('/api/clinics/<int:clinic_id>/dentists')
    def api_clinic_dentists(clinic_id):
        clinic = get_or_404(Clinic, clinic_id)
        dentists = [u for u in clinic.staff if u.role == 'dentist' and u.is_active]
        return success([d.to_dict() for d in sorted(dentists, key=lambda d: d.id)])

    # ---------------- USERS ----------------
    @app.route('/api/users')
    def api_list_users():
        query = User.query
        role = request.args.get('role')
        if role:
            query = query.filter_by(role=role)
        clinic_id = arg_int('clinic_id')
        if clinic_id:
            query = query.filter(User.assigned_clinics.any(Clinic.id == clinic_id))
        active = arg_bool('is_active')
        if active is not None:
            query = query.filter_by(is_active=active)
        users, pagination = paginate(query.order_by(User.last_name, User.first_name))
        return success([u.to_dict() for u in users], pagination=pagination)

    @app.route('/api/users', methods=['POST'])
    def api_create_user():
        body = parse_body(UserCreate)
        if User.query.filter_by(email=body.email).first():
            raise ConflictError('A user with this email already exists')
        user = User(**body.model_dump(exclude={'password', 'assigned_clinics'}))
        user.set_password(body.password)
        _assign_clinics(user, body.assigned_clinics)
        db.session.add(user)
        db.session.commit()
        logger.info("user_created", user_id=user.id, role=user.role)
        return success(user.to_dict(), 'User created successfully', 201)

    @app.route('/api/users/<int:user_id>')
    def api_get_user(user_id):
        return success(get_or_404(User, user_id).to_dict())

    @app.route('/api/users/<int:user_id>', methods=['PUT'])
    def api_update_user(user_id):
        user = get_or_404(User, user_id)
        changes = parse_body(UserUpdate).model_dump(exclude_unset=True)
        password = changes.pop('password', None)
        if changes.get('email') and changes['email'] != user.email:
            if User.query.filter_by(email=changes['email']).first():
                raise ConflictError('A user with this email already exists')
        for field, value in changes.items():
            setattr(user, field, value)
        if password:
            user.set_password(password)
        db.session.commit()
        return success(user.to_dict(), 'User updated successfully')

    @app.route('/api/users/<int:user_id>', methods=['DELETE'])
    def api_delete_user(user_id):
        user = get_or_404(User, user_id)
        user.is_active = False
        db.session.commit()
        logger.info("user_deactivated", user_id=user.id)
        return success(None, 'User deactivated successfully')

    @app.route('/api/users/<int:user_id>/clinics/<int:clinic_id>', methods=['POST'])
    def api_assign_clinic(user_id, clinic_id):
        user = get_or_404(User, user_id)
        _assign_clinics(user, [clinic_id])
        db.session.commit()
        return success(user.to_dict(), 'Clinic assigned successfully')

    @app.route('/api/users/<int:user_id>/clinics/<int:clinic_id>', methods=['DELETE'])
    def api_remove_clinic(user_id, clinic_id):
        user = get_or_404(User, user_id)
        clinic = next((c for c in user.assigned_clinics if c.id == clinic_id), None)
        if clinic is None:
            raise NotFoundError('Clinic assignment')
        user.assigned_clinics.remove(clinic)
        db.session.commit()
        return success(user.to_dict(), 'Clinic removed successfully')

    # ---------------- PATIENTS ----------------
    @app.route('/api/patients')
    def api_list_patients():
        query = Patient.query.filter(Patient.is_active.is_(True))
        search = request.args.get('search', '').strip()
        if search:
            pattern = f'%{search}%'
            query = query.filter(or_(Patient.first_name.ilike(pattern), Patient.last_name.ilike(pattern),
                                     Patient.email.ilike(pattern), Patient.phone.ilike(pattern)))
        clinic_id = arg_int('clinic_id')
        if clinic_id:
            query = query.filter_by(preferred_clinic_id=clinic_id)
        patients, pagination = paginate(query.order_by(Patient.last_name, Patient.first_name))
        return success([p.to_dict() for p in patients], pagination=pagination)

    @app.route('/api/patients', methods=['POST'])
    def api_create_patient():
        body = parse_body(PatientCreate)
        if body.preferred_clinic_id:
            get_or_404(Clinic, body.preferred_clinic_id)
        if not body.email and not body.phone:
            raise ValidationError('Either email or phone is required', field='phone')
        patient = Patient(**body.model_dump())
        db.session.add(patient)
        db.session.commit()
        logger.info("patient_created", patient_id=patient.id)
        return success(patient.to_dict(), 'Patient created successfully', 201)

    @app.route('/api/patients/<int:patient_id>')
    def api_get_patient(patient_id):
        return success(get_or_404(Patient, patient_id).to_dict())

    @app.route('/api/patients/<int:patient_id>', methods=['PUT'])
    def api_update_patient(patient_id):
        patient = get_or_404(Patient, patient_id)
        changes = parse_body(PatientUpdate).model_dump(exclude_unset=True)
        if changes.get('preferred_clinic_id'):
            get_or_404(Clinic, changes['preferred_clinic_id'])
        for field, value in changes.items():
            if field in ('first_name', 'last_name', 'allergies', 'is_active') and value is None:
                continue
            setattr(patient, field, value)
        db.session.commit()
        return success(patient.to_dict(), 'Patient updated successfully')

    @app.route('/api/patients/<int:patient_id>', methods=['DELETE'])
    def api_delete_patient(patient_id):
        patient = get_or_404(Patient, patient_id)
        patient.is_active = False
        db.session.commit()
        logger.info("patient_deactivated", patient_id=patient.id)
        return success(None, 'Patient deleted successfully')

    register_schedule_routes(app)
    register_appointment_routes(app)
    register_inventory_routes(app)

    return app


# ---------------- MAIN ----------------
if __name__ == '__main__':
    app = create_app()
    app.run(debug=app.config.get('DEBUG', False), host='127.0.0.1', port=5000)
