"""Shared test fixtures."""
from datetime import date, timedelta

import pytest

from app import create_app
from models import Clinic, DoctorSchedule, OperatingHours, Patient, User, db
from timeutils import day_of_week

MONDAY = 1
TUESDAY = 2


def next_weekday(weekday, start=None):
    """Next date strictly after ``start`` (default today) falling on ``weekday`` (0=Sunday)."""
    current = (start or date.today()) + timedelta(days=1)
    while day_of_week(current) != weekday:
        current += timedelta(days=1)
    return current


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def monday():
    return next_weekday(MONDAY)


@pytest.fixture
def make_clinic(app):
    def _create(name='Downtown Dental', hours=None, **kwargs):
        clinic = Clinic(name=name, **kwargs)
        for day, open_at, close_at in hours or []:
            clinic.operating_hours.append(
                OperatingHours(day=day, open=open_at, close=close_at, closed=open_at is None)
            )
        db.session.add(clinic)
        db.session.commit()
        return clinic
    return _create


@pytest.fixture
def clinic(make_clinic):
    """Clinic with no operating hours, so the default 11:00-23:00 applies."""
    return make_clinic()


@pytest.fixture
def make_dentist(app):
    counter = {'n': 0}

    def _create(clinic, first_name='Sara', last_name='Nabil', **kwargs):
        counter['n'] += 1
        dentist = User(first_name=first_name, last_name=last_name, role='dentist',
                       email=f'dentist{counter["n"]}@clinic.example', **kwargs)
        dentist.set_password('password123')
        dentist.assigned_clinics.append(clinic)
        db.session.add(dentist)
        db.session.commit()
        return dentist
    return _create


@pytest.fixture
def dentist(make_dentist, clinic):
    return make_dentist(clinic)


@pytest.fixture
def patient(app):
    patient = Patient(first_name='Ali', last_name='Samir', email='ali@example.com', phone='01000000000')
    db.session.add(patient)
    db.session.commit()
    return patient


@pytest.fixture
def make_schedule(app):
    def _create(dentist, clinic, day=MONDAY, start_time='11:00', end_time='12:00', **kwargs):
        schedule = DoctorSchedule(doctor_id=dentist.id, clinic_id=clinic.id, day_of_week=day,
                                  start_time=start_time, end_time=end_time, **kwargs)
        db.session.add(schedule)
        db.session.commit()
        return schedule
    return _create


@pytest.fixture
def book(client):
    """POST an appointment and return the response."""
    def _book(patient, clinic, target, time_slot, dentist=None, duration=30, **extra):
        payload = {
            'patient_id': patient.id,
            'clinic_id': clinic.id,
            'service_type': 'Check-up',
            'date': target.isoformat(),
            'time_slot': time_slot,
            'duration': duration,
        }
        if dentist is not None:
            payload['dentist_id'] = dentist.id
        payload.update(extra)
        return client.post('/api/appointments', json=payload)
    return _book
