"""Appointment booking, availability and lifecycle endpoints."""
from datetime import date, datetime

from flask import current_app, request
from sqlalchemy import func

import scheduling
from api_helpers import arg_date, arg_int, get_or_404, paginate, parse_body, success
from errors import ConflictError, ValidationError
from logging_config import get_logger
from models import Appointment, Clinic, Patient, db
from schemas import (AppointmentCreate, AppointmentUpdate, AutoBookRequest, CancelRequest,
                     CompleteRequest, RescheduleRequest)
from timeutils import to_minutes

logger = get_logger(__name__)

# Statuses an appointment may be completed from
COMPLETABLE_STATUSES = ('scheduled', 'confirmed', 'urgent', 'in_progress')
# Statuses that close an appointment for good
CLOSED_STATUSES = ('completed', 'cancelled')


def _active_clinic(clinic_id):
    clinic = get_or_404(Clinic, clinic_id)
    if not clinic.is_active:
        raise ValidationError('Clinic is not active', field='clinic_id')
    return clinic


def _active_patient(patient_id):
    patient = get_or_404(Patient, patient_id)
    if not patient.is_active:
        raise ValidationError('Patient record is inactive', field='patient_id')
    return patient


def _current_minute():
    now = datetime.now()
    return now.hour * 60 + now.minute


def _check_not_past(target, time_slot=None, emergency=False):
    if not emergency and target < date.today():
        raise ValidationError('Appointment date cannot be in the past', field='date')
    # Emergencies skip the date check but a same-day slot must still be ahead of the clock
    if emergency and time_slot and target == date.today() and to_minutes(time_slot) < _current_minute():
        raise ValidationError('Emergency appointment time must be in the future', field='time_slot')


def _append_note(appointment, text):
    appointment.notes = f"{appointment.notes}\n{text}" if appointment.notes else text


def _book(clinic, patient, target, time_slot, duration, service_type, dentist_id=None,
          emergency=False, notes=None):
    """Validate the slot against live data and persist the appointment."""
    _check_not_past(target, time_slot, emergency)
    duration = scheduling.validate_duration(duration)

    if dentist_id:
        dentist = scheduling.get_dentist(dentist_id)
        scheduling.ensure_bookable(clinic, target, time_slot, duration, dentist=dentist)
    else:
        scheduling.ensure_bookable(clinic, target, time_slot, duration)
        dentist = scheduling.pick_available_dentist(clinic.id, target, time_slot, duration)

    appointment = Appointment(
        patient_id=patient.id,
        clinic_id=clinic.id,
        dentist_id=dentist.id if dentist else None,
        service_type=service_type,
        date=target,
        time_slot=time_slot,
        duration=duration,
        status='urgent' if emergency else 'scheduled',
        emergency=emergency,
        notes=notes,
    )
    db.session.add(appointment)
    db.session.commit()

    logger.info("appointment_booked", appointment_id=appointment.id, clinic_id=clinic.id,
                dentist_id=appointment.dentist_id, date=target.isoformat(), time_slot=time_slot,
                duration=duration, emergency=emergency)
    return appointment


def _move(appointment, target, time_slot, duration, dentist_id):
    """Re-validate a changed date/time/dentist, ignoring the appointment's own booking."""
    duration = scheduling.validate_duration(duration)
    _check_not_past(target, time_slot, appointment.emergency)
    dentist = scheduling.get_dentist(dentist_id) if dentist_id else None
    scheduling.ensure_bookable(appointment.clinic, target, time_slot, duration,
                               dentist=dentist, exclude_id=appointment.id)
    appointment.date = target
    appointment.time_slot = time_slot
    appointment.duration = duration
    appointment.dentist_id = dentist_id


def register_appointment_routes(app):

    # ---------------- AVAILABILITY ----------------
    @app.route('/api/appointments/available-slots')
    def api_available_slots():
        target = arg_date('date', required=True)
        if target < date.today():
            raise ValidationError('Cannot get slots for past dates', field='date')
        duration = arg_int('duration', default=current_app.config['DEFAULT_APPOINTMENT_DURATION'])
        dentist_id = arg_int('dentist_id')
        clinic_id = arg_int('clinic_id')
        exclude_id = arg_int('exclude_appointment_id')

        if dentist_id:
            slots = scheduling.get_available_slots(dentist_id, target, duration, clinic_id=clinic_id,
                                                   exclude_appointment_id=exclude_id)
        elif clinic_id:
            get_or_404(Clinic, clinic_id)
            slots = scheduling.get_clinic_available_slots(clinic_id, target, duration,
                                                          exclude_appointment_id=exclude_id)
        else:
            raise ValidationError('dentist_id or clinic_id is required', field='dentist_id')

        return success({
            'date': target.isoformat(),
            'dentist_id': dentist_id,
            'clinic_id': clinic_id,
            'duration': duration,
            'slots': slots,
            'available_count': sum(1 for s in slots if s['available']),
        })

    @app.route('/api/appointments/check-conflicts')
    def api_check_conflicts():
        target = arg_date('date', required=True)
        time_slot = request.args.get('time_slot')
        if not time_slot:
            raise ValidationError('time_slot is required', field='time_slot')
        duration = arg_int('duration', default=current_app.config['DEFAULT_APPOINTMENT_DURATION'])
        dentist_id = arg_int('dentist_id')
        clinic_id = arg_int('clinic_id')
        exclude_id = arg_int('exclude_appointment_id')

        if dentist_id:
            dentist_ids = [dentist_id]
        elif clinic_id:
            dentist_ids = [d.id for d in scheduling.clinic_dentists(clinic_id)]
        else:
            raise ValidationError('dentist_id or clinic_id is required', field='dentist_id')

        conflicts = []
        for did in dentist_ids:
            conflicts.extend(scheduling.find_conflicts(did, target, time_slot, duration, exclude_id=exclude_id))

        return success({
            'has_conflicts': bool(conflicts),
            'conflicts': [a.to_dict() for a in conflicts],
        })

    @app.route('/api/appointments/next-slot')
    def api_next_slot():
        clinic = get_or_404(Clinic, arg_int('clinic_id', required=True))
        target = arg_date('date', required=True)
        duration = arg_int('duration', default=current_app.config['DEFAULT_APPOINTMENT_DURATION'])
        slot = scheduling.next_slot_after_last_booking(clinic, target, duration)
        message = None if slot else 'No time left after the last booking on this date'
        return success(slot, message)

    # ---------------- BOOKING ----------------
    @app.route('/api/appointments', methods=['POST'])
    def api_create_appointment():
        body = parse_body(AppointmentCreate)
        clinic = _active_clinic(body.clinic_id)
        patient = _active_patient(body.patient_id)
        duration = body.duration if body.duration is not None else current_app.config['DEFAULT_APPOINTMENT_DURATION']
        appointment = _book(clinic, patient, body.date, body.time_slot, duration, body.service_type,
                            dentist_id=body.dentist_id, emergency=body.emergency, notes=body.notes)
        return success(appointment.to_dict(), 'Appointment created successfully', 201)

    @app.route('/api/appointments/auto-book', methods=['POST'])
    def api_auto_book():
        body = parse_body(AutoBookRequest)
        clinic = _active_clinic(body.clinic_id)
        patient = _active_patient(body.patient_id)
        _check_not_past(body.date, emergency=body.emergency)
        duration = body.duration if body.duration is not None else current_app.config['DEFAULT_APPOINTMENT_DURATION']

        slot = scheduling.first_available_slot(clinic.id, body.date, duration)
        if slot is None:
            raise ConflictError('No available slots on this date')

        appointment = _book(clinic, patient, body.date, slot['time'], duration, body.service_type,
                            dentist_id=slot['dentist_id'], emergency=body.emergency, notes=body.notes)
        return success(appointment.to_dict(), f"Appointment booked at {slot['time']}", 201)

    # ---------------- LISTING ----------------
    @app.route('/api/appointments')
    def api_list_appointments():
        query = Appointment.query
        status = request.args.get('status')
        if status:
            query = query.filter(Appointment.status == status)
        target = arg_date('date')
        if target:
            query = query.filter(Appointment.date == target)
        for name in ('dentist_id', 'clinic_id', 'patient_id'):
            value = arg_int(name)
            if value:
                query = query.filter(getattr(Appointment, name) == value)

        items, pagination = paginate(query.order_by(Appointment.date.desc(), Appointment.time_slot.asc()))
        return success([a.to_dict() for a in items], pagination=pagination)

    @app.route('/api/appointments/today')
    def api_today_appointments():
        query = Appointment.query.filter(Appointment.date == date.today())
        clinic_id = arg_int('clinic_id')
        if clinic_id:
            query = query.filter(Appointment.clinic_id == clinic_id)
        dentist_id = arg_int('dentist_id')
        if dentist_id:
            query = query.filter(Appointment.dentist_id == dentist_id)
        appointments = query.order_by(Appointment.time_slot.asc()).all()
        return success([a.to_dict() for a in appointments])

    @app.route('/api/appointments/statistics')
    def api_appointment_statistics():
        query = db.session.query(Appointment.status, func.count(Appointment.id))
        clinic_id = arg_int('clinic_id')
        if clinic_id:
            query = query.filter(Appointment.clinic_id == clinic_id)
        start, end = arg_date('start_date'), arg_date('end_date')
        if start:
            query = query.filter(Appointment.date >= start)
        if end:
            query = query.filter(Appointment.date <= end)

        by_status = {status: count for status, count in query.group_by(Appointment.status).all()}
        total = sum(by_status.values())

        def rate(status):
            return round(by_status.get(status, 0) / total * 100, 2) if total else 0

        return success({
            'total': total,
            'by_status': by_status,
            'completion_rate': rate('completed'),
            'cancellation_rate': rate('cancelled'),
            'no_show_rate': rate('no_show'),
        })

    # ---------------- SINGLE APPOINTMENT ----------------
    @app.route('/api/appointments/<int:appointment_id>')
    def api_get_appointment(appointment_id):
        return success(get_or_404(Appointment, appointment_id).to_dict())

    @app.route('/api/appointments/<int:appointment_id>', methods=['PUT'])
    def api_update_appointment(appointment_id):
        appointment = get_or_404(Appointment, appointment_id)
        if appointment.status in CLOSED_STATUSES:
            raise ValidationError(f'Cannot modify an appointment that is {appointment.status}', field='status')
        body = parse_body(AppointmentUpdate)
        changes = body.model_dump(exclude_unset=True)

        if body.status == 'cancelled' and appointment.status != 'cancelled':
            raise ValidationError('Use the cancel endpoint to cancel an appointment', field='status')

        if {'date', 'time_slot', 'duration', 'dentist_id'} & changes.keys():
            if appointment.status not in ('scheduled', 'confirmed', 'urgent'):
                raise ValidationError(f'Cannot move an appointment that is {appointment.status}')
            _move(appointment,
                  changes.get('date') or appointment.date,
                  changes.get('time_slot') or appointment.time_slot,
                  appointment.duration if changes.get('duration') is None else changes['duration'],
                  changes.get('dentist_id', appointment.dentist_id))

        for field in ('service_type', 'status', 'emergency', 'notes'):
            if field in changes and changes[field] is not None:
                setattr(appointment, field, changes[field])

        db.session.commit()
        logger.info("appointment_updated", appointment_id=appointment.id, fields=sorted(changes))
        return success(appointment.to_dict(), 'Appointment updated successfully')

    @app.route('/api/appointments/<int:appointment_id>/reschedule', methods=['POST'])
    def api_reschedule_appointment(appointment_id):
        appointment = get_or_404(Appointment, appointment_id)
        body = parse_body(RescheduleRequest)
        if not appointment.can_be_rescheduled():
            raise ValidationError('This appointment can no longer be rescheduled')

        previous = f"{appointment.date.isoformat()} {appointment.time_slot}"
        _move(appointment, body.date, body.time_slot,
              appointment.duration if body.duration is None else body.duration,
              body.dentist_id or appointment.dentist_id)
        note = f"Rescheduled from {previous}"
        if body.reason:
            note += f": {body.reason}"
        _append_note(appointment, note)
        db.session.commit()

        logger.info("appointment_rescheduled", appointment_id=appointment.id, previous=previous,
                    date=body.date.isoformat(), time_slot=body.time_slot)
        return success(appointment.to_dict(), 'Appointment rescheduled successfully')

    @app.route('/api/appointments/<int:appointment_id>/cancel', methods=['POST'])
    def api_cancel_appointment(appointment_id):
        appointment = get_or_404(Appointment, appointment_id)
        body = parse_body(CancelRequest)
        if not appointment.can_be_cancelled():
            raise ValidationError('This appointment cannot be cancelled')

        appointment.status = 'cancelled'
        if body.reason:
            _append_note(appointment, f"Cancellation reason: {body.reason}")
        db.session.commit()

        logger.info("appointment_cancelled", appointment_id=appointment.id, reason=body.reason)
        return success(appointment.to_dict(), 'Appointment cancelled successfully')

    @app.route('/api/appointments/<int:appointment_id>/complete', methods=['POST'])
    def api_complete_appointment(appointment_id):
        appointment = get_or_404(Appointment, appointment_id)
        body = parse_body(CompleteRequest)
        if appointment.status not in COMPLETABLE_STATUSES:
            raise ValidationError(f'Cannot complete an appointment that is {appointment.status}')

        appointment.status = 'completed'
        appointment.treatment_provided = body.treatment_provided
        appointment.follow_up_required = body.follow_up_required
        appointment.follow_up_date = body.follow_up_date
        if body.notes:
            _append_note(appointment, body.notes)
        db.session.commit()

        logger.info("appointment_completed", appointment_id=appointment.id,
                    follow_up_required=body.follow_up_required)
        return success(appointment.to_dict(), 'Appointment completed successfully')

    @app.route('/api/patients/<int:patient_id>/appointments')
    def api_patient_appointments(patient_id):
        patient = get_or_404(Patient, patient_id)
        query = Appointment.query.filter_by(patient_id=patient.id)
        status = request.args.get('status')
        if status:
            query = query.filter(Appointment.status == status)
        items, pagination = paginate(query.order_by(Appointment.date.desc(), Appointment.time_slot.desc()))
        return success([a.to_dict() for a in items], pagination=pagination)
