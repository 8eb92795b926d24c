"""Doctor working-hour schedule endpoints."""
from flask import request

from api_helpers import arg_bool, arg_date, arg_int, get_or_404, parse_body, success
from errors import ConflictError, ValidationError
from logging_config import get_logger
from models import Clinic, DoctorSchedule, User, db
from schemas import BulkScheduleCreate, ScheduleCreate, ScheduleUpdate
from timeutils import DAY_NAMES, day_of_week, to_minutes

logger = get_logger(__name__)


def find_overlapping_schedule(doctor_id, clinic_id, day, start_time, end_time, exclude_id=None):
    """An active schedule of the same doctor, clinic and day whose hours overlap."""
    start, end = to_minutes(start_time), to_minutes(end_time)
    query = DoctorSchedule.query.filter_by(doctor_id=doctor_id, clinic_id=clinic_id,
                                           day_of_week=day, is_active=True)
    if exclude_id:
        query = query.filter(DoctorSchedule.id != exclude_id)
    for schedule in query.all():
        if start < to_minutes(schedule.end_time) and end > to_minutes(schedule.start_time):
            return schedule
    return None


def _validate_doctor_and_clinic(doctor_id, clinic_id):
    doctor = get_or_404(User, doctor_id, 'Doctor')
    if doctor.role != 'dentist':
        raise ValidationError('Schedules can only be created for dentists', field='doctor_id')
    get_or_404(Clinic, clinic_id)
    if not doctor.is_assigned_to(clinic_id):
        raise ValidationError('Doctor is not assigned to this clinic', field='clinic_id')
    return doctor


def _create_schedule(data: ScheduleCreate):
    _validate_doctor_and_clinic(data.doctor_id, data.clinic_id)
    if data.is_active:
        clash = find_overlapping_schedule(data.doctor_id, data.clinic_id, data.day_of_week,
                                          data.start_time, data.end_time)
        if clash is not None:
            raise ConflictError(
                f'Schedule overlaps an existing schedule on {DAY_NAMES[data.day_of_week].capitalize()} '
                f'({clash.start_time} - {clash.end_time})'
            )
    schedule = DoctorSchedule(**data.model_dump())
    db.session.add(schedule)
    return schedule


def register_schedule_routes(app):

    @app.route('/api/schedules')
    def api_list_schedules():
        query = DoctorSchedule.query
        doctor_id = arg_int('doctor_id')
        if doctor_id:
            query = query.filter_by(doctor_id=doctor_id)
        clinic_id = arg_int('clinic_id')
        if clinic_id:
            query = query.filter_by(clinic_id=clinic_id)
        day = arg_int('day_of_week', minimum=0, maximum=6)
        if day is not None:
            query = query.filter_by(day_of_week=day)
        active = arg_bool('is_active')
        if active is not None:
            query = query.filter_by(is_active=active)
        schedules = query.order_by(DoctorSchedule.day_of_week, DoctorSchedule.start_time).all()
        return success([s.to_dict() for s in schedules])

    @app.route('/api/schedules/<int:schedule_id>')
    def api_get_schedule(schedule_id):
        return success(get_or_404(DoctorSchedule, schedule_id, 'Schedule').to_dict())

    @app.route('/api/schedules', methods=['POST'])
    def api_create_schedule():
        schedule = _create_schedule(parse_body(ScheduleCreate))
        db.session.commit()
        logger.info("schedule_created", schedule_id=schedule.id, doctor_id=schedule.doctor_id,
                    clinic_id=schedule.clinic_id, day_of_week=schedule.day_of_week)
        return success(schedule.to_dict(), 'Schedule created successfully', 201)

    @app.route('/api/schedules/bulk', methods=['POST'])
    def api_bulk_create_schedules():
        body = parse_body(BulkScheduleCreate)
        created = []
        for data in body.schedules:
            created.append(_create_schedule(data))
        db.session.commit()
        logger.info("schedules_bulk_created", count=len(created))
        return success([s.to_dict() for s in created], f'{len(created)} schedules created', 201)

    @app.route('/api/schedules/<int:schedule_id>', methods=['PUT'])
    def api_update_schedule(schedule_id):
        schedule = get_or_404(DoctorSchedule, schedule_id, 'Schedule')
        changes = parse_body(ScheduleUpdate).model_dump(exclude_unset=True)

        merged = {**schedule.to_dict(), **{k: v for k, v in changes.items() if v is not None}}
        if to_minutes(merged['start_time']) >= to_minutes(merged['end_time']):
            raise ValidationError('End time must be after start time', field='end_time')
        if merged['is_active']:
            clash = find_overlapping_schedule(schedule.doctor_id, schedule.clinic_id, merged['day_of_week'],
                                              merged['start_time'], merged['end_time'], exclude_id=schedule.id)
            if clash is not None:
                raise ConflictError(f'Schedule overlaps an existing schedule ({clash.start_time} - {clash.end_time})')

        for field, value in changes.items():
            if value is not None or field in ('notes', 'effective_from', 'effective_until'):
                setattr(schedule, field, value)
        db.session.commit()
        return success(schedule.to_dict(), 'Schedule updated successfully')

    @app.route('/api/schedules/<int:schedule_id>', methods=['DELETE'])
    def api_delete_schedule(schedule_id):
        schedule = get_or_404(DoctorSchedule, schedule_id, 'Schedule')
        db.session.delete(schedule)
        db.session.commit()
        logger.info("schedule_deleted", schedule_id=schedule_id)
        return success(None, 'Schedule deleted successfully')

    @app.route('/api/schedules/available-doctors')
    def api_available_doctors():
        """Doctors with an active schedule at a clinic on a weekday (or a date)."""
        clinic_id = arg_int('clinic_id', required=True)
        target = arg_date('date')
        day = day_of_week(target) if target else arg_int('day_of_week', required=True, minimum=0, maximum=6)

        schedules = (DoctorSchedule.query
                     .filter_by(clinic_id=clinic_id, day_of_week=day, is_active=True)
                     .order_by(DoctorSchedule.start_time)
                     .all())
        if target:
            schedules = [s for s in schedules if s.is_effective_on(target)]

        doctors = {}
        for schedule in schedules:
            if not schedule.doctor.is_active:
                continue
            entry = doctors.setdefault(schedule.doctor_id, {
                'doctor_id': schedule.doctor_id,
                'doctor_name': schedule.doctor.full_name,
                'specialization': schedule.doctor.specialization,
                'windows': [],
            })
            entry['windows'].append({'start_time': schedule.start_time, 'end_time': schedule.end_time})
        return success(list(doctors.values()))

    @app.route('/api/users/<int:user_id>/schedules')
    def api_doctor_schedules(user_id):
        doctor = get_or_404(User, user_id, 'Doctor')
        query = DoctorSchedule.query.filter_by(doctor_id=doctor.id)
        if request.args.get('active_only', 'true').lower() == 'true':
            query = query.filter_by(is_active=True)
        schedules = query.order_by(DoctorSchedule.day_of_week, DoctorSchedule.start_time).all()
        return success([s.to_dict() for s in schedules])
