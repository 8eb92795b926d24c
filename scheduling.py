"""
Appointment scheduling for the clinic
- Slot generation from a doctor's working-hour windows
- Conflict detection against existing bookings
- Availability lookups backed by the database

Times inside this module are minutes since midnight; they are rendered as
HH:MM only at the edges.
"""
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from flask import current_app

from errors import ConflictError, NotFoundError, ValidationError
from logging_config import get_logger
from models import Appointment, Clinic, DoctorSchedule, User, db
from timeutils import day_name, day_of_week, format_minutes, to_minutes

logger = get_logger(__name__)

Window = Tuple[int, int]


class SlotGenerator:
    """Candidate start times inside working-hour windows"""

    def __init__(self, interval: int = 30):
        self.interval = interval

    def clip_windows(self, windows: Iterable[Window], business_hours: Optional[Window]) -> List[Window]:
        """Intersect each window with the clinic's business hours for the day."""
        if business_hours is None:
            return []
        open_at, close_at = business_hours
        clipped = []
        for start, end in windows:
            start, end = max(start, open_at), min(end, close_at)
            if start < end:
                clipped.append((start, end))
        return clipped

    def generate(self, windows: Iterable[Window], duration: int, interval: Optional[int] = None) -> List[int]:
        """
        Ordered, de-duplicated start times such that start + duration fits
        in the window the start was generated from.

        Args:
            windows: (start, end) pairs in minutes
            duration: requested service length in minutes
            interval: spacing between candidates, defaults to the generator's

        Returns:
            list[int]: start minutes, ascending
        """
        if duration <= 0:
            raise ValidationError('Duration must be a positive number of minutes', field='duration')
        step = interval or self.interval
        starts = set()
        for start, end in windows:
            current = start
            while current + duration <= end:
                starts.add(current)
                current += step
        return sorted(starts)


class ConflictFilter:
    """Overlap checks between candidate slots and booked intervals"""

    def __init__(self, peak_hours: Window = (10, 14)):
        self.peak_hours = peak_hours

    @staticmethod
    def overlaps(start: int, end: int, other_start: int, other_end: int) -> bool:
        # Half-open intervals: touching boundaries are not a conflict
        return start < other_end and end > other_start

    def find_conflicts(self, start: int, duration: int, bookings: Iterable[Dict],
                       exclude_id=None) -> List[Dict]:
        end = start + duration
        return [
            b for b in bookings
            if exclude_id is None or b.get('id') != exclude_id
            if self.overlaps(start, end, b['start'], b['end'])
        ]

    def is_peak(self, start: int) -> bool:
        hour = start // 60
        return self.peak_hours[0] <= hour < self.peak_hours[1]

    def mark(self, candidates: Iterable[int], duration: int, bookings: Iterable[Dict],
             exclude_id=None) -> List[Dict]:
        """Flag every candidate as available or booked."""
        bookings = [b for b in bookings if exclude_id is None or b.get('id') != exclude_id]
        slots = []
        for start in candidates:
            available = not self.find_conflicts(start, duration, bookings)
            slots.append({
                'time': format_minutes(start),
                'end_time': format_minutes(start + duration),
                'available': available,
                'is_peak_hour': self.is_peak(start),
            })
        return slots


def booked_intervals(appointments: Iterable[Appointment]) -> List[Dict]:
    """Appointments as {'id', 'start', 'end'} minute intervals."""
    return [
        {'id': a.id, 'start': a.start_minutes, 'end': a.end_minutes}
        for a in appointments
    ]


def available_times(slots: Iterable[Dict]) -> List[str]:
    return [s['time'] for s in slots if s['available']]


# ---------------- DATABASE-BACKED LOOKUPS ----------------

def _slot_generator():
    return SlotGenerator(interval=current_app.config['SLOT_INTERVAL_MINUTES'])


def _conflict_filter():
    cfg = current_app.config
    return ConflictFilter(peak_hours=(cfg['PEAK_HOUR_START'], cfg['PEAK_HOUR_END']))


def validate_duration(duration) -> int:
    try:
        duration = int(duration)
    except (TypeError, ValueError):
        raise ValidationError('Duration must be a whole number of minutes', field='duration')
    if duration <= 0:
        raise ValidationError('Duration must be a positive number of minutes', field='duration')
    max_duration = current_app.config['MAX_APPOINTMENT_DURATION']
    if duration > max_duration:
        raise ValidationError(f'Duration cannot exceed {max_duration} minutes', field='duration')
    return duration


def validate_time_slot(time_slot) -> int:
    try:
        return to_minutes(time_slot)
    except ValueError:
        raise ValidationError('Invalid time slot format. Use HH:MM format', field='time_slot')


def business_hours(clinic: Optional[Clinic], target: date) -> Optional[Window]:
    """
    Opening and closing minutes of a clinic on a date, or None when closed.

    A clinic with no operating hours at all uses the configured default
    hours; a clinic that lists hours but not for this weekday is closed.
    """
    cfg = current_app.config
    default = (to_minutes(cfg['DEFAULT_OPENING_TIME']), to_minutes(cfg['DEFAULT_CLOSING_TIME']))
    if clinic is None or not clinic.operating_hours:
        return default
    hours = clinic.hours_for_day(day_name(target))
    if hours is None or hours.closed or not hours.open or not hours.close:
        return None
    return to_minutes(hours.open), to_minutes(hours.close)


def doctor_schedules(dentist_id, target: date, clinic_id=None) -> List[DoctorSchedule]:
    query = DoctorSchedule.query.filter_by(doctor_id=dentist_id, day_of_week=day_of_week(target), is_active=True)
    if clinic_id:
        query = query.filter_by(clinic_id=clinic_id)
    schedules = query.order_by(DoctorSchedule.start_time).all()
    return [s for s in schedules if s.is_effective_on(target)]


def working_windows(dentist_id, target: date, clinic_id=None) -> List[Window]:
    """Doctor's schedule windows for a date, each clipped to its clinic's business hours."""
    generator = _slot_generator()
    windows = []
    for schedule in doctor_schedules(dentist_id, target, clinic_id):
        window = (to_minutes(schedule.start_time), to_minutes(schedule.end_time))
        windows.extend(generator.clip_windows([window], business_hours(schedule.clinic, target)))
    return windows


def active_bookings(dentist_id, target: date, exclude_id=None) -> List[Appointment]:
    query = Appointment.query.filter(
        Appointment.dentist_id == dentist_id,
        Appointment.date == target,
        Appointment.status != 'cancelled',
    )
    if exclude_id:
        query = query.filter(Appointment.id != exclude_id)
    return query.all()


def get_dentist(dentist_id) -> User:
    dentist = db.session.get(User, dentist_id)
    if dentist is None or dentist.role not in ('dentist', 'super_admin'):
        raise NotFoundError('Dentist')
    return dentist


def get_available_slots(dentist_id, target: date, duration, clinic_id=None, exclude_appointment_id=None) -> List[Dict]:
    """
    Candidate slots for a dentist on a date, each flagged available or booked.

    Returns:
        list[dict]: [{"time": "11:00", "end_time": "11:30", "available": True,
                      "is_peak_hour": True}, ...] ordered by time. Empty when
                      the dentist has no schedule that day.
    """
    duration = validate_duration(duration)
    get_dentist(dentist_id)

    windows = working_windows(dentist_id, target, clinic_id)
    if not windows:
        return []

    candidates = _slot_generator().generate(windows, duration)
    bookings = booked_intervals(active_bookings(dentist_id, target))
    return _conflict_filter().mark(candidates, duration, bookings, exclude_id=exclude_appointment_id)


def find_conflicts(dentist_id, target: date, time_slot, duration, exclude_id=None) -> List[Appointment]:
    start = validate_time_slot(time_slot)
    duration = validate_duration(duration)
    appointments = active_bookings(dentist_id, target, exclude_id=exclude_id)
    by_id = {a.id: a for a in appointments}
    hits = _conflict_filter().find_conflicts(start, duration, booked_intervals(appointments))
    return [by_id[h['id']] for h in hits]


def clinic_dentists(clinic_id) -> List[User]:
    return (User.query
            .filter(User.role == 'dentist', User.is_active.is_(True),
                    User.assigned_clinics.any(Clinic.id == clinic_id))
            .order_by(User.id)
            .all())


def scheduled_dentists(clinic_id, target: date) -> List[User]:
    """Dentists of the clinic with at least one schedule window on the date."""
    return [d for d in clinic_dentists(clinic_id) if doctor_schedules(d.id, target, clinic_id)]


def get_clinic_available_slots(clinic_id, target: date, duration, exclude_appointment_id=None) -> List[Dict]:
    """
    Available times across every dentist of a clinic scheduled on the date,
    one entry per time listing the dentists free at that time.
    """
    duration = validate_duration(duration)
    by_time = {}
    for dentist in scheduled_dentists(clinic_id, target):
        for slot in get_available_slots(dentist.id, target, duration, clinic_id=clinic_id,
                                        exclude_appointment_id=exclude_appointment_id):
            if not slot['available']:
                continue
            entry = by_time.setdefault(slot['time'], {
                'time': slot['time'],
                'end_time': slot['end_time'],
                'available': True,
                'is_peak_hour': slot['is_peak_hour'],
                'available_dentists': [],
            })
            entry['available_dentists'].append({
                'dentist_id': dentist.id,
                'dentist_name': dentist.full_name,
                'specialization': dentist.specialization,
            })
    return [by_time[t] for t in sorted(by_time)]


def first_available_slot(clinic_id, target: date, duration) -> Optional[Dict]:
    """Earliest available time across the clinic's scheduled dentists."""
    slots = get_clinic_available_slots(clinic_id, target, duration)
    if not slots:
        return None
    first = slots[0]
    dentist = first['available_dentists'][0]
    return {'time': first['time'], **dentist}


def pick_available_dentist(clinic_id, target: date, time_slot, duration) -> Optional[User]:
    """First dentist of the clinic whose schedule covers the slot and who has no conflict."""
    start = validate_time_slot(time_slot)
    end = start + validate_duration(duration)
    for dentist in scheduled_dentists(clinic_id, target):
        windows = working_windows(dentist.id, target, clinic_id)
        if not any(w_start <= start and end <= w_end for w_start, w_end in windows):
            continue
        if not find_conflicts(dentist.id, target, time_slot, duration):
            return dentist
    return None


def next_slot_after_last_booking(clinic: Clinic, target: date, duration) -> Optional[Dict]:
    """
    First time after the latest end of any live booking at the clinic on the
    date, or the opening time when nothing is booked. None when it no longer
    fits in business hours or the clinic is closed.
    """
    duration = validate_duration(duration)
    hours = business_hours(clinic, target)
    if hours is None:
        return None
    open_at, close_at = hours

    appointments = Appointment.query.filter(
        Appointment.clinic_id == clinic.id,
        Appointment.date == target,
        Appointment.status != 'cancelled',
    ).all()
    next_start = max([open_at] + [a.end_minutes for a in appointments])

    if next_start + duration > close_at:
        return None
    return {
        'time': format_minutes(next_start),
        'end_time': format_minutes(next_start + duration),
        'available': True,
        'is_peak_hour': _conflict_filter().is_peak(next_start),
    }


def ensure_bookable(clinic: Clinic, target: date, time_slot, duration,
                    dentist: Optional[User] = None, exclude_id=None):
    """
    Validate that a slot can be booked right now.

    Raises:
        ValidationError: outside business hours, outside the dentist's
            schedule, or dentist not assigned to the clinic
        ConflictError: overlaps a live booking of the dentist
    """
    start = validate_time_slot(time_slot)
    duration = validate_duration(duration)
    end = start + duration

    hours = business_hours(clinic, target)
    if hours is None:
        raise ValidationError(f'The clinic is closed on {day_name(target).capitalize()}', field='date')
    if start < hours[0] or end > hours[1]:
        raise ValidationError(
            f'The selected time slot is outside clinic operating hours '
            f'({format_minutes(hours[0])} - {format_minutes(hours[1])})',
            field='time_slot',
        )

    if dentist is None:
        return

    if not dentist.is_assigned_to(clinic.id):
        raise ValidationError('The selected dentist is not assigned to this clinic', field='dentist_id')

    schedules = doctor_schedules(dentist.id, target, clinic.id)
    if not schedules:
        raise ValidationError(
            f'Dentist is not scheduled to work at this clinic on {day_name(target).capitalize()}',
            field='dentist_id',
        )
    if not any(to_minutes(s.start_time) <= start and end <= to_minutes(s.end_time) for s in schedules):
        hours_text = ', '.join(f'{s.start_time} - {s.end_time}' for s in schedules)
        raise ValidationError(
            f"The selected time slot is outside the dentist's working hours for this day. "
            f"Available hours: {hours_text}",
            field='time_slot',
        )

    conflicts = find_conflicts(dentist.id, target, time_slot, duration, exclude_id=exclude_id)
    if conflicts:
        logger.info("slot_conflict", dentist_id=dentist.id, date=target.isoformat(),
                    time_slot=time_slot, conflicting=[a.id for a in conflicts])
        raise ConflictError(
            f'Time slot {time_slot} on {target.isoformat()} is already booked. Please select another time.'
        )
