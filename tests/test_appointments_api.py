"""Booking, availability and appointment lifecycle through the HTTP API."""
from datetime import date, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

import appointments_api
from conftest import MONDAY, TUESDAY, next_weekday
from models import Appointment, db
from timeutils import day_of_week


def slots_for(client, dentist, target, duration=30, **params):
    query = {'dentist_id': dentist.id, 'date': target.isoformat(), 'duration': duration, **params}
    return client.get('/api/appointments/available-slots', query_string=query)


def available(response):
    return [s['time'] for s in response.get_json()['data']['slots'] if s['available']]


# ---------------- AVAILABILITY ----------------

def test_available_slots_for_one_hour_window(client, clinic, dentist, make_schedule, monday):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')

    response = slots_for(client, dentist, monday)

    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    assert [s['time'] for s in body['data']['slots']] == ['11:00', '11:30']
    assert body['data']['available_count'] == 2
    assert all(s['is_peak_hour'] for s in body['data']['slots'])


def test_booking_leaves_only_remaining_slot(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')

    assert book(patient, clinic, monday, '11:00', dentist=dentist).status_code == 201

    response = slots_for(client, dentist, monday)
    assert available(response) == ['11:30']
    booked = [s for s in response.get_json()['data']['slots'] if not s['available']]
    assert [s['time'] for s in booked] == ['11:00']


def test_no_schedule_returns_empty_list(client, clinic, dentist, make_schedule):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')

    response = slots_for(client, dentist, next_weekday(TUESDAY))

    assert response.status_code == 200
    assert response.get_json()['data']['slots'] == []


def test_non_positive_duration_is_rejected(client, clinic, dentist, make_schedule, monday):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')

    for duration in (0, -15):
        response = slots_for(client, dentist, monday, duration=duration)
        assert response.status_code == 400
        body = response.get_json()
        assert body['success'] is False
        assert body['errors'][0]['field'] == 'duration'


def test_missing_date_is_rejected(client, dentist):
    response = client.get('/api/appointments/available-slots', query_string={'dentist_id': dentist.id})
    assert response.status_code == 400


def test_past_date_is_rejected(client, dentist):
    yesterday = date.today() - timedelta(days=1)
    assert slots_for(client, dentist, yesterday).status_code == 400


def test_unknown_dentist_is_404(client, monday):
    response = client.get('/api/appointments/available-slots',
                          query_string={'dentist_id': 999, 'date': monday.isoformat()})
    assert response.status_code == 404


def test_slots_never_fall_outside_default_business_hours(client, clinic, dentist, make_schedule, monday):
    make_schedule(dentist, clinic, MONDAY, '08:00', '12:00')
    make_schedule(dentist, clinic, MONDAY, '22:00', '23:59')

    times = [s['time'] for s in slots_for(client, dentist, monday).get_json()['data']['slots']]

    assert times == ['11:00', '11:30', '22:00', '22:30']


def test_clinic_hours_clip_schedule(client, make_clinic, make_dentist, make_schedule, monday):
    clinic = make_clinic(hours=[('monday', '12:00', '13:00')])
    dentist = make_dentist(clinic)
    make_schedule(dentist, clinic, MONDAY, '11:00', '15:00')

    times = [s['time'] for s in slots_for(client, dentist, monday).get_json()['data']['slots']]

    assert times == ['12:00', '12:30']


def test_clinic_closed_that_day_has_no_slots(client, make_clinic, make_dentist, make_schedule, monday):
    clinic = make_clinic(hours=[('monday', None, None), ('tuesday', '11:00', '23:00')])
    dentist = make_dentist(clinic)
    make_schedule(dentist, clinic, MONDAY, '11:00', '15:00')

    assert slots_for(client, dentist, monday).get_json()['data']['slots'] == []


def test_longer_duration_spans_fewer_slots(client, clinic, dentist, make_schedule, monday):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:30')

    assert available(slots_for(client, dentist, monday, duration=60)) == ['11:00', '11:30']


def test_clinic_wide_slots_list_free_dentists(client, clinic, make_dentist, make_schedule, patient, monday, book):
    first = make_dentist(clinic, first_name='Hana')
    second = make_dentist(clinic, first_name='Karim')
    make_schedule(first, clinic, MONDAY, '11:00', '12:00')
    make_schedule(second, clinic, MONDAY, '11:30', '12:30')
    book(patient, clinic, monday, '11:30', dentist=first)

    response = client.get('/api/appointments/available-slots',
                          query_string={'clinic_id': clinic.id, 'date': monday.isoformat()})

    slots = response.get_json()['data']['slots']
    assert [s['time'] for s in slots] == ['11:00', '11:30', '12:00']
    by_time = {s['time']: [d['dentist_id'] for d in s['available_dentists']] for s in slots}
    assert by_time == {'11:00': [first.id], '11:30': [second.id], '12:00': [second.id]}


def test_clinic_wide_slots_honour_excluded_appointment(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    appointment_id = book(patient, clinic, monday, '11:00', dentist=dentist).get_json()['data']['id']

    response = client.get('/api/appointments/available-slots',
                          query_string={'clinic_id': clinic.id, 'date': monday.isoformat(),
                                        'exclude_appointment_id': appointment_id})

    assert [s['time'] for s in response.get_json()['data']['slots']] == ['11:00', '11:30']


# ---------------- BOOKING ----------------

def test_double_booking_is_rejected(clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')

    assert book(patient, clinic, monday, '11:00', dentist=dentist).status_code == 201
    response = book(patient, clinic, monday, '11:00', dentist=dentist)

    assert response.status_code == 409
    assert response.get_json()['success'] is False
    assert Appointment.query.count() == 1


def test_overlapping_booking_is_rejected(clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    book(patient, clinic, monday, '11:00', dentist=dentist)

    assert book(patient, clinic, monday, '11:15', dentist=dentist).status_code == 409


def test_back_to_back_bookings_are_allowed(clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')

    assert book(patient, clinic, monday, '11:00', dentist=dentist).status_code == 201
    assert book(patient, clinic, monday, '11:30', dentist=dentist).status_code == 201


def test_cancelled_slot_can_be_booked_again(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    appointment_id = book(patient, clinic, monday, '11:00', dentist=dentist).get_json()['data']['id']

    cancel = client.post(f'/api/appointments/{appointment_id}/cancel', json={'reason': 'Travelling'})
    assert cancel.status_code == 200
    assert cancel.get_json()['data']['status'] == 'cancelled'
    assert 'Travelling' in cancel.get_json()['data']['notes']

    assert available(slots_for(client, dentist, monday)) == ['11:00', '11:30']
    assert book(patient, clinic, monday, '11:00', dentist=dentist).status_code == 201


def test_booking_outside_dentist_schedule_is_rejected(clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')

    response = book(patient, clinic, monday, '11:45', dentist=dentist)

    assert response.status_code == 400
    assert response.get_json()['errors'][0]['field'] == 'time_slot'


def test_booking_outside_business_hours_is_rejected(clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '09:00', '12:00')

    assert book(patient, clinic, monday, '09:30', dentist=dentist).status_code == 400


def test_booking_in_the_past_is_rejected(clinic, dentist, patient, book):
    yesterday = date.today() - timedelta(days=1)
    assert book(patient, clinic, yesterday, '11:00', dentist=dentist).status_code == 400


def test_invalid_time_format_is_rejected(clinic, dentist, patient, monday, book):
    response = book(patient, clinic, monday, '25:00', dentist=dentist)
    assert response.status_code == 400
    assert response.get_json()['message'] == 'Validation failed'


def test_dentist_from_another_clinic_is_rejected(make_clinic, make_dentist, make_schedule, patient, monday, book):
    home = make_clinic(name='Home')
    other = make_clinic(name='Other')
    dentist = make_dentist(other)
    make_schedule(dentist, other, MONDAY, '11:00', '12:00')

    response = book(patient, home, monday, '11:00', dentist=dentist)

    assert response.status_code == 400
    assert response.get_json()['errors'][0]['field'] == 'dentist_id'


def test_booking_without_dentist_is_auto_assigned(clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')

    response = book(patient, clinic, monday, '11:00')

    assert response.status_code == 201
    assert response.get_json()['data']['dentist_id'] == dentist.id


def test_booking_without_free_dentist_stays_unassigned(clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    book(patient, clinic, monday, '11:00', dentist=dentist)

    response = book(patient, clinic, monday, '11:00')

    assert response.status_code == 201
    assert response.get_json()['data']['dentist_id'] is None


def test_emergency_booking_is_urgent(clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')

    response = book(patient, clinic, monday, '11:00', dentist=dentist, emergency=True)

    assert response.status_code == 201
    assert response.get_json()['data']['status'] == 'urgent'


def test_default_duration_applies(clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')

    response = book(patient, clinic, monday, '11:00', dentist=dentist, duration=None)

    assert response.status_code == 201
    assert response.get_json()['data']['duration'] == 30
    assert response.get_json()['data']['end_time'] == '11:30'


def test_emergency_today_rejects_time_already_gone(monkeypatch, clinic, dentist, patient, make_schedule, book):
    today = date.today()
    make_schedule(dentist, clinic, day_of_week(today), '11:00', '12:00')
    monkeypatch.setattr(appointments_api, '_current_minute', lambda: 11 * 60 + 10)

    response = book(patient, clinic, today, '11:00', dentist=dentist, emergency=True)

    assert response.status_code == 400
    assert response.get_json()['errors'][0]['field'] == 'time_slot'
    assert Appointment.query.count() == 0


def test_emergency_today_accepts_time_still_ahead(monkeypatch, clinic, dentist, patient, make_schedule, book):
    today = date.today()
    make_schedule(dentist, clinic, day_of_week(today), '11:00', '12:00')
    monkeypatch.setattr(appointments_api, '_current_minute', lambda: 11 * 60 + 10)

    response = book(patient, clinic, today, '11:30', dentist=dentist, emergency=True)

    assert response.status_code == 201
    assert response.get_json()['data']['status'] == 'urgent'


def test_exact_duplicate_is_blocked_by_unique_index(app, clinic, dentist, patient, monday):
    for _ in range(2):
        db.session.add(Appointment(patient_id=patient.id, clinic_id=clinic.id, dentist_id=dentist.id,
                                   service_type='Check-up', date=monday, time_slot='11:00', duration=30))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


# ---------------- EDITING ----------------

def test_editing_excludes_own_booking(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    appointment_id = book(patient, clinic, monday, '11:00', dentist=dentist).get_json()['data']['id']

    response = slots_for(client, dentist, monday, exclude_appointment_id=appointment_id)
    assert available(response) == ['11:00', '11:30']

    update = client.put(f'/api/appointments/{appointment_id}', json={'duration': 60})
    assert update.status_code == 200
    assert update.get_json()['data']['end_time'] == '12:00'


def test_editing_into_another_booking_conflicts(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    book(patient, clinic, monday, '11:30', dentist=dentist)
    first = book(patient, clinic, monday, '11:00', dentist=dentist).get_json()['data']['id']

    response = client.put(f'/api/appointments/{first}', json={'duration': 60})

    assert response.status_code == 409


def test_update_with_zero_duration_is_rejected(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    appointment_id = book(patient, clinic, monday, '11:00', dentist=dentist).get_json()['data']['id']

    assert client.put(f'/api/appointments/{appointment_id}', json={'duration': 0}).status_code == 400


def test_reschedule_moves_appointment(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    appointment_id = book(patient, clinic, monday, '11:00', dentist=dentist).get_json()['data']['id']

    response = client.post(f'/api/appointments/{appointment_id}/reschedule',
                           json={'date': monday.isoformat(), 'time_slot': '11:30', 'reason': 'Late'})

    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['time_slot'] == '11:30'
    assert 'Rescheduled from' in data['notes']
    assert available(slots_for(client, dentist, monday)) == ['11:00']


def test_cancelled_appointment_cannot_be_cancelled_again(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    appointment_id = book(patient, clinic, monday, '11:00', dentist=dentist).get_json()['data']['id']
    client.post(f'/api/appointments/{appointment_id}/cancel', json={})

    assert client.post(f'/api/appointments/{appointment_id}/cancel', json={}).status_code == 400


def test_cancelled_appointment_cannot_be_revived_over_a_new_booking(client, clinic, dentist, patient,
                                                                   make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '13:00')
    first = book(patient, clinic, monday, '11:00', dentist=dentist, duration=60).get_json()['data']['id']
    client.post(f'/api/appointments/{first}/cancel', json={})
    assert book(patient, clinic, monday, '11:30', dentist=dentist).status_code == 201

    response = client.put(f'/api/appointments/{first}', json={'status': 'scheduled'})

    assert response.status_code == 400
    live = Appointment.query.filter(Appointment.status != 'cancelled').all()
    assert [(a.time_slot, a.duration) for a in live] == [('11:30', 30)]


def test_completed_appointment_cannot_be_edited(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    appointment_id = book(patient, clinic, monday, '11:00', dentist=dentist).get_json()['data']['id']
    client.post(f'/api/appointments/{appointment_id}/complete', json={'treatment_provided': 'Filling'})

    response = client.put(f'/api/appointments/{appointment_id}', json={'notes': 'Changed later'})

    assert response.status_code == 400
    assert db.session.get(Appointment, appointment_id).notes is None


def test_complete_records_treatment(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    appointment_id = book(patient, clinic, monday, '11:00', dentist=dentist).get_json()['data']['id']
    follow_up = (monday + timedelta(days=14)).isoformat()

    response = client.post(f'/api/appointments/{appointment_id}/complete', json={
        'treatment_provided': 'Scaling and polishing',
        'follow_up_required': True,
        'follow_up_date': follow_up,
    })

    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['status'] == 'completed'
    assert data['follow_up_date'] == follow_up


def test_follow_up_requires_date(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    appointment_id = book(patient, clinic, monday, '11:00', dentist=dentist).get_json()['data']['id']

    response = client.post(f'/api/appointments/{appointment_id}/complete', json={'follow_up_required': True})

    assert response.status_code == 400


# ---------------- OTHER SCHEDULING OPERATIONS ----------------

def test_check_conflicts(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    appointment_id = book(patient, clinic, monday, '11:00', dentist=dentist).get_json()['data']['id']
    query = {'dentist_id': dentist.id, 'date': monday.isoformat(), 'time_slot': '11:15', 'duration': 30}

    data = client.get('/api/appointments/check-conflicts', query_string=query).get_json()['data']
    assert data['has_conflicts'] is True
    assert [c['id'] for c in data['conflicts']] == [appointment_id]

    query['exclude_appointment_id'] = appointment_id
    data = client.get('/api/appointments/check-conflicts', query_string=query).get_json()['data']
    assert data['has_conflicts'] is False


def test_next_slot_after_last_booking(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '15:00')
    book(patient, clinic, monday, '11:00', dentist=dentist, duration=60)
    book(patient, clinic, monday, '13:00', dentist=dentist, duration=45)

    response = client.get('/api/appointments/next-slot',
                          query_string={'clinic_id': clinic.id, 'date': monday.isoformat()})

    assert response.get_json()['data']['time'] == '13:45'


def test_next_slot_on_empty_day_is_opening_time(client, clinic, monday):
    response = client.get('/api/appointments/next-slot',
                          query_string={'clinic_id': clinic.id, 'date': monday.isoformat(), 'duration': 30})
    assert response.get_json()['data']['time'] == '11:00'


def test_auto_book_takes_earliest_free_slot(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00')
    book(patient, clinic, monday, '11:00', dentist=dentist)

    response = client.post('/api/appointments/auto-book', json={
        'patient_id': patient.id, 'clinic_id': clinic.id, 'service_type': 'Cleaning', 'date': monday.isoformat(),
    })

    assert response.status_code == 201
    assert response.get_json()['data']['time_slot'] == '11:30'


def test_auto_book_with_no_free_slot_conflicts(client, clinic, dentist, patient, make_schedule, monday):
    make_schedule(dentist, clinic, MONDAY, '11:00', '11:30')
    payload = {'patient_id': patient.id, 'clinic_id': clinic.id, 'service_type': 'Cleaning',
               'date': monday.isoformat()}

    assert client.post('/api/appointments/auto-book', json=payload).status_code == 201
    assert client.post('/api/appointments/auto-book', json=payload).status_code == 409


# ---------------- LISTING ----------------

def test_list_filters_and_paginates(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '13:00')
    for time_slot in ('11:00', '11:30', '12:00'):
        book(patient, clinic, monday, time_slot, dentist=dentist)

    body = client.get('/api/appointments', query_string={'dentist_id': dentist.id, 'limit': 2}).get_json()

    assert len(body['data']) == 2
    assert body['pagination'] == {'page': 1, 'limit': 2, 'total': 3, 'pages': 2}


def test_list_rejects_oversized_page(client):
    assert client.get('/api/appointments', query_string={'limit': 101}).status_code == 400


def test_statistics(client, clinic, dentist, patient, make_schedule, monday, book):
    make_schedule(dentist, clinic, MONDAY, '11:00', '13:00')
    ids = [book(patient, clinic, monday, t, dentist=dentist).get_json()['data']['id']
           for t in ('11:00', '11:30', '12:00', '12:30')]
    client.post(f'/api/appointments/{ids[0]}/cancel', json={})
    client.post(f'/api/appointments/{ids[1]}/complete', json={})

    data = client.get('/api/appointments/statistics').get_json()['data']

    assert data['total'] == 4
    assert data['by_status'] == {'cancelled': 1, 'completed': 1, 'scheduled': 2}
    assert data['completion_rate'] == 25.0
    assert data['cancellation_rate'] == 25.0


def test_unknown_appointment_is_404(client):
    response = client.get('/api/appointments/12345')
    assert response.status_code == 404
    assert response.get_json() == {'success': False, 'message': 'Appointment not found'}
