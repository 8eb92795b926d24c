"""Doctor schedule CRUD and overlap rules."""
from datetime import timedelta

from conftest import MONDAY, TUESDAY


def schedule_payload(dentist, clinic, day=MONDAY, start='11:00', end='15:00', **extra):
    return {'doctor_id': dentist.id, 'clinic_id': clinic.id, 'day_of_week': day,
            'start_time': start, 'end_time': end, **extra}


def test_create_schedule(client, clinic, dentist):
    response = client.post('/api/schedules', json=schedule_payload(dentist, clinic, start='9:00', end='13:00'))

    assert response.status_code == 201
    data = response.get_json()['data']
    assert data['start_time'] == '09:00'
    assert data['day_name'] == 'Monday'
    assert data['duration_minutes'] == 240


def test_end_before_start_is_rejected(client, clinic, dentist):
    response = client.post('/api/schedules', json=schedule_payload(dentist, clinic, start='15:00', end='11:00'))
    assert response.status_code == 400


def test_invalid_day_is_rejected(client, clinic, dentist):
    response = client.post('/api/schedules', json=schedule_payload(dentist, clinic, day=7))
    assert response.status_code == 400


def test_overlapping_schedule_conflicts(client, clinic, dentist):
    client.post('/api/schedules', json=schedule_payload(dentist, clinic, start='11:00', end='15:00'))

    response = client.post('/api/schedules', json=schedule_payload(dentist, clinic, start='14:00', end='18:00'))

    assert response.status_code == 409


def test_adjacent_schedules_are_allowed(client, clinic, dentist):
    client.post('/api/schedules', json=schedule_payload(dentist, clinic, start='11:00', end='15:00'))

    response = client.post('/api/schedules', json=schedule_payload(dentist, clinic, start='15:00', end='18:00'))

    assert response.status_code == 201


def test_same_hours_on_another_day_are_allowed(client, clinic, dentist):
    client.post('/api/schedules', json=schedule_payload(dentist, clinic, day=MONDAY))
    assert client.post('/api/schedules', json=schedule_payload(dentist, clinic, day=TUESDAY)).status_code == 201


def test_schedule_for_unassigned_clinic_is_rejected(client, make_clinic, dentist):
    other = make_clinic(name='Elsewhere')
    response = client.post('/api/schedules', json=schedule_payload(dentist, other))
    assert response.status_code == 400


def test_bulk_create_rejects_internal_overlap(client, clinic, dentist):
    response = client.post('/api/schedules/bulk', json={'schedules': [
        schedule_payload(dentist, clinic, start='11:00', end='15:00'),
        schedule_payload(dentist, clinic, start='12:00', end='13:00'),
    ]})

    assert response.status_code == 409
    assert client.get('/api/schedules').get_json()['data'] == []


def test_bulk_create(client, clinic, dentist):
    response = client.post('/api/schedules/bulk', json={'schedules': [
        schedule_payload(dentist, clinic, day=day) for day in range(0, 5)
    ]})

    assert response.status_code == 201
    assert len(response.get_json()['data']) == 5


def test_update_into_overlap_conflicts(client, clinic, dentist, make_schedule):
    make_schedule(dentist, clinic, MONDAY, '11:00', '13:00')
    later = make_schedule(dentist, clinic, MONDAY, '14:00', '16:00')

    response = client.put(f'/api/schedules/{later.id}', json={'start_time': '12:30'})

    assert response.status_code == 409


def test_update_schedule_hours(client, clinic, dentist, make_schedule):
    schedule = make_schedule(dentist, clinic, MONDAY, '11:00', '13:00')

    response = client.put(f'/api/schedules/{schedule.id}', json={'end_time': '14:00', 'notes': 'Longer Mondays'})

    assert response.status_code == 200
    assert response.get_json()['data']['end_time'] == '14:00'


def test_list_and_delete(client, clinic, dentist, make_schedule):
    schedule = make_schedule(dentist, clinic, MONDAY)
    make_schedule(dentist, clinic, TUESDAY)

    listed = client.get('/api/schedules', query_string={'day_of_week': MONDAY}).get_json()['data']
    assert [s['id'] for s in listed] == [schedule.id]

    assert client.delete(f'/api/schedules/{schedule.id}').status_code == 200
    assert client.get(f'/api/schedules/{schedule.id}').status_code == 404


def test_available_doctors(client, clinic, make_dentist, make_schedule, monday):
    working = make_dentist(clinic, first_name='Hana')
    make_dentist(clinic, first_name='Off')
    make_schedule(working, clinic, MONDAY, '11:00', '13:00')
    make_schedule(working, clinic, MONDAY, '17:00', '20:00')

    response = client.get('/api/schedules/available-doctors',
                          query_string={'clinic_id': clinic.id, 'date': monday.isoformat()})

    doctors = response.get_json()['data']
    assert [d['doctor_id'] for d in doctors] == [working.id]
    assert len(doctors[0]['windows']) == 2


def test_schedule_outside_effective_range_gives_no_slots(client, clinic, dentist, make_schedule, monday):
    make_schedule(dentist, clinic, MONDAY, '11:00', '12:00', effective_until=monday - timedelta(days=365))

    response = client.get('/api/appointments/available-slots',
                          query_string={'dentist_id': dentist.id, 'date': monday.isoformat()})

    assert response.get_json()['data']['slots'] == []
