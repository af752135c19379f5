from signflow.core.settings import settings
from signflow.schemas.convention import Role

from conftest import ADDRESSES, convention_payload


def _create(client, auth_headers, **overrides):
    resp = client.post('/conventions', json=convention_payload(**overrides), headers=auth_headers(Role.STUDENT))
    assert resp.status_code == 201, resp.text
    return resp.json()


def _sign(client, auth_headers, convention_id, role, **body):
    return client.post(
        f'/conventions/{convention_id}/sign',
        json={'role': role.value, **body},
        headers=auth_headers(role),
    )


def test_submit_and_sign_through_api(client, auth_headers):
    created = _create(client, auth_headers)
    assert created['new_status'] == 'SUBMITTED'
    convention_id = created['convention']['id']

    for role, expected in (
        (Role.TEACHER, 'VALIDATED_TEACHER'),
        (Role.COMPANY, 'SIGNED_COMPANY'),
        (Role.TUTOR, 'SIGNED_TUTOR'),
        (Role.HEAD, 'VALIDATED_HEAD'),
    ):
        resp = _sign(client, auth_headers, convention_id, role)
        assert resp.status_code == 200, resp.text
        assert resp.json()['new_status'] == expected

    resp = client.get(f'/conventions/{convention_id}', headers=auth_headers(Role.TUTOR))
    assert resp.status_code == 200
    assert resp.json()['status'] == 'VALIDATED_HEAD'


def test_student_submits_only_own_agreement(client, auth_headers):
    resp = client.post('/conventions', json=convention_payload(), headers=auth_headers(Role.TEACHER))
    assert resp.status_code == 403


def test_missing_token_is_rejected(client):
    resp = client.post('/conventions', json=convention_payload())
    assert resp.status_code in (401, 403)


def test_invalid_payload(client, auth_headers):
    resp = client.post(
        '/conventions',
        json=convention_payload(end_date='2026-01-01'),
        headers=auth_headers(Role.STUDENT),
    )
    assert resp.status_code == 422


def test_workflow_errors_map_to_conflict(client, auth_headers):
    convention_id = _create(client, auth_headers)['convention']['id']

    resp = _sign(client, auth_headers, convention_id, Role.HEAD)
    assert resp.status_code == 409
    body = resp.json()
    assert body['error'] == 'StaleTransitionError'
    assert body['convention_id'] == convention_id
    assert 'correlation_id' in body

    assert _sign(client, auth_headers, convention_id, Role.TEACHER).status_code == 200
    resp = _sign(client, auth_headers, convention_id, Role.TEACHER)
    assert resp.status_code == 409
    assert resp.json()['error'] == 'NoOpTransitionError'


def test_signing_for_someone_else_is_forbidden(client, auth_headers):
    convention_id = _create(client, auth_headers)['convention']['id']
    resp = client.post(
        f'/conventions/{convention_id}/sign',
        json={'role': 'teacher'},
        headers=auth_headers(Role.COMPANY),
    )
    assert resp.status_code == 403


def test_unknown_convention(client, auth_headers):
    resp = client.get('/conventions/does-not-exist', headers=auth_headers(Role.STUDENT))
    assert resp.status_code == 404


def test_outsider_cannot_read(client, auth_headers):
    convention_id = _create(client, auth_headers, cpe_email=None)['convention']['id']
    resp = client.get(f'/conventions/{convention_id}', headers=auth_headers('staff'))
    assert resp.status_code == 403


def test_list_by_role(client, auth_headers):
    _create(client, auth_headers)
    _create(client, auth_headers)
    resp = client.get('/conventions', params={'role': 'teacher'}, headers=auth_headers(Role.TEACHER))
    assert resp.status_code == 200
    assert len(resp.json()) == 2


def test_reminder_cooldown_returns_429(client, auth_headers):
    convention_id = _create(client, auth_headers)['convention']['id']

    resp = client.post(f'/conventions/{convention_id}/reminders', headers=auth_headers(Role.STUDENT))
    assert resp.status_code == 200, resp.text
    assert resp.json()['recipient'] == ADDRESSES[Role.TEACHER]

    resp = client.post(f'/conventions/{convention_id}/reminders', headers=auth_headers(Role.STUDENT))
    assert resp.status_code == 429
    assert resp.json()['error'] == 'CooldownActiveError'
    assert int(resp.headers['Retry-After']) > 0


def test_feedback_requires_staff(client, auth_headers):
    convention_id = _create(client, auth_headers)['convention']['id']
    resp = client.post(
        f'/conventions/{convention_id}/feedback',
        json={'message': 'Please fix the dates'},
        headers=auth_headers(Role.COMPANY),
    )
    assert resp.status_code == 403

    resp = client.post(
        f'/conventions/{convention_id}/feedback',
        json={'message': 'Please fix the dates'},
        headers=auth_headers(Role.TEACHER),
    )
    assert resp.status_code == 200
    assert resp.json()['status'] == 'REJECTED'


def test_email_update_and_tracking(client, auth_headers):
    convention_id = _create(client, auth_headers)['convention']['id']
    resp = client.patch(
        f'/conventions/{convention_id}/emails',
        json={'role': 'tutor', 'email': 'new.tutor@example.com'},
        headers=auth_headers(Role.HEAD),
    )
    assert resp.status_code == 200
    assert resp.json()['tutor_email'] == 'new.tutor@example.com'

    resp = client.post(
        f'/conventions/{convention_id}/tracking-teacher',
        json={'email': 'tracker@example.com'},
        headers=auth_headers(Role.TEACHER),
    )
    assert resp.status_code == 200
    assert resp.json()['tracking_teacher_email'] == 'tracker@example.com'


def test_bulk_sign_endpoint(client, auth_headers):
    ids = [_create(client, auth_headers)['convention']['id'] for _ in range(3)]
    # the second one is already signed by the teacher
    _sign(client, auth_headers, ids[1], Role.TEACHER)

    resp = client.post(
        '/conventions/bulk-sign',
        json={'convention_ids': ids, 'role': 'teacher'},
        headers=auth_headers(Role.TEACHER),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body['completed'] is False
    assert body['processed'] == ids[:1]
    assert body['unprocessed'] == ids[1:]
    assert body['failed_id'] == ids[1]
    assert body['error_type'] == 'NoOpTransitionError'


def test_absences_and_attestation(client, auth_headers):
    convention_id = _create(client, auth_headers)['convention']['id']
    for role in (Role.TEACHER, Role.COMPANY, Role.TUTOR, Role.HEAD):
        _sign(client, auth_headers, convention_id, role)

    resp = client.post(
        f'/conventions/{convention_id}/absences',
        json={'date': '2026-04-09', 'kind': 'absence', 'duration_hours': 7},
        headers=auth_headers(Role.TUTOR),
    )
    assert resp.status_code == 201, resp.text
    absence_id = resp.json()['id']

    resp = client.post(
        f'/conventions/{convention_id}/absences',
        json={'date': '2026-04-10', 'kind': 'late', 'duration_hours': 1},
        headers=auth_headers(Role.STUDENT),
    )
    assert resp.status_code == 403

    resp = client.patch(
        f'/conventions/{convention_id}/absences/{absence_id}',
        json={'reason': 'Medical appointment'},
        headers=auth_headers(Role.TEACHER),
    )
    assert resp.status_code == 200
    assert resp.json()['reason'] == 'Medical appointment'

    resp = client.post(
        f'/conventions/{convention_id}/attestation',
        json={'total_days': 19},
        headers=auth_headers(Role.TUTOR),
    )
    assert resp.status_code == 403

    resp = client.post(
        f'/conventions/{convention_id}/attestation',
        json={'total_days': 19},
        headers=auth_headers(Role.COMPANY),
    )
    assert resp.status_code == 200
    attestation = resp.json()['attestation']
    assert attestation['signed'] is True
    assert attestation['absences_count'] == 1

    resp = client.get(f'/conventions/{convention_id}/integrity', headers=auth_headers(Role.STUDENT))
    assert resp.status_code == 200
    assert resp.json()['valid'] is True


def test_public_verification(client, auth_headers):
    created = _create(client, auth_headers)
    code = created['code']

    resp = client.get(f'/verify/{code}')
    assert resp.status_code == 200
    body = resp.json()
    assert body['valid'] is True
    assert body['kind'] == 'signature'
    assert body['role'] == 'student'
    assert body['superseded'] is False
    assert body['student_name'] == 'Lea Bernard'

    assert client.get('/verify/ZZZZZZZZ-00000').status_code == 404


def test_reminder_sweep_requires_cron_secret(client, auth_headers):
    convention_id = _create(client, auth_headers)['convention']['id']

    assert client.post('/scheduled/reminders').status_code == 403
    assert client.post('/scheduled/reminders', headers={'X-Cron-Secret': 'wrong'}).status_code == 403

    resp = client.post('/scheduled/reminders', headers={'X-Cron-Secret': settings.cron_secret})
    assert resp.status_code == 200
    assert resp.json()['sent'] == [convention_id]


def test_health(client):
    resp = client.get('/health')
    assert resp.status_code == 200
    assert resp.json()['status'] == 'healthy'
    assert 'X-Correlation-ID' in resp.headers
