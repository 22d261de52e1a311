"""Tests for the sync API endpoints."""
import base64
import json
from fca_backend.models import db, ApiToken
from fca_shared.enums import ConflictPolicy


def test_requires_bearer_token(client, seeded):
    response = client.post('/api/sync/assessment', json={})
    assert response.status_code == 401

    response = client.post('/api/sync/assessment', json={}, headers={'Authorization': 'Bearer nope'})
    assert response.status_code == 401


def test_token_use_is_recorded(client, app, seeded, auth_headers):
    client.get('/api/sync/policy', headers=auth_headers())
    with app.app_context():
        tokens = db.session.query(ApiToken).filter(ApiToken.last_used_at.isnot(None)).all()
        assert len(tokens) == 1


def test_sync_assessment_scenario(client, seeded, auth_headers):
    payload = {
        'offlineId': 'a1',
        'createdAt': '2024-01-01T00:00:00Z',
        'projectId': 7,
        'componentCode': 'B2010',
        'observations': 'cracking observed',
    }
    response = client.post('/api/sync/assessment', json=payload, headers=auth_headers())
    assert response.status_code == 200
    data = json.loads(response.data)
    assert data['resolution'] == 'accepted'
    assert data['conflict'] is False
    assert data['offlineId'] == 'a1'
    assessment_id = data['assessmentId']

    older = dict(payload, offlineId='a1-old', createdAt='2023-12-01T00:00:00Z', observations='old')
    response = client.post('/api/sync/assessment', json=older, headers=auth_headers())
    data = json.loads(response.data)
    assert data['conflict'] is True
    assert data['resolution'] == 'server_wins'
    assert data['assessmentId'] == assessment_id


def test_validation_error_response(client, seeded, auth_headers):
    response = client.post('/api/sync/assessment', json={'offlineId': 'a1'}, headers=auth_headers())
    assert response.status_code == 400
    data = json.loads(response.data)
    assert data['errorType'] == 'validation_error'
    assert 'createdAt' in data['fields']
    assert 'projectId' in data['fields']


def test_non_json_body(client, seeded, auth_headers):
    response = client.post('/api/sync/deficiency', data='nope', headers=auth_headers())
    assert response.status_code == 400


def test_access_denied_response(client, seeded, auth_headers):
    payload = {'offlineId': 'a1', 'createdAt': '2024-01-01T00:00:00Z', 'projectId': seeded.foreign_project_id}
    response = client.post('/api/sync/assessment', json=payload, headers=auth_headers())
    assert response.status_code == 403
    data = json.loads(response.data)
    assert data['errorType'] == 'access_denied'
    assert data['retryable'] is False


def test_sync_photo(client, seeded, auth_headers, blob_store, make_photo):
    payload = {
        'offlineId': 'p1',
        'createdAt': '2024-01-02T09:30:00Z',
        'projectId': 7,
        'fileName': 'facade.png',
        'mimeType': 'image/png',
        'photoBlob': base64.b64encode(make_photo()).decode('ascii'),
        'assessmentId': 'offline_assessment_4',
    }
    response = client.post('/api/sync/photo', json=payload, headers=auth_headers())
    assert response.status_code == 200
    data = json.loads(response.data)
    assert data['offlineId'] == 'p1'
    assert data['url'].startswith('https://blobs.test/project/7/photos/')
    assert data['thumbnailUrl'].startswith('https://blobs.test/project/7/photos/thumbnails/')
    assert data['replayed'] is False


def test_storage_failure_is_retryable(client, seeded, auth_headers, blob_store, make_photo):
    blob_store.fail_on = 'photos'
    payload = {
        'offlineId': 'p1',
        'createdAt': '2024-01-02T09:30:00Z',
        'projectId': 7,
        'fileName': 'facade.png',
        'mimeType': 'image/png',
        'photoBlob': base64.b64encode(make_photo()).decode('ascii'),
    }
    response = client.post('/api/sync/photo', json=payload, headers=auth_headers())
    assert response.status_code == 503
    data = json.loads(response.data)
    assert data['errorType'] == 'storage_error'
    assert data['retryable'] is True


def test_sync_deficiency(client, seeded, auth_headers):
    payload = {
        'offlineId': 'd1',
        'createdAt': '2024-01-05T10:00:00Z',
        'payload': {'projectId': 7, 'title': 'Spalled concrete', 'severity': 'high'},
    }
    response = client.post('/api/sync/deficiency', json=payload, headers=auth_headers())
    assert response.status_code == 200
    data = json.loads(response.data)
    assert data['offlineId'] == 'd1'
    assert data['deficiencyId']


def test_batch_assessments(client, seeded, auth_headers):
    items = [
        {'offlineId': f'a{i}', 'createdAt': '2024-01-01T00:00:00Z', 'projectId': 7, 'componentCode': f'C10{i}0'}
        for i in range(1, 6)
    ]
    items[2]['projectId'] = seeded.foreign_project_id

    response = client.post('/api/sync/assessments/batch', json={'assessments': items}, headers=auth_headers())

    assert response.status_code == 200
    data = json.loads(response.data)
    assert data['successCount'] == 4
    assert data['failureCount'] == 1
    assert [r['offlineId'] for r in data['results']] == ['a1', 'a2', 'a3', 'a4', 'a5']
    assert data['results'][2]['success'] is False
    assert data['results'][2]['errorType'] == 'access_denied'
    assert all(r['entityId'] for r in data['results'] if r['success'])


def test_batch_photos(client, seeded, auth_headers, make_photo):
    blob = base64.b64encode(make_photo()).decode('ascii')
    photos = [
        {'offlineId': 'p1', 'createdAt': '2024-01-02T09:30:00Z', 'projectId': 7,
         'fileName': 'one.png', 'mimeType': 'image/png', 'photoBlob': blob},
        {'offlineId': 'p2', 'createdAt': '2024-01-02T09:31:00Z', 'projectId': 7,
         'fileName': 'two.png', 'mimeType': 'image/png', 'photoBlob': ''},
    ]
    response = client.post('/api/sync/photos/batch', json={'photos': photos}, headers=auth_headers())
    assert response.status_code == 200
    data = json.loads(response.data)
    assert data['successCount'] == 1
    assert data['results'][0]['url'].startswith('https://blobs.test/')
    assert data['results'][1]['errorType'] == 'validation_error'


def test_batch_deficiencies(client, seeded, auth_headers):
    items = [{'offlineId': f'd{i}', 'createdAt': '2024-01-05T10:00:00Z', 'projectId': 7} for i in range(3)]
    response = client.post('/api/sync/deficiencies/batch', json={'deficiencies': items}, headers=auth_headers())
    data = json.loads(response.data)
    assert data['successCount'] == 3
    assert len({r['entityId'] for r in data['results']}) == 3


def test_malformed_batch_envelope(client, seeded, auth_headers):
    response = client.post('/api/sync/assessments/batch', json={'items': []}, headers=auth_headers())
    assert response.status_code == 400

    response = client.post('/api/sync/assessments/batch', json={'assessments': [1, 2]}, headers=auth_headers())
    assert response.status_code == 400

    response = client.post('/api/sync/assessments/batch', json=[], headers=auth_headers())
    assert response.status_code == 400


def test_batch_size_limit(client, app, seeded, auth_headers):
    app.extensions['fca_settings'].max_batch_size = 2
    items = [{'offlineId': f'a{i}'} for i in range(3)]
    response = client.post('/api/sync/assessments/batch', json={'assessments': items}, headers=auth_headers())
    assert response.status_code == 400
    assert json.loads(response.data)['fields'] == ['assessments']


def test_policy_endpoint(client, app, seeded, auth_headers):
    response = client.get('/api/sync/policy', headers=auth_headers())
    data = json.loads(response.data)
    assert data['conflictPolicy'] == 'server_wins'
    assert data['maxBatchSize'] == 200
    assert 'image/png' in data['allowedPhotoMimeTypes']

    app.extensions['fca_settings'].conflict_policy = ConflictPolicy.FIELD_MERGE
    response = client.get('/api/sync/policy', headers=auth_headers())
    assert json.loads(response.data)['conflictPolicy'] == 'field_merge'
