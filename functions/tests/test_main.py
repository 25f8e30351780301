"""Tests for the Cloud Function handlers and their response envelope."""
import base64
import inspect
import json
from types import SimpleNamespace
from unittest import mock

import pytest

from errors import AuthError, NotFoundError, ValidationError

from conftest import make_image

with mock.patch('firebase_admin.initialize_app'):
    import main


def call(function, data=None, uid=None, email=None, id_token=None):
    """Invoke a callable function the way the callable protocol hands it a request."""
    auth = SimpleNamespace(uid=uid, token={'uid': uid, 'email': email}) if uid else None
    headers = {'Authorization': f"Bearer {id_token}"} if id_token else {}
    request = SimpleNamespace(data=data, auth=auth, raw_request=SimpleNamespace(headers=headers))
    return inspect.unwrap(function)(request)


class UploadedFile:
    def __init__(self, data, filename='photo.jpg', mimetype='image/jpeg'):
        self.data = data
        self.filename = filename
        self.mimetype = mimetype

    def read(self):
        return self.data


def upload_request(method='POST', file=None, path=None, content_type=None):
    form = {}
    if path is not None:
        form['path'] = path
    if content_type is not None:
        form['contentType'] = content_type
    return SimpleNamespace(method=method, files={'file': file} if file else {}, form=form)


def response_json(response):
    return json.loads(response.get_data())


@pytest.fixture
def stores(monkeypatch, project_store, asset_store):
    monkeypatch.setattr(main, 'ProjectStore', lambda: project_store)
    monkeypatch.setattr(main, 'AssetStore', lambda: asset_store)
    return project_store, asset_store


class TestFailure:
    def test_error_code_of_the_taxonomy(self):
        response = main._failure('loading preview', NotFoundError('Project not found: p1'))
        assert response == {'success': False, 'message': 'Project not found: p1', 'data': None, 'error': 'not-found'}

    def test_auth_errors_carry_the_reason(self):
        response = main._failure('listing users', AuthError('permission-denied', 'Access denied'))
        assert response['error'] == 'unauthenticated'
        assert response['reason'] == 'permission-denied'
        assert response['message'] == 'Access denied'

    def test_validation_errors_have_no_reason(self):
        response = main._failure('submitting project', ValidationError('Title is required'))
        assert response['error'] == 'invalid'
        assert 'reason' not in response

    def test_unexpected_errors_are_internal(self):
        response = main._failure('deleting project', RuntimeError('boom'))
        assert response == {'success': False, 'message': 'Error deleting project: boom', 'data': None, 'error': 'internal'}


class TestDecodeImage:
    def test_valid_image(self):
        image = make_image()
        assert main._decode_image({'image': base64.b64encode(image).decode('ascii')}) == image

    def test_missing_image(self):
        with pytest.raises(ValidationError, match='required'):
            main._decode_image({})

    def test_invalid_base64(self):
        with pytest.raises(ValidationError, match='base64'):
            main._decode_image({'image': 'not base64!!'})


class TestCallerToken:
    def test_bearer_token(self):
        request = SimpleNamespace(raw_request=SimpleNamespace(headers={'Authorization': 'Bearer id-token-1'}))
        assert main._caller_token(request) == 'id-token-1'

    def test_other_schemes_are_ignored(self):
        request = SimpleNamespace(raw_request=SimpleNamespace(headers={'Authorization': 'Basic abc'}))
        assert main._caller_token(request) is None

    def test_no_raw_request(self):
        assert main._caller_token(SimpleNamespace(raw_request=None)) is None


class TestCustomerFunctions:
    @pytest.mark.parametrize('function', [
        main.submit_project,
        main.get_project_preview,
        main.list_dashboard_projects,
        main.start_checkout,
        main.order_confirmation,
        main.delete_project,
        main.delete_account,
    ])
    def test_unauthenticated_callers(self, function):
        assert call(function, {'projectId': 'p1'}) == main._unauthenticated()

    def test_checkout_needs_the_caller_token(self):
        assert call(main.start_checkout, {'projectId': 'p1'}, uid='user-1') == main._unauthenticated()

    def test_project_id_is_required(self):
        response = call(main.get_project_preview, {}, uid='user-1')
        assert response['success'] is False
        assert response['error'] == 'invalid'

    def test_store_errors_become_failures(self, stores):
        response = call(main.get_project_preview, {'projectId': 'missing'}, uid='user-1')
        assert response['success'] is False
        assert response['error'] == 'not-found'


class TestAdminFunctions:
    def test_anonymous_admin_call(self):
        response = call(main.admin_list_projects, {})
        assert response['error'] == 'unauthenticated'
        assert response['reason'] == 'unauthenticated'

    def test_non_admin_call(self, monkeypatch):
        monkeypatch.setenv('ADMIN_EMAILS', 'ops@example.com')
        response = call(main.list_all_users, {}, uid='user-1', email='ann@example.com')
        assert response['error'] == 'unauthenticated'
        assert response['reason'] == 'permission-denied'

    def test_attach_to_a_chosen_page(self, monkeypatch, stores, bucket):
        monkeypatch.setenv('ADMIN_EMAILS', 'ops@example.com')
        project_store, _ = stores
        project_store.create_project('user-1', {
            'title': 'Beach Trip',
            'pages': [
                {'id': f"page-{i}", 'pageNumber': i, 'photoPath': f"users/user-1/projects/p1/photos/photo-{i}.jpg"}
                for i in range(1, 6)
            ],
        }, project_id='p1')

        response = call(main.admin_attach_processed_image, {
            'userId': 'user-1',
            'projectId': 'p1',
            'pageId': 'page-3',
            'image': base64.b64encode(make_image()).decode('ascii'),
        }, uid='admin-1', email='ops@example.com')

        assert response['success'] is True
        assert response['data']['processedImagePath'] == 'users/user-1/projects/p1/processed/photo-3.jpg'
        pages = project_store.get_project('user-1', 'p1')['pages']
        assert pages[2]['processed'] is True
        assert 'processed' not in pages[0]

    def test_attach_requires_an_image(self, monkeypatch, stores):
        monkeypatch.setenv('ADMIN_EMAILS', 'ops@example.com')
        response = call(main.admin_attach_processed_image, {'userId': 'user-1', 'projectId': 'p1'}, uid='admin-1', email='ops@example.com')
        assert response['error'] == 'invalid'


class TestUploadProxy:
    def test_disabled_by_default(self, stores, bucket):
        response = main.upload.__wrapped__(upload_request(file=UploadedFile(b'data'), path='users/user-1/a.jpg'))
        assert response.status_code == 404
        assert bucket.upload_calls == []

    def test_only_post(self, monkeypatch):
        monkeypatch.setenv('ALLOW_UPLOAD_PROXY', 'true')
        assert main.upload.__wrapped__(upload_request(method='GET')).status_code == 405

    def test_file_and_path_are_required(self, monkeypatch):
        monkeypatch.setenv('ALLOW_UPLOAD_PROXY', 'true')
        no_file = main.upload.__wrapped__(upload_request(path='users/user-1/a.jpg'))
        no_path = main.upload.__wrapped__(upload_request(file=UploadedFile(b'data')))
        assert no_file.status_code == 400
        assert response_json(no_file) == {'error': 'No file provided'}
        assert no_path.status_code == 400
        assert response_json(no_path) == {'error': 'No path provided'}

    def test_uploads_stay_under_users(self, monkeypatch, stores, bucket):
        monkeypatch.setenv('ALLOW_UPLOAD_PROXY', 'true')
        response = main.upload.__wrapped__(upload_request(file=UploadedFile(b'data'), path='public/a.jpg'))
        assert response.status_code == 400
        assert bucket.upload_calls == []

    def test_upload(self, monkeypatch, stores, bucket):
        monkeypatch.setenv('ALLOW_UPLOAD_PROXY', 'true')
        response = main.upload.__wrapped__(upload_request(
            file=UploadedFile(b'image-bytes', filename='a.png', mimetype=None),
            path='users/user-1/a.png',
        ))

        assert response.status_code == 200
        body = response_json(response)
        assert body['success'] is True
        assert body['path'] == 'users/user-1/a.png'
        stored = bucket.objects['users/user-1/a.png']
        assert stored['data'] == b'image-bytes'
        assert stored['content_type'] == 'image/png'
        assert stored['metadata']['uploadedVia'] == 'upload-proxy'

    def test_storage_failure(self, monkeypatch, stores, bucket):
        monkeypatch.setenv('ALLOW_UPLOAD_PROXY', 'true')
        bucket.upload_failures = 1
        response = main.upload.__wrapped__(upload_request(file=UploadedFile(b'data'), path='users/user-1/a.jpg'))
        assert response.status_code == 500
