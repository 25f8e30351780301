import base64
import binascii
import json
from typing import Any, Dict, Optional

from firebase_functions import https_fn
from firebase_functions.options import set_global_options, MemoryOption
from firebase_admin import initialize_app

from account import delete_account as run_delete_account
from admin_fulfillment import (
    AdminPolicy,
    attach_processed_image,
    list_admin_projects,
    load_admin_project,
    notify_customer,
)
from asset_store import AssetStore
from checkout import (
    CheckoutClient,
    PaymentGateway,
    delete_project as run_delete_project,
    list_dashboard_projects as run_list_dashboard_projects,
    load_preview,
    order_confirmation as run_order_confirmation,
    start_checkout as run_start_checkout,
)
from config import get_storage_bucket, is_upload_proxy_enabled
from errors import AuthError, StoryInColorError, ValidationError
from file_handling import detect_content_type
from notifications import BestEffortDispatcher, FunctionsClient
from project_store import ProjectStore
from project_submission import submit_project as run_submit_project, wizard_from_payload
from user_directory import get_auth_user_data as run_get_auth_user_data, list_all_users as run_list_all_users


# Maximum number of containers that can be running at the same time.
set_global_options(max_instances=2)

app = initialize_app(options={'storageBucket': get_storage_bucket()} if get_storage_bucket() else None)


def _success(message: str, data: Any = None) -> dict:
    return {'success': True, 'message': message, 'data': data}


def _failure(action: str, error: Exception) -> dict:
    """Response envelope for a failed call; 'error' tells the front end which state to show."""
    if isinstance(error, StoryInColorError):
        print(f"Error {action}: {error.message}")
        response = {'success': False, 'message': error.message, 'data': None, 'error': error.code}
        if isinstance(error, AuthError):
            response['reason'] = error.reason
        return response

    print(f"Error {action}: {str(error)}")
    return {'success': False, 'message': f'Error {action}: {str(error)}', 'data': None, 'error': 'internal'}


def _unauthenticated() -> dict:
    return {'success': False, 'message': 'Unauthenticated request', 'data': None, 'error': 'unauthenticated'}


def _caller_token(req: https_fn.CallableRequest) -> Optional[str]:
    """Raw ID token the caller sent, used to call other functions on their behalf."""
    header = req.raw_request.headers.get('Authorization', '') if req.raw_request else ''
    return header[len('Bearer '):] if header.startswith('Bearer ') else None


def _functions_client(req: https_fn.CallableRequest) -> FunctionsClient:
    token = _caller_token(req)
    return FunctionsClient(id_token_provider=lambda: token)


def _require_admin(req: https_fn.CallableRequest) -> None:
    AdminPolicy.from_config().require_admin(req.auth.token if req.auth else None)


def _decode_image(data: Dict[str, Any]) -> bytes:
    encoded = data.get('image')
    if not encoded:
        raise ValidationError('Image is required')
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError('Image is not valid base64', e)


# Customer functions
@https_fn.on_call(memory=MemoryOption.GB_1)
def submit_project(req: https_fn.CallableRequest) -> dict:
    """Cloud function to create or update a project from the finished create-book wizard."""
    if not req.auth or not req.auth.uid:
        return _unauthenticated()

    try:
        wizard = wizard_from_payload(req.data or {})
        result = run_submit_project(
            wizard,
            req.auth.uid,
            ProjectStore(),
            AssetStore(),
            dispatcher=BestEffortDispatcher(_functions_client(req)),
        )
        return _success('Project submitted successfully', result)
    except Exception as e:
        return _failure('submitting project', e)


@https_fn.on_call(memory=MemoryOption.MB_256)
def get_project_preview(req: https_fn.CallableRequest) -> dict:
    """Cloud function to load the preview screen of a project."""
    if not req.auth or not req.auth.uid:
        return _unauthenticated()

    project_id = (req.data or {}).get('projectId')
    if not project_id:
        return {'success': False, 'message': 'Project ID is required', 'data': None, 'error': 'invalid'}

    try:
        preview = load_preview(ProjectStore(), AssetStore(), req.auth.uid, project_id)
        return _success('Preview loaded successfully', preview.to_dict())
    except Exception as e:
        return _failure('loading preview', e)


@https_fn.on_call(memory=MemoryOption.MB_256)
def list_dashboard_projects(req: https_fn.CallableRequest) -> dict:
    """Cloud function to list the caller's projects awaiting checkout and already ordered."""
    if not req.auth or not req.auth.uid:
        return _unauthenticated()

    try:
        projects = run_list_dashboard_projects(ProjectStore(), AssetStore(), req.auth.uid)
        return _success('Projects retrieved successfully', projects)
    except Exception as e:
        return _failure('listing projects', e)


@https_fn.on_call(memory=MemoryOption.MB_256)
def start_checkout(req: https_fn.CallableRequest) -> dict:
    """Cloud function to create a payment session and return the payment page URL."""
    if not req.auth or not req.auth.uid:
        return _unauthenticated()

    project_id = (req.data or {}).get('projectId')
    if not project_id:
        return {'success': False, 'message': 'Project ID is required', 'data': None, 'error': 'invalid'}

    token = _caller_token(req)
    if not token:
        return _unauthenticated()

    try:
        # The caller's token was just verified, a server cannot refresh it
        result = run_start_checkout(
            ProjectStore(),
            req.auth.uid,
            project_id,
            lambda force_refresh: token,
            CheckoutClient(),
            PaymentGateway(),
        )
        return _success('Checkout started', result)
    except Exception as e:
        return _failure('starting checkout', e)


@https_fn.on_call(memory=MemoryOption.MB_256)
def order_confirmation(req: https_fn.CallableRequest) -> dict:
    """Cloud function to describe the order behind a payment return URL."""
    if not req.auth or not req.auth.uid:
        return _unauthenticated()

    try:
        result = run_order_confirmation((req.data or {}).get('sessionId'), PaymentGateway())
        return _success('Order confirmed', result)
    except Exception as e:
        return _failure('confirming order', e)


@https_fn.on_call(memory=MemoryOption.MB_512)
def delete_project(req: https_fn.CallableRequest) -> dict:
    """Cloud function to delete a project and its images."""
    if not req.auth or not req.auth.uid:
        return _unauthenticated()

    data = req.data or {}
    project_id = data.get('projectId')
    if not project_id:
        return {'success': False, 'message': 'Project ID is required', 'data': None, 'error': 'invalid'}

    try:
        result = run_delete_project(ProjectStore(), AssetStore(), req.auth.uid, project_id, data.get('confirmed') is True)
        return _success('Project deleted successfully', result)
    except Exception as e:
        return _failure('deleting project', e)


@https_fn.on_call(memory=MemoryOption.MB_512)
def delete_account(req: https_fn.CallableRequest) -> dict:
    """Cloud function to delete the caller's account and everything they uploaded."""
    if not req.auth or not req.auth.uid:
        return _unauthenticated()

    try:
        result = run_delete_account(
            req.auth.uid,
            (req.data or {}).get('confirmation') or '',
            ProjectStore(),
            AssetStore(),
            email=(req.auth.token or {}).get('email'),
        )
        return _success('Account deleted successfully', result)
    except Exception as e:
        return _failure('deleting account', e)


# Admin functions
@https_fn.on_call(memory=MemoryOption.GB_1)
def admin_list_projects(req: https_fn.CallableRequest) -> dict:
    """Cloud function to list every customer's projects grouped by owner."""
    try:
        _require_admin(req)
        data = req.data or {}
        groups = list_admin_projects(ProjectStore(), AssetStore(), data.get('tab') or 'all', data.get('search') or '')
        return _success('Projects retrieved successfully', [
            {**group, 'projects': [info.to_dict() for info in group['projects']]}
            for group in groups
        ])
    except Exception as e:
        return _failure('listing admin projects', e)


@https_fn.on_call(memory=MemoryOption.GB_1)
def admin_attach_processed_image(req: https_fn.CallableRequest) -> dict:
    """Cloud function to attach the processed coloring page of a project."""
    try:
        _require_admin(req)
        data = req.data or {}
        if not data.get('userId') or not data.get('projectId'):
            raise ValidationError('User ID and project ID are required')

        image = _decode_image(data)
        project_store, asset_store = ProjectStore(), AssetStore()
        project = load_admin_project(project_store, asset_store, data['userId'], data['projectId'])
        attach_processed_image(project_store, asset_store, project, image, page_id=data.get('pageId'))
        return _success('Processed image uploaded successfully', project.to_dict())
    except Exception as e:
        return _failure('attaching processed image', e)


@https_fn.on_call(memory=MemoryOption.MB_256)
def admin_notify_customer(req: https_fn.CallableRequest) -> dict:
    """Cloud function to email a customer that their coloring page is ready."""
    try:
        _require_admin(req)
        data = req.data or {}
        if not data.get('userId') or not data.get('projectId'):
            raise ValidationError('User ID and project ID are required')

        project_store, asset_store = ProjectStore(), AssetStore()
        project = load_admin_project(project_store, asset_store, data['userId'], data['projectId'])
        function_name = notify_customer(project_store, _functions_client(req), project, data.get('confirmed') is True)
        return _success(f'Notification sent via {function_name}', project.to_dict())
    except Exception as e:
        return _failure('notifying customer', e)


@https_fn.on_call(memory=MemoryOption.MB_256)
def list_all_users(req: https_fn.CallableRequest) -> dict:
    """Cloud function to page through every auth user."""
    try:
        _require_admin(req)
        data = req.data or {}
        result = run_list_all_users(int(data.get('pageSize') or 100), data.get('pageToken'))
        return _success('Users retrieved successfully', result)
    except Exception as e:
        return _failure('listing users', e)


@https_fn.on_call(memory=MemoryOption.MB_256)
def get_auth_user_data(req: https_fn.CallableRequest) -> dict:
    """Cloud function to look up one auth user."""
    try:
        _require_admin(req)
        user_data = run_get_auth_user_data((req.data or {}).get('userId'))
        return _success('User retrieved successfully', user_data)
    except Exception as e:
        return _failure('fetching user', e)


def _json_response(body: dict, status: int = 200) -> https_fn.Response:
    return https_fn.Response(json.dumps(body), status=status, mimetype='application/json')


@https_fn.on_request(memory=MemoryOption.MB_512)
def upload(req: https_fn.Request) -> https_fn.Response:
    """
    Development-only upload proxy for browsers blocked by storage CORS rules.

    Accepts multipart form data with 'file', 'path' and an optional 'contentType'.
    """
    if not is_upload_proxy_enabled():
        return _json_response({'error': 'Not found'}, status=404)
    if req.method != 'POST':
        return _json_response({'error': 'Method not allowed'}, status=405)

    file = req.files.get('file')
    path = req.form.get('path')
    if not file:
        return _json_response({'error': 'No file provided'}, status=400)
    if not path:
        return _json_response({'error': 'No path provided'}, status=400)
    if not path.startswith('users/'):
        return _json_response({'error': 'Uploads are only allowed under users/'}, status=400)

    content_type = detect_content_type(file.filename or path, req.form.get('contentType') or file.mimetype)
    try:
        result = AssetStore().upload(file.read(), path, content_type=content_type, metadata={'uploadedVia': 'upload-proxy'})
    except StoryInColorError as e:
        print(f"Upload proxy error: {e.message}")
        return _json_response({'error': e.message}, status=500)

    return _json_response({'success': True, 'url': result['url'], 'path': result['path']})
