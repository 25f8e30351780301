"""
Admin fulfillment: list every customer's projects, attach the processed
coloring page an operator produced, and tell the customer it is ready.
"""
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from firebase_admin import firestore as admin_firestore

from asset_store import AssetStore
from config import (
    PROCESSED_UPLOAD_BACKOFF,
    PROCESSED_UPLOAD_MAX_ATTEMPTS,
    get_admin_emails,
    get_processed_image_max_bytes,
    get_processing_notification_functions,
    get_storage_upload_ceiling_bytes,
)
from errors import (
    AuthError,
    IntegrityError,
    NotFoundError,
    QuotaError,
    StoryInColorError,
    TransientError,
    ValidationError,
)
from models import AdminProjectInfo, format_timestamp
from notifications import FunctionsClient
from page_source import get_first_page, get_original_image_path, load_page_source
from path_handling import get_file_stem, get_processed_path
from project_store import ProjectStore


ADMIN_TABS = ('pending', 'processed', 'all')


class AdminPolicy:
    """Set of identities allowed into the admin console."""

    def __init__(self, admin_emails: Iterable[str]):
        self.admin_emails = frozenset(email.strip().lower() for email in admin_emails if email and email.strip())

    @classmethod
    def from_config(cls) -> "AdminPolicy":
        return cls(get_admin_emails())

    def is_admin(self, email: Optional[str]) -> bool:
        return bool(email) and email.lower() in self.admin_emails

    def require_admin(self, token: Optional[Dict[str, Any]]) -> str:
        """
        Check the decoded ID token of the caller.

        Returns:
            str: Email of the admin

        Raises:
            AuthError: For anonymous callers and for non-admins
        """
        if not token:
            raise AuthError('unauthenticated', "Sign in to access the admin console")
        email = token.get('email')
        if not self.is_admin(email):
            print(f"Admin access denied for {token.get('uid') or token.get('sub')}")
            raise AuthError('permission-denied', "Access denied")
        return email


def _resolve_url(asset_store: AssetStore, path: str) -> str:
    if not path:
        return ''
    try:
        return asset_store.get_download_url(path)
    except StoryInColorError as e:
        print(f"Could not get download URL for {path}: {e.message}")
        return ''


def _resolve_email(project_store: ProjectStore, user_id: str, cache: Dict[str, str]) -> str:
    if user_id not in cache:
        try:
            profile = project_store.get_user_profile(user_id) or {}
            cache[user_id] = profile.get('email') or ''
        except StoryInColorError as e:
            print(f"Error fetching user data for {user_id}: {e.message}")
            cache[user_id] = ''
    return cache[user_id]


def build_admin_project_info(
    project_store: ProjectStore,
    asset_store: AssetStore,
    project: Dict[str, Any],
    email_cache: Optional[Dict[str, str]] = None
) -> AdminProjectInfo:
    """
    Resolve first page, processed image and owner email of one project.

    Args:
        project: Project document with 'id' and 'userId'

    Returns:
        AdminProjectInfo: What the console shows for the project
    """
    user_id = project['userId']
    project_id = project['id']

    first_page = None
    try:
        source = load_page_source(project_store.project_ref(user_id, project_id), project)
        first_page = get_first_page(source.list_pages())
    except StoryInColorError as e:
        print(f"Error loading pages of project {project_id}: {e.message}")

    first_page = first_page or {}
    first_page_path = get_original_image_path(first_page)
    first_page_url = first_page.get('photoUrl') or _resolve_url(asset_store, first_page_path)

    processed_path = project.get('processedImagePath') or first_page.get('processedImagePath') or ''
    processed_url = project.get('processedImageUrl') or first_page.get('processedImageUrl') or ''
    if processed_path and not processed_url:
        processed_url = _resolve_url(asset_store, processed_path)

    return AdminProjectInfo(
        id=project_id,
        user_id=user_id,
        title=project.get('title') or 'Untitled Project',
        product_type=project.get('productType') or 'standard',
        status=project.get('status') or 'preview',
        created_at=format_timestamp(project.get('createdAt')),
        art_style=project.get('artStyle') or 'classic',
        first_page_id=first_page.get('id') or '',
        first_page_path=first_page_path,
        first_page_url=first_page_url,
        processed_image_path=processed_path,
        processed_image_url=processed_url,
        user_email=_resolve_email(project_store, user_id, email_cache if email_cache is not None else {}),
        has_processed_image=bool(project.get('hasProcessedImage') or processed_path),
        notification_sent=bool(project.get('notificationSent')),
    )


def _matches(info: AdminProjectInfo, tab: str, search: str) -> bool:
    if tab == 'pending' and info.has_processed_image:
        return False
    if tab == 'processed' and not info.has_processed_image:
        return False
    if not search:
        return True
    haystack = ' '.join([info.title, info.id, info.user_id, info.user_email]).lower()
    return search.lower() in haystack


def list_admin_projects(
    project_store: ProjectStore,
    asset_store: AssetStore,
    tab: str = 'all',
    search: str = ''
) -> List[Dict[str, Any]]:
    """
    Every customer's projects grouped by owner.

    Args:
        tab: 'pending' (no processed image yet), 'processed' or 'all'
        search: Case-insensitive filter on title, project id, user id and email

    Returns:
        list: [{'userId', 'owner', 'projects': [AdminProjectInfo, ...]}], newest projects first
    """
    if tab not in ADMIN_TABS:
        raise ValidationError(f"Unknown tab: {tab}")

    email_cache: Dict[str, str] = {}
    infos = []
    for project in project_store.list_projects_for_all_users():
        if project.get('deleted') is True:
            continue
        info = build_admin_project_info(project_store, asset_store, project, email_cache)
        if _matches(info, tab, search or ''):
            infos.append(info)

    infos.sort(key=lambda info: info.created_at, reverse=True)

    groups: Dict[str, Dict[str, Any]] = {}
    for info in infos:
        group = groups.setdefault(info.user_id, {'userId': info.user_id, 'owner': info.owner_label, 'projects': []})
        group['projects'].append(info)

    print(f"Admin listing: {len(infos)} projects from {len(groups)} users ({tab})")
    return list(groups.values())


def load_admin_project(
    project_store: ProjectStore,
    asset_store: AssetStore,
    user_id: str,
    project_id: str
) -> AdminProjectInfo:
    project = project_store.get_project(user_id, project_id)
    project['userId'] = user_id
    return build_admin_project_info(project_store, asset_store, project)


def find_target_page(pages: List[Dict[str, Any]], page_id: str, page_path: str = '') -> int:
    """
    Locate the page a processed image belongs to.

    The page id is matched first. Failing that, a page matches when its photo
    path, image path or photo id occurs inside page_path. Overlapping file names
    can make the second pass pick the wrong page.

    Returns:
        int: Index of the page, -1 when nothing matched
    """
    if page_id:
        for index, page in enumerate(pages):
            if page.get('id') == page_id:
                return index

    if page_path:
        for index, page in enumerate(pages):
            for key in ('photoPath', 'imagePath', 'photoId'):
                value = page.get(key)
                if value and value in page_path:
                    return index
    return -1


def _upload_with_retry(
    asset_store: AssetStore,
    image: bytes,
    path: str,
    max_attempts: int,
    backoff: float,
    sleep: Callable[[float], None]
) -> Dict[str, str]:
    attempts = 0
    while True:
        try:
            print(f"Upload attempt {attempts + 1} of {max_attempts}")
            return asset_store.upload(image, path, content_type='image/jpeg')
        except TransientError as e:
            attempts += 1
            print(f"Upload attempt {attempts} failed: {e.message}")
            if attempts >= max_attempts:
                raise
            sleep(backoff * (2 ** (attempts - 1)))


def _resolve_page(project_store: ProjectStore, project: AdminProjectInfo, page_id: str) -> Tuple[str, str]:
    """Id and original image path of one page of the project."""
    current = project_store.get_project(project.user_id, project.id)
    source = load_page_source(project_store.project_ref(project.user_id, project.id), current)
    for page in source.list_pages():
        if page.get('id') == page_id:
            return page_id, get_original_image_path(page)
    raise NotFoundError(f"Page {page_id} not found in project {project.id}")


def _discard_upload(asset_store: AssetStore, path: str) -> None:
    try:
        asset_store.delete(path)
    except StoryInColorError as e:
        print(f"Could not remove orphaned image {path}: {e.message}")


def attach_processed_image(
    project_store: ProjectStore,
    asset_store: AssetStore,
    project: AdminProjectInfo,
    image: bytes,
    max_attempts: int = PROCESSED_UPLOAD_MAX_ATTEMPTS,
    backoff: float = PROCESSED_UPLOAD_BACKOFF,
    sleep: Callable[[float], None] = time.sleep,
    page_id: Optional[str] = None
) -> Tuple[str, str]:
    """
    Store the processed version of a project page and record it.

    The image is compressed and uploaded to
    users/{userId}/projects/{projectId}/processed/{photoId}.jpg, then the
    current project document is re-read and the matching page updated.

    Args:
        project: Target project as loaded by load_admin_project
        image: Encoded processed image
        page_id: Page to attach the image to, the first page by default
        max_attempts: Upload attempts before giving up
        backoff: Delay after the first failed attempt, doubled each time

    Returns:
        tuple: (processed image path, download URL)

    Raises:
        ValidationError: If the image cannot be decoded
        QuotaError: If the image stays over the storage ceiling after compression
        NotFoundError: If page_id is not a page of the project
        IntegrityError: If no page of the project matches; nothing is written then
            and the uploaded image is removed again
    """
    try:
        compressed = asset_store.compress_to_size_limit(image, get_processed_image_max_bytes())
    except (OSError, ValueError) as e:
        raise ValidationError(f"Not a valid image: {str(e)}", e)

    ceiling = get_storage_upload_ceiling_bytes()
    if len(compressed) > ceiling:
        raise QuotaError(f"Image is {len(compressed)} bytes after compression, the limit is {ceiling}")

    target_id, target_path = project.first_page_id, project.first_page_path
    if page_id and page_id != target_id:
        target_id, target_path = _resolve_page(project_store, project, page_id)

    photo_id = get_file_stem(target_path) or target_id
    if not photo_id:
        raise IntegrityError(f"Project {project.id} has no page to attach the image to")

    processed_path = get_processed_path(project.user_id, project.id, photo_id)
    upload = _upload_with_retry(asset_store, compressed, processed_path, max_attempts, backoff, sleep)
    processed_url = upload['url']

    # Re-read so concurrent edits to the project are not overwritten
    current = project_store.get_project(project.user_id, project.id)
    project_ref = project_store.project_ref(project.user_id, project.id)
    source = load_page_source(project_ref, current)
    pages = source.list_pages()

    index = find_target_page(pages, target_id, target_path)
    if index == -1:
        print(f"Couldn't find matching page in project {project.id}: "
              f"pageId={target_id} pagePath={target_path}")
        _discard_upload(asset_store, processed_path)
        raise IntegrityError(f"Couldn't find the page to update in project {project.id}")

    processed_fields = {
        'processed': True,
        'processedImagePath': processed_path,
        'processedImageUrl': processed_url,
        'processedAt': datetime.now(timezone.utc),
    }
    project_fields = {
        'hasProcessedImage': True,
        'processedImagePath': processed_path,
        'processedImageUrl': processed_url,
    }

    if source.kind == 'subcollection':
        source.page_ref(pages[index]['id']).update(processed_fields)
        project_store.update_project(project.user_id, project.id, project_fields)
    else:
        # Embedded pages are rewritten as a whole, in their stored order
        stored_pages = list(current.get('pages') or [])
        stored_index = find_target_page(stored_pages, pages[index].get('id'), target_path)
        stored_pages[stored_index] = {**stored_pages[stored_index], **processed_fields}
        project_store.update_project(project.user_id, project.id, {**project_fields, 'pages': stored_pages})

    project.processed_image_path = processed_path
    project.processed_image_url = processed_url
    project.has_processed_image = True
    print(f"Successfully updated project {project.id} with processed image")
    return processed_path, processed_url


def notify_customer(
    project_store: ProjectStore,
    functions_client: FunctionsClient,
    project: AdminProjectInfo,
    confirmed: bool,
    candidates: Optional[List[str]] = None
) -> str:
    """
    Email the customer that their coloring page is ready.

    Candidate functions are tried in order with the same payload. Sending again
    to an already notified customer is allowed.

    Args:
        project: Project whose owner is notified
        confirmed: Operator confirmed the send
        candidates: Function names to try, from configuration by default

    Returns:
        str: Name of the function that delivered the notification

    Raises:
        ValidationError: Without a customer email or without confirmation
        TransientError: If every candidate failed
    """
    if not project.user_email:
        raise ValidationError("No email address found for this user")
    if not confirmed:
        raise ValidationError("Sending a notification must be confirmed")

    if project.notification_sent:
        print(f"Project {project.id} was already notified, sending again")

    payload = {
        'projectId': project.id,
        'userId': project.user_id,
        'userEmail': project.user_email,
        'projectTitle': project.title,
        'productType': project.product_type,
        'artStyle': project.art_style,
    }
    name, _ = functions_client.call_first(candidates or get_processing_notification_functions(), payload)

    project_store.update_project(project.user_id, project.id, {
        'notificationSent': True,
        'notificationSentAt': admin_firestore.SERVER_TIMESTAMP,
    })
    project.notification_sent = True
    return name
