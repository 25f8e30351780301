"""
Submission of a finished wizard: photo uploads, project record, notification.
"""
import base64
import binascii
import uuid
from typing import Any, Dict, List, Optional

from asset_store import AssetStore
from config import (
    DEFAULT_ART_STYLE,
    DEFAULT_PRODUCT_TYPE,
    PAYMENT_COMPLETE_STATUSES,
    get_submission_notification_function,
)
from errors import NotFoundError, StoryInColorError, TransientError, ValidationError
from notifications import BestEffortDispatcher
from path_handling import get_photo_path
from project_store import ProjectStore
from wizard import UploadWizard


def _page_entry(page, upload: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    if page.photo is None:
        return {'id': page.id, 'pageNumber': page.page_number, 'isBlank': True}

    entry = {
        'id': page.id,
        'pageNumber': page.page_number,
        'photoId': page.photo.id,
        'photoName': page.photo.name,
    }
    if upload:
        entry['photoPath'] = upload['path']
        entry['photoUrl'] = upload['url']
    else:
        entry['uploadError'] = True
    return entry


def wizard_from_payload(data: Dict[str, Any]) -> UploadWizard:
    """
    Replay a submission request through the wizard so every step guard applies.

    Expected payload:
        {'title', 'productType', 'artStyle', 'projectId',
         'pages': [{'isBlank': True} | {'photo': {'name', 'contentType', 'data': base64}}]}

    Raises:
        ValidationError: If a guard fails or a photo is not valid base64
    """
    wizard = UploadWizard(project_id=data.get('projectId'))
    wizard.set_title(data.get('title') or '')
    wizard.set_product_type(data.get('productType') or DEFAULT_PRODUCT_TYPE)
    wizard.advance()
    wizard.set_art_style(data.get('artStyle') or DEFAULT_ART_STYLE)
    wizard.advance()

    for page in data.get('pages') or []:
        photo = page.get('photo')
        if page.get('isBlank') or not photo:
            wizard.add_blank_page()
            continue
        try:
            content = base64.b64decode(photo.get('data') or '', validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"Photo {photo.get('name')} is not valid base64", e)
        wizard.add_photos([(photo.get('name') or 'photo.jpg', photo.get('contentType'), content)])

    wizard.advance()
    return wizard


def _check_resubmission(project_store: ProjectStore, user_id: str, project_id: str) -> None:
    try:
        existing = project_store.get_project(user_id, project_id)
    except NotFoundError:
        return
    if existing.get('deleted') is True:
        raise ValidationError(f"Project {project_id} was deleted")
    if existing.get('status') in PAYMENT_COMPLETE_STATUSES:
        raise ValidationError(f"Project {project_id} was already ordered and cannot be changed")


def submit_project(
    wizard: UploadWizard,
    user_id: str,
    project_store: ProjectStore,
    asset_store: AssetStore,
    dispatcher: Optional[BestEffortDispatcher] = None,
    project_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Upload the wizard's photos and save the project with status 'preview'.

    Pages beyond the product maximum are dropped. A page whose photo upload
    fails is kept and flagged with 'uploadError'. The first uploaded photo
    becomes the project thumbnail.

    Args:
        wizard: Wizard in the arrange step
        user_id: ID of the owning user
        project_store: Store the project record is written to
        asset_store: Store the photos are uploaded to
        dispatcher: Outbox for the submission notification
        project_id: ID to save under, defaults to the wizard's or a new one

    Returns:
        dict: projectId, pages, thumbnailPath and failedUploads

    Raises:
        ValidationError: If the wizard is not in the arrange step, or the
            project was already paid for or deleted
        TransientError: If no photo could be uploaded; nothing is written then
    """
    wizard.begin_submission()
    project_id = project_id or wizard.project_id or str(uuid.uuid4())

    try:
        _check_resubmission(project_store, user_id, project_id)
    except StoryInColorError:
        wizard.abort_submission()
        raise

    pages = wizard.filtered_pages()
    if len(pages) < len(wizard.pages):
        print(f"Dropping {len(wizard.pages) - len(pages)} pages over the {wizard.product_type} maximum")

    photo_pages = [page for page in pages if page.photo is not None]
    entries: List[Dict[str, Any]] = []
    thumbnail_path = ''
    failed = 0
    done = 0

    for page in pages:
        if page.photo is None:
            entries.append(_page_entry(page))
            continue

        upload = None
        if page.photo.preview is None:
            print(f"No image data for photo {page.photo.id}, it has to be uploaded again")
        else:
            try:
                upload = asset_store.upload(
                    page.photo.preview,
                    get_photo_path(user_id, project_id, page.photo.id),
                    content_type='image/jpeg',
                )
                page.photo.upload_id = upload['path']
            except StoryInColorError as e:
                print(f"Error uploading photo {page.photo.id}: {e.message}")

        if upload is None:
            failed += 1
        elif not thumbnail_path:
            thumbnail_path = upload['path']

        entries.append(_page_entry(page, upload))
        done += 1
        wizard.set_upload_progress(done / len(photo_pages) * 100)

    if photo_pages and failed == len(photo_pages):
        wizard.abort_submission()
        raise TransientError("None of the photos could be uploaded, please try again")

    project_data = {
        'title': wizard.title,
        'productType': wizard.product_type,
        'artStyle': wizard.art_style,
        'status': 'preview',
        'pages': entries,
        'thumbnailPath': thumbnail_path,
    }

    try:
        project_store.upsert_project(user_id, project_id, project_data)
    except StoryInColorError:
        wizard.abort_submission()
        raise

    print(f"Project {project_id} submitted with {len(entries)} pages, {failed} failed uploads")

    if dispatcher is not None:
        dispatcher.post(get_submission_notification_function(), {
            'projectId': project_id,
            'title': wizard.title,
            'productType': wizard.product_type,
            'artStyle': wizard.art_style,
            'pages': len(entries),
        })
        dispatcher.drain()

    wizard.finish_submission(project_id)

    return {
        'projectId': project_id,
        'pages': entries,
        'thumbnailPath': thumbnail_path,
        'failedUploads': failed,
    }
