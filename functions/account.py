"""
Account deletion requested from the settings page.
"""
from typing import Any, Dict, Optional

from firebase_admin import auth
from firebase_admin import exceptions as firebase_exceptions

from asset_store import AssetStore
from errors import StoreError, StoryInColorError, ValidationError
from path_handling import get_user_storage_prefix
from project_store import ProjectStore


CONFIRMATION_PHRASE = 'DELETE'


def delete_account(
    user_id: str,
    confirmation: str,
    project_store: ProjectStore,
    asset_store: AssetStore,
    email: Optional[str] = None,
    auth_client=auth
) -> Dict[str, Any]:
    """
    Delete a user's files, soft-delete their records and remove the auth account.

    Args:
        user_id: ID of the user
        confirmation: Must be the literal 'DELETE'
        email: Kept on the deleted profile for support requests

    Returns:
        dict: deletedFiles, failedFiles and projectsDeleted counts
    """
    if confirmation != CONFIRMATION_PHRASE:
        raise ValidationError(f"Type {CONFIRMATION_PHRASE} to confirm account deletion")

    deleted_files, failed_files = 0, 0
    try:
        result = asset_store.delete_all(get_user_storage_prefix(user_id))
        deleted_files, failed_files = len(result['deleted']), len(result['failed'])
    except StoryInColorError as e:
        # Files are cleaned up best effort, the records below are what counts
        print(f"Error deleting storage for user {user_id}: {e.message}")

    projects_deleted = project_store.soft_delete_user(user_id, email)

    try:
        auth_client.delete_user(user_id)
    except auth.UserNotFoundError:
        print(f"Auth user {user_id} was already removed")
    except (ValueError, firebase_exceptions.FirebaseError) as e:
        print(f"Error deleting auth user {user_id}: {str(e)}")
        raise StoreError(f"Failed to delete account: {str(e)}", e)

    print(f"Account {user_id} deleted")
    return {
        'deletedFiles': deleted_files,
        'failedFiles': failed_files,
        'projectsDeleted': projects_deleted,
    }
