"""
Auth user lookups for the admin console.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from firebase_admin import auth
from firebase_admin import exceptions as firebase_exceptions

from errors import NotFoundError, StoreError, ValidationError


MAX_PAGE_SIZE = 1000  # Admin SDK limit


def _created_at(user) -> str:
    metadata = getattr(user, 'user_metadata', None)
    timestamp = getattr(metadata, 'creation_timestamp', None) if metadata else None
    if not timestamp:
        return ''
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).isoformat()


def user_to_dict(user) -> Dict[str, Any]:
    return {
        'uid': user.uid,
        'email': user.email or '',
        'displayName': user.display_name or '',
        'createdAt': _created_at(user),
    }


def list_all_users(page_size: int = 100, page_token: Optional[str] = None, auth_client=auth) -> Dict[str, Any]:
    """
    One page of auth users.

    Args:
        page_size: Users per page, at most 1000
        page_token: Token returned by the previous page

    Returns:
        dict: {'users': [...], 'pageToken': next page token or None}
    """
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ValidationError(f"Page size must be between 1 and {MAX_PAGE_SIZE}")

    try:
        page = auth_client.list_users(page_token=page_token or None, max_results=page_size)
    except (ValueError, firebase_exceptions.FirebaseError) as e:
        print(f"Error listing users: {str(e)}")
        raise StoreError(f"Failed to list users: {str(e)}", e)

    users = [user_to_dict(user) for user in page.users]
    print(f"Listed {len(users)} users")
    return {'users': users, 'pageToken': page.next_page_token or None}


def get_auth_user_data(user_id: str, auth_client=auth) -> Dict[str, Any]:
    if not user_id:
        raise ValidationError("User ID is required")

    try:
        user = auth_client.get_user(user_id)
    except auth.UserNotFoundError as e:
        raise NotFoundError(f"User not found: {user_id}", e)
    except (ValueError, firebase_exceptions.FirebaseError) as e:
        print(f"Error fetching user {user_id}: {str(e)}")
        raise StoreError(f"Failed to fetch user {user_id}: {str(e)}", e)

    return user_to_dict(user)
