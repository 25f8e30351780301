"""
Project record store: CRUD over users/{userId}/projects/{projectId}.

Every read and write is scoped under the owning user. The only cross-user read
is list_projects_for_all_users, reserved for the admin console.
"""
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from firebase_admin import firestore as admin_firestore
from google.api_core import exceptions as google_exceptions

from errors import NotFoundError, StoreError
from path_handling import get_user_id


MAX_BATCH_SIZE = 500  # Firestore batch write limit

# Fields set once at creation
_IMMUTABLE_FIELDS = ('createdAt', 'userId')


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except google_exceptions.NotFound as e:
        raise NotFoundError(f"Not found while trying to {action}", e)
    except (google_exceptions.GoogleAPICallError, google_exceptions.RetryError) as e:
        print(f"Error trying to {action}: {str(e)}")
        raise StoreError(f"Failed to {action}: {str(e)}", e)


def _with_id(doc) -> Dict[str, Any]:
    data = doc.to_dict() or {}
    data['id'] = doc.id
    return data


class ProjectStore:
    """Firestore-backed project and user-profile records."""

    def __init__(self, db_client=None):
        self.db = db_client or admin_firestore.client()

    def user_ref(self, user_id: str):
        return self.db.collection('users').document(user_id)

    def projects_ref(self, user_id: str):
        return self.user_ref(user_id).collection('projects')

    def project_ref(self, user_id: str, project_id: str):
        return self.projects_ref(user_id).document(project_id)

    # Projects

    def create_project(self, user_id: str, project_data: Dict[str, Any], project_id: Optional[str] = None) -> str:
        """
        Create a project for a user.

        Args:
            user_id: ID of the owning user
            project_data: Project fields (title, productType, artStyle, status, ...)
            project_id: Client-generated ID, a random one is used when omitted

        Returns:
            str: ID of the created project
        """
        with _store_errors(f"create project for user {user_id}"):
            projects_ref = self.projects_ref(user_id)
            doc_ref = projects_ref.document(project_id) if project_id else projects_ref.document()
            doc_ref.set({
                **project_data,
                'userId': user_id,
                'createdAt': admin_firestore.SERVER_TIMESTAMP,
                'updatedAt': admin_firestore.SERVER_TIMESTAMP,
                'deleted': False,
            })
        print(f"Created project {doc_ref.id}")
        return doc_ref.id

    def get_project(self, user_id: str, project_id: str) -> Dict[str, Any]:
        """Return the project document with its 'id', or raise NotFoundError."""
        with _store_errors(f"get project {project_id}"):
            snapshot = self.project_ref(user_id, project_id).get()
        if not snapshot.exists:
            raise NotFoundError(f"Project not found: {project_id}")
        return _with_id(snapshot)

    def update_project(self, user_id: str, project_id: str, partial: Dict[str, Any]) -> None:
        """
        Apply a partial update and stamp updatedAt. createdAt is never overwritten.
        """
        updates = {key: value for key, value in partial.items() if key not in _IMMUTABLE_FIELDS and key != 'id'}
        updates['updatedAt'] = admin_firestore.SERVER_TIMESTAMP

        with _store_errors(f"update project {project_id}"):
            project_ref = self.project_ref(user_id, project_id)
            if not project_ref.get().exists:
                raise NotFoundError(f"Project not found: {project_id}")
            project_ref.update(updates)

    def upsert_project(self, user_id: str, project_id: str, project_data: Dict[str, Any]) -> bool:
        """
        Create the project if it does not exist yet, otherwise update it in place.

        Returns:
            bool: True when the project was created
        """
        with _store_errors(f"save project {project_id}"):
            exists = self.project_ref(user_id, project_id).get().exists
        if exists:
            self.update_project(user_id, project_id, project_data)
            return False
        self.create_project(user_id, project_data, project_id=project_id)
        return True

    def list_projects_by_status(self, user_id: str, status: str) -> List[Dict[str, Any]]:
        """Non-deleted projects with the given status, most recently updated first."""
        with _store_errors(f"list {status} projects"):
            query = (
                self.projects_ref(user_id)
                .where('status', '==', status)
                .order_by('updatedAt', direction=admin_firestore.Query.DESCENDING)
            )
            docs = list(query.stream())

        # Older projects predate the 'deleted' field, so filter here instead of in the query
        return [_with_id(doc) for doc in docs if (doc.to_dict() or {}).get('deleted') is not True]

    def soft_delete_project(self, user_id: str, project_id: str) -> bool:
        """
        Mark a project as deleted. Deleting an already deleted project is a no-op.

        Returns:
            bool: True if the project was marked now, False if it already was
        """
        project = self.get_project(user_id, project_id)
        if project.get('deleted') is True:
            print(f"Project {project_id} already marked as deleted")
            return False

        with _store_errors(f"delete project {project_id}"):
            self.project_ref(user_id, project_id).update({
                'deleted': True,
                'deletedAt': admin_firestore.SERVER_TIMESTAMP,
                'updatedAt': admin_firestore.SERVER_TIMESTAMP,
            })
        print(f"Project {project_id} marked as deleted")
        return True

    def list_projects_for_all_users(self) -> List[Dict[str, Any]]:
        """
        Every project regardless of owner. Admin only.

        Returns:
            list: Project documents with 'id' and 'userId' taken from the document path
        """
        with _store_errors("list projects for all users"):
            docs = list(self.db.collection_group('projects').stream())

        projects = []
        for doc in docs:
            data = _with_id(doc)
            data['userId'] = get_user_id(doc.reference.path)
            projects.append(data)
        print(f"Found {len(projects)} projects in collection group")
        return projects

    # User profiles

    def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        with _store_errors(f"get profile of user {user_id}"):
            snapshot = self.user_ref(user_id).get()
        return _with_id(snapshot) if snapshot.exists else None

    def ensure_user_profile(self, user_id: str, email: Optional[str] = None, display_name: Optional[str] = None) -> None:
        """Mirror auth profile fields into users/{userId}, creating the document on first sign-in."""
        with _store_errors(f"save profile of user {user_id}"):
            user_ref = self.user_ref(user_id)
            snapshot = user_ref.get()
            if not snapshot.exists:
                user_ref.set({
                    'email': email,
                    'displayName': display_name,
                    'createdAt': admin_firestore.SERVER_TIMESTAMP,
                    'deleted': False,
                })
                return

            current = snapshot.to_dict() or {}
            updates = {}
            if email and current.get('email') != email:
                updates['email'] = email
            if display_name and current.get('displayName') != display_name:
                updates['displayName'] = display_name
            if updates:
                user_ref.update(updates)

    def soft_delete_user(self, user_id: str, email: Optional[str] = None) -> int:
        """
        Mark the user profile and every project of the user as deleted.

        Returns:
            int: Number of projects newly marked as deleted
        """
        with _store_errors(f"delete user {user_id}"):
            user_ref = self.user_ref(user_id)
            if user_ref.get().exists:
                update_data = {'deleted': True, 'deletedAt': admin_firestore.SERVER_TIMESTAMP}
                if email:
                    update_data['email'] = email
                user_ref.update(update_data)

            batch = self.db.batch()
            batch_count = 0
            marked = 0
            for project_doc in self.projects_ref(user_id).stream():
                if (project_doc.to_dict() or {}).get('deleted') is True:
                    continue
                batch.update(project_doc.reference, {
                    'deleted': True,
                    'deletedAt': admin_firestore.SERVER_TIMESTAMP,
                })
                batch_count += 1
                marked += 1

                if batch_count >= MAX_BATCH_SIZE:
                    batch.commit()
                    batch = self.db.batch()
                    batch_count = 0

            if batch_count > 0:
                batch.commit()

        print(f"{marked} projects marked as deleted for user {user_id}")
        return marked
