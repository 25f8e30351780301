def get_project_storage_prefix(user_id: str, project_id: str) -> str:
    """
    Build the storage folder holding every asset of a project.

    Args:
        user_id: ID of the owning user
        project_id: ID of the project

    Returns:
        str: Folder path (e.g., 'users/user123/projects/abc')
    """
    return f"users/{user_id}/projects/{project_id}"


def get_user_storage_prefix(user_id: str) -> str:
    return f"users/{user_id}"


def get_photo_path(user_id: str, project_id: str, photo_id: str) -> str:
    """
    Build the storage path of an uploaded original photo.

    Path format: users/{userId}/projects/{projectId}/photos/{photoId}.jpg
    """
    return f"{get_project_storage_prefix(user_id, project_id)}/photos/{photo_id}.jpg"


def get_processed_path(user_id: str, project_id: str, photo_id: str) -> str:
    """
    Build the storage path of a processed (coloring page) image.

    Path format: users/{userId}/projects/{projectId}/processed/{photoId}.jpg
    """
    return f"{get_project_storage_prefix(user_id, project_id)}/processed/{photo_id}.jpg"


def get_user_id(document_path: str) -> str:
    """
    Extract user ID from a project document path.

    Args:
        document_path: Path of the document (e.g., 'users/user123/projects/abc')

    Returns:
        str: User ID extracted from the path
    """
    # Path format: users/{userId}/projects/{projectId}
    path_parts = document_path.strip('/').split('/')

    if len(path_parts) >= 2 and path_parts[0] == 'users':
        return path_parts[1]
    else:
        return "unknown"


def get_file_name(file_path: str) -> str:
    """
    Extract file name from a storage path.

    Args:
        file_path: Path to the file in storage (e.g., 'users/user123/projects/abc/photos/p1.jpg')

    Returns:
        str: File name extracted from the path
    """
    path_parts = file_path.split('/') if file_path else []
    return path_parts[-1] if path_parts else ""


def get_file_stem(file_path: str) -> str:
    """
    Extract the file name without its extension (e.g., 'p1' for '.../photos/p1.jpg').

    Returns:
        str: File stem, empty when the path is empty
    """
    file_name = get_file_name(file_path)
    return file_name.split('.')[0] if file_name else ""
