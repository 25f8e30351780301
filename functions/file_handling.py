IMAGE_CONTENT_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.bmp': 'image/bmp',
    '.tiff': 'image/tiff',
    '.webp': 'image/webp',
    '.heic': 'image/heic',
}


def get_file_extension(file_name: str) -> str:
    """
    Extract file extension from file name.

    Args:
        file_name: Name of the file

    Returns:
        str: File extension in lowercase (e.g., '.png', '.jpg')
    """
    if not file_name or '.' not in file_name:
        return ""

    extension = file_name.split('.')[-1].lower()
    return f".{extension}"


def detect_content_type(file_name: str, content_type: str = None) -> str:
    """
    Resolve the content type of an uploaded file.

    An explicit content type wins; otherwise it is guessed from the extension.

    Args:
        file_name: Name of the file
        content_type: Content type sent by the client, if any

    Returns:
        str: Content type, 'application/octet-stream' when unknown
    """
    if content_type:
        return content_type.lower()
    return IMAGE_CONTENT_TYPES.get(get_file_extension(file_name), 'application/octet-stream')


def is_image_content_type(content_type: str) -> bool:
    return bool(content_type) and content_type.lower().startswith('image/')
