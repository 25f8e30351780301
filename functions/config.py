import os
from typing import List


# Product catalogue: page limits, prices and display names
PRODUCT_TYPES = ('standard', 'premium', 'pdf')
DEFAULT_PRODUCT_TYPE = 'standard'

PRODUCT_MAX_PAGES = {
    'standard': 10,
    'premium': 30,
    'pdf': 10,
}

# Books are only printed full, so the minimum equals the maximum
PRODUCT_MIN_PAGES = dict(PRODUCT_MAX_PAGES)

PRODUCT_PRICES = {
    'standard': '$24.90',
    'premium': '$39.50',
    'pdf': '$9.90',
}

PRODUCT_DISPLAY_NAMES = {
    'standard': 'Standard Coloring Book',
    'premium': 'Premium Coloring Book',
    'pdf': 'Digital Coloring Book',
}

# Older clients sent 'digital' for the pdf product
PRODUCT_ALIASES = {'digital': 'pdf'}

ART_STYLES = ('classic', 'ghibli')
DEFAULT_ART_STYLE = 'classic'

# Set by the payment webhook; such projects cannot go back to checkout or be resubmitted
PAYMENT_COMPLETE_STATUSES = ('ordered', 'payment_pending')

# Image handling
PREVIEW_MAX_EDGE = 1024
PREVIEW_QUALITY = 0.85
THUMBNAIL_MAX_WIDTH = 300
THUMBNAIL_MAX_HEIGHT = 300
THUMBNAIL_QUALITY = 0.7
COMPRESSION_INITIAL_QUALITY = 0.9
COMPRESSION_QUALITY_FLOOR = 0.3
COMPRESSION_QUALITY_STEP = 0.1
COMPRESSION_MAX_DIMENSION = 4096

# Retry policies
DOWNLOAD_URL_MAX_RETRIES = 3
DOWNLOAD_URL_RETRY_DELAY = 0.5  # seconds, multiplied by the attempt number
PROCESSED_UPLOAD_MAX_ATTEMPTS = 3
PROCESSED_UPLOAD_BACKOFF = 1.0  # seconds, doubled after each failed attempt

# Wizard state persistence
WIZARD_PERSIST_INTERVAL = 0.3  # seconds between session storage writes
WIZARD_SESSION_QUOTA_BYTES = 5 * 1024 * 1024

# Days between an order and its estimated delivery
ESTIMATED_DELIVERY_DAYS = 14

HTTP_TIMEOUT = 30  # seconds


def _get_list(name: str, default: str = '') -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(',') if item.strip()]


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        print(f"Ignoring invalid integer for {name}: {raw}")
        return default


def get_admin_emails() -> List[str]:
    """Administrator allow-list, comma separated in ADMIN_EMAILS."""
    return [email.lower() for email in _get_list('ADMIN_EMAILS')]


def get_storage_bucket() -> str:
    return os.getenv('STORAGE_BUCKET', '')


def get_functions_base_url() -> str:
    """
    Base URL for callable functions deployed alongside this codebase.

    Returns:
        str: FUNCTIONS_BASE_URL if set, otherwise derived from the project and region
    """
    base_url = os.getenv('FUNCTIONS_BASE_URL')
    if base_url:
        return base_url.rstrip('/')
    project_id = os.getenv('GCLOUD_PROJECT') or os.getenv('GOOGLE_CLOUD_PROJECT', '')
    region = os.getenv('FUNCTION_REGION', 'us-central1')
    return f"https://{region}-{project_id}.cloudfunctions.net"


def get_checkout_function_url() -> str:
    return os.getenv('CHECKOUT_FUNCTION_URL') or f"{get_functions_base_url()}/createCheckoutSession"


def get_web_api_key() -> str:
    return os.getenv('FIREBASE_WEB_API_KEY', '')


def get_stripe_secret_key() -> str:
    return os.getenv('STRIPE_SECRET_KEY', '')


def get_processing_notification_functions() -> List[str]:
    """Candidate function names for the processing-complete email, tried in order."""
    return _get_list(
        'PROCESSING_NOTIFICATION_FUNCTIONS',
        'sendProcessingCompleteNotification,sendProcessedNotification',
    )


def get_welcome_notification_function() -> str:
    return os.getenv('WELCOME_NOTIFICATION_FUNCTION', 'sendWelcomeEmail')


def get_submission_notification_function() -> str:
    return os.getenv('SUBMISSION_NOTIFICATION_FUNCTION', 'sendProjectSubmissionNotification')


def get_processed_image_max_bytes() -> int:
    """Compression target for processed images."""
    return _get_int('PROCESSED_IMAGE_MAX_BYTES', 4 * 1024 * 1024)


def get_storage_upload_ceiling_bytes() -> int:
    """Hard ceiling enforced by the storage rules."""
    return _get_int('STORAGE_UPLOAD_CEILING_BYTES', 10 * 1024 * 1024)


def is_upload_proxy_enabled() -> bool:
    return os.getenv('ALLOW_UPLOAD_PROXY', '').lower() in ('1', 'true', 'yes')
