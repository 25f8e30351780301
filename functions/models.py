"""Value types shared by the workflows.

Firestore documents themselves are handled as plain dicts (see the layout
below); these dataclasses describe in-memory state and the records returned
to the front end.

Firestore layout:
  users/{userId}
    - email, displayName, createdAt, deleted, deletedAt
  users/{userId}/projects/{projectId}
    - title, productType, artStyle, status, thumbnailPath, pages[], userId,
      createdAt, updatedAt, deleted, deletedAt, hasProcessedImage,
      processedImagePath, processedImageUrl, notificationSent,
      notificationSentAt, orderNumber, orderDate, estimatedDelivery, paymentId
  users/{userId}/projects/{projectId}/pages/{pageId}
    - pageNumber, imagePath | photoPath, processed, processedImagePath,
      processedImageUrl, processedAt
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

HAS_PREVIEW_MARKER = "has-preview"


@dataclass
class WizardPhoto:
    """A photo accepted by the upload step.

    `preview` holds the bounded-resolution JPEG shown during the session. It is
    None after the wizard is restored from session storage, since preview bytes
    are never persisted.
    """

    id: str
    name: str
    preview: Optional[bytes] = field(default=None, repr=False)
    upload_id: Optional[str] = None
    had_preview: bool = False

    @property
    def has_preview(self) -> bool:
        return self.preview is not None or self.had_preview


@dataclass
class WizardPage:
    """One page slot in the wizard. A page without a photo is a blank page."""

    id: str
    page_number: int
    photo: Optional[WizardPhoto] = None

    @property
    def is_blank(self) -> bool:
        return self.photo is None


@dataclass
class PreviewRecord:
    """What the preview screen shows for a single project."""

    id: str
    title: str
    product_type: str
    product_name: str
    date: str
    price: str
    page_id: str
    processed: bool
    processed_image_url: Optional[str] = None
    status: Optional[str] = None
    redirect_to: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'productType': self.product_type,
            'productName': self.product_name,
            'date': self.date,
            'price': self.price,
            'pageId': self.page_id,
            'processed': self.processed,
            'processedImageUrl': self.processed_image_url,
            'status': self.status,
            'redirectTo': self.redirect_to,
        }


@dataclass
class AdminProjectInfo:
    """A project as seen from the admin fulfillment console."""

    id: str
    user_id: str
    title: str
    product_type: str
    status: str
    created_at: str
    art_style: str = "classic"
    first_page_id: str = ""
    first_page_path: str = ""
    first_page_url: str = ""
    processed_image_path: str = ""
    processed_image_url: str = ""
    user_email: str = ""
    has_processed_image: bool = False
    notification_sent: bool = False

    @property
    def owner_label(self) -> str:
        """Email of the owner, or the raw user id when it could not be resolved."""
        return self.user_email or self.user_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'userId': self.user_id,
            'title': self.title,
            'productType': self.product_type,
            'status': self.status,
            'createdAt': self.created_at,
            'artStyle': self.art_style,
            'firstPageId': self.first_page_id,
            'firstPagePath': self.first_page_path,
            'firstPageUrl': self.first_page_url,
            'processedImagePath': self.processed_image_path,
            'processedImageUrl': self.processed_image_url,
            'userEmail': self.user_email,
            'owner': self.owner_label,
            'hasProcessedImage': self.has_processed_image,
            'notificationSent': self.notification_sent,
        }


def format_timestamp(value: Any) -> str:
    """ISO string for a Firestore timestamp, datetime or string; '' when missing."""
    if not value:
        return ''
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return str(value)
