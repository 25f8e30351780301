"""Documentation-only Firestore models.

This file documents the Firestore collections and document shapes used by the
system to facilitate maintenance and onboarding. It is not imported or used by
any runtime Python code.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional


@dataclass
class UserProfile:
    """Mirror of an auth account, written on first sign-in.

    Deleting an account soft-deletes the profile; the email is kept for
    support requests.

    Storage path: users/{userId}
    Subcollection: projects
    """

    email: Optional[str] = None
    displayName: Optional[str] = None
    createdAt: Optional[datetime] = None
    deleted: bool = False
    deletedAt: Optional[datetime] = None


@dataclass
class Project:
    """Conceptually: one coloring book a customer is making.

    A project is written in status 'preview' when the upload wizard is
    submitted. The payment webhook (outside this codebase) moves it to
    'payment_pending' or 'ordered' and fills the order fields. Projects are
    never hard-deleted; `deleted` hides them from every listing.

    `pages` holds the embedded page list for projects created by the wizard.
    Older projects keep their pages in the `pages` subcollection instead, see
    ProjectPage.

    Storage path: users/{userId}/projects/{projectId}
    Fields mirror writes in functions/project_submission.py,
    functions/admin_fulfillment.py and functions/checkout.py.
    """

    id: str
    userId: str
    title: str
    productType: Literal["standard", "premium", "pdf"]
    artStyle: Literal["classic", "ghibli"]
    status: Literal["draft", "preview", "payment_pending", "ordered"]
    pages: List[Dict[str, Any]]
    thumbnailPath: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    deleted: bool = False
    deletedAt: Optional[datetime] = None
    hasProcessedImage: bool = False
    processedImagePath: Optional[str] = None
    processedImageUrl: Optional[str] = None
    notificationSent: bool = False
    notificationSentAt: Optional[datetime] = None
    paymentId: Optional[str] = None  # Checkout session ID, set by the payment webhook
    orderNumber: Optional[str] = None
    orderDate: Optional[datetime] = None
    estimatedDelivery: Optional[datetime] = None


@dataclass
class EmbeddedPage:
    """One entry of Project.pages.

    Blank pages only carry id, pageNumber and isBlank. A photo whose upload
    failed keeps its slot with uploadError set and no photoPath.
    """

    id: str
    pageNumber: int
    isBlank: bool = False
    photoId: Optional[str] = None
    photoName: Optional[str] = None
    photoPath: Optional[str] = None  # users/{userId}/projects/{projectId}/photos/{photoId}.jpg
    photoUrl: Optional[str] = None
    uploadError: bool = False
    processed: bool = False
    processedImagePath: Optional[str] = None  # users/{userId}/projects/{projectId}/processed/{photoId}.jpg
    processedImageUrl: Optional[str] = None
    processedAt: Optional[datetime] = None


@dataclass
class ProjectPage:
    """A page of an older project, stored as its own document.

    When this subcollection has documents it takes precedence over the
    embedded Project.pages list.

    Storage path: users/{userId}/projects/{projectId}/pages/{pageId}
    """

    id: str
    pageNumber: int
    imagePath: Optional[str] = None
    photoPath: Optional[str] = None
    processed: bool = False
    processedImagePath: Optional[str] = None
    processedImageUrl: Optional[str] = None
    processedAt: Optional[datetime] = None
