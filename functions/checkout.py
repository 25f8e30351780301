"""
Preview, checkout and project deletion for the owner of a project, plus the
dashboard listing and the order confirmation shown after payment.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
import stripe

from asset_store import AssetStore
from config import (
    DEFAULT_PRODUCT_TYPE,
    ESTIMATED_DELIVERY_DAYS,
    HTTP_TIMEOUT,
    PAYMENT_COMPLETE_STATUSES,
    PRODUCT_DISPLAY_NAMES,
    PRODUCT_PRICES,
    get_checkout_function_url,
    get_stripe_secret_key,
)
from errors import AuthError, NotFoundError, StoreError, StoryInColorError, TransientError, ValidationError
from models import PreviewRecord, format_timestamp
from page_source import EmbeddedPageSource, collect_asset_paths, get_first_page, load_page_source
from project_store import ProjectStore
from wizard import normalize_product_type


DASHBOARD_TABS = ('preview', 'ordered')

def get_product_price(product_type: Optional[str]) -> str:
    """Fixed price of a product type; unknown or missing types cost the standard price."""
    return PRODUCT_PRICES.get(normalize_product_type(product_type), PRODUCT_PRICES[DEFAULT_PRODUCT_TYPE])


def format_product_name(product_type: Optional[str]) -> str:
    return PRODUCT_DISPLAY_NAMES.get(normalize_product_type(product_type), PRODUCT_DISPLAY_NAMES[DEFAULT_PRODUCT_TYPE])


def payment_redirect_for(project: Dict[str, Any]) -> Optional[str]:
    """
    Order confirmation URL for a project the payment webhook already advanced.

    The browser can return from the payment page before the webhook runs, or
    never return at all. Such projects must not be offered checkout again.

    Returns:
        str: Redirect URL, None when checkout is still open
    """
    if project.get('status') in PAYMENT_COMPLETE_STATUSES:
        return f"/order-success?session_id={project.get('paymentId') or ''}"
    return None


def _display_date(value: Any) -> str:
    return format_timestamp(value)[:10] or datetime.now(timezone.utc).date().isoformat()


def _optional_url(asset_store: AssetStore, path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    try:
        return asset_store.get_download_url(path)
    except StoryInColorError as e:
        print(f"Failed to load image {path}: {e.message}")
        return None


def load_preview(
    project_store: ProjectStore,
    asset_store: AssetStore,
    user_id: str,
    project_id: str
) -> PreviewRecord:
    """
    Build the preview screen of a project.

    A project without pages yet (still processing) gets a not-processed record
    instead of an error. A processed image whose URL cannot be fetched leaves
    processed_image_url empty.

    Raises:
        NotFoundError: If the project does not exist or was deleted
    """
    project = project_store.get_project(user_id, project_id)
    if project.get('deleted') is True:
        raise NotFoundError(f"Project not found: {project_id}")

    product_type = normalize_product_type(project.get('productType'))
    record = PreviewRecord(
        id=project_id,
        title=project.get('title') or 'Untitled Project',
        product_type=product_type,
        product_name=format_product_name(product_type),
        date=_display_date(project.get('createdAt')),
        price=get_product_price(product_type),
        page_id='',
        processed=False,
        status=project.get('status'),
        redirect_to=payment_redirect_for(project),
    )

    source = load_page_source(project_store.project_ref(user_id, project_id), project)
    first_page = get_first_page(source.list_pages())
    if first_page is None:
        print("No pages found yet - this is expected for new projects")
        return record

    record.page_id = first_page.get('id') or ''
    record.processed = bool(first_page.get('processed'))
    if record.processed:
        record.processed_image_url = _optional_url(asset_store, first_page.get('processedImagePath'))
    return record


class CheckoutClient:
    """Calls the function that creates payment sessions."""

    def __init__(self, url: Optional[str] = None, http_client: Optional[httpx.Client] = None):
        self.url = url or get_checkout_function_url()
        self.http_client = http_client or httpx.Client(timeout=HTTP_TIMEOUT)

    def create_session(self, id_token: str, project_id: str, product_type: str, title: str) -> str:
        """
        Create a payment session for a project.

        Returns:
            str: Session ID issued by the payment processor

        Raises:
            AuthError: If the token was rejected
            TransientError: On network failure or an unusable response
        """
        try:
            response = self.http_client.post(
                self.url,
                json={'projectId': project_id, 'productType': product_type, 'title': title},
                headers={'Authorization': f"Bearer {id_token}"},
            )
        except httpx.HTTPError as e:
            raise TransientError(f"Checkout service unreachable: {str(e)}", e)

        if response.status_code == 401:
            raise AuthError('token-expired', "Your session has expired, please sign in again")
        if response.status_code >= 400:
            raise TransientError(f"Checkout service failed with status {response.status_code}")

        try:
            session_id = response.json().get('sessionId')
        except (ValueError, AttributeError):
            session_id = None
        if not session_id:
            raise TransientError("Checkout service returned no session")

        print(f"Checkout session created: {session_id}")
        return session_id


class PaymentGateway:
    """Hosted checkout pages and session lookups on Stripe."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or get_stripe_secret_key()

    def _retrieve(self, session_id: str):
        try:
            return stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.InvalidRequestError as e:
            raise NotFoundError(f"Checkout session not found: {session_id}", e)
        except stripe.StripeError as e:
            print(f"Stripe error for session {session_id}: {str(e)}")
            raise TransientError(f"Payment processor unavailable: {str(e)}", e)

    def checkout_url(self, session_id: str) -> str:
        session = self._retrieve(session_id)
        if not session.url:
            raise TransientError(f"Checkout session {session_id} has no payment page")
        return session.url

    def payment_status(self, session_id: str) -> Optional[str]:
        return self._retrieve(session_id).payment_status


def start_checkout(
    project_store: ProjectStore,
    user_id: str,
    project_id: str,
    token_provider: Callable[[bool], str],
    checkout_client: CheckoutClient,
    gateway: PaymentGateway
) -> Dict[str, Any]:
    """
    Send the owner of a project to the payment page.

    Args:
        token_provider: Returns an ID token of the owner; called with force_refresh=True
        checkout_client: Creates the payment session
        gateway: Resolves the hosted payment page of a session

    Returns:
        dict: {'redirectTo': url, 'sessionId': id or None}. Projects already
            paid for are sent to the order confirmation instead.
    """
    project = project_store.get_project(user_id, project_id)
    if project.get('deleted') is True:
        raise NotFoundError(f"Project not found: {project_id}")

    redirect = payment_redirect_for(project)
    if redirect:
        print("Payment already completed for this project, redirecting to success page")
        return {'redirectTo': redirect, 'sessionId': project.get('paymentId')}

    # Stale tokens are rejected when the session is created
    id_token = token_provider(True)
    product_type = normalize_product_type(project.get('productType'))
    session_id = checkout_client.create_session(
        id_token,
        project_id,
        product_type,
        project.get('title') or 'Coloring Book',
    )
    return {'redirectTo': gateway.checkout_url(session_id), 'sessionId': session_id}


def order_confirmation(
    session_id: str,
    gateway: Optional[PaymentGateway] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Order details shown on return from the payment page.

    Args:
        session_id: Session ID carried by the return URL
        gateway: Used to look up the payment status when given
        now: Order time, the current time by default

    Returns:
        dict: orderNumber, estimatedDelivery and paymentStatus
    """
    if not session_id:
        raise ValidationError("Session ID is required")

    now = now or datetime.now(timezone.utc)
    payment_status = None
    if gateway is not None:
        try:
            payment_status = gateway.payment_status(session_id)
        except StoryInColorError as e:
            # The webhook has the final word on the order
            print(f"Could not check payment status: {e.message}")

    return {
        'orderNumber': session_id[:8].upper(),
        'estimatedDelivery': (now + timedelta(days=ESTIMATED_DELIVERY_DAYS)).date().isoformat(),
        'paymentStatus': payment_status,
    }


def delete_project(
    project_store: ProjectStore,
    asset_store: AssetStore,
    user_id: str,
    project_id: str,
    confirmed: bool
) -> Dict[str, Any]:
    """
    Soft-delete a project after removing its images.

    Image cleanup is best effort. The deleted flag is written last and its
    failure fails the operation. Deleting a deleted project does nothing.

    Args:
        confirmed: The owner confirmed the deletion

    Returns:
        dict: alreadyDeleted, deletedPaths, failedPaths and redirectTo
    """
    if not confirmed:
        raise ValidationError("Deleting a project must be confirmed")

    project = project_store.get_project(user_id, project_id)
    if project.get('deleted') is True:
        print("Project already marked as deleted")
        return {'alreadyDeleted': True, 'deletedPaths': [], 'failedPaths': [], 'redirectTo': '/dashboard'}

    try:
        pages = load_page_source(project_store.project_ref(user_id, project_id), project).list_pages()
    except StoreError as e:
        print(f"Falling back to embedded pages: {e.message}")
        pages = EmbeddedPageSource(project).list_pages()

    deleted, failed = [], []
    for path in collect_asset_paths(pages, project):
        try:
            asset_store.delete(path)
            deleted.append(path)
        except NotFoundError:
            deleted.append(path)
        except StoryInColorError as e:
            print(f"Error deleting {path}: {e.message}")
            failed.append(path)

    project_store.soft_delete_project(user_id, project_id)
    print(f"Project {project_id} deleted, {len(failed)} files could not be removed")
    return {'alreadyDeleted': False, 'deletedPaths': deleted, 'failedPaths': failed, 'redirectTo': '/dashboard'}


def _dashboard_entry(asset_store: AssetStore, project: Dict[str, Any], tab: str) -> Dict[str, Any]:
    entry = {
        'id': project['id'],
        'title': project.get('title') or 'Untitled Project',
        'productType': normalize_product_type(project.get('productType')),
        'status': 'Ordered' if tab == 'ordered' else 'Preview',
        'thumbnail': _optional_url(asset_store, project.get('thumbnailPath')),
    }
    if tab == 'ordered':
        entry['date'] = format_timestamp(project.get('orderDate'))[:10] or 'Unknown date'
        entry['orderNumber'] = project.get('orderNumber') or f"ORD-{project['id'][:8]}"
        entry['estimatedDelivery'] = format_timestamp(project.get('estimatedDelivery'))[:10] or 'Unknown'
    else:
        entry['date'] = format_timestamp(project.get('createdAt'))[:10] or 'Unknown date'
    return entry


def list_dashboard_projects(
    project_store: ProjectStore,
    asset_store: AssetStore,
    user_id: str
) -> Dict[str, List[Dict[str, Any]]]:
    """
    The owner's projects awaiting checkout and the ones already ordered.

    Returns:
        dict: {'preview': [...], 'ordered': [...]}, most recently updated first
    """
    return {
        tab: [_dashboard_entry(asset_store, project, tab) for project in project_store.list_projects_by_status(user_id, tab)]
        for tab in DASHBOARD_TABS
    }
