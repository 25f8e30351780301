"""
Create-book wizard: product options -> art style -> upload photos -> arrange pages.

Navigation is strictly linear. Moving forward is guarded, moving back is not.
Submission can only start from the arrange step; see project_submission.py.
"""
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from config import (
    ART_STYLES,
    DEFAULT_ART_STYLE,
    DEFAULT_PRODUCT_TYPE,
    PRODUCT_ALIASES,
    PRODUCT_MAX_PAGES,
    PRODUCT_MIN_PAGES,
    PRODUCT_TYPES,
)
from errors import ValidationError
from file_handling import detect_content_type, is_image_content_type
from image_handling import create_preview
from models import HAS_PREVIEW_MARKER, WizardPage, WizardPhoto
from wizard_cache import WizardStateCache


STEPS = ['options', 'style', 'upload', 'arrange']
SUBMITTING = 'submitting'
DONE = 'done'

# (file name, content type, file bytes)
UploadedFile = Tuple[str, Optional[str], bytes]


def normalize_product_type(product_type: Optional[str]) -> str:
    value = (product_type or DEFAULT_PRODUCT_TYPE).lower()
    return PRODUCT_ALIASES.get(value, value)


def max_pages_for(product_type: Optional[str]) -> int:
    return PRODUCT_MAX_PAGES.get(normalize_product_type(product_type), PRODUCT_MAX_PAGES[DEFAULT_PRODUCT_TYPE])


def min_pages_for(product_type: Optional[str]) -> int:
    return PRODUCT_MIN_PAGES.get(normalize_product_type(product_type), PRODUCT_MIN_PAGES[DEFAULT_PRODUCT_TYPE])


def renumber_pages(pages: List[WizardPage]) -> List[WizardPage]:
    """Reassign page numbers 1..N in list order."""
    for index, page in enumerate(pages):
        page.page_number = index + 1
    return pages


class UploadWizard:
    """In-session state of the create-book wizard."""

    def __init__(
        self,
        cache: Optional[WizardStateCache] = None,
        project_id: Optional[str] = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4())
    ):
        self.cache = cache
        self.project_id = project_id
        self.id_factory = id_factory
        self.step = STEPS[0]
        self.title = ''
        self.product_type = DEFAULT_PRODUCT_TYPE
        self.art_style = DEFAULT_ART_STYLE
        self.pages: List[WizardPage] = []
        self.upload_progress = 0

    # Derived values

    @property
    def max_photo_count(self) -> int:
        return max_pages_for(self.product_type)

    @property
    def required_photo_count(self) -> int:
        return min_pages_for(self.product_type)

    @property
    def photos(self) -> List[WizardPhoto]:
        return [page.photo for page in self.pages if page.photo is not None]

    @property
    def photo_count(self) -> int:
        return len(self.photos)

    @property
    def photos_needing_upload(self) -> List[WizardPhoto]:
        """Photos restored from session storage whose bytes were lost with the reload."""
        return [photo for photo in self.photos if photo.preview is None]

    def filtered_pages(self) -> List[WizardPage]:
        """Only the pages the selected product can hold."""
        return self.pages[:self.max_photo_count]

    # Options and style

    def set_title(self, title: str) -> None:
        self.title = title or ''
        self._changed()

    def set_product_type(self, product_type: str) -> None:
        value = normalize_product_type(product_type)
        if value not in PRODUCT_TYPES:
            raise ValidationError(f"Unknown product type: {product_type}")
        if value != self.product_type:
            self.product_type = value
            self._changed()

    def set_art_style(self, art_style: str) -> None:
        value = (art_style or '').lower()
        if value not in ART_STYLES:
            raise ValidationError(f"Unknown art style: {art_style}")
        if value != self.art_style:
            self.art_style = value
            self._changed()

    def set_upload_progress(self, progress: float) -> None:
        self.upload_progress = max(0, min(100, progress))
        self._changed()

    # Photos and pages

    def add_photos(self, files: Iterable[UploadedFile]) -> List[WizardPage]:
        """
        Accept image files, one new page per image.

        Non-image files are skipped silently. Each accepted photo gets a bounded
        preview used for the rest of the session.

        Args:
            files: (name, content type, bytes) of every selected file

        Returns:
            list: Pages created for the accepted photos
        """
        added = []
        for name, content_type, data in files:
            if not is_image_content_type(detect_content_type(name, content_type)):
                continue

            try:
                preview = create_preview(data)
            except Exception as e:
                # Fall back to the original bytes when the preview cannot be made
                print(f"Error creating preview for {name}: {str(e)}")
                preview = data

            photo = WizardPhoto(id=self.id_factory(), name=name, preview=preview)
            page = WizardPage(id=self.id_factory(), page_number=len(self.pages) + 1, photo=photo)
            self.pages.append(page)
            added.append(page)

        if added:
            self._changed()
        return added

    def add_blank_page(self) -> WizardPage:
        page = WizardPage(id=self.id_factory(), page_number=len(self.pages) + 1)
        self.pages.append(page)
        self._changed()
        return page

    def remove_photo(self, photo_id: str) -> bool:
        """Remove the page holding a photo and renumber the rest."""
        remaining = [page for page in self.pages if not (page.photo and page.photo.id == photo_id)]
        if len(remaining) == len(self.pages):
            return False
        self.pages = renumber_pages(remaining)
        self._changed()
        return True

    def remove_page(self, page_id: str) -> bool:
        remaining = [page for page in self.pages if page.id != page_id]
        if len(remaining) == len(self.pages):
            return False
        self.pages = renumber_pages(remaining)
        self._changed()
        return True

    def move_page(self, page_id: str, direction: str) -> bool:
        """
        Swap a page with its left or right neighbour.

        Returns:
            bool: True if the page moved
        """
        if direction not in ('left', 'right'):
            raise ValidationError(f"Unknown direction: {direction}")

        index = next((i for i, page in enumerate(self.pages) if page.id == page_id), -1)
        if index == -1:
            return False

        target = index - 1 if direction == 'left' else index + 1
        if target < 0 or target >= len(self.pages):
            return False

        self.pages[index], self.pages[target] = self.pages[target], self.pages[index]
        renumber_pages(self.pages)
        self._changed()
        return True

    # Navigation

    def can_advance(self) -> Optional[str]:
        """
        Check the guard of the current step.

        Returns:
            str: Why the wizard cannot move forward, None when it can
        """
        if self.step == 'options':
            if not self.title.strip():
                return "Please enter a title for your coloring book"
        elif self.step == 'style':
            if self.art_style not in ART_STYLES:
                return "Please select an art style"
        elif self.step == 'upload':
            count = self.photo_count
            if count < self.required_photo_count:
                return f"Your {self.product_type} book requires at least {self.required_photo_count} photos"
            if count > self.max_photo_count:
                extra = count - self.max_photo_count
                return (
                    f"You've exceeded the maximum number of photos for this product type. "
                    f"Please remove {extra} photo(s)."
                )
            if self.photos_needing_upload:
                return "Some photos were lost when the page reloaded, please upload them again"
        elif self.step == 'arrange':
            return "Submit the project to continue"
        else:
            return f"Cannot continue from step {self.step}"
        return None

    def advance(self) -> str:
        reason = self.can_advance()
        if reason:
            raise ValidationError(reason)
        self.step = STEPS[STEPS.index(self.step) + 1]
        self._changed()
        return self.step

    def back(self) -> str:
        if self.step not in STEPS:
            raise ValidationError(f"Cannot go back from step {self.step}")
        index = STEPS.index(self.step)
        if index > 0:
            self.step = STEPS[index - 1]
            self._changed()
        return self.step

    def begin_submission(self) -> None:
        if self.step != 'arrange':
            raise ValidationError("Projects can only be submitted from the arrange step")
        self.step = SUBMITTING

    def finish_submission(self, project_id: str) -> None:
        self.project_id = project_id
        self.step = DONE
        if self.cache is not None:
            self.cache.clear()

    def abort_submission(self) -> None:
        self.step = 'arrange'
        self._changed()

    # Persistence

    def snapshot(self) -> Dict[str, Any]:
        """Serializable state without any photo bytes."""
        return {
            'projectId': self.project_id,
            'title': self.title,
            'productType': self.product_type,
            'artStyle': self.art_style,
            'step': self.step,
            'uploadProgress': self.upload_progress,
            'pages': [
                {
                    'id': page.id,
                    'pageNumber': page.page_number,
                    'photo': {
                        'id': page.photo.id,
                        'name': page.photo.name,
                        'preview': HAS_PREVIEW_MARKER if page.photo.has_preview else '',
                        'uploadId': page.photo.upload_id,
                    } if page.photo else None,
                }
                for page in self.pages
            ],
        }

    @classmethod
    def restore(
        cls,
        state: Dict[str, Any],
        cache: Optional[WizardStateCache] = None,
        id_factory: Optional[Callable[[], str]] = None
    ) -> "UploadWizard":
        """
        Rebuild a wizard from a snapshot or from what WizardStateCache.load() returned.

        Photos come back without bytes; the wizard is sent back to the upload step
        when any of them has to be uploaded again.
        """
        wizard = cls(cache=cache, project_id=state.get('projectId'))
        if id_factory is not None:
            wizard.id_factory = id_factory

        wizard.title = state.get('title') or ''
        product_type = normalize_product_type(state.get('productType'))
        wizard.product_type = product_type if product_type in PRODUCT_TYPES else DEFAULT_PRODUCT_TYPE
        art_style = (state.get('artStyle') or DEFAULT_ART_STYLE).lower()
        wizard.art_style = art_style if art_style in ART_STYLES else DEFAULT_ART_STYLE
        wizard.upload_progress = state.get('uploadProgress') or 0

        for page_data in state.get('pages') or []:
            photo = None
            photo_data = page_data.get('photo')
            if photo_data:
                photo = WizardPhoto(
                    id=photo_data.get('id') or wizard.id_factory(),
                    name=photo_data.get('name') or '',
                    upload_id=photo_data.get('uploadId'),
                    had_preview=photo_data.get('preview') == HAS_PREVIEW_MARKER,
                )
            elif page_data.get('hasPhoto'):
                # Minimal shape only remembers that a photo was there
                photo = WizardPhoto(id=wizard.id_factory(), name='', had_preview=True)
            wizard.pages.append(WizardPage(id=page_data.get('id') or wizard.id_factory(), page_number=0, photo=photo))
        renumber_pages(wizard.pages)

        step = state.get('step')
        wizard.step = step if step in STEPS else STEPS[0]
        if wizard.photos_needing_upload and STEPS.index(wizard.step) > STEPS.index('upload'):
            wizard.step = 'upload'
        return wizard

    def _changed(self) -> None:
        if self.cache is not None:
            self.cache.schedule(self.snapshot())

    def flush(self) -> None:
        if self.cache is not None:
            self.cache.flush()
