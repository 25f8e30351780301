"""
Pages of a project are stored either as an embedded 'pages' array on the
project document or as a 'pages' subcollection. Both shapes exist in
production data; callers read them through a page source.
"""
from typing import Any, Dict, List, Optional

from google.api_core import exceptions as google_exceptions

from errors import StoreError


def _sorted_pages(pages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(pages, key=lambda page: page.get('pageNumber') or 0)


class PageSource:
    """Common interface of both page shapes."""

    kind = ''

    def list_pages(self) -> List[Dict[str, Any]]:
        raise NotImplementedError


class EmbeddedPageSource(PageSource):
    """Pages stored inline in the project document."""

    kind = 'embedded'

    def __init__(self, project_data: Dict[str, Any]):
        self.project_data = project_data

    def list_pages(self) -> List[Dict[str, Any]]:
        pages = self.project_data.get('pages')
        if not isinstance(pages, list):
            return []
        return _sorted_pages([dict(page) for page in pages if isinstance(page, dict)])


class SubcollectionPageSource(PageSource):
    """Pages stored as documents under projects/{projectId}/pages."""

    kind = 'subcollection'

    def __init__(self, project_ref, page_docs: Optional[list] = None):
        self.project_ref = project_ref
        self._page_docs = page_docs

    def _docs(self) -> list:
        if self._page_docs is None:
            self._page_docs = list(self.project_ref.collection('pages').stream())
        return self._page_docs

    def list_pages(self) -> List[Dict[str, Any]]:
        pages = []
        for doc in self._docs():
            data = doc.to_dict() or {}
            data['id'] = doc.id
            pages.append(data)
        return _sorted_pages(pages)

    def page_ref(self, page_id: str):
        return self.project_ref.collection('pages').document(page_id)


def load_page_source(project_ref, project_data: Dict[str, Any]) -> PageSource:
    """
    Pick the page shape of a project.

    The subcollection is read first; when it is empty the embedded array is used.

    Args:
        project_ref: Firestore reference of the project document
        project_data: Current project document data

    Returns:
        PageSource: Source to read the pages from
    """
    try:
        page_docs = list(project_ref.collection('pages').stream())
    except (google_exceptions.GoogleAPICallError, google_exceptions.RetryError) as e:
        print(f"Error reading pages subcollection: {str(e)}")
        raise StoreError(f"Failed to read project pages: {str(e)}", e)

    if page_docs:
        return SubcollectionPageSource(project_ref, page_docs)
    return EmbeddedPageSource(project_data)


def get_first_page(pages: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Page number 1 if present, else the first page, else None."""
    for page in pages:
        if page.get('pageNumber') == 1:
            return page
    return pages[0] if pages else None


def get_original_image_path(page: Dict[str, Any]) -> str:
    return page.get('photoPath') or page.get('imagePath') or ''


def collect_asset_paths(pages: List[Dict[str, Any]], project_data: Dict[str, Any]) -> List[str]:
    """
    Every storage path referenced by a project: originals, processed images and thumbnail.

    Returns:
        list: Unique paths in discovery order
    """
    paths = []
    for page in pages:
        for key in ('photoPath', 'imagePath', 'processedImagePath'):
            if page.get(key):
                paths.append(page[key])

    for key in ('thumbnailPath', 'processedImagePath'):
        if project_data.get(key):
            paths.append(project_data[key])

    return list(dict.fromkeys(paths))
