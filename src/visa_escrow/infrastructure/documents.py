"""Document store adapter: turns evidence references into retrievable URLs."""

from __future__ import annotations

from urllib.parse import quote


class UrlDocumentStore:
    """Resolves references against the document service's base URL.

    References are opaque keys such as ``cases/123/passport.pdf``. Absolute
    http(s) references pass through unchanged.
    """

    def __init__(self, base_url: str) -> None:
        self._base_url = base_url.rstrip("/")

    def url_for(self, reference: str) -> str:
        if not reference or not reference.strip():
            raise ValueError("Empty document reference")
        if reference.startswith(("http://", "https://")):
            return reference
        return f"{self._base_url}/{quote(reference.lstrip('/'))}"
