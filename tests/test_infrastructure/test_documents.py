"""Tests for evidence reference resolution."""

from __future__ import annotations

import pytest

from visa_escrow.infrastructure.documents import UrlDocumentStore


@pytest.fixture
def store() -> UrlDocumentStore:
    return UrlDocumentStore("https://docs.example.com/files/")


def test_relative_reference(store) -> None:
    assert store.url_for("cases/12/passport.pdf") == "https://docs.example.com/files/cases/12/passport.pdf"


def test_reference_is_quoted(store) -> None:
    assert store.url_for("/i-20 form.pdf") == "https://docs.example.com/files/i-20%20form.pdf"


def test_absolute_url_passes_through(store) -> None:
    assert store.url_for("https://cdn.example.com/a.pdf") == "https://cdn.example.com/a.pdf"


def test_blank_reference_rejected(store) -> None:
    with pytest.raises(ValueError):
        store.url_for("   ")
