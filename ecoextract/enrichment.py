"""
Publication metadata enrichment from CrossRef.

A document with a DOI is looked up directly; otherwise its title and first
author are searched and the best-ranked hit is used. CrossRef values only
fill fields that are still empty, so nothing the metadata stage or a
reviewer stored is overwritten.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import requests

from ecoextract.infra.crossref import CrossRefClient
from ecoextract.infra.storage import Store


logger = logging.getLogger(__name__)

_YEAR_RE = re.compile(r"\b(\d{4})\b")

# CrossRef date fields, most specific first
DATE_FIELDS = ("published-print", "published-online", "issued")


@dataclass
class EnrichmentResult:
    success: bool
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    filled: List[str] = field(default_factory=list)


def _first(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def year_from_date(value: Any) -> Optional[int]:
    """
    Year from a CrossRef date object or a string containing one.

    >>> year_from_date({"date-parts": [[2019, 5, 2]]})
    2019
    >>> year_from_date("2020-01-01")
    2020
    """
    if isinstance(value, dict):
        parts = value.get("date-parts") or []
        if parts and parts[0] and isinstance(parts[0][0], int):
            return parts[0][0]
        return None
    if isinstance(value, str):
        match = _YEAR_RE.search(value)
        return int(match.group(1)) if match else None
    return None


def year_from_work(work: Dict[str, Any]) -> Optional[int]:
    for name in DATE_FIELDS:
        year = year_from_date(work.get(name))
        if year is not None:
            return year
    return None


def author_names(authors: Optional[List[Dict[str, Any]]]) -> List[str]:
    names = []
    for author in authors or []:
        given = (author.get("given") or "").strip()
        family = (author.get("family") or "").strip()
        name = " ".join(part for part in (given, family) if part) or (author.get("name") or "").strip()
        if name:
            names.append(name)
    return names


def first_author_lastname(authors: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    if not authors:
        return None
    first = authors[0]
    return _first(first.get("family")) or _first(first.get("given")) or _first(first.get("name"))


def work_to_metadata(work: Dict[str, Any]) -> Dict[str, Any]:
    """Map a CrossRef work onto the document's metadata columns."""
    authors = work.get("author")
    return {
        "title": _first(work.get("title")),
        "doi": _first(work.get("DOI")),
        "journal": _first(work.get("container-title")),
        "publication_year": year_from_work(work),
        "authors": author_names(authors),
        "first_author_lastname": first_author_lastname(authors),
        "volume": _first(work.get("volume")),
        "issue": _first(work.get("issue")),
        "pages": _first(work.get("page")),
        "issn": _first(work.get("ISSN")),
        "publisher": _first(work.get("publisher")),
        "language": _first(work.get("language")),
    }


def _usable_doi(doi: Optional[str]) -> Optional[str]:
    if not doi:
        return None
    doi = str(doi).strip()
    doi = re.sub(r"^(https?://(dx\.)?doi\.org/|doi:\s*)", "", doi, flags=re.IGNORECASE)
    if not doi or doi.lower() == "null":
        return None
    return doi


def enrich_metadata(
    client: CrossRefClient,
    doi: Optional[str] = None,
    title: Optional[str] = None,
    author: Optional[str] = None,
    rows: int = 5,
) -> EnrichmentResult:
    """
    Look a publication up by DOI, falling back to a title and author search.

    Network and HTTP errors are reported in the result, never raised.
    """
    doi = _usable_doi(doi)
    try:
        if doi:
            work = client.get_work(doi)
            if work:
                return EnrichmentResult(True, "Enriched via DOI", work_to_metadata(work))

        if title and author:
            items = client.search(title, author, rows=rows)
            if items:
                return EnrichmentResult(True, "Enriched via title/author search", work_to_metadata(items[0]))
            return EnrichmentResult(False, "No CrossRef match for title/author")
    except (requests.RequestException, ValueError) as e:
        return EnrichmentResult(False, f"CrossRef lookup failed: {e}")

    if doi:
        return EnrichmentResult(False, f"DOI not found in CrossRef: {doi}")
    return EnrichmentResult(False, "No DOI or title/author to look up")


def enrich_document(store: Store, document_id: int, client: CrossRefClient, rows: int = 5) -> EnrichmentResult:
    document = store.documents.get(document_id)
    if document is None:
        raise ValueError(f"Document {document_id} not found")

    result = enrich_metadata(
        client,
        doi=document.get("doi"),
        title=document.get("title"),
        author=document.get("first_author_lastname"),
        rows=rows,
    )
    if not result.success:
        logger.info(f"Document {document_id}: {result.message}")
        return result

    result.filled = store.documents.fill_missing_metadata(document_id, result.metadata)
    logger.info(
        f"Document {document_id}: {result.message}, filled {', '.join(result.filled) or 'nothing'}"
    )
    return result


def enrich_documents(
    store: Store,
    client: CrossRefClient,
    document_ids: Optional[Iterable[int]] = None,
    rows: int = 5,
) -> Dict[int, EnrichmentResult]:
    """Enrich documents one at a time, in id order."""
    wanted = set(document_ids) if document_ids is not None else None
    results = {}
    for document in store.documents.list_documents():
        if wanted is not None and document["id"] not in wanted:
            continue
        results[document["id"]] = enrich_document(store, document["id"], client, rows=rows)
    return results
