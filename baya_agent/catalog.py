"""Catalog loader and search helpers for the gallery artwork list.

The catalog is a JSON array of artwork records read once at startup. Records
are normalized into immutable ArtworkRecord objects that every request reads
without locking. Search is a deterministic token-overlap score with a stable
sort, so equal scores keep catalog order.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote

from .coupon_policy import CouponDecision
from .models import NormalizedItem
from .utils import normalize_text, round_half_up, to_number, tokenize

logger = logging.getLogger("baya.catalog")

ID_KEYS = ["id", "sku", "code", "artwork_id"]
TITLE_KEYS = ["title", "name", "artwork"]
ARTIST_KEYS = ["artist", "artist_name", "author"]
PRICE_KEYS = ["price", "price_usd", "usd"]
SLUG_KEYS = ["slug", "handle", "url_slug"]
IMAGE_KEYS = ["main_image", "image", "image_url", "img"]
SPEC_KEYS = ["short_spec", "spec", "specs", "description"]
BLOB_KEYS = ["search_blob", "keywords", "tags"]

EXCLUDED_BLOB_KEYS = ["price", "usd", "image", "img", "url", "slug"]

BLOB_WEIGHT = 2
TITLE_WEIGHT = 3
ARTIST_WEIGHT = 3
IMAGE_BONUS = 1


@dataclass(frozen=True)
class ArtworkRecord:
    """Normalized, read-only view of a catalog record with its raw backing dict."""
    id: str
    title: str
    artist: str
    price: float
    slug: str
    image: str
    short_spec: str
    search_blob: str
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


class CatalogLoader:
    def __init__(self, path: Path) -> None:
        """Keep the catalog file location for load()."""
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> List[ArtworkRecord]:
        """Purpose: Load and normalize the artwork catalog from disk.
        Inputs/Outputs: No inputs; returns a list of ArtworkRecord (possibly empty).
        Side Effects / State: Reads the catalog file once; logs the outcome.
        Dependencies: Uses json and record_from_raw.
        Failure Modes: Missing file, unreadable bytes, or invalid JSON are logged at
            ERROR and yield an empty list; non-dict entries and records that fail
            to normalize are skipped.
        If Removed: The chat pipeline has nothing to recommend.
        Testing Notes: Point at a missing/corrupt file and expect [] without raising.
        """
        # Read, decode, and accept either a bare array or an {"items": [...]} wrapper.
        try:
            data = json.loads(self._path.read_bytes().decode("utf-8-sig"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, RecursionError) as exc:
            logger.error("catalog_load_failed path=%s error=%s", self._path, exc)
            return []

        if isinstance(data, dict):
            entries = data.get("items", [])
        elif isinstance(data, list):
            entries = data
        else:
            entries = []

        records: List[ArtworkRecord] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                continue
            try:
                records.append(record_from_raw(entry, index))
            except (TypeError, ValueError, OverflowError) as exc:
                logger.warning("catalog_record_skipped index=%d error=%s", index, exc)
        logger.info("catalog_loaded path=%s records=%d", self._path.name, len(records))
        return records


def record_from_raw(raw: Dict[str, Any], index: int = 0) -> ArtworkRecord:
    """Purpose: Map a raw catalog dict onto ArtworkRecord using key synonyms.
    Inputs/Outputs: Input is a raw dict and its catalog position; output is a record.
    Side Effects / State: None.
    Dependencies: Uses _get_first_value and _build_blob.
    Failure Modes: Missing fields become empty strings or a 0 price; never raises.
    If Removed: Catalog files with slightly different column names stop loading.
    Testing Notes: A record using "name"/"image_url" should map to title/image.
    """
    # Resolve each field through its synonym list, falling back to position for id.
    title = _as_text(_get_first_value(raw, TITLE_KEYS))
    artist = _as_text(_get_first_value(raw, ARTIST_KEYS))
    short_spec = _as_text(_get_first_value(raw, SPEC_KEYS))
    blob = _get_first_value(raw, BLOB_KEYS)
    identifier = _as_text(_get_first_value(raw, ID_KEYS)) or str(index + 1)
    slug = _as_text(_get_first_value(raw, SLUG_KEYS)) or slugify(title)
    return ArtworkRecord(
        id=identifier,
        title=title,
        artist=artist,
        price=to_number(_get_first_value(raw, PRICE_KEYS)),
        slug=slug,
        image=_as_text(_get_first_value(raw, IMAGE_KEYS)),
        short_spec=short_spec,
        search_blob=normalize_text(_as_text(blob)) if blob is not None else _build_blob(raw, title, artist, short_spec),
        raw=MappingProxyType(dict(raw)),
    )


def slugify(text: str) -> str:
    """Lowercase, hyphen-joined slug used when a record has none."""
    return re.sub(r"[^a-z0-9]+", "-", normalize_text(text)).strip("-")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(str(part) for part in value if part is not None).strip()
    return str(value).strip()


def _normalize_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", normalize_text(key)).strip("_")


def _get_first_value(item: Dict[str, Any], keys: List[str]) -> Optional[Any]:
    """Purpose: Find the first present field in a dict by key synonyms.
    Inputs/Outputs: Input is a raw dict and candidate keys; returns the value or None.
    Side Effects / State: None.
    Dependencies: Uses _normalize_key and _has_value.
    Failure Modes: Returns None when no key matches or every match is empty.
    If Removed: Field mapping in record_from_raw fails for non-canonical columns.
    Testing Notes: "Main Image" and "main_image" should both resolve.
    """
    # Compare on normalized keys so "Short Spec" and "short_spec" are the same column.
    normalized_map = {_normalize_key(str(k)): k for k in item.keys()}
    for key in keys:
        actual = normalized_map.get(_normalize_key(key))
        if actual is not None and _has_value(item.get(actual)):
            return item.get(actual)
    return None


def _has_value(value: Any) -> bool:
    # Treat None or blank strings as missing values.
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _build_blob(raw: Dict[str, Any], title: str, artist: str, short_spec: str) -> str:
    """Build the normalized search blob when the catalog does not ship one."""
    parts: List[str] = [part for part in (title, artist, short_spec) if part]
    for key, value in raw.items():
        if value is None or isinstance(value, (dict, list)):
            continue
        normalized = _normalize_key(str(key))
        if any(excluded in normalized for excluded in EXCLUDED_BLOB_KEYS):
            continue
        parts.append(str(value))
    return normalize_text(" ".join(parts))


def score_record(record: ArtworkRecord, tokens: Sequence[str]) -> int:
    """Purpose: Score one record against already-tokenized query text.
    Inputs/Outputs: Inputs are a record and lowercase tokens; output is an int score.
    Side Effects / State: None.
    Dependencies: Uses BLOB/TITLE/ARTIST weights and the image bonus.
    Failure Modes: None; empty tokens leave only the image bonus.
    If Removed: search_artworks has no ranking signal.
    Testing Notes: A token in title and artist scores 6 plus 1 for an image.
    """
    # Per-token substring hits on blob/title/artist, plus a flat bonus for records with art.
    score = 0
    title = record.title.lower()
    artist = record.artist.lower()
    for token in tokens:
        if token in record.search_blob:
            score += BLOB_WEIGHT
        if token in title:
            score += TITLE_WEIGHT
        if token in artist:
            score += ARTIST_WEIGHT
    if record.image:
        score += IMAGE_BONUS
    return score


def rank_artworks(query: str, records: Sequence[ArtworkRecord]) -> List[Tuple[int, ArtworkRecord]]:
    """Return (score, record) pairs sorted by descending score; ties keep catalog order."""
    tokens = tokenize(query)
    scored = [(score_record(record, tokens), record) for record in records]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return scored


def search_artworks(query: str, records: Sequence[ArtworkRecord], limit: int = 3) -> List[ArtworkRecord]:
    """Purpose: Return at most `limit` catalog records best matching a text seed.
    Inputs/Outputs: Inputs are the seed, the catalog, and a limit; output is an
        ordered list of records with non-increasing score.
    Side Effects / State: None; the catalog is only read.
    Dependencies: Uses rank_artworks.
    Failure Modes: Empty catalog or limit <= 0 returns []; an empty seed returns
        records with images first, otherwise catalog order.
    If Removed: The chat endpoint cannot recommend artworks.
    Testing Notes: Check limit bound, ordering, and tie stability.
    """
    # Sorting is stable, so equal scores keep their catalog position.
    if limit <= 0 or not records:
        return []
    return [record for _, record in rank_artworks(query, records)[:limit]]


def build_product_url(base_url: str, slug: str) -> str:
    """Fully-qualified product page URL: base + url-encoded slug."""
    return f"{base_url}{quote(slug or '', safe='')}"


def build_checkout_url(base_url: str, slug: str, checkout_query: str, coupon_code: Optional[str] = None) -> str:
    """Purpose: Build the buy-now link for an artwork.
    Inputs/Outputs: Inputs are base URL, slug, checkout query, optional coupon code;
        output is the full URL string.
    Side Effects / State: None.
    Dependencies: Uses build_product_url and urllib quoting.
    Failure Modes: None; empty slug still yields the base URL.
    If Removed: Replies lose their direct purchase links.
    Testing Notes: Coupon "10OFF" should append "&coupon=10OFF".
    """
    # Append the coupon as an extra query parameter on top of the checkout query.
    url = f"{build_product_url(base_url, slug)}{checkout_query}"
    if coupon_code:
        separator = "&" if "?" in url else "?"
        url += f"{separator}coupon={quote(coupon_code, safe='')}"
    return url


def apply_discount(price: float, percent: int) -> int:
    """Final integer price after a percent discount, never above the original."""
    # Unusable prices show as 0 so the item still renders.
    if not math.isfinite(price) or price <= 0:
        return 0
    percent = min(max(int(percent), 0), 100)
    final = round_half_up(price * (100 - percent) / 100)
    if final > price:
        final = int(price)
    return max(final, 0)


def normalize_item(
    record: ArtworkRecord,
    coupon: CouponDecision,
    base_url: str,
    checkout_query: str,
) -> NormalizedItem:
    """Purpose: Build the client-facing item view with discount and links applied.
    Inputs/Outputs: Inputs are a record, the coupon decision, and URL settings;
        output is a NormalizedItem.
    Side Effects / State: None.
    Dependencies: Uses apply_discount, build_product_url, build_checkout_url.
    Failure Modes: None.
    If Removed: /api/chat cannot return priced items.
    Testing Notes: A 500 price with a 10% coupon should have price_final 450.
    """
    # Discount, URLs, and the raw display fields in one flat record.
    return NormalizedItem(
        id=record.id,
        title=record.title,
        artist=record.artist,
        slug=record.slug,
        image=record.image,
        short_spec=record.short_spec,
        price_original=record.price,
        discount_percent=coupon.percent,
        price_final=apply_discount(record.price, coupon.percent),
        url=build_product_url(base_url, record.slug),
        checkout_url=build_checkout_url(base_url, record.slug, checkout_query, coupon.code),
    )
