"""
Multipart boundary for catalog create/update.

The storefront posts catalog rows as forms whose `images` field may carry
uploaded files, URL strings, or both, and whose `size`/`sizes` field may be a
comma-separated string or a repeated field. Everything is normalised here,
once, into typed values before it reaches the repositories.
"""
import logging
import math
import os
import uuid
from typing import Dict, List, Optional, Union

from fastapi import Request
from pydantic import TypeAdapter
from starlette.datastructures import UploadFile

from errors import ValidationError
from schemas import CategoryChanges, CategoryDraft, ImageSource, ImageUploads, ImageUrls, UploadedImage

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
UPLOAD_URL_PREFIX = "/uploads/"

_image_sources = TypeAdapter(List[ImageSource])


class CatalogForm:
    """Raw form fields plus the image sources found in the `images` field."""

    def __init__(self, fields: Dict[str, Union[str, List[str]]], images: List[ImageSource], images_given: bool):
        self.fields = fields
        self.images = images
        self.images_given = images_given

    def get(self, key, default=None):
        return self.fields.get(key, default)

    def has(self, key):
        return key in self.fields


async def read_catalog_form(request: Request) -> CatalogForm:
    form = await request.form()
    fields: Dict[str, Union[str, List[str]]] = {}
    urls: List[str] = []
    uploads: List[UploadedImage] = []
    images_given = False

    for key in form.keys():
        values = form.getlist(key)
        if key == "images":
            images_given = True
            for value in values:
                if isinstance(value, UploadFile):
                    if value.filename:
                        uploads.append(UploadedImage(
                            filename=value.filename,
                            content_type=value.content_type,
                            data=await value.read(),
                        ))
                elif value and value.strip():
                    urls.append(value.strip())
            continue
        strings = [v for v in values if isinstance(v, str)]
        if not strings:
            continue
        fields[key] = strings[0] if len(strings) == 1 else strings

    sources = []
    if uploads:
        sources.append({"kind": "uploads", "uploads": uploads})
    if urls:
        sources.append({"kind": "urls", "urls": urls})
    return CatalogForm(fields, _image_sources.validate_python(sources), images_given)


def resolve_images(sources: List[ImageSource], upload_dir: Optional[str] = None) -> List[str]:
    """Store uploads and return the ordered list of image URLs, uploads first."""
    upload_dir = upload_dir or UPLOAD_DIR
    resolved = []
    for source in sources:
        if isinstance(source, ImageUploads):
            os.makedirs(upload_dir, exist_ok=True)
            for upload in source.uploads:
                _, ext = os.path.splitext(os.path.basename(upload.filename))
                stored = f"{uuid.uuid4().hex}{ext.lower()}"
                with open(os.path.join(upload_dir, stored), "wb") as fh:
                    fh.write(upload.data)
                logger.debug(f"Stored upload {upload.filename} as {stored}")
                resolved.append(UPLOAD_URL_PREFIX + stored)
        elif isinstance(source, ImageUrls):
            resolved.extend(source.urls)
    return resolved


def parse_sizes(raw) -> Optional[List[str]]:
    """None when no size was sent; otherwise the trimmed, non-empty sizes."""
    if raw is None:
        return None
    parts = raw if isinstance(raw, list) else [raw]
    sizes = []
    for part in parts:
        sizes.extend(s.strip() for s in str(part).split(","))
    return [s for s in sizes if s]


def _parse_price(raw):
    if isinstance(raw, list):
        raw = raw[0]
    try:
        price = float(raw)
    except (TypeError, ValueError):
        raise ValidationError("Price must be a number")
    if not math.isfinite(price):
        raise ValidationError("Price must be a number")
    return price


def _single(raw):
    if isinstance(raw, list):
        return raw[0] if raw else None
    return raw


def build_draft(form: CatalogForm) -> CategoryDraft:
    name = _single(form.get("name"))
    price = form.get("price")
    if not name or price in (None, ""):
        raise ValidationError("Name and price are required")
    price = _parse_price(price)
    if price < 0:
        raise ValidationError("Price must not be negative")

    sizes = parse_sizes(form.get("sizes", form.get("size")))
    if sizes is not None and not sizes:
        raise ValidationError("No valid sizes provided")

    return CategoryDraft(
        name=name,
        price=price,
        sizes=sizes or [],
        material=_single(form.get("material")) or None,
        color=_single(form.get("color")) or None,
        description=_single(form.get("description")) or None,
        image_urls=resolve_images(form.images),
    )


def build_changes(form: CatalogForm) -> CategoryChanges:
    changes = {}
    for key in ("name", "size", "material", "color", "description"):
        if form.has(key):
            changes[key] = _single(form.get(key))
    if form.has("name") and not changes["name"]:
        raise ValidationError("Name and price are required")
    if form.has("price"):
        changes["price"] = _parse_price(form.get("price"))
        if changes["price"] < 0:
            raise ValidationError("Price must not be negative")
    if form.images_given:
        changes["image_urls"] = resolve_images(form.images)
    return CategoryChanges(**changes)
