"""Proof-of-payment files: validation, signed download links, cleanup."""
from __future__ import annotations

import logging
import os

from django.conf import settings
from django.core import signing
from django.core.exceptions import ValidationError
from django.core.files.storage import default_storage
from django.db import transaction as db_transaction
from django.urls import reverse

logger = logging.getLogger(__name__)

PROOF_SIGNING_SALT = 'ledger.proofs'
ALLOWED_IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png'}
ALLOWED_PDF_EXTENSIONS = {'.pdf'}


def proof_url_ttl() -> int:
    return int(getattr(settings, 'PROOF_URL_TTL_SECONDS', 3600))


def validate_proof_file(value):
    if not value:
        return value
    ext = os.path.splitext(value.name or '')[1].lower()
    if ext not in ALLOWED_IMAGE_EXTENSIONS | ALLOWED_PDF_EXTENSIONS:
        raise ValidationError('Only JPG, PNG, or PDF files are allowed.')
    content_type = getattr(value, 'content_type', '') or ''
    if content_type:
        if ext in ALLOWED_PDF_EXTENSIONS and content_type not in ('application/pdf', 'application/x-pdf'):
            raise ValidationError('Only PDF files are allowed.')
        if ext in ALLOWED_IMAGE_EXTENSIONS and not content_type.startswith('image/'):
            raise ValidationError('Only image files are allowed.')
    return value


def sign_proof_path(name: str) -> str:
    return signing.dumps({'path': name}, salt=PROOF_SIGNING_SALT, compress=True)


def unsign_proof_path(token: str, *, max_age: int | None = None) -> str:
    """Return the stored path for ``token``; raises ``signing.BadSignature`` (or ``SignatureExpired``)."""
    payload = signing.loads(token, salt=PROOF_SIGNING_SALT, max_age=max_age if max_age is not None else proof_url_ttl())
    return payload['path']


def signed_proof_url(name: str, request=None) -> str | None:
    if not name:
        return None
    url = reverse('proof_download', args=[sign_proof_path(name)])
    if request is not None:
        return request.build_absolute_uri(url)
    return url


def delete_proof_file(name: str) -> None:
    if not name:
        return
    default_storage.delete(name)
    logger.info("Removed payment proof %s", name)


def delete_proof_on_commit(name: str) -> None:
    """Drop the stored file only once the surrounding database work is committed."""
    if not name:
        return
    db_transaction.on_commit(lambda: delete_proof_file(name))
