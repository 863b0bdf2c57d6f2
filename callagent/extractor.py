"""Pattern-based extraction of field values from free-text utterances.

Rules, in priority order (at most one field is filled per call):
  1. an email-shaped token fills ``email`` if that field exists and is empty
  2. a 10-digit phone-shaped token fills ``phone`` if it exists and is empty
  3. a short answer (<= 4 words) with neither token is stored verbatim in the
     first still-empty field of ``pending_order``

Rule 3 is positional: a short answer lands in whatever field is being asked
for, regardless of that field's type.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping

log = logging.getLogger("callagent.extractor")

EMAIL_FIELD = "email"
PHONE_FIELD = "phone"
MAX_FREE_TEXT_WORDS = 4

EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_RE = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")


def is_filled(collected: Mapping[str, str], field_id: str) -> bool:
    """A field counts as answered only with a non-blank value."""
    value = collected.get(field_id)
    return bool(value and value.strip())


def find_email(message: str) -> str | None:
    match = EMAIL_RE.search(message)
    return match.group(0) if match else None


def find_phone(message: str) -> str | None:
    match = PHONE_RE.search(message)
    return match.group(0) if match else None


def extract(
    message: str,
    already_collected: Mapping[str, str],
    pending_order: Iterable[str],
    known_fields: Iterable[str] | None = None,
) -> dict[str, str]:
    """Return the partial update derivable from ``message``.

    ``known_fields`` lists every configured field id (core and additional);
    it defaults to ``pending_order``. The result has at most one key and is
    empty when nothing recognisable was said.
    """
    pending = list(pending_order)
    known = set(known_fields) if known_fields is not None else set(pending)

    email = find_email(message)
    phone = find_phone(message)

    if email and EMAIL_FIELD in known and not is_filled(already_collected, EMAIL_FIELD):
        log.debug("Extracted email from utterance")
        return {EMAIL_FIELD: email}

    if phone and PHONE_FIELD in known and not is_filled(already_collected, PHONE_FIELD):
        log.debug("Extracted phone from utterance")
        return {PHONE_FIELD: phone}

    text = message.strip()
    if email or phone or not text or len(text.split()) > MAX_FREE_TEXT_WORDS:
        return {}

    for field_id in pending:
        if not is_filled(already_collected, field_id):
            log.debug("Assigned short answer to %s", field_id)
            return {field_id: text}
    return {}


def extract_for_field(message: str, field_id: str, field_type: str = "text") -> str:
    """Value for a field the client was explicitly asked to correct.

    Email/phone fields take the matching token when one is present;
    anything else takes the trimmed message.
    """
    if field_id == EMAIL_FIELD or field_type == "email":
        return find_email(message) or message.strip()
    if field_id == PHONE_FIELD or field_type == "phone":
        return find_phone(message) or message.strip()
    return message.strip()
