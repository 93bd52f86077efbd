"""
Contact Info Resolution
Reads phone numbers and email addresses from source documents
"""
import re
from typing import Any, Dict, List, Optional

from outreach.domain.models.cadence_config import SourceFieldMap
from outreach.domain.models.campaign_record import ContactInfo


def format_phone_number(phone_number: Any, default_country_code: str = "44") -> Optional[str]:
    """
    Normalize a phone number to E.164.

    Non-digits are stripped. Numbers that do not already start with the
    country code and have at most 11 digits are treated as national:
    a leading trunk 0 is dropped and the country code prefixed.
    """
    raw = str(phone_number or "").strip()
    cleaned = re.sub(r"\D", "", raw)
    if not cleaned:
        return None

    # Already international
    if raw.startswith("+"):
        return "+" + cleaned

    if not cleaned.startswith(default_country_code) and len(cleaned) <= 11:
        if cleaned.startswith("0"):
            cleaned = cleaned[1:]
        cleaned = default_country_code + cleaned

    return "+" + cleaned


def _collect_emails(raw: Any) -> List[str]:
    values = raw if isinstance(raw, list) else [raw]
    emails: List[str] = []
    for value in values:
        if isinstance(value, str) and "@" in value:
            address = value.strip()
            if address not in emails:
                emails.append(address)
    return emails


def extract_contact_info(
    document: Optional[Dict[str, Any]],
    fields: Optional[SourceFieldMap] = None,
    default_country_code: str = "44"
) -> ContactInfo:
    """
    Build contact info from a source document.

    Contact info already cached under ``outreach.contact_info`` is used
    first; each empty list is then filled from the document's own fields.
    """
    if not document:
        return ContactInfo()

    fields = fields or SourceFieldMap()
    cached = (document.get("outreach") or {}).get("contact_info") or {}

    phone_numbers = list(cached.get("phone_numbers") or [])
    emails = list(cached.get("emails") or [])

    if not phone_numbers:
        raw_phones = document.get(fields.phone_field)
        for raw in (raw_phones if isinstance(raw_phones, list) else [raw_phones]):
            formatted = format_phone_number(raw, default_country_code)
            if formatted and formatted not in phone_numbers:
                phone_numbers.append(formatted)

    if not emails:
        emails = _collect_emails(document.get(fields.email_field))

    return ContactInfo(phone_numbers=phone_numbers, emails=emails)


def extract_business_label(document: Optional[Dict[str, Any]], fields: Optional[SourceFieldMap] = None) -> str:
    if not document:
        return ""
    fields = fields or SourceFieldMap()
    return str(document.get(fields.label_field) or "").strip()
