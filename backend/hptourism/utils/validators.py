"""
Validators: cleaning values before they go onto the HimKosh wire.
"""
import re
import unicodedata

TENDER_BY_MAX_LEN = 70


def to_ascii(value: str | None) -> str:
    """Fold accented characters to ASCII and drop what has no ASCII form."""
    if not value:
        return ""
    folded = unicodedata.normalize("NFKD", value)
    return folded.encode("ascii", errors="ignore").decode("ascii")


def sanitize_wire_value(value: str | None, max_len: int | None = None) -> str:
    """Make a free-text value safe for a ``Key=Value|...`` segment.

    Pipes are the field separator and are never escaped by the gateway,
    so they are replaced with spaces.
    """
    cleaned = re.sub(r"\s+", " ", to_ascii(value).replace("|", " "))
    cleaned = re.sub(r"[\x00-\x1f\x7f]", "", cleaned)
    cleaned = re.sub(r" +", " ", cleaned).strip()
    if max_len is not None:
        cleaned = cleaned[:max_len].rstrip()
    return cleaned


def sanitize_tender_by(name: str | None) -> str:
    """Payer display name as the treasury will print it on the challan."""
    return sanitize_wire_value(name, max_len=TENDER_BY_MAX_LEN)


def validate_app_ref_no(app_ref_no: str | None) -> bool:
    """Correlation references are 1-20 alphanumerics."""
    if not app_ref_no:
        return False
    return bool(re.match(r"^[A-Za-z0-9]{1,20}$", app_ref_no))
