"""Phone number normalization for Nigerian MSISDNs"""

import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a Nigerian phone number to local format "0XXXXXXXXXX".

    Examples:
        "07030278896"    -> "07030278896"
        "2347030278896"  -> "07030278896"
        "+2347030278896" -> "07030278896"
        "7030278896"     -> "07030278896"

    Anything else is returned as its digits so callers can still match it.
    """
    if not raw:
        return None

    digits = _NON_DIGITS.sub("", raw)
    if not digits:
        return None

    if digits.startswith("0") and len(digits) == 11:
        return digits

    if digits.startswith("234") and len(digits) >= 13:
        return "0" + digits[3:13]

    if not digits.startswith("0") and len(digits) == 10:
        return "0" + digits

    return digits
