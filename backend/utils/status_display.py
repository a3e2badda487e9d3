"""Status badge data for invoice lists and previews."""
from typing import Any, Dict

from models import SignatureStatus, normalize_status

STATUS_DISPLAY: Dict[SignatureStatus, Dict[str, str]] = {
    SignatureStatus.AWAITING_SIGNATURE: {"label": "Awaiting Signature", "color": "amber", "icon": "clock"},
    SignatureStatus.SIGNED: {"label": "Signed", "color": "green", "icon": "check-circle"},
    SignatureStatus.EXPIRED: {"label": "Link Expired", "color": "gray", "icon": "timer-off"},
    SignatureStatus.DECLINED: {"label": "Declined", "color": "red", "icon": "x-circle"},
}


def get_status_display(status: Any) -> Dict[str, str]:
    """Badge label/color/icon for a stored status; legacy values are normalized first."""
    canonical = normalize_status(status)
    return {"status": canonical.value, **STATUS_DISPLAY[canonical]}
