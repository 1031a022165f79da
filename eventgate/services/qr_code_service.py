import json
from io import BytesIO

import qrcode

from eventgate.core.config import settings
from eventgate.utils.datetime_utils import to_iso_format, utc_now


def build_ticket_payload(event_id: str, user_id: str, event_title: str = "", user_name: str = "") -> str:
    """JSON carried by a participant's ticket QR code. Only eventId and userId are checked at the door."""
    return json.dumps({
        "eventId": event_id,
        "userId": user_id,
        "timestamp": to_iso_format(utc_now()),
        "eventTitle": event_title,
        "userName": user_name,
    })


def render_qr_png(data: str) -> BytesIO:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=settings.QR_BOX_SIZE,
        border=settings.QR_BORDER,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = BytesIO()
    img.save(buf, format="PNG")
    buf.seek(0)
    return buf
