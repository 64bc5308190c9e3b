# ticketing_engine/infrastructure/credentials/qr_renderer.py

import base64
import io
import json

import qrcode


class QRCredentialRenderer:
    """
    Encodes a ticket into a PNG QR code, returned as a data URL.
    The payload carries enough to look the ticket up at the door.
    """

    def __init__(self, box_size: int = 10, border: int = 4):
        self.box_size = box_size
        self.border = border

    def payload(self, ticket_id: str, code: str, event_id: str) -> str:
        return json.dumps(
            {"ticket_id": ticket_id, "code": code, "event_id": event_id},
            sort_keys=True,
        )

    def render(self, ticket_id: str, code: str, event_id: str) -> str:
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(self.payload(ticket_id, code, event_id))
        qr.make(fit=True)

        buffer = io.BytesIO()
        qr.make_image(fill_color="black", back_color="white").save(buffer, format="PNG")
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:image/png;base64,{encoded}"
