import secrets
import string
import uuid
from datetime import datetime, timezone
import qrcode
from io import BytesIO
import base64

import config

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6


def generate_uuid() -> str:
    return str(uuid.uuid4())

def generate_room_code() -> str:
    """Generates a 6-character alphanumeric room code."""
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))

def get_utc_now() -> datetime:
    # Naive UTC so values compare cleanly with what the database hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)

def clamp_total_rounds(value) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        return config.DEFAULT_TOTAL_ROUNDS
    return min(config.MAX_TOTAL_ROUNDS, max(config.MIN_TOTAL_ROUNDS, value))

def generate_qr_code_base64(data: str) -> str:
    """Generates a QR code and returns it as a base64 encoded string."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffered = BytesIO()
    img.save(buffered, format="PNG")
    img_str = base64.b64encode(buffered.getvalue()).decode("utf-8")
    return img_str

def get_join_url(room_id: str) -> str:
    return f"{config.FRONTEND_URL.rstrip('/')}/room/{room_id}"
