"""
Service QR : encodage du tracking number et vérification des scans.
"""
import base64
import io
import logging

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from core.exceptions import QREncodingError

logger = logging.getLogger(__name__)


def generate_qr_code(tracking_number: str) -> str:
    """Retourne le QR code du tracking number sous forme de data URI PNG."""
    try:
        qr = qrcode.QRCode(
            error_correction=ERROR_CORRECT_H,
            box_size=10,
            border=1,
        )
        qr.add_data(tracking_number)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")
        buf = io.BytesIO()
        img.save(buf, format="PNG")
    except Exception as e:
        logger.error(f"Erreur génération QR pour {tracking_number}: {e}")
        raise QREncodingError() from e
    b64 = base64.b64encode(buf.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{b64}"


def verify_qr_code(scanned_data: str, tracking_number: str) -> bool:
    # Égalité texte simple : le QR ne porte aucune signature
    return scanned_data.strip() == tracking_number.strip()
