"""
Tracking pixel issuing and the pixel fetch pipeline.

The pixel endpoint answers immediately with PIXEL_PNG; everything in
process_pixel_fetch runs afterwards, off the request path.
"""

import base64
import logging
import random
import uuid
from dataclasses import dataclass

from open_detection import is_real_user_open

logger = logging.getLogger(__name__)

# 1x1 transparent PNG
PIXEL_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/PchI7wAAAABJRU5ErkJggg=="
)

READ_TIME_MIN = 60
READ_TIME_MAX = 359


@dataclass
class TrackingPixel:
    pixel_id: str
    pixel_url: str
    pixel_html: str


@dataclass
class PixelOutcome:
    email_id: str
    receipt_id: str
    real_open: bool
    marked_read: bool


def generate_tracking_pixel(base_url):
    pixel_id = str(uuid.uuid4())
    pixel_url = f"{base_url.rstrip('/')}/api/track/{pixel_id}"
    pixel_html = f'<img src="{pixel_url}" width="1" height="1" style="display:none;" alt="" />'
    return TrackingPixel(pixel_id=pixel_id, pixel_url=pixel_url, pixel_html=pixel_html)


def embed_tracking_pixel(content, pixel_html):
    """Insert the pixel at the end of the email body."""
    hidden = f'<div style="display:none;">{pixel_html}</div>'
    if "</body>" in content:
        return content.replace("</body>", f"{hidden}</body>", 1)
    if "</html>" in content:
        return content.replace("</html>", f"{hidden}</html>", 1)
    return f"{content}{hidden}"


def simulated_read_time():
    # A single fetch cannot measure dwell time; this is a placeholder value.
    return random.randint(READ_TIME_MIN, READ_TIME_MAX)


def read_receipt_message(email, read_time=None):
    message = f'{email["recipient"]} just read your "{email["subject"]}" email.'
    if read_time:
        message += f" Reading time: {read_time // 60}m {read_time % 60}s"
    return message


def process_pixel_fetch(storage, pixel_id, ip_address, user_agent, now):
    """
    Record a pixel fetch and mark the email read if it looks like a real open.

    Runs after the pixel has been delivered. Nothing is raised: failures are
    logged and the fetch is dropped.

    Returns:
        PixelOutcome, or None if the pixel is unknown or processing failed.
    """
    try:
        email = storage.get_email_by_tracking_pixel(pixel_id)
        if not email:
            return None

        receipt = storage.create_read_receipt(
            email["id"], pixel_id, ip_address, user_agent, read_at=now
        )

        real_open = is_real_user_open(email, user_agent or "", now, storage.get_read_receipts)

        marked_read = False
        if real_open and email["read_status"] == "pending":
            read_time = simulated_read_time()
            marked_read = storage.transition_to_read(email["id"], now, read_time)
            if marked_read:
                storage.create_notification(
                    "read_receipt",
                    "Email Read",
                    read_receipt_message(email, read_time),
                    data={"emailId": email["id"], "readTime": read_time},
                )
                logger.info(f"Email {email['id']} read by {email['recipient']}")
        elif not real_open:
            logger.debug(f"Pixel fetch for email {email['id']} treated as automated: {user_agent!r}")

        return PixelOutcome(
            email_id=email["id"],
            receipt_id=receipt["id"],
            real_open=real_open,
            marked_read=marked_read,
        )
    except Exception:
        logger.exception(f"Error processing tracking pixel {pixel_id}")
        return None
