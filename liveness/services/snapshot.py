"""
Audit snapshot encoding
"""
import base64
from typing import Optional

import cv2
import numpy as np

DEFAULT_JPEG_QUALITY = 80


def encode_snapshot(image: Optional[np.ndarray], quality: int = DEFAULT_JPEG_QUALITY) -> Optional[str]:
    """
    Encode a single still frame for the verification record.

    Args:
        image: Frame in BGR format (OpenCV default), or None
        quality: JPEG quality 0-100

    Returns:
        Optional[str]: Base64 JPEG data, or None when no image was given

    Raises:
        ValueError: The image could not be encoded
    """
    if image is None:
        return None
    if image.size == 0:
        raise ValueError("Cannot encode an empty image")

    ok, buffer = cv2.imencode('.jpg', image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return base64.b64encode(buffer.tobytes()).decode('ascii')
