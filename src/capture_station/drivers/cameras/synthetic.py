"""Synthetic image generation for the simulated backend.

Draws a recognizable test card (gradient background, crosshair, frame
counter, timestamp) with OpenCV so stills and live-view frames look
different from one another and can be told apart in the kiosk UI.
"""

from __future__ import annotations

from datetime import datetime

import cv2
import numpy as np


def render_test_card(
    width: int,
    height: int,
    label: str,
    sequence: int = 0,
    noise_level: int = 0,
) -> np.ndarray:
    """Render a BGR test card.

    Args:
        width: Image width in pixels.
        height: Image height in pixels.
        label: Headline text, e.g. ``"SIMULATED STILL"``.
        sequence: Frame number; shifts the gradient so frames differ.
        noise_level: Maximum random noise added per channel (0 disables).

    Returns:
        ``uint8`` array of shape ``(height, width, 3)``.
    """
    xs = np.linspace(0, 255, width, dtype=np.float32)
    ys = np.linspace(0, 255, height, dtype=np.float32)
    shift = (sequence * 7) % 256
    img = np.zeros((height, width, 3), dtype=np.uint8)
    img[..., 0] = ((xs[None, :] + shift) % 256).astype(np.uint8)
    img[..., 1] = ys[:, None].astype(np.uint8)
    img[..., 2] = 96

    cx, cy = width // 2, height // 2
    cv2.line(img, (cx, 0), (cx, height), (255, 255, 255), 1)
    cv2.line(img, (0, cy), (width, cy), (255, 255, 255), 1)
    cv2.circle(img, (cx, cy), max(4, min(width, height) // 6), (255, 255, 255), 2)

    scale = max(0.4, width / 1280)
    cv2.putText(
        img, label, (20, int(40 * scale) + 10),
        cv2.FONT_HERSHEY_SIMPLEX, scale, (255, 255, 255), 2,
    )
    cv2.putText(
        img, f"#{sequence}  {datetime.now():%H:%M:%S.%f}"[:-3],
        (20, height - 20), cv2.FONT_HERSHEY_SIMPLEX, scale * 0.8, (255, 255, 255), 1,
    )

    if noise_level > 0:
        noise = np.random.randint(0, noise_level + 1, img.shape, dtype=np.uint8)
        img = cv2.add(img, noise)
    return img


def encode_image(img: np.ndarray, image_format: str = "jpeg", quality: int = 90) -> bytes:
    """Encode ``img`` as JPEG (default) or PNG bytes.

    Raises:
        ValueError: If OpenCV fails to encode the image.
    """
    if image_format == "png":
        ok, buffer = cv2.imencode(".png", img)
    else:
        ok, buffer = cv2.imencode(".jpg", img, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise ValueError(f"Could not encode synthetic {image_format} image")
    return buffer.tobytes()


def make_thumbnail(img: np.ndarray, width: int = 200, height: int = 150) -> bytes:
    """Downscale ``img`` to a JPEG thumbnail."""
    small = cv2.resize(img, (width, height), interpolation=cv2.INTER_AREA)
    return encode_image(small, "jpeg", quality=85)
