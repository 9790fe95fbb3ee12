"""
Motif display-mode heuristic.

A motif whose outer border is mostly white is a flat template (numbered
outline with margins); anything else is treated as a stretched canvas.
Read or decode failures fall back to `stretched`.
"""

import logging
from io import BytesIO
from pathlib import Path
from typing import Callable, Union

from PIL import Image

from .models import MotifDisplayMode

logger = logging.getLogger(__name__)

BORDER_FRACTION = 0.10
WHITE_THRESHOLD = 230
WHITE_BORDER_RATIO_THRESHOLD = 0.55
MAX_SAMPLE_SIZE = 400

_SINGLE_CHANNEL_MODES = ("1", "L", "LA", "I", "I;16", "F")


def white_border_ratio(img: Image.Image) -> float:
    """Fraction of border-band pixels whose sampled channels are all >= WHITE_THRESHOLD."""
    single_channel = img.mode in _SINGLE_CHANNEL_MODES
    img = img.convert("L" if single_channel else "RGB")

    def is_white(px) -> bool:
        return (px if single_channel else min(px)) >= WHITE_THRESHOLD

    w, h = img.size
    top = max(1, int(h * BORDER_FRACTION))
    bottom = max(top + 1, h - int(h * BORDER_FRACTION))
    left = max(1, int(w * BORDER_FRACTION))
    right = max(left + 1, w - int(w * BORDER_FRACTION))

    pixels = list(img.getdata())
    white = total = 0
    for y in range(h):
        row = pixels[y * w:(y + 1) * w]
        if y < top or y >= bottom:
            band = row
        else:
            band = row[:left] + row[right:]
        total += len(band)
        white += sum(1 for px in band if is_white(px))

    return white / total if total else 0.0


def detect_motif_display_mode(source: Union[bytes, str, Path]) -> MotifDisplayMode:
    try:
        img = Image.open(BytesIO(source) if isinstance(source, bytes) else source)
        img.thumbnail((MAX_SAMPLE_SIZE, MAX_SAMPLE_SIZE))
        ratio = white_border_ratio(img)
    except Exception as e:
        logger.warning(f"Motif classification failed, defaulting to stretched: {e}")
        return MotifDisplayMode.STRETCHED

    mode = MotifDisplayMode.TEMPLATE if ratio >= WHITE_BORDER_RATIO_THRESHOLD else MotifDisplayMode.STRETCHED
    logger.info(f"Motif border white ratio {ratio:.2f} → {mode.value}")
    return mode


def detect_display_mode_from_paths(
    motif_paths: list[str],
    read_bytes: Callable[[str], bytes],
) -> MotifDisplayMode:
    """`template` as soon as any motif is a template, otherwise `stretched`."""
    for path in motif_paths:
        try:
            data = read_bytes(path)
        except Exception as e:
            logger.warning(f"Could not read motif {path}: {e}")
            continue
        if detect_motif_display_mode(data) == MotifDisplayMode.TEMPLATE:
            return MotifDisplayMode.TEMPLATE
    return MotifDisplayMode.STRETCHED
