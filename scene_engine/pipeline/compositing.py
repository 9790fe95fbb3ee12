"""
Motif compositing. Places uploaded motif images into fixed slots on a
generated background.

Layout (default, fractions of the background):

  ┌──────────────────────────────────────────────┐
  │                                              │
  │   ┌──┐   ┌──┐   ┌──┐   ┌──┐   ┌──┐           │
  │   │1 │   │2 │   │3 │   │4 │   │5 │           │
  │   └──┘   └──┘   └──┘   └──┘   └──┘           │
  │                                              │
  └──────────────────────────────────────────────┘

Each motif keeps its aspect ratio, fills its slot along the binding axis and
is centred on the other. Motifs beyond the slot count are ignored.
"""

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, Optional

from PIL import Image

from .. import metrics
from ..errors import ValidationError
from .models import DEFAULT_5_SLOT_LAYOUT, NormalizedSlot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PixelSlot:
    x: int
    y: int
    width: int
    height: int


@dataclass
class CompositeResult:
    image_bytes: bytes
    mime_type: str
    used_motifs: int


def _round(value: float) -> int:
    """Round half up."""
    return int(value + 0.5)


def to_pixel_slots(width: int, height: int, layout: list[NormalizedSlot]) -> list[PixelSlot]:
    """Absolute slots clamped to the background bounds."""
    slots = []
    for s in layout:
        x = max(0, _round(s.x * width))
        y = max(0, _round(s.y * height))
        w = max(1, _round(s.width * width))
        h = max(1, _round(s.height * height))
        slots.append(PixelSlot(
            x=x,
            y=y,
            width=max(0, min(w, width - x)),
            height=max(0, min(h, height - y)),
        ))
    return slots


def fit_motif_in_slot(motif_w: int, motif_h: int, slot_w: int, slot_h: int) -> tuple[int, int]:
    """
    Aspect-preserving fit of a motif into a slot.

    The result never exceeds the slot and matches it exactly on one axis.
    """
    if motif_w <= 0 or motif_h <= 0 or slot_w <= 0 or slot_h <= 0:
        raise ValueError(f"Cannot fit {motif_w}x{motif_h} into {slot_w}x{slot_h}")

    motif_aspect = motif_w / motif_h
    slot_aspect = slot_w / slot_h

    if motif_aspect >= slot_aspect:
        eff_w = slot_w
        eff_h = _round(slot_w / motif_aspect)
        if eff_h > slot_h:
            eff_h = slot_h
            eff_w = _round(slot_h * motif_aspect)
    else:
        eff_h = slot_h
        eff_w = _round(slot_h * motif_aspect)
        if eff_w > slot_w:
            eff_w = slot_w
            eff_h = _round(slot_w / motif_aspect)

    return max(1, min(eff_w, slot_w)), max(1, min(eff_h, slot_h))


def compose_motifs_onto_background(
    background: bytes,
    motif_paths: list[str],
    read_bytes: Callable[[str], bytes],
    layout: Optional[list[NormalizedSlot]] = None,
    edge_blend: bool = False,
) -> CompositeResult:
    """
    Paste motifs into layout slots on the background, in order.

    Unreadable motifs are skipped with a warning. With no motifs the
    background bytes come back untouched.
    """
    try:
        canvas = Image.open(BytesIO(background))
        if not motif_paths:
            mime_type = canvas.get_format_mimetype() or "image/png"
            return CompositeResult(image_bytes=background, mime_type=mime_type, used_motifs=0)
        canvas.load()
    except (OSError, ValueError) as e:
        raise ValidationError(f"Background image could not be read: {e}") from e

    canvas = canvas.convert("RGBA")
    slots = to_pixel_slots(canvas.width, canvas.height, layout or DEFAULT_5_SLOT_LAYOUT)
    if edge_blend:
        logger.info("Edge blending requested; motifs are pasted without blending")

    placed = 0
    for i, path in enumerate(motif_paths[:len(slots)]):
        slot = slots[i]
        try:
            motif = Image.open(BytesIO(read_bytes(path))).convert("RGBA")
            eff_w, eff_h = fit_motif_in_slot(motif.width, motif.height, slot.width, slot.height)
            resized = motif.resize((eff_w, eff_h), Image.Resampling.LANCZOS)

            left = slot.x + (slot.width - eff_w) // 2
            top = slot.y + (slot.height - eff_h) // 2
            canvas.paste(resized, (left, top), resized)
            placed += 1
        except Exception as e:
            logger.warning(f"Skipping motif {i + 1} ({path}): {e}")

    if len(motif_paths) > len(slots):
        logger.info(f"Ignored {len(motif_paths) - len(slots)} motifs beyond {len(slots)} slots")

    output = BytesIO()
    canvas.save(output, format="PNG")
    metrics.inc_counter("compositing.placed", placed)
    logger.info(f"Composited {placed}/{len(motif_paths)} motifs onto {canvas.width}x{canvas.height} background")
    return CompositeResult(image_bytes=output.getvalue(), mime_type="image/png", used_motifs=placed)
