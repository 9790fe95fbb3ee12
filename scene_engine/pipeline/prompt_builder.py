"""
Prompt assembly for scene images and product videos.

Material context is rendered from the scene's materials and threaded into
both the image prompt (reference handling, scale, visibility rules) and the
video prompt (fidelity requirement).
"""

import re
from typing import Optional

from .models import Material, MotifDisplayMode, VideoStyle

# ── Video ────────────────────────────────────────────────────────────────────

VIDEO_STYLE_PROMPTS = {
    VideoStyle.CINEMATIC: (
        "Cinematic camera movement with dramatic lighting transitions. "
        "Slow, smooth dolly shots revealing the scene. Film-like color grading."
    ),
    VideoStyle.ENERGETIC: (
        "Dynamic camera movement with quick pans and tilts. "
        "Vibrant energy, slight zoom effects. Upbeat, lively atmosphere."
    ),
    VideoStyle.MINIMAL: (
        "Very subtle, almost imperceptible camera drift. "
        "Clean, minimal aesthetic. Gentle focus shifts between objects."
    ),
    VideoStyle.COZY: (
        "Warm, gentle camera movement like a soft breath. "
        "Cozy atmosphere with warm color tones. Intimate, personal perspective."
    ),
}

VIDEO_OPTIMIZER_SYSTEM_PROMPT = (
    "You are a video prompt optimizer for Veo 3.1. Convert the user description into an "
    "optimized video generation prompt. Focus on camera movement, lighting changes, and "
    "scene dynamics. CRITICAL: Preserve all material properties, labels, and proportions "
    "from the source image."
)

MATERIAL_FIDELITY_HEADER = "MATERIAL FIDELITY REQUIREMENT:"

# ── Scene image ──────────────────────────────────────────────────────────────

SCENE_SYSTEM_PROMPT = """You are a professional product photographer AI for a paint-by-numbers brand.
You understand the physical properties of each material (size, weight, surface texture, material type)
and use this knowledge to write photorealistic scene descriptions.

RULES:
- Only the listed materials and the uploaded motifs may appear. No generic props.
- Material fidelity is non-negotiable: show the exact materials from the reference images.
- Respect the given dimensions. A 2 cm paint pot is tiny next to a 60 cm canvas.
- Paint pot lids carry short printed codes (e.g. "A4", "X3"); keep them legible.
- Always show the front of a canvas.
- No text or typography unless the user asks for it.
- Describe lighting that brings out each material's surface.
"""

FRAME_LABELS = {
    "OR": "Template (unframed, rolled)",
    "R": "Framed (stretched on a wooden frame)",
    "DIYR": "DIY stretcher frame kit",
}

MOTIF_MODE_INSTRUCTIONS = {
    MotifDisplayMode.TEMPLATE: (
        "MOTIF PRESENTATION: The uploaded motif is a flat printed template with white margins. "
        "Show it as an unframed sheet lying flat or pinned, margins visible. Do not stretch it on a frame."
    ),
    MotifDisplayMode.STRETCHED: (
        "MOTIF PRESENTATION: The uploaded motif is a stretched canvas. Show it mounted on a wooden "
        "stretcher frame with the artwork wrapping the edges."
    ),
}

# Categories whose objects are excluded unless a selected material belongs to them.
RESTRICTED_CATEGORIES = [
    ("paint_pots", "Do not show paint pots or paint containers in this scene."),
    ("brushes", "Do not show brushes in this scene."),
    ("canvas", "Do not show unpainted or blank canvas in this scene."),
    ("tool", "Do not show paint palettes, mixing palettes or similar painting tools in this scene."),
    ("accessory", "Do not show colored pencils, markers, pens or similar accessories in this scene."),
    ("frame", "Do not show frames or framing elements unless they are part of a selected material."),
    ("packaging", "Do not show packaging or packaging materials in this scene."),
]


def build_material_context(material: Material) -> str:
    lines = [f'Material: "{material.name}" ({material.category})']
    for label, value in (
        ("Type", material.material_type),
        ("Dimensions", material.dimensions),
        ("Surface", material.surface),
        ("Weight", material.weight),
        ("Color", material.color),
        ("Description", material.description),
    ):
        if value:
            lines.append(f"- {label}: {value}")

    if material.category == "mnz_motif":
        if material.format_code:
            lines.append(f"- Format: {material.format_code}")
        if material.size:
            lines.append(f"- Size: {material.size} cm")
        if material.frame_option:
            lines.append(f"- Frame option: {FRAME_LABELS.get(material.frame_option, material.frame_option)}")
        lines.append(
            "- IMPORTANT: The reference images show EXAMPLE motifs for format and look only. "
            "Generate a NEW motif for the scene; keep only the physical properties "
            "(canvas texture, frame, proportions)."
        )
    elif material.category == "paint_pots":
        lines.append(
            "- IMPORTANT: The pots have clearly visible printed number labels on their white lids "
            '(e.g. "A4", "X3", "Q5"). Make sure these labels are visible.'
        )
    elif material.category == "brushes":
        lines.append("- The reference images show brush shape and size as orientation.")

    return "\n".join(lines) + "\n"


def build_scene_material_context(materials: list[Material]) -> str:
    return "\n".join(f"{i}. {build_material_context(m)}" for i, m in enumerate(materials, 1))


def build_material_restriction_prompt(categories: list[str]) -> str:
    """Visibility rules so only selected materials (and uploaded motifs) appear."""
    present = set(categories)
    lines = [text for category, text in RESTRICTED_CATEGORIES if category not in present]
    lines.append(
        "Only objects from the provided reference images (selected materials) or the uploaded "
        "motif images may appear. No generic substitutes, no extra props."
    )
    return "## Material visibility (strict):\n" + "\n".join(lines)


_DIMENSION_RE = re.compile(r"(\d+\.?\d*)\s*(x\s*(\d+\.?\d*))?\s*(mm|cm)")


def parse_dimension_mm(text: Optional[str]) -> Optional[float]:
    """Largest dimension in millimetres from strings like '60x40 cm' or '20 mm'."""
    if not text:
        return None
    match = _DIMENSION_RE.search(text.lower().replace(",", "."))
    if not match:
        return None
    first = float(match.group(1))
    second = float(match.group(3)) if match.group(3) else first
    largest = max(first, second)
    return largest * 10 if match.group(4) == "cm" else largest


def build_scale_context(materials: list[Material]) -> str:
    sized = [
        (m.name, mm) for m in materials
        if (mm := parse_dimension_mm(m.dimensions or m.size)) is not None
    ]
    if len(sized) < 2:
        return ""
    sized.sort(key=lambda item: item[1])
    (small_name, small_mm), (large_name, large_mm) = sized[0], sized[-1]
    if small_mm <= 0 or small_mm == large_mm:
        return ""

    ratio = large_mm / small_mm
    return (
        "PHYSICAL SCALE REFERENCE (CRITICAL):\n"
        f"- The smallest object is {small_name} (~{round(small_mm / 10)} cm).\n"
        f"- The largest object is {large_name} (~{round(large_mm / 10)} cm).\n"
        f"- PROPORTION: The {large_name} is approximately {round(ratio)}x larger than the {small_name}.\n"
    )


def build_scene_intelligence_prompt(
    description: str,
    materials: list[Material],
    motif_mode: Optional[MotifDisplayMode] = None,
) -> str:
    """User prompt sent alongside SCENE_SYSTEM_PROMPT to write the scene description."""
    sections = ["Scene description from the user:\n\n" + description.strip()]
    if materials:
        sections.append("MATERIALS:\n" + build_scene_material_context(materials))
        scale = build_scale_context(materials)
        if scale:
            sections.append(scale)
    sections.append(build_material_restriction_prompt([m.category for m in materials]))
    if motif_mode is not None:
        sections.append(
            "The user uploaded canvas motif artwork. Place it in the scene as "
            + ("an unframed printed template." if motif_mode == MotifDisplayMode.TEMPLATE
               else "a stretched canvas on a wooden frame.")
        )
    sections.append(
        "Write a detailed, photorealistic description of this product scene for an image model: "
        "composition, camera angle, lighting and the placement of every material."
    )
    return "\n\n".join(sections)


def build_image_generation_prompt(
    scene_prompt: str,
    motif_mode: Optional[MotifDisplayMode] = None,
    aspect_ratio: Optional[str] = None,
) -> str:
    sections = [scene_prompt.strip()]
    if motif_mode is not None:
        sections.append(
            "CANVAS MOTIF IMAGES: The last reference image(s) are the uploaded artwork. Show them "
            "exactly, preserving aspect ratio and content; each motif appears once."
        )
        sections.append(MOTIF_MODE_INSTRUCTIONS[motif_mode])

    if aspect_ratio and aspect_ratio != "1:1":
        sections.append(f"IMPORTANT: The target aspect ratio is {aspect_ratio}. Compose for this format.")

    sections.append(
        "CRITICAL: Do not add any text, writing, labels, numbers or letters unless the description asks for it."
    )
    return "\n\n".join(sections)


def build_refinement_request(base_prompt: str, corrections: str) -> str:
    """Image-to-image prompt that fixes a verified image instead of starting over."""
    return (
        "REFINEMENT REQUEST: Edit the provided source photo to fix the errors listed below.\n"
        "1. Keep the composition, lighting and camera setup of the source image.\n"
        "2. Apply every correction listed below.\n"
        "3. Materials must match their reference images and specifications exactly.\n"
        "4. Return the corrected version of the source image.\n\n"
        f"--- Base prompt ---\n{base_prompt.strip()}\n\n"
        f"--- Corrections ---\n{corrections.strip()}"
    )


def build_video_prompt(style: Optional[VideoStyle], user_prompt: Optional[str], materials: list[Material]) -> str:
    """Style fragment, user text and material fidelity block, in that order."""
    parts = []
    if style is not None:
        parts.append(VIDEO_STYLE_PROMPTS[style])
    if user_prompt and user_prompt.strip():
        parts.append(user_prompt.strip())
    if materials:
        parts.append(
            f"\n\n{MATERIAL_FIDELITY_HEADER}\n"
            "Maintain exact appearance of all materials throughout the video:\n"
            + build_scene_material_context(materials)
            + "\nDo NOT alter materials, labels, colors, or proportions during camera movement or lighting changes."
        )
    return " ".join(parts).strip()
