"""
Verification pass. Scores a generated scene image against its materials.

The vision model is asked for a fixed report layout:

  OVERALL SCORE: 0-100
  ISSUE: <material> | <type> | <severity> | <description>
  CORRECTION SUGGESTIONS: ...

The parsed score is logged per material category and fed to pattern memory.
"""

import re
import logging
from typing import Optional

from ..errors import ProviderError
from ..providers.base import AIProvider, ConsistencyRequest, ImageInput
from .models import Material, VerificationIssue, VerificationResult
from .pattern_memory import PatternMemory
from .prompt_builder import build_scene_material_context
from .store import SceneStore

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 75
PASS_SCORE = 80
AUTO_REFINE_SCORE = 70
GENERAL_CATEGORY = "general"

_SCORE_RE = re.compile(r"OVERALL SCORE:\s*(\d+)", re.IGNORECASE)
_ISSUE_RE = re.compile(
    r"^\s*ISSUE:\s*(.+?)\s*\|\s*(label|orientation|material|proportion|color|other)\s*\|"
    r"\s*(critical|major|minor)\s*\|\s*(.+?)\s*$",
    re.IGNORECASE | re.MULTILINE,
)
_SUGGESTIONS_RE = re.compile(r"CORRECTION SUGGESTIONS:(.*?)(?=\n\s*\n|\Z)", re.IGNORECASE | re.DOTALL)
_BULLET_RE = re.compile(r"^[-*•]\s*")


def _material_checks(m: Material) -> str:
    if m.category == "paint_pots":
        return (
            f"- **{m.name} (Paint Pot)**:\n"
            '  - Check: Are alpha-numeric label codes (2 characters, e.g. "A4", "X3") visible on the lid?\n'
            "  - Check: Is the label clearly legible?\n"
            f"  - Check: Is the material plastic with the correct color ({m.color or 'as specified'})?\n"
            f"  - Expected dimensions: {m.dimensions or 'approx. 2cm x 2cm'}"
        )
    if m.category == "mnz_motif":
        return (
            f"- **{m.name} (Canvas)**:\n"
            "  - Check: Is the FRONT side visible, not the printed back?\n"
            f"  - Check: Does the canvas size match {m.dimensions or 'the specified dimensions'}?\n"
            f"  - Check: Is the frame type correct ({m.format_code or 'as specified'})?"
        )
    if m.category == "brushes":
        return (
            f"- **{m.name} (Brush)**:\n"
            "  - Check: Do the bristles match the reference texture and color?\n"
            "  - Check: Is the handle material correct (wood/plastic)?\n"
            f"  - Expected dimensions: {m.dimensions or 'as shown in reference'}"
        )
    return (
        f"- **{m.name}**:\n"
        "  - Check: Does the appearance match the reference images?\n"
        "  - Check: Are texture, color and shape accurate?\n"
        "  - Check: Is the size proportional to other objects?"
    )


def build_verification_prompt(materials: list[Material], scene_description: Optional[str]) -> str:
    checks = "\n\n".join(_material_checks(m) for m in materials) or "- No materials listed."
    return f"""You are a quality control inspector for an AI photo studio. Verify that the generated
product photograph accurately reproduces the reference materials.

**SCENE CONTEXT:**
{scene_description or 'No description provided.'}

**REFERENCE MATERIALS TO VERIFY:**
{checks}

**GENERAL CRITERIA:**
1. Physical proportions  2. Material fidelity  3. Color accuracy  4. Orientation  5. Composition

**YOUR ANALYSIS MUST FOLLOW THIS FORMAT:**

OVERALL SCORE: [number 0-100]

ISSUES FOUND:
ISSUE: [material_name] | [label/orientation/material/proportion/color/other] | [critical/major/minor] | [description]

CORRECTION SUGGESTIONS:
[Specific refinement instructions if score < {PASS_SCORE}]
"""


def parse_verification_response(text: str, materials: list[Material]) -> VerificationResult:
    match = _SCORE_RE.search(text)
    score = int(match.group(1)) if match else DEFAULT_SCORE

    issues = []
    for name, issue_type, severity, description in _ISSUE_RE.findall(text):
        lowered = name.lower()
        material = next(
            (m for m in materials if m.name.lower() in lowered or lowered in m.name.lower()),
            None,
        )
        issues.append(VerificationIssue(
            material_id=material.id if material else None,
            material_name=name,
            issue_type=issue_type.lower(),
            severity=severity.lower(),
            description=description,
        ))

    suggestions = []
    section = _SUGGESTIONS_RE.search(text)
    if section:
        for line in section.group(1).splitlines():
            line = _BULLET_RE.sub("", line.strip()).strip()
            if len(line) > 10:
                suggestions.append(line)

    critical = sum(1 for i in issues if i.severity == "critical")
    passed = score >= PASS_SCORE and critical == 0
    logger.info(f"Parsed verification: score={score}, issues={len(issues)}, critical={critical}")
    return VerificationResult(passed=passed, score=score, issues=issues, suggestions=suggestions)


def generate_refinement_prompt(result: VerificationResult) -> str:
    """Correction instructions from critical and major issues; empty when nothing needs fixing."""
    if result.passed or not result.issues:
        return ""

    sections = []
    for severity, title in (("critical", "CRITICAL ISSUES (MUST FIX)"), ("major", "MAJOR ISSUES (SHOULD FIX)")):
        matching = [i for i in result.issues if i.severity == severity]
        if matching:
            lines = [
                f"{n}. {i.material_name or 'Material'} - {i.issue_type.upper()}: {i.description}"
                for n, i in enumerate(matching, 1)
            ]
            sections.append(f"**{title}:**\n" + "\n".join(lines))

    if result.suggestions:
        lines = [f"{n}. {s}" for n, s in enumerate(result.suggestions, 1)]
        sections.append("**CORRECTION INSTRUCTIONS:**\n" + "\n".join(lines))

    return (
        "REFINEMENT REQUIRED - MATERIAL CONSISTENCY ISSUES DETECTED:\n\n"
        + "\n\n".join(sections)
        + "\n\n**IMPORTANT**: Apply ONLY the corrections listed above. Preserve composition, "
          "lighting, camera angle and background."
    )


def needs_refinement(result: VerificationResult) -> bool:
    """Failed images are re-rendered when badly off or carrying a critical issue."""
    if result.passed or not result.refinement_prompt:
        return False
    critical = any(i.severity == "critical" for i in result.issues)
    return result.score < AUTO_REFINE_SCORE or critical


def record_verification(
    store: SceneStore,
    category: str,
    prompt: str,
    score: int,
    scene_id: str = "",
    issues: Optional[list] = None,
    verification_type: str = "image",
) -> None:
    """Let pattern memory learn from a score; the log row needs a scene to belong to."""
    if prompt:
        PatternMemory(store).record(category, prompt, score)
    if scene_id:
        store.add_verification_log(scene_id, category, verification_type, score, issues or [])


async def verify_scene_image(
    store: SceneStore,
    provider: AIProvider,
    scene_id: str,
    image: ImageInput,
    materials: list[Material],
    scene_description: Optional[str] = None,
    enriched_prompt: Optional[str] = None,
) -> VerificationResult:
    logger.info(f"Verifying scene {scene_id} against {len(materials)} materials")
    request = ConsistencyRequest(
        image=image,
        material_context=build_scene_material_context(materials),
        scene_description=scene_description,
        instructions=build_verification_prompt(materials, scene_description),
    )

    try:
        text = await provider.analyze_image_consistency(request)
    except ProviderError as e:
        logger.warning(f"Verification unavailable for scene {scene_id}: {e.message}")
        return VerificationResult(
            passed=True,
            score=DEFAULT_SCORE,
            issues=[VerificationIssue(description="Verification service temporarily unavailable")],
        )

    result = parse_verification_response(text, materials)
    result.refinement_prompt = generate_refinement_prompt(result) or None

    issues = [i.model_dump() for i in result.issues]
    categories = list(dict.fromkeys(m.category for m in materials)) or [GENERAL_CATEGORY]
    for category in categories:
        record_verification(store, category, enriched_prompt or "", result.score, scene_id, issues)

    store.update_scene(scene_id, {"verification_score": result.score, "verification_passed": result.passed})
    logger.info(f"Verification complete for {scene_id}: score={result.score}, passed={result.passed}")
    return result
