import unittest

from scene_engine.errors import ProviderError
from scene_engine.pipeline.models import Material
from scene_engine.pipeline.store import InMemoryStore
from scene_engine.pipeline.verification import (
    generate_refinement_prompt,
    needs_refinement,
    parse_verification_response,
    record_verification,
    verify_scene_image,
)
from scene_engine.providers.base import ImageInput

from tests.fakes import FakeProvider, png_bytes

POTS = Material(id="m1", name="Paint Pots", category="paint_pots")
CANVAS = Material(id="m2", name="Canvas", category="mnz_motif")

FAILING_REPORT = """OVERALL SCORE: 68

ISSUES FOUND:
ISSUE: Paint Pots | label | critical | Lid codes are unreadable
ISSUE: Brush | color | minor | Bristles slightly darker

CORRECTION SUGGESTIONS:
- Make the printed lid codes sharp and legible
- ok
"""


class ParseReportTest(unittest.TestCase):
    def test_failing_report(self):
        result = parse_verification_response(FAILING_REPORT, [POTS])

        self.assertEqual(result.score, 68)
        self.assertFalse(result.passed)
        self.assertEqual(len(result.issues), 2)
        self.assertEqual(result.issues[0].material_id, "m1")
        self.assertEqual(result.issues[0].issue_type, "label")
        self.assertEqual(result.issues[0].severity, "critical")
        self.assertIsNone(result.issues[1].material_id)
        self.assertEqual(result.suggestions, ["Make the printed lid codes sharp and legible"])

    def test_high_score_without_issues_passes(self):
        self.assertTrue(parse_verification_response("OVERALL SCORE: 85", []).passed)

    def test_critical_issue_fails_high_score(self):
        text = "OVERALL SCORE: 91\nISSUE: Canvas | orientation | critical | Back side is shown"
        result = parse_verification_response(text, [CANVAS])
        self.assertFalse(result.passed)
        self.assertEqual(result.issues[0].material_id, "m2")

    def test_missing_score_defaults(self):
        result = parse_verification_response("The image looks fine.", [])
        self.assertEqual(result.score, 75)
        self.assertFalse(result.passed)


class RefinementPromptTest(unittest.TestCase):
    def test_lists_critical_and_major_only(self):
        prompt = generate_refinement_prompt(parse_verification_response(FAILING_REPORT, [POTS]))
        self.assertIn("CRITICAL ISSUES (MUST FIX)", prompt)
        self.assertIn("1. Paint Pots - LABEL: Lid codes are unreadable", prompt)
        self.assertNotIn("MAJOR ISSUES", prompt)
        self.assertNotIn("Bristles slightly darker", prompt)
        self.assertIn("1. Make the printed lid codes sharp and legible", prompt)

    def test_passed_result_needs_no_refinement(self):
        self.assertEqual(generate_refinement_prompt(parse_verification_response("OVERALL SCORE: 95", [])), "")


class RecordVerificationTest(unittest.TestCase):
    def test_logs_and_learns(self):
        store = InMemoryStore()
        record_verification(store, "brushes", "Soft side light on bristles", 94, scene_id="s1")
        self.assertEqual(store.verification_scores(), [("brushes", 94)])
        self.assertEqual(len(store.all_patterns()), 1)

    def test_empty_prompt_only_logs(self):
        store = InMemoryStore()
        record_verification(store, "brushes", "", 99, scene_id="s1")
        self.assertEqual(store.verification_scores(), [("brushes", 99)])
        self.assertEqual(store.all_patterns(), [])

    def test_without_scene_only_learns(self):
        store = InMemoryStore()
        record_verification(store, "brushes", "Soft side light on bristles", 94)
        self.assertEqual(store.verification_scores(), [])
        self.assertEqual(len(store.all_patterns()), 1)

    def test_pattern_is_learned_even_if_logging_fails(self):
        store = InMemoryStore()

        def broken_log(*args):
            raise RuntimeError("log table unavailable")

        store.add_verification_log = broken_log
        with self.assertRaises(RuntimeError):
            record_verification(store, "brushes", "Soft side light on bristles", 94, scene_id="s1")
        self.assertEqual(len(store.all_patterns()), 1)


class NeedsRefinementTest(unittest.TestCase):
    def test_low_score_with_corrections(self):
        result = parse_verification_response(FAILING_REPORT, [POTS])
        result.refinement_prompt = generate_refinement_prompt(result)
        self.assertTrue(needs_refinement(result))

    def test_mid_score_without_critical_issue(self):
        result = parse_verification_response(
            "OVERALL SCORE: 75\nISSUE: Paint Pots | color | major | Lids a bit grey", [POTS]
        )
        result.refinement_prompt = generate_refinement_prompt(result)
        self.assertFalse(result.passed)
        self.assertFalse(needs_refinement(result))

    def test_nothing_to_correct(self):
        result = parse_verification_response("OVERALL SCORE: 50", [POTS])
        result.refinement_prompt = generate_refinement_prompt(result) or None
        self.assertFalse(needs_refinement(result))


class VerifySceneImageTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryStore()
        self.image = ImageInput(data=png_bytes(), mime_type="image/png")

    async def test_scores_are_recorded_per_category(self):
        self.store.add_scene("s1", materials=[POTS, CANVAS])
        provider = FakeProvider(analysis_text="OVERALL SCORE: 92")

        result = await verify_scene_image(self.store, provider, "s1", self.image, [POTS, CANVAS], "Desk", "enriched")

        self.assertTrue(result.passed)
        self.assertIsNone(result.refinement_prompt)
        self.assertEqual(sorted(self.store.verification_scores()), [("mnz_motif", 92), ("paint_pots", 92)])
        self.assertEqual(len(self.store.all_patterns()), 2)
        scene = self.store.get_scene("s1")
        self.assertEqual(scene["verification_score"], 92)
        self.assertTrue(scene["verification_passed"])
        self.assertIn("Paint Pots", provider.analysis_requests[0].material_context)

    async def test_without_materials_uses_general_category(self):
        self.store.add_scene("s1")
        await verify_scene_image(self.store, FakeProvider(analysis_text=FAILING_REPORT), "s1", self.image, [])
        self.assertEqual(self.store.verification_scores(), [("general", 68)])
        self.assertEqual(self.store.all_patterns(), [])

    async def test_failing_result_carries_refinement_prompt(self):
        self.store.add_scene("s1", materials=[POTS])
        provider = FakeProvider(analysis_text=FAILING_REPORT)
        result = await verify_scene_image(self.store, provider, "s1", self.image, [POTS])
        self.assertFalse(result.passed)
        self.assertIn("REFINEMENT REQUIRED", result.refinement_prompt)

    async def test_backend_outage_returns_neutral_result(self):
        self.store.add_scene("s1", materials=[POTS])
        outage = ProviderError("gemini", "analyze_image", {"message": "overloaded", "status": 503})

        result = await verify_scene_image(
            self.store, FakeProvider(analysis_error=outage), "s1", self.image, [POTS]
        )

        self.assertTrue(result.passed)
        self.assertEqual(result.score, 75)
        self.assertEqual(len(result.issues), 1)
        self.assertEqual(self.store.verification_scores(), [])
        self.assertNotIn("verification_score", self.store.get_scene("s1"))


if __name__ == "__main__":
    unittest.main()
