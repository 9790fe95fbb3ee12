import unittest

from scene_engine.pipeline.models import Material, MotifDisplayMode, VideoStyle
from scene_engine.pipeline.prompt_builder import (
    MATERIAL_FIDELITY_HEADER,
    MOTIF_MODE_INSTRUCTIONS,
    SCENE_SYSTEM_PROMPT,
    VIDEO_STYLE_PROMPTS,
    build_material_context,
    build_material_restriction_prompt,
    build_image_generation_prompt,
    build_refinement_request,
    build_scale_context,
    build_scene_intelligence_prompt,
    build_video_prompt,
    parse_dimension_mm,
)

POTS = Material(id="m1", name="Paint Pots", category="paint_pots", dimensions="2 cm", color="white")
CANVAS = Material(id="m2", name="Canvas 60x40", category="mnz_motif", dimensions="60x40 cm", frame_option="R")


class VideoPromptTest(unittest.TestCase):
    def test_style_then_user_text(self):
        prompt = build_video_prompt(VideoStyle.CINEMATIC, "  slow push in  ", [])
        self.assertEqual(prompt, VIDEO_STYLE_PROMPTS[VideoStyle.CINEMATIC] + " slow push in")

    def test_every_style_has_text(self):
        for style in VideoStyle:
            self.assertTrue(build_video_prompt(style, None, []).startswith(VIDEO_STYLE_PROMPTS[style]))

    def test_empty_inputs(self):
        self.assertEqual(build_video_prompt(None, "   ", []), "")

    def test_materials_add_fidelity_block(self):
        prompt = build_video_prompt(VideoStyle.COZY, "pan left", [POTS, CANVAS])
        self.assertIn(MATERIAL_FIDELITY_HEADER, prompt)
        self.assertIn('1. Material: "Paint Pots" (paint_pots)', prompt)
        self.assertIn('2. Material: "Canvas 60x40" (mnz_motif)', prompt)
        self.assertLess(prompt.index("pan left"), prompt.index(MATERIAL_FIDELITY_HEADER))
        self.assertIn("Do NOT alter materials, labels, colors, or proportions during camera movement", prompt)


class MaterialContextTest(unittest.TestCase):
    def test_attribute_lines(self):
        text = build_material_context(POTS)
        self.assertTrue(text.startswith('Material: "Paint Pots" (paint_pots)\n'))
        self.assertIn("- Dimensions: 2 cm", text)
        self.assertIn("- Color: white", text)
        self.assertIn('"A4"', text)

    def test_motif_frame_label(self):
        self.assertIn("- Frame option: Framed (stretched on a wooden frame)", build_material_context(CANVAS))

    def test_restrictions_skip_present_categories(self):
        text = build_material_restriction_prompt(["brushes"])
        self.assertNotIn("Do not show brushes", text)
        self.assertIn("Do not show paint pots", text)


class ScaleTest(unittest.TestCase):
    def test_parse_dimension(self):
        self.assertEqual(parse_dimension_mm("60x40 cm"), 600.0)
        self.assertEqual(parse_dimension_mm("20 mm"), 20.0)
        self.assertEqual(parse_dimension_mm("2,5 cm"), 25.0)
        self.assertIsNone(parse_dimension_mm("large"))
        self.assertIsNone(parse_dimension_mm(None))

    def test_scale_context_names_extremes(self):
        text = build_scale_context([CANVAS, POTS])
        self.assertIn("smallest object is Paint Pots (~2 cm)", text)
        self.assertIn("largest object is Canvas 60x40 (~60 cm)", text)
        self.assertIn("approximately 30x larger", text)

    def test_scale_context_needs_two_sizes(self):
        self.assertEqual(build_scale_context([POTS]), "")


class SceneImagePromptTest(unittest.TestCase):
    def test_intelligence_prompt_carries_materials(self):
        prompt = build_scene_intelligence_prompt("Kitchen table", [POTS, CANVAS], MotifDisplayMode.TEMPLATE)
        self.assertTrue(prompt.startswith("Scene description from the user:\n\nKitchen table"))
        self.assertIn('1. Material: "Paint Pots" (paint_pots)', prompt)
        self.assertIn("PHYSICAL SCALE REFERENCE", prompt)
        self.assertIn("unframed printed template", prompt)
        self.assertNotIn(SCENE_SYSTEM_PROMPT.strip(), prompt)

    def test_motif_mode_instructions(self):
        prompt = build_image_generation_prompt("A sunlit kitchen table.", MotifDisplayMode.TEMPLATE, "16:9")
        self.assertTrue(prompt.startswith("A sunlit kitchen table."))
        self.assertIn(MOTIF_MODE_INSTRUCTIONS[MotifDisplayMode.TEMPLATE], prompt)
        self.assertIn("target aspect ratio is 16:9", prompt)

    def test_square_and_no_motifs(self):
        prompt = build_image_generation_prompt("Desk", None, "1:1")
        self.assertNotIn("MOTIF PRESENTATION", prompt)
        self.assertNotIn("target aspect ratio", prompt)
        self.assertIn("Material visibility", build_scene_intelligence_prompt("Desk", []))

    def test_refinement_request(self):
        prompt = build_refinement_request("Base scene", "Fix the lids")
        self.assertTrue(prompt.startswith("REFINEMENT REQUEST"))
        self.assertLess(prompt.index("Base scene"), prompt.index("Fix the lids"))


if __name__ == "__main__":
    unittest.main()
