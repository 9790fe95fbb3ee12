import unittest
from io import BytesIO

from PIL import Image

from scene_engine.errors import ValidationError
from scene_engine.pipeline.compositing import compose_motifs_onto_background, fit_motif_in_slot, to_pixel_slots
from scene_engine.pipeline.models import DEFAULT_5_SLOT_LAYOUT, NormalizedSlot

from tests.fakes import png_bytes

WHITE = (255, 255, 255, 255)
RED = (220, 20, 20, 255)


class PixelSlotTest(unittest.TestCase):
    def test_default_layout_stays_inside_background(self):
        for width in (1, 7, 100, 333, 1024, 1920, 4096):
            for height in (1, 9, 100, 577, 1080, 2160):
                for slot in to_pixel_slots(width, height, DEFAULT_5_SLOT_LAYOUT):
                    self.assertGreaterEqual(slot.x, 0)
                    self.assertGreaterEqual(slot.y, 0)
                    self.assertLessEqual(slot.x + slot.width, width, (width, height, slot))
                    self.assertLessEqual(slot.y + slot.height, height, (width, height, slot))

    def test_edge_slot_is_clamped(self):
        layout = [NormalizedSlot(x=0.9, y=0.9, width=0.5, height=0.5)]
        [slot] = to_pixel_slots(200, 100, layout)
        self.assertEqual((slot.x, slot.y, slot.width, slot.height), (180, 90, 20, 10))

    def test_default_layout_values(self):
        slots = to_pixel_slots(1000, 600, DEFAULT_5_SLOT_LAYOUT)
        self.assertEqual([s.x for s in slots], [80, 260, 440, 620, 800])
        self.assertTrue(all((s.y, s.width, s.height) == (108, 160, 324) for s in slots))


class AspectFitTest(unittest.TestCase):
    def test_fit_never_overflows_and_fills_one_axis(self):
        motifs = [(100, 100), (400, 100), (100, 400), (1920, 1080), (3, 1000), (1000, 3), (59, 61)]
        slots = [(160, 324), (324, 160), (50, 50), (1, 10), (999, 7)]
        for mw, mh in motifs:
            for sw, sh in slots:
                w, h = fit_motif_in_slot(mw, mh, sw, sh)
                self.assertLessEqual(w, sw, (mw, mh, sw, sh))
                self.assertLessEqual(h, sh, (mw, mh, sw, sh))
                self.assertTrue(w == sw or h == sh, (mw, mh, sw, sh, w, h))

    def test_wide_motif_fills_width(self):
        self.assertEqual(fit_motif_in_slot(400, 100, 160, 324), (160, 40))

    def test_tall_motif_fills_height(self):
        self.assertEqual(fit_motif_in_slot(100, 400, 324, 160), (40, 160))

    def test_empty_slot_is_rejected(self):
        with self.assertRaises(ValueError):
            fit_motif_in_slot(100, 100, 0, 50)


class ComposeTest(unittest.TestCase):
    def setUp(self):
        self.files = {
            "/motifs/a.png": png_bytes(100, 100, RED),
            "/motifs/b.png": png_bytes(200, 100, RED),
            "/motifs/c.png": png_bytes(100, 300, RED),
            "/motifs/broken.png": b"not an image",
        }
        self.background = png_bytes(1000, 600, WHITE)

    def read(self, path):
        return self.files[path]

    def assertColor(self, actual, expected):
        for a, e in zip(actual, expected):
            self.assertAlmostEqual(a, e, delta=2)

    def test_three_motifs_into_five_slots(self):
        result = compose_motifs_onto_background(
            self.background, ["/motifs/a.png", "/motifs/b.png", "/motifs/c.png"], self.read
        )
        self.assertEqual(result.used_motifs, 3)
        self.assertEqual(result.mime_type, "image/png")
        self.assertEqual(Image.open(BytesIO(result.image_bytes)).size, (1000, 600))

    def test_no_motifs_returns_background_untouched(self):
        result = compose_motifs_onto_background(self.background, [], self.read)
        self.assertEqual(result.used_motifs, 0)
        self.assertIs(result.image_bytes, self.background)
        self.assertEqual(result.mime_type, "image/png")

    def test_no_motifs_keeps_background_format(self):
        buf = BytesIO()
        Image.new("RGB", (60, 40), (10, 20, 30)).save(buf, format="JPEG")

        result = compose_motifs_onto_background(buf.getvalue(), [], self.read)

        self.assertEqual(result.mime_type, "image/jpeg")
        self.assertEqual(result.image_bytes, buf.getvalue())

    def test_motif_is_centred_in_its_slot(self):
        result = compose_motifs_onto_background(self.background, ["/motifs/a.png"], self.read)
        img = Image.open(BytesIO(result.image_bytes)).convert("RGBA")
        # slot 1 is x 80..240, y 108..432; a square motif becomes 160x160 at y 190..350
        self.assertColor(img.getpixel((160, 270)), RED)
        self.assertColor(img.getpixel((160, 150)), WHITE)
        self.assertColor(img.getpixel((160, 400)), WHITE)
        self.assertColor(img.getpixel((300, 270)), WHITE)

    def test_unreadable_motifs_are_skipped(self):
        result = compose_motifs_onto_background(
            self.background,
            ["/motifs/a.png", "/motifs/broken.png", "/motifs/missing.png", "/motifs/c.png"],
            self.read,
        )
        self.assertEqual(result.used_motifs, 2)

    def test_excess_motifs_are_ignored(self):
        paths = ["/motifs/a.png"] * 7
        result = compose_motifs_onto_background(self.background, paths, self.read)
        self.assertEqual(result.used_motifs, 5)

    def test_custom_layout(self):
        layout = [NormalizedSlot(x=0.0, y=0.0, width=1.0, height=1.0)]
        result = compose_motifs_onto_background(
            self.background, ["/motifs/a.png", "/motifs/b.png"], self.read, layout=layout, edge_blend=True
        )
        self.assertEqual(result.used_motifs, 1)

    def test_unreadable_background_is_a_validation_error(self):
        with self.assertRaises(ValidationError):
            compose_motifs_onto_background(b"garbage", ["/motifs/a.png"], self.read)


if __name__ == "__main__":
    unittest.main()
