import asyncio
import tempfile
import unittest

from scene_engine import metrics
from scene_engine.errors import NotFoundError, ProviderError, ValidationError
from scene_engine.pipeline.models import JobStatus, Material, MediaStatus, MotifDisplayMode, VideoStyle
from scene_engine.pipeline.orchestrator import VideoGenerationService
from scene_engine.pipeline.prompt_builder import MATERIAL_FIDELITY_HEADER, VIDEO_STYLE_PROMPTS
from scene_engine.pipeline.storage import LocalFileStorage
from scene_engine.pipeline.store import InMemoryStore

from tests.fakes import FakeClock, FakeFactory, FakeProvider, border_pattern_png, png_bytes

POTS = Material(id="m1", name="Paint Pots", category="paint_pots", dimensions="2 cm")


class VideoJobTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.storage = LocalFileStorage(tmp.name)
        self.storage.write_bytes("/renders/s1_image.png", png_bytes(320, 180))

        self.store = InMemoryStore()
        self.store.add_scene("s1", materials=[POTS], image_status="done", image_path="/renders/s1_image.png")
        self.clock = FakeClock()

    def make_service(self, provider: FakeProvider, sleep=None) -> VideoGenerationService:
        return VideoGenerationService(
            store=self.store,
            storage=self.storage,
            factory=FakeFactory(provider),
            poll_timeout=300,
            sleep=sleep or self.clock.sleep,
            clock=self.clock,
        )

    async def run_job(self, provider: FakeProvider, **kwargs):
        service = self.make_service(provider)
        ack = await service.accept_video_job("s1", **kwargs)
        await service.wait_idle()
        return service, ack, self.store.get_job(ack.job_id)


class AcceptVideoJobTest(VideoJobTestCase):
    async def test_accept_returns_before_generation(self):
        service = self.make_service(FakeProvider())

        ack = await service.accept_video_job("s1", "cinematic", "slow push in", 8)

        self.assertEqual(ack.id, "s1")
        self.assertEqual(ack.cost_estimate, 6.0)
        self.assertEqual(ack.job_status, JobStatus.PROCESSING)
        self.assertEqual(service.query_job_status("s1").status, JobStatus.PROCESSING)
        scene = self.store.get_scene("s1")
        self.assertEqual(scene["video_status"], "generating")
        self.assertEqual(scene["video_style"], "cinematic")
        self.assertEqual(scene["video_duration"], 8)
        self.assertEqual(service.active_jobs, 1)

        await service.wait_idle()
        self.assertEqual(service.active_jobs, 0)

    async def test_defaults(self):
        service = self.make_service(FakeProvider())
        ack = await service.accept_video_job("s1")
        await service.wait_idle()
        self.assertEqual(ack.cost_estimate, 6.0)
        self.assertEqual(self.store.get_scene("s1")["video_style"], VideoStyle.CINEMATIC.value)

    async def test_invalid_style(self):
        with self.assertRaises(ValidationError):
            await self.make_service(FakeProvider()).accept_video_job("s1", "dramatic")

    async def test_invalid_duration(self):
        with self.assertRaises(ValidationError):
            await self.make_service(FakeProvider()).accept_video_job("s1", duration_seconds=5)

    async def test_scene_without_image(self):
        self.store.add_scene("s2")
        with self.assertRaises(ValidationError):
            await self.make_service(FakeProvider()).accept_video_job("s2")
        self.assertIsNone(self.store.latest_job("s2", "video"))

    async def test_unknown_scene(self):
        with self.assertRaises(NotFoundError):
            await self.make_service(FakeProvider()).accept_video_job("missing")


class VideoJobLifecycleTest(VideoJobTestCase):
    async def test_successful_job(self):
        completed_before = metrics.get_counter("video_jobs.completed")
        provider = FakeProvider(polls_until_done=2)

        service, ack, job = await self.run_job(provider, style="energetic", user_prompt="spin", duration_seconds=6)

        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertEqual(job.operation_name, "operations/fake-1")
        self.assertEqual(job.cost_estimate, 4.5)
        self.assertIsNotNone(job.completed_at)
        self.assertIsNone(job.error_message)

        scene = self.store.get_scene("s1")
        self.assertEqual(scene["video_status"], "done")
        self.assertEqual(scene["video_path"], "/renders/s1_video.mp4")
        self.assertEqual(self.storage.read_bytes("/renders/s1_video.mp4"), b"MP4DATA")

        self.assertEqual(provider.poll_count, 2)
        self.assertEqual(self.clock.sleeps, [5.0, 6.0])
        self.assertEqual(metrics.get_counter("video_jobs.completed"), completed_before + 1)

    async def test_prompt_and_submission(self):
        provider = FakeProvider()

        await self.run_job(provider, style="energetic", user_prompt="spin slowly", duration_seconds=6)

        [(system_prompt, combined)] = provider.enrich_calls
        self.assertIn("video prompt optimizer", system_prompt)
        self.assertTrue(combined.startswith(VIDEO_STYLE_PROMPTS[VideoStyle.ENERGETIC]))
        self.assertIn("spin slowly", combined)
        self.assertIn(MATERIAL_FIDELITY_HEADER, combined)

        [request] = provider.video_requests
        self.assertEqual(request.prompt, f"OPTIMIZED: {combined}")
        self.assertEqual(request.duration_seconds, 6)
        self.assertEqual(request.style, "energetic")
        self.assertEqual(request.source_image.mime_type, "image/png")
        self.assertIsNone(request.source_image_url)

    async def test_poll_errors_are_tolerated(self):
        provider = FakeProvider(poll_errors=2)
        _, _, job = await self.run_job(provider)
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertEqual(provider.poll_count, 3)

    async def test_timeout_fails_job(self):
        provider = FakeProvider(never_done=True)

        _, _, job = await self.run_job(provider)

        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertIn("timed out", job.error_message)
        # 5+6+7+8+9 then 10s per poll; elapsed first exceeds 300s after poll 32
        self.assertEqual(provider.poll_count, 32)
        self.assertEqual(self.store.get_scene("s1")["video_status"], "failed")
        self.assertIsNone(self.store.get_scene("s1")["video_path"])

    async def test_submission_failure(self):
        quota = ProviderError("veo", "video-generation", {"message": "quota exceeded", "status": 429})

        _, _, job = await self.run_job(FakeProvider(submit_error=quota))

        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertIn("quota exceeded", job.error_message)
        self.assertIsNone(job.operation_name)
        self.assertEqual(self.store.get_scene("s1")["video_status"], "failed")

    async def test_backend_reported_error(self):
        provider = FakeProvider(operation_error="Input image rejected")

        _, _, job = await self.run_job(provider)

        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertIn("Input image rejected", job.error_message)
        self.assertEqual(provider.downloads, [])

    async def test_shutdown_cancels_running_job(self):
        entered = asyncio.Event()

        async def hang(seconds):
            entered.set()
            await asyncio.Event().wait()

        service = self.make_service(FakeProvider(), sleep=hang)
        ack = await service.accept_video_job("s1")
        await asyncio.wait_for(entered.wait(), timeout=5)

        await service.shutdown()

        job = self.store.get_job(ack.job_id)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.error_message, "Video generation cancelled")
        self.assertEqual(service.active_jobs, 0)

    async def test_video_status_reports_latest_job(self):
        service, ack, _ = await self.run_job(FakeProvider())

        status = service.video_status("s1")

        self.assertEqual(status.video_status, MediaStatus.DONE)
        self.assertEqual(status.video_path, "/renders/s1_video.mp4")
        self.assertEqual(status.job.id, ack.job_id)

    async def test_latest_job_wins(self):
        service, first, _ = await self.run_job(FakeProvider())
        second = await service.accept_video_job("s1", "minimal")
        await service.wait_idle()
        self.assertEqual(service.query_job_status("s1").id, second.job_id)
        self.assertNotEqual(first.job_id, second.job_id)

    async def test_get_job(self):
        service, ack, _ = await self.run_job(FakeProvider())
        self.assertEqual(service.get_job(ack.job_id).status, JobStatus.COMPLETED)
        with self.assertRaises(NotFoundError):
            service.get_job("missing")


class ServiceToolsTest(VideoJobTestCase):
    async def test_composite_writes_output(self):
        self.storage.write_bytes("/motifs/a.png", png_bytes(100, 100))
        service = self.make_service(FakeProvider())

        result = await service.composite("/renders/s1_image.png", ["/motifs/a.png"], output_path="/renders/out.png")

        self.assertEqual(result.used_motifs, 1)
        self.assertEqual(result.image_path, "/renders/out.png")
        self.assertTrue(self.storage.resolve("/renders/out.png").exists())

    async def test_composite_default_output_path(self):
        service = self.make_service(FakeProvider())
        result = await service.composite("/renders/s1_image.png", [])
        self.assertTrue(result.image_path.startswith("/renders/composite_"))
        self.assertEqual(result.used_motifs, 0)

    async def test_classify(self):
        self.storage.write_bytes("/motifs/t.png", border_pattern_png(9))
        service = self.make_service(FakeProvider())
        self.assertEqual(await service.classify_display_mode(["/motifs/t.png"]), MotifDisplayMode.TEMPLATE)

    async def test_verify_scene(self):
        service = self.make_service(FakeProvider(analysis_text="OVERALL SCORE: 90"))
        result = await service.verify_scene("s1")
        self.assertTrue(result.passed)
        self.assertEqual(self.store.get_scene("s1")["verification_score"], 90)

    async def test_pattern_memory_access(self):
        service = self.make_service(FakeProvider())
        service.record_verification("brushes", "Bristles lit from the side", 97)
        [pattern] = service.best_patterns("brushes")
        self.assertEqual(pattern.verification_score, 97)
        self.assertEqual(self.store.verification_scores(), [])


if __name__ == "__main__":
    unittest.main()
