"""
Persistence adapters for scenes, render jobs, learned patterns and
verification logs.

The engine only talks to the SceneStore protocol. Two adapters ship:

  SupabaseStore  - production, service-role client (bypasses RLS)
  InMemoryStore  - used when Supabase is not configured, and in tests

Writes are single-row and sequential per job; neither adapter locks across
rows.
"""

import os
import logging
import threading
from datetime import datetime, timezone
from typing import Optional, Protocol
from uuid import uuid4

from supabase import create_client, Client

from .models import GenerationJob, Material, SuccessfulPattern

logger = logging.getLogger(__name__)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SceneStore(Protocol):
    # settings
    def get_setting(self, key: str) -> Optional[str]: ...

    # scenes
    def get_scene(self, scene_id: str) -> Optional[dict]: ...
    def update_scene(self, scene_id: str, fields: dict) -> None: ...
    def get_scene_materials(self, scene_id: str) -> list[Material]: ...

    # render jobs
    def create_job(self, job: GenerationJob) -> GenerationJob: ...
    def get_job(self, job_id: str) -> Optional[GenerationJob]: ...
    def update_job(self, job_id: str, fields: dict) -> None: ...
    def latest_job(self, scene_id: str, job_type: str) -> Optional[GenerationJob]: ...

    # learned patterns
    def find_pattern(self, category: str, snippet: str) -> Optional[SuccessfulPattern]: ...
    def insert_pattern(self, pattern: SuccessfulPattern) -> None: ...
    def increment_pattern_usage(self, pattern_id: str) -> int: ...
    def patterns_for_category(self, category: str, limit: int) -> list[SuccessfulPattern]: ...
    def all_patterns(self) -> list[SuccessfulPattern]: ...
    def delete_patterns(self, min_usage_count: int, min_score: int) -> int: ...

    # verification logs
    def add_verification_log(
        self, scene_id: str, category: str, verification_type: str, score: int, issues: list
    ) -> str: ...
    def verification_scores(self) -> list[tuple[str, int]]: ...


# ═════════════════════════════════════════════════════════════════════════════
# In-memory adapter
# ═════════════════════════════════════════════════════════════════════════════

class InMemoryStore:
    """Dict-backed store. Thread-safe; nothing survives a restart."""

    def __init__(self):
        self._lock = threading.Lock()
        self.settings: dict[str, str] = {}
        self.scenes: dict[str, dict] = {}
        self.scene_materials: dict[str, list[Material]] = {}
        self.jobs: dict[str, GenerationJob] = {}
        self.patterns: dict[str, SuccessfulPattern] = {}
        self.verification_logs: list[dict] = []

    # ── seeding helpers ──────────────────────────────────────────────────

    def add_scene(self, scene_id: str, materials: Optional[list[Material]] = None, **fields) -> dict:
        row = {
            "id": scene_id,
            "image_status": "none",
            "video_status": "none",
            "image_path": None,
            "video_path": None,
            "motif_image_paths": [],
        }
        row.update(fields)
        with self._lock:
            self.scenes[scene_id] = row
            self.scene_materials[scene_id] = list(materials or [])
        return row

    # ── settings ─────────────────────────────────────────────────────────

    def get_setting(self, key: str) -> Optional[str]:
        with self._lock:
            return self.settings.get(key)

    # ── scenes ───────────────────────────────────────────────────────────

    def get_scene(self, scene_id: str) -> Optional[dict]:
        with self._lock:
            row = self.scenes.get(scene_id)
            return dict(row) if row else None

    def update_scene(self, scene_id: str, fields: dict) -> None:
        with self._lock:
            if scene_id in self.scenes:
                self.scenes[scene_id].update(fields, updated_at=now_iso())

    def get_scene_materials(self, scene_id: str) -> list[Material]:
        with self._lock:
            return list(self.scene_materials.get(scene_id, []))

    # ── render jobs ──────────────────────────────────────────────────────

    def create_job(self, job: GenerationJob) -> GenerationJob:
        with self._lock:
            self.jobs[job.id] = job.model_copy()
        return job

    def get_job(self, job_id: str) -> Optional[GenerationJob]:
        with self._lock:
            job = self.jobs.get(job_id)
            return job.model_copy() if job else None

    def update_job(self, job_id: str, fields: dict) -> None:
        with self._lock:
            job = self.jobs.get(job_id)
            if job:
                self.jobs[job_id] = job.model_copy(update=fields)

    def latest_job(self, scene_id: str, job_type: str) -> Optional[GenerationJob]:
        with self._lock:
            matches = [
                j for j in self.jobs.values()
                if j.scene_id == scene_id and j.job_type.value == job_type
            ]
        if not matches:
            return None
        # insertion order breaks ties between identical timestamps
        return max(enumerate(matches), key=lambda p: (p[1].started_at or "", p[0]))[1].model_copy()

    # ── learned patterns ─────────────────────────────────────────────────

    def find_pattern(self, category: str, snippet: str) -> Optional[SuccessfulPattern]:
        with self._lock:
            for p in self.patterns.values():
                if p.material_category == category and p.prompt_snippet == snippet:
                    return p.model_copy()
        return None

    def insert_pattern(self, pattern: SuccessfulPattern) -> None:
        with self._lock:
            self.patterns[pattern.id] = pattern.model_copy()

    def increment_pattern_usage(self, pattern_id: str) -> int:
        with self._lock:
            p = self.patterns[pattern_id]
            p.usage_count += 1
            return p.usage_count

    def patterns_for_category(self, category: str, limit: int) -> list[SuccessfulPattern]:
        with self._lock:
            rows = [p.model_copy() for p in self.patterns.values() if p.material_category == category]
        rows.sort(key=lambda p: (-p.verification_score, -p.usage_count))
        return rows[:limit]

    def all_patterns(self) -> list[SuccessfulPattern]:
        with self._lock:
            return [p.model_copy() for p in self.patterns.values()]

    def delete_patterns(self, min_usage_count: int, min_score: int) -> int:
        with self._lock:
            doomed = [
                pid for pid, p in self.patterns.items()
                if p.usage_count < min_usage_count and p.verification_score < min_score
            ]
            for pid in doomed:
                del self.patterns[pid]
        return len(doomed)

    # ── verification logs ────────────────────────────────────────────────

    def add_verification_log(
        self, scene_id: str, category: str, verification_type: str, score: int, issues: list
    ) -> str:
        log_id = str(uuid4())
        with self._lock:
            self.verification_logs.append({
                "id": log_id,
                "scene_id": scene_id,
                "material_category": category,
                "verification_type": verification_type,
                "score": score,
                "issues": issues,
                "created_at": now_iso(),
            })
        return log_id

    def verification_scores(self) -> list[tuple[str, int]]:
        with self._lock:
            return [(row["material_category"], row["score"]) for row in self.verification_logs]


# ═════════════════════════════════════════════════════════════════════════════
# Supabase adapter
# ═════════════════════════════════════════════════════════════════════════════

class SupabaseStore:
    """
    Tables: settings, scenes, scene_materials (+ materials, material_images),
    render_jobs, successful_patterns, verification_logs.
    """

    def __init__(self, client: Client):
        self._sb = client

    def get_setting(self, key: str) -> Optional[str]:
        res = self._sb.table("settings").select("value").eq("key", key).limit(1).execute()
        return res.data[0].get("value") if res.data else None

    # ── scenes ───────────────────────────────────────────────────────────

    def get_scene(self, scene_id: str) -> Optional[dict]:
        res = self._sb.table("scenes").select("*").eq("id", scene_id).limit(1).execute()
        return res.data[0] if res.data else None

    def update_scene(self, scene_id: str, fields: dict) -> None:
        self._sb.table("scenes").update({**fields, "updated_at": now_iso()}).eq("id", scene_id).execute()

    def get_scene_materials(self, scene_id: str) -> list[Material]:
        res = (
            self._sb.table("scene_materials")
            .select("materials(*, material_images(image_path, is_primary))")
            .eq("scene_id", scene_id)
            .execute()
        )
        materials: list[Material] = []
        for row in res.data or []:
            mat = row.get("materials") or {}
            if not mat:
                continue
            images = sorted(
                mat.pop("material_images", None) or [],
                key=lambda img: not img.get("is_primary"),
            )
            materials.append(Material(**{
                **{k: v for k, v in mat.items() if k in Material.model_fields},
                "image_paths": [img["image_path"] for img in images],
            }))
        return materials

    # ── render jobs ──────────────────────────────────────────────────────

    @staticmethod
    def _job_from_row(row: dict) -> GenerationJob:
        return GenerationJob(
            id=row["id"],
            scene_id=row["scene_id"],
            job_type=row.get("job_type", "video"),
            status=row.get("status", "pending"),
            operation_name=row.get("google_operation_name"),
            cost_estimate=row.get("cost_estimate"),
            error_message=row.get("error_message"),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )

    @staticmethod
    def _job_fields_to_row(fields: dict) -> dict:
        row = dict(fields)
        if "operation_name" in row:
            row["google_operation_name"] = row.pop("operation_name")
        return {k: (v.value if hasattr(v, "value") else v) for k, v in row.items()}

    def create_job(self, job: GenerationJob) -> GenerationJob:
        self._sb.table("render_jobs").insert(
            self._job_fields_to_row(job.model_dump())
        ).execute()
        return job

    def get_job(self, job_id: str) -> Optional[GenerationJob]:
        res = self._sb.table("render_jobs").select("*").eq("id", job_id).limit(1).execute()
        return self._job_from_row(res.data[0]) if res.data else None

    def update_job(self, job_id: str, fields: dict) -> None:
        self._sb.table("render_jobs").update(self._job_fields_to_row(fields)).eq("id", job_id).execute()

    def latest_job(self, scene_id: str, job_type: str) -> Optional[GenerationJob]:
        res = (
            self._sb.table("render_jobs")
            .select("*")
            .eq("scene_id", scene_id)
            .eq("job_type", job_type)
            .order("started_at", desc=True)
            .limit(1)
            .execute()
        )
        return self._job_from_row(res.data[0]) if res.data else None

    # ── learned patterns ─────────────────────────────────────────────────

    def find_pattern(self, category: str, snippet: str) -> Optional[SuccessfulPattern]:
        res = (
            self._sb.table("successful_patterns")
            .select("*")
            .eq("material_category", category)
            .eq("prompt_snippet", snippet)
            .limit(1)
            .execute()
        )
        return SuccessfulPattern(**res.data[0]) if res.data else None

    def insert_pattern(self, pattern: SuccessfulPattern) -> None:
        self._sb.table("successful_patterns").insert(pattern.model_dump()).execute()

    def increment_pattern_usage(self, pattern_id: str) -> int:
        res = self._sb.table("successful_patterns").select("usage_count").eq("id", pattern_id).single().execute()
        usage = (res.data or {}).get("usage_count", 0) + 1
        self._sb.table("successful_patterns").update({"usage_count": usage}).eq("id", pattern_id).execute()
        return usage

    def patterns_for_category(self, category: str, limit: int) -> list[SuccessfulPattern]:
        res = (
            self._sb.table("successful_patterns")
            .select("*")
            .eq("material_category", category)
            .order("verification_score", desc=True)
            .order("usage_count", desc=True)
            .limit(limit)
            .execute()
        )
        return [SuccessfulPattern(**row) for row in res.data or []]

    def all_patterns(self) -> list[SuccessfulPattern]:
        res = self._sb.table("successful_patterns").select("*").execute()
        return [SuccessfulPattern(**row) for row in res.data or []]

    def delete_patterns(self, min_usage_count: int, min_score: int) -> int:
        res = (
            self._sb.table("successful_patterns")
            .delete()
            .lt("usage_count", min_usage_count)
            .lt("verification_score", min_score)
            .execute()
        )
        return len(res.data or [])

    # ── verification logs ────────────────────────────────────────────────

    def add_verification_log(
        self, scene_id: str, category: str, verification_type: str, score: int, issues: list
    ) -> str:
        log_id = str(uuid4())
        self._sb.table("verification_logs").insert({
            "id": log_id,
            "scene_id": scene_id,
            "material_category": category,
            "verification_type": verification_type,
            "score": score,
            "issues": issues,
        }).execute()
        return log_id

    def verification_scores(self) -> list[tuple[str, int]]:
        res = self._sb.table("verification_logs").select("material_category, score").execute()
        return [(row["material_category"], row["score"]) for row in res.data or []]


# ── Lazy default store ───────────────────────────────────────────────────────

_store: Optional[SceneStore] = None


def get_store() -> SceneStore:
    """Supabase when configured, otherwise an in-memory fallback."""
    global _store
    if _store is None:
        url = os.getenv("SUPABASE_URL", "")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
        if url and key:
            _store = SupabaseStore(create_client(url, key))
            logger.info("Persistence: Supabase")
        else:
            logger.warning("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not set, using in-memory store")
            _store = InMemoryStore()
    return _store
