"""
Pattern memory. Learns prompt fragments from well-verified generations.

A fragment is kept when a verification pass scores it 90 or better, deduped
by (category, snippet). The best fragment per category is appended to later
prompts for scenes using the same material categories.
"""

import logging
from collections import defaultdict
from uuid import uuid4

from .models import SuccessfulPattern
from .store import SceneStore, now_iso

logger = logging.getLogger(__name__)

MIN_RECORD_SCORE = 90
SNIPPET_LENGTH = 500
EXCERPT_LENGTH = 200


class PatternMemory:
    def __init__(self, store: SceneStore):
        self.store = store

    def record(self, category: str, enriched_prompt: str, score: int) -> None:
        if score < MIN_RECORD_SCORE:
            return

        snippet = enriched_prompt[:SNIPPET_LENGTH]
        existing = self.store.find_pattern(category, snippet)
        if existing:
            usage = self.store.increment_pattern_usage(existing.id)
            logger.info(f"Updated existing pattern {existing.id} (usage: {usage})")
            return

        pattern = SuccessfulPattern(
            id=str(uuid4()),
            material_category=category,
            prompt_snippet=snippet,
            verification_score=score,
            usage_count=1,
            created_at=now_iso(),
        )
        self.store.insert_pattern(pattern)
        logger.info(f"Saved new pattern {pattern.id} for category {category}")

    def best_for(self, category: str, limit: int = 3) -> list[SuccessfulPattern]:
        return self.store.patterns_for_category(category, limit)

    def inject(self, categories: list[str], base_prompt: str) -> str:
        """Append the top pattern of each distinct category; unchanged when none exist."""
        patterns: list[SuccessfulPattern] = []
        for category in dict.fromkeys(categories):
            patterns.extend(self.best_for(category, 1))

        if not patterns:
            return base_prompt

        injection = "\n\n**LEARNED SUCCESSFUL PATTERNS:**\n"
        injection += (
            "The following approaches have proven successful in previous generations "
            "with high verification scores:\n\n"
        )
        for i, p in enumerate(patterns, 1):
            injection += (
                f"{i}. [{p.material_category}] (Score: {p.verification_score}/100, Used: {p.usage_count}x):\n"
                f"   {p.prompt_snippet[:EXCERPT_LENGTH]}...\n\n"
            )
        injection += "Apply similar strategies and phrasing where applicable.\n"

        logger.info(f"Injected {len(patterns)} learned patterns into prompt")
        return base_prompt + injection

    def problematic_categories(self, min_score: int = 70) -> list[dict]:
        """Categories whose average verification score is below min_score, worst first."""
        scores = defaultdict(list)
        for category, score in self.store.verification_scores():
            scores[category].append(score)

        results = []
        for category, values in scores.items():
            avg = sum(values) / len(values)
            if avg < min_score:
                results.append({"category": category, "avg_score": avg, "count": len(values)})
        results.sort(key=lambda r: r["avg_score"])

        logger.info(f"Found {len(results)} problematic categories below score {min_score}")
        return results

    def statistics(self) -> dict:
        grouped = defaultdict(list)
        patterns = self.store.all_patterns()
        for p in patterns:
            grouped[p.material_category].append(p.verification_score)

        return {
            "total_patterns": len(patterns),
            "category_counts": {c: len(v) for c, v in grouped.items()},
            "avg_score_by_category": {c: round(sum(v) / len(v)) for c, v in grouped.items()},
        }

    def cleanup(self, min_usage_count: int = 2, min_score: int = 85) -> int:
        deleted = self.store.delete_patterns(min_usage_count, min_score)
        logger.info(f"Cleaned up {deleted} low-performing patterns")
        return deleted
