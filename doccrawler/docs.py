"""
Doc-writer collaborators.

The pipeline hands a ``DocWriter`` everything the crawl learned and gets
back ``{"docs_url": ...}``.  Rendering guides is out of scope here; the
default writer emits a JSON manifest a renderer can consume.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import Feature, Job, PageUnderstanding, ScreenRecord

logger = logging.getLogger(__name__)


class DocWriter(ABC):
    @abstractmethod
    async def write(self, job: Job, features: List[Feature], screens: List[ScreenRecord],
                    understandings: Dict[str, PageUnderstanding],
                    prd_summary: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        """Produce the documentation and return ``{"docs_url": ...}``."""


def build_manifest(job: Job, features: List[Feature], screens: List[ScreenRecord],
                   understandings: Dict[str, PageUnderstanding],
                   prd_summary: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    by_feature: Dict[str, List[ScreenRecord]] = {}
    for screen in screens:
        by_feature.setdefault(screen.feature_id, []).append(screen)

    sections = []
    for feature in sorted(features, key=lambda f: f.priority):
        u = understandings.get(feature.id)
        sections.append({
            "feature": feature.to_dict(),
            "understanding": u.to_dict() if u else None,
            "screens": [
                {
                    "label": s.label,
                    "nav_label": s.nav_label,
                    "route": s.route_path,
                    "screenshot": s.screenshot_ref,
                    "type": s.screen_type.value,
                    "analysis": s.analysis,
                }
                for s in sorted(by_feature.get(feature.id, []), key=lambda s: s.order_index)
            ],
        })

    return {
        "job_id": job.id,
        "app_name": job.app_name,
        "app_url": job.app_url,
        "product": prd_summary or {},
        "sections": sections,
        "additional_features": [
            {"title": a.title, "description": a.description} for a in job.additional_features
        ],
    }


class ManifestDocWriter(DocWriter):
    """Writes ``<root>/<job_id>/manifest.json``."""

    def __init__(self, root: str = "doccrawler_docs"):
        self.root = Path(root)

    async def write(self, job: Job, features: List[Feature], screens: List[ScreenRecord],
                    understandings: Dict[str, PageUnderstanding],
                    prd_summary: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        manifest = build_manifest(job, features, screens, understandings, prd_summary)
        path = self.root / job.id / "manifest.json"
        await asyncio.to_thread(self._write, path, manifest)
        logger.info(f"[PIPELINE] Wrote manifest with {len(manifest['sections'])} sections to {path}")
        return {"docs_url": path.resolve().as_uri()}

    @staticmethod
    def _write(path: Path, manifest: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(manifest, indent=2, ensure_ascii=False), encoding="utf-8")
