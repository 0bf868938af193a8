"""
File management service for storyflow.

Stores generated media under per-project directories with path traversal
protection.
"""
import uuid
from pathlib import Path

from storyflow.config import settings

SUBDIRS = ("assets", "audio", "output")


class FileManager:
    """
    Manage filesystem artifacts for story projects.

    Creates structured directories:
    - {base_dir}/{project_id}/assets/ - Scene images
    - {base_dir}/{project_id}/audio/ - Narration tracks
    - {base_dir}/{project_id}/output/ - Final video and subtitles
    """

    def __init__(self, base_dir: str | Path | None = None):
        if base_dir is None:
            base_dir = settings.storage.tmp_dir

        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def get_project_dir(self, project_id: uuid.UUID) -> Path:
        """
        Get or create the project directory and its subdirectories.

        Raises:
            ValueError: If project_id resolves outside base_dir
        """
        project_dir = (self.base_dir / str(project_id)).resolve()

        if not project_dir.is_relative_to(self.base_dir):
            raise ValueError("Invalid project path")

        project_dir.mkdir(exist_ok=True)
        for name in SUBDIRS:
            (project_dir / name).mkdir(exist_ok=True)

        return project_dir

    def save_asset(
        self, project_id: uuid.UUID, scene_order: int, data: bytes, suffix: str = ".png"
    ) -> Path:
        """Save a scene image. Each call gets a fresh file so earlier passes stay intact."""
        project_dir = self.get_project_dir(project_id)
        filepath = project_dir / "assets" / f"scene_{scene_order}_{uuid.uuid4().hex[:8]}{suffix}"
        filepath.write_bytes(data)
        return filepath

    def save_audio(self, project_id: uuid.UUID, data: bytes, filename: str = "narration.wav") -> Path:
        project_dir = self.get_project_dir(project_id)
        filepath = project_dir / "audio" / filename
        filepath.write_bytes(data)
        return filepath

    def get_output_path(self, project_id: uuid.UUID, filename: str = "final.mp4") -> Path:
        """Path for a rendered output file (not created)."""
        project_dir = self.get_project_dir(project_id)
        return project_dir / "output" / filename

    def get_work_dir(self, project_id: uuid.UUID) -> Path:
        """Scratch directory for intermediate render files."""
        work_dir = self.get_project_dir(project_id) / "output" / "work"
        work_dir.mkdir(exist_ok=True)
        return work_dir
