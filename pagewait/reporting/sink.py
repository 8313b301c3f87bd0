from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "text/plain": ".txt",
    "text/html": ".html",
    "application/json": ".json",
}


class ReportSink(Protocol):
    def step(self, name: str) -> None: ...

    def attach(self, name: str, content: bytes, mime_type: str = "text/plain") -> None: ...


class ArtifactSink:
    """Writes attachments to an artifacts directory and logs step annotations."""

    def __init__(self, artifacts_dir: str | Path = "artifacts") -> None:
        self.artifacts_dir = Path(artifacts_dir)
        self.steps: list[str] = []
        self.saved: list[Path] = []

    def step(self, name: str) -> None:
        self.steps.append(name)
        logger.info("Step: %s", name)

    def attach(self, name: str, content: bytes, mime_type: str = "text/plain") -> None:
        self.save(name, content, _EXTENSIONS.get(mime_type, ".bin"))

    def save(self, name: str, content: bytes, suffix: str = ".png") -> Path:
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S.%fZ")
        path = self.artifacts_dir / f"{safe_file_name(name)}_{timestamp}{suffix}"
        path.write_bytes(content)
        self.saved.append(path)
        logger.info("Attachment saved: %s", path)
        return path


class AllureSink:
    """Forwards steps and attachments to the running Allure test."""

    def __init__(self) -> None:
        try:
            import allure
            from allure_commons.types import AttachmentType
        except ImportError as exc:
            raise RuntimeError(
                "allure-pytest is not installed. Install the 'allure' extra"
            ) from exc

        self._allure = allure
        self._types = {
            "image/png": AttachmentType.PNG,
            "image/jpeg": AttachmentType.JPG,
            "text/plain": AttachmentType.TEXT,
            "text/html": AttachmentType.HTML,
            "application/json": AttachmentType.JSON,
        }

    def step(self, name: str) -> None:
        with self._allure.step(name):
            pass

    def attach(self, name: str, content: bytes, mime_type: str = "text/plain") -> None:
        self._allure.attach(
            content,
            name=name,
            attachment_type=self._types.get(mime_type, self._types["text/plain"]),
        )


def safe_file_name(name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_.-]+", "_", name).strip("._")
    return cleaned[:120] or "attachment"
