"""Hand finished SVG documents to the user by writing them to a directory."""

import asyncio
import os
import re
from pathlib import Path
from typing import Iterable, List, Optional, Union

from svgwrap.config import settings
from svgwrap.core.batch.models import DeliveryReport, Task, TaskStatus, utcnow
from svgwrap.core.constants import (
    COMBINED_FILE_NAME,
    COMBINED_MIME_TYPE,
    COMBINED_SECTION,
    SVG_MIME_TYPE,
)
from svgwrap.core.exceptions import DeliveryError
from svgwrap.utils.logging import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')


def sanitize_file_name(file_name: str) -> str:
    """Reduce a name to a safe base name inside the output directory."""
    name = os.path.basename(file_name.replace("\\", "/"))
    name = _UNSAFE_CHARS.sub("_", name).strip(" .")
    return name or "untitled"


def _deliverable(tasks: Iterable[Task]) -> List[Task]:
    deliverable = [
        t for t in tasks if t.status == TaskStatus.SUCCEEDED and t.document
    ]
    if not deliverable:
        raise DeliveryError("No finished conversions to deliver")
    return deliverable


class DeliveryService:
    """Filesystem delivery sink.

    ``deliver`` never overwrites: an existing name gets a ``-1``, ``-2``...
    suffix before the extension.
    """

    def __init__(
        self,
        output_dir: Optional[Union[str, Path]] = None,
        delay_seconds: Optional[float] = None,
    ):
        self.output_dir = Path(output_dir or settings.output_dir)
        self.delay_seconds = (
            delay_seconds if delay_seconds is not None else settings.delivery_delay_seconds
        )

    def deliver(self, file_name: str, content: str, mime_type: str) -> Path:
        """Write one artifact and return where it landed.

        Raises:
            DeliveryError: the file could not be written
        """
        safe_name = sanitize_file_name(file_name)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            target = self._unique_path(safe_name)
            with open(target, "x", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise DeliveryError(
                f"Failed to deliver '{safe_name}': {e}",
                details={"file_name": safe_name},
            ) from e

        logger.debug(
            "Artifact delivered",
            mime_type=mime_type,
            bytes_written=len(content.encode("utf-8")),
        )
        return target

    def _unique_path(self, file_name: str) -> Path:
        target = self.output_dir / file_name
        stem, suffix = target.stem, target.suffix
        counter = 1
        while target.exists():
            target = self.output_dir / f"{stem}-{counter}{suffix}"
            counter += 1
        return target

    def deliver_one(self, task: Task) -> Path:
        """Deliver a succeeded task's document as ``<display_name>.svg``.

        Raises:
            DeliveryError: the task has not succeeded, or writing failed
        """
        if task.status != TaskStatus.SUCCEEDED or not task.document:
            raise DeliveryError(
                "Task is not finished or has no SVG document",
                details={"task_id": task.task_id, "status": task.status.value},
            )
        return self.deliver(task.output_name, task.document, SVG_MIME_TYPE)

    async def deliver_many(self, tasks: Iterable[Task]) -> DeliveryReport:
        """Deliver succeeded tasks one after another.

        A short pause separates deliveries. One item failing is logged and
        reported but does not stop the rest.

        Raises:
            DeliveryError: nothing was deliverable, or every item failed
        """
        deliverable = _deliverable(tasks)

        report = DeliveryReport()
        for index, task in enumerate(deliverable):
            if index and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
            try:
                path = self.deliver_one(task)
            except DeliveryError as e:
                logger.warning(
                    "Delivery failed, continuing",
                    task_id=task.task_id,
                    error=e.message,
                )
                report.failed.append((task.output_name, e.message))
            else:
                report.delivered.append(path.name)

        if report.all_failed:
            raise DeliveryError(
                f"All {len(report.failed)} deliveries failed",
                details={"failed_items": [name for name, _ in report.failed]},
            )

        logger.info(
            "Batch delivered",
            delivered=len(report.delivered),
            failed=len(report.failed),
        )
        return report

    def deliver_combined(
        self, tasks: Iterable[Task], file_name: Optional[str] = None
    ) -> Path:
        """Write every succeeded document into one plain-text file.

        Each document is preceded by a ``<!-- File: name.svg -->`` header.
        The default name is ``svg-batch-<YYYY-MM-DD>.txt`` (UTC date).

        Raises:
            DeliveryError: nothing was deliverable, or writing failed
        """
        deliverable = _deliverable(tasks)
        content = "".join(
            COMBINED_SECTION.format(name=task.output_name, document=task.document)
            for task in deliverable
        )
        name = file_name or COMBINED_FILE_NAME.format(date=utcnow().date().isoformat())
        path = self.deliver(name, content, COMBINED_MIME_TYPE)

        logger.info(
            "Batch delivered as one file",
            documents=len(deliverable),
            file_name=path.name,
        )
        return path
