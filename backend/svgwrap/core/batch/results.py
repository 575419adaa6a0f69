"""Read-only summaries derived from a batch."""

from typing import List

from svgwrap.core.batch.models import (
    Batch,
    BatchStatistics,
    DownloadInfo,
    Task,
    TaskStatus,
)


def percentage(part: int, whole: int) -> int:
    """Integer percentage rounded half up; 0 for an empty whole."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def compute_statistics(batch: Batch) -> BatchStatistics:
    counts = {status: 0 for status in TaskStatus}
    for task in batch.tasks:
        counts[task.status] += 1

    total = len(batch.tasks)
    return BatchStatistics(
        total=total,
        succeeded=counts[TaskStatus.SUCCEEDED],
        failed=counts[TaskStatus.FAILED],
        running=counts[TaskStatus.RUNNING],
        pending=counts[TaskStatus.PENDING],
        success_rate=percentage(counts[TaskStatus.SUCCEEDED], total),
    )


def deliverable_tasks(batch: Batch) -> List[Task]:
    """Succeeded tasks that carry a document, in submission order."""
    return [
        task
        for task in batch.tasks
        if task.status == TaskStatus.SUCCEEDED and task.document
    ]


def download_info(batch: Batch) -> DownloadInfo:
    available = deliverable_tasks(batch)
    return DownloadInfo(
        available_files=len(available),
        total_files=len(batch.tasks),
        estimated_size=sum(len(task.document) for task in available),
        can_download=bool(available),
    )
