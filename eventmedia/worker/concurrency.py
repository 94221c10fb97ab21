"""Worker concurrency sizing."""

from __future__ import annotations

import logging
import math
import os
from typing import Optional

from eventmedia.core.config import Settings, get_settings
from eventmedia.jobs.models import JobType

logger = logging.getLogger(__name__)

CLEANUP_CONCURRENCY = 1


def total_memory_gb() -> Optional[float]:
    try:
        return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES") / (1024 ** 3)
    except (AttributeError, ValueError, OSError):
        return None


def variant_worker_concurrency(
    settings: Optional[Settings] = None,
    cpu_count: Optional[int] = None,
    memory_gb: Optional[float] = None,
) -> int:
    """
    Parallel image jobs for this host: 1.5 per CPU, at most one per GB of
    RAM, never above the configured ceiling. VARIANT_WORKER_CONCURRENCY
    overrides the heuristic (still clamped).
    """
    settings = settings or get_settings()
    ceiling = max(1, settings.VARIANT_CONCURRENCY_CEILING)

    if settings.VARIANT_WORKER_CONCURRENCY:
        return max(1, min(int(settings.VARIANT_WORKER_CONCURRENCY), ceiling))

    cpus = cpu_count or os.cpu_count() or 1
    by_cpu = max(1, math.floor(cpus * 1.5))

    if memory_gb is None:
        memory_gb = total_memory_gb()
    by_memory = math.floor(memory_gb) if memory_gb else ceiling

    value = max(1, min(by_cpu, by_memory, ceiling))
    logger.info(
        "Variant concurrency %d (cpus=%d, memory=%sGB, ceiling=%d)",
        value,
        cpus,
        f"{memory_gb:.1f}" if memory_gb else "?",
        ceiling,
    )
    return value


def worker_concurrency(job_type: JobType, settings: Optional[Settings] = None) -> int:
    if JobType(job_type) is JobType.VARIANT:
        return variant_worker_concurrency(settings)
    return CLEANUP_CONCURRENCY
