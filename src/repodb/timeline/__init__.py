"""Thread and message storage.

Two interchangeable encodings implement TimelineStore:

    journal        monthly markdown journals, timeline/<year>-<month>.md (default)
    entity_files   one JSON file per thread and per message
"""

from __future__ import annotations

from repodb.config import TimelineConfig
from repodb.provisioner import RepoFiles
from repodb.timeline.base import TimelineStore
from repodb.timeline.entity_files import EntityFileTimelineStore
from repodb.timeline.journal import JournalTimelineStore


def build_timeline_store(files: RepoFiles, config: TimelineConfig) -> TimelineStore:
    """Instantiate the configured encoding."""
    if config.encoding == "journal":
        return JournalTimelineStore(
            files,
            scan_limit=config.journal_scan_limit,
            conflict_retries=config.conflict_retries,
        )
    if config.encoding == "entity_files":
        return EntityFileTimelineStore(files, conflict_retries=config.conflict_retries)
    raise ValueError(f"Unknown timeline encoding: {config.encoding}")


__all__ = [
    "EntityFileTimelineStore",
    "JournalTimelineStore",
    "TimelineStore",
    "build_timeline_store",
]
