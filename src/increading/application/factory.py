"""
Review Manager Factory
Centralizes wiring the repository, note store and scheduler from configuration.
"""

from increading.application.config import AppConfig
from increading.application.review_manager import ReviewManager
from increading.domain.ports import CardScheduler, NoteStore
from increading.infrastructure.adapters.fsrs_scheduler import FsrsCardScheduler
from increading.infrastructure.adapters.vault_store import VaultNoteStore
from increading.infrastructure.db.repository import SQLiteRepository


def get_note_store(config: AppConfig) -> NoteStore:
    assert config.vault_root is not None
    return VaultNoteStore(config.vault_root)


def get_card_scheduler(config: AppConfig) -> CardScheduler:
    return FsrsCardScheduler(
        desired_retention=config.desired_retention,
        enable_fuzzing=config.enable_fuzzing,
    )


async def build_review_manager(config: AppConfig) -> ReviewManager:
    """
    Start the repository at the configured database path and return a manager
    bound to it.
    """
    repo = await SQLiteRepository.start(config.database_path)
    return ReviewManager(
        repo,
        get_note_store(config),
        get_card_scheduler(config),
        snippet_dir=config.snippet_dir,
        article_dir=config.article_dir,
        card_dir=config.card_dir,
        rollover_hours=config.rollover_hours,
        default_priority=config.default_priority,
        default_limit=config.default_limit,
    )
