"""
Vault Note Store: Infrastructure adapter for a Markdown vault on disk.

Implements NoteStore over plain files under ``vault_root``. References are
vault-relative POSIX paths; anything escaping the vault root is rejected.
"""

import logging
from pathlib import Path, PurePosixPath
from typing import Any

from increading.domain.errors import ValidationError
from increading.domain.ports import NoteStore
from increading.infrastructure.utils.text import (
    parse_frontmatter,
    rebuild_markdown_with_frontmatter,
)

logger = logging.getLogger(__name__)


class VaultNoteStore(NoteStore):
    def __init__(self, vault_root: Path):
        self.vault_root = Path(vault_root).resolve()

    def _path(self, ref: str) -> Path:
        rel = PurePosixPath(ref)
        if rel.is_absolute() or ".." in rel.parts or not rel.parts:
            raise ValidationError(f"Invalid note reference: {ref!r}")
        return self.vault_root.joinpath(*rel.parts)

    def to_ref(self, path: Path) -> str:
        return Path(path).resolve().relative_to(self.vault_root).as_posix()

    async def read(self, ref: str) -> str:
        return self._path(ref).read_text(encoding="utf-8")

    async def write(self, ref: str, text: str) -> None:
        self._path(ref).write_text(text, encoding="utf-8")

    async def append(self, ref: str, text: str) -> None:
        with self._path(ref).open("a", encoding="utf-8") as fh:
            fh.write(text)

    async def create(self, ref: str, text: str = "") -> str:
        path = self._path(ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        # "x" mode refuses to clobber an existing note
        with path.open("x", encoding="utf-8") as fh:
            fh.write(text)
        logger.debug(f"[vault] Created {ref}")
        return ref

    async def delete(self, ref: str) -> None:
        self._path(ref).unlink(missing_ok=True)
        logger.debug(f"[vault] Deleted {ref}")

    async def rename(self, ref: str, name: str) -> str:
        src = self._path(ref)
        if not name.endswith(".md"):
            name = f"{name}.md"
        dst = src.with_name(name)
        if dst.exists():
            raise FileExistsError(f"A note already exists at {self.to_ref(dst)}")
        src.rename(dst)
        new_ref = self.to_ref(dst)
        logger.debug(f"[vault] Renamed {ref} -> {new_ref}")
        return new_ref

    async def resolve(self, ref: str) -> Path | None:
        try:
            path = self._path(ref)
        except ValidationError:
            return None
        return path if path.is_file() else None

    async def exists(self, ref: str) -> bool:
        return await self.resolve(ref) is not None

    async def get_frontmatter(self, ref: str) -> dict[str, Any]:
        meta, _ = parse_frontmatter(await self.read(ref))
        if "__yaml_error__" in meta:
            logger.warning(f"[vault] Bad frontmatter in {ref}: {meta['__yaml_error__']}")
            return {}
        return meta

    async def update_frontmatter(self, ref: str, updates: dict[str, Any]) -> None:
        text = await self.read(ref)
        meta, body = parse_frontmatter(text)
        if "__yaml_error__" in meta:
            raise ValidationError(f"Cannot update unparseable frontmatter in {ref}")
        meta.update(updates)
        await self.write(ref, rebuild_markdown_with_frontmatter(meta, body))

    def make_link(self, target_ref: str) -> str:
        return f"[[{PurePosixPath(target_ref).stem}]]"
