import pytest

from increading.domain.errors import ValidationError
from increading.infrastructure.adapters.vault_store import VaultNoteStore
from increading.infrastructure.utils.text import (
    normalize_tags,
    parse_frontmatter,
    rebuild_markdown_with_frontmatter,
)

# --- Frontmatter helpers ---


def test_parse_frontmatter():
    meta, body = parse_frontmatter("---\ntags: [a, b]\nsource: '[[x]]'\n---\nBody text\n")
    assert meta == {"tags": ["a", "b"], "source": "[[x]]"}
    assert body == "Body text\n"


def test_parse_without_frontmatter():
    assert parse_frontmatter("Just text") == ({}, "Just text")
    assert parse_frontmatter("---\n---\nBody") == ({}, "Body")


def test_parse_reports_bad_yaml():
    meta, body = parse_frontmatter("---\na: 1\na: 2\n---\nBody")
    assert "__yaml_error__" in meta
    assert body.startswith("---")


def test_rebuild_round_trip():
    text = rebuild_markdown_with_frontmatter({"tags": ["il-article"], "note": "two\nlines"}, "Body")
    meta, body = parse_frontmatter(text)
    assert meta == {"tags": ["il-article"], "note": "two\nlines"}
    assert body == "Body"
    assert rebuild_markdown_with_frontmatter({}, "Body") == "Body"
    assert rebuild_markdown_with_frontmatter({"__yaml_error__": "x"}, "Body") == "Body"


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, []),
        ("a, #b c", ["a", "b", "c"]),
        (["#a", "b", None], ["a", "b"]),
        (3, ["3"]),
    ],
)
def test_normalize_tags(value, expected):
    assert normalize_tags(value) == expected


# --- VaultNoteStore ---


@pytest.fixture
def store(vault):
    return VaultNoteStore(vault)


@pytest.mark.asyncio
async def test_create_read_append(store, vault):
    ref = await store.create("deep/folder/note.md", "Hello")
    assert ref == "deep/folder/note.md"
    await store.append(ref, " world")
    assert await store.read(ref) == "Hello world"
    assert (vault / "deep" / "folder" / "note.md").read_text() == "Hello world"


@pytest.mark.asyncio
async def test_create_refuses_to_overwrite(store):
    await store.create("note.md", "one")
    with pytest.raises(FileExistsError):
        await store.create("note.md", "two")
    assert await store.read("note.md") == "one"


@pytest.mark.asyncio
async def test_resolve_and_exists(store, vault):
    await store.create("a.md")
    assert await store.resolve("a.md") == vault.resolve() / "a.md"
    assert await store.exists("a.md")
    assert await store.resolve("missing.md") is None
    assert not await store.exists("../outside.md")


@pytest.mark.asyncio
@pytest.mark.parametrize("ref", ["/etc/passwd", "../x.md", "a/../../x.md", ""])
async def test_rejects_references_outside_vault(store, ref):
    with pytest.raises(ValidationError):
        await store.read(ref)


@pytest.mark.asyncio
async def test_rename_keeps_folder(store):
    await store.create("articles/old.md", "text")
    new_ref = await store.rename("articles/old.md", "new")
    assert new_ref == "articles/new.md"
    assert await store.read(new_ref) == "text"
    assert not await store.exists("articles/old.md")


@pytest.mark.asyncio
async def test_rename_refuses_existing_target(store):
    await store.create("a.md")
    await store.create("b.md")
    with pytest.raises(FileExistsError):
        await store.rename("a.md", "b.md")


@pytest.mark.asyncio
async def test_frontmatter_update_merges(store):
    await store.create("n.md", "---\ntags: [x]\n---\nBody")
    await store.update_frontmatter("n.md", {"source": "[[origin]]"})
    assert await store.get_frontmatter("n.md") == {"tags": ["x"], "source": "[[origin]]"}
    assert (await store.read("n.md")).endswith("Body")


@pytest.mark.asyncio
async def test_bad_frontmatter(store):
    await store.create("bad.md", "---\nkey: [unclosed\n---\nBody")
    assert await store.get_frontmatter("bad.md") == {}
    with pytest.raises(ValidationError):
        await store.update_frontmatter("bad.md", {"a": 1})


@pytest.mark.asyncio
async def test_delete(store):
    await store.create("gone.md")
    await store.delete("gone.md")
    assert not await store.exists("gone.md")
    await store.delete("gone.md")


def test_make_link(store):
    assert store.make_link("folder/My Note.md") == "[[My Note]]"
