import re
from typing import Any

import yaml  # type: ignore
import yaml.constructor

# ---------- Frontmatter helpers ----------

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
EMPTY_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n---[ \t]*(?:\r?\n|\Z)")


class UniqueKeyLoader(yaml.SafeLoader):
    """Custom YAML loader that forbids duplicate keys."""

    def construct_mapping(self, node, deep=False):
        mapping = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in mapping:
                raise yaml.constructor.ConstructorError(
                    None, None, f"found duplicate key '{key}'", key_node.start_mark
                )
            mapping.add(key)
        return super().construct_mapping(node, deep)


class _BlockDumper(yaml.SafeDumper):
    """Dump multi-line strings as literal blocks so note properties stay readable."""


def _str_representer(dumper: yaml.SafeDumper, data: str):
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_BlockDumper.add_representer(str, _str_representer)


def parse_frontmatter(md_text: str) -> tuple[dict[str, Any], str]:
    """
    Split a note into its YAML properties and its body.

    Returns ``({}, text)`` when the note has no frontmatter. Invalid YAML yields
    ``{"__yaml_error__": message}`` with the untouched text so callers can decide
    whether to refuse or to proceed without properties.
    """
    md_text = md_text.lstrip("\ufeff")

    if EMPTY_FRONTMATTER_RE.match(md_text):
        return {}, EMPTY_FRONTMATTER_RE.sub("", md_text, count=1)

    m = FRONTMATTER_RE.match(md_text)
    if not m:
        return {}, md_text

    raw = m.group(1)
    # Fix tabs (common user error)
    if "\t" in raw:
        raw = raw.replace("\t", "  ")

    try:
        meta = yaml.load(raw, Loader=UniqueKeyLoader) or {}
    except yaml.YAMLError as e:
        return {"__yaml_error__": str(e)}, md_text

    if not isinstance(meta, dict):
        return {"__yaml_error__": "frontmatter is not a mapping"}, md_text

    return meta, md_text[m.end() :]


def scrub_internal_keys(d: Any) -> Any:
    """Recursively remove keys starting with __"""
    if isinstance(d, dict):
        return {k: scrub_internal_keys(v) for k, v in d.items() if not str(k).startswith("__")}
    elif isinstance(d, list):
        return [scrub_internal_keys(v) for v in d]
    return d


def rebuild_markdown_with_frontmatter(meta: dict[str, Any], body: str) -> str:
    clean_meta = scrub_internal_keys(meta)
    if not clean_meta:
        return body
    yaml_text = yaml.dump(
        clean_meta,
        Dumper=_BlockDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=10**9,
    )
    return f"---\n{yaml_text}---\n{body}"


def normalize_tags(value: Any) -> list[str]:
    """Frontmatter ``tags`` may be a string, a list, or missing; always return a list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [t.lstrip("#") for t in re.split(r"[,\s]+", value) if t.strip()]
    if isinstance(value, list):
        return [str(t).lstrip("#") for t in value if t is not None]
    return [str(value)]
