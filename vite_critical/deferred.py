"""Deferred CSS: the original bundle minus every selector found in critical CSS."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Set, Union

from loguru import logger

from vite_critical.css_pipeline import minify_css, prune_empty
from vite_critical.css_tree import parse_css, remove_rules, serialize_css, walk_rules
from vite_critical.manifest import ManifestLookupError


def critical_selectors(critical_css: str) -> Set[str]:
    return {rule.selector for rule in walk_rules(parse_css(critical_css))}


def compute_deferred(critical_css: str, full_original_css: str) -> str:
    """Remove from the original CSS every rule whose selector appears in critical CSS.

    Matching is exact selector text and ignores at-rule nesting: a rule
    inside `@media` is removed when the same selector is critical anywhere.

    Raises:
        CssProcessingError: If either stylesheet cannot be parsed.
    """
    selectors = critical_selectors(critical_css)
    original = parse_css(full_original_css)

    removed = remove_rules(original, lambda rule: rule.selector in selectors)
    pruned = prune_empty(original)
    logger.info(
        "Deferred CSS: removed {} critical rule(s), pruned {} empty node(s)",
        removed,
        pruned,
    )

    deferred = minify_css(serialize_css(original))
    logger.info("Deferred CSS length after minification: {}", len(deferred))
    return deferred


def read_css_sources(paths: Iterable[Union[str, Path]]) -> str:
    """Concatenate the CSS source files of a manifest entry."""
    chunks = []
    for path in paths:
        path = Path(path)
        if not path.exists():
            logger.warning("CSS file not found: {}", path)
            continue
        logger.debug("Adding CSS file: {}", path)
        chunks.append(path.read_text(encoding="utf-8"))

    if not chunks:
        raise ManifestLookupError("None of the CSS source files could be read")
    return "\n".join(chunks)
