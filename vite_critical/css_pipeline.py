"""Cleanup and rewrite passes applied to extracted critical CSS."""

from __future__ import annotations

import copy
import re
from typing import Callable, List, Optional, Sequence, Tuple

import rcssmin
import tinycss2
from loguru import logger

from vite_critical.css_tree import (
    AtRule,
    CssProcessingError,
    Declaration,
    Node,
    Rule,
    child_nodes,
    parse_css,
    remove_rules,
    serialize_css,
    walk_at_rules,
    walk_declarations,
)
from vite_critical.settings import EffectiveSettings


PRUNABLE_AT_RULES = ("media", "supports")

_DUPLICATE_SLASHES = re.compile(r"/+")


def prune_properties(nodes: List[Node], properties: Sequence[str]) -> int:
    """Remove every declaration whose property is listed."""
    if not properties:
        return 0

    wanted = set(properties)
    removed = 0
    for owner in _declaration_owners(nodes):
        children = owner.children
        kept = []
        for child in children:
            if isinstance(child, Declaration) and child.name in wanted:
                logger.debug("Removing property {} in {}", child.name, _owner_label(owner))
                removed += 1
                continue
            kept.append(child)
        children[:] = kept
    return removed


def prune_selectors(nodes: List[Node], selectors: Sequence[str]) -> int:
    """Remove rules whose selector contains any listed fragment."""
    if not selectors:
        return 0

    def _matches(rule: Rule) -> bool:
        if any(fragment in rule.selector for fragment in selectors):
            logger.debug("Removing entire selector: {}", rule.selector)
            return True
        return False

    return remove_rules(nodes, _matches)


def strip_important(nodes: List[Node]) -> int:
    stripped = 0
    for declaration, owner in walk_declarations(nodes):
        if declaration.important:
            logger.debug("Removing !important from {} in {}", declaration.name, _owner_label(owner))
            declaration.important = False
            stripped += 1
    return stripped


def prune_empty(nodes: List[Node]) -> int:
    """Drop empty rules and empty @media/@supports blocks until nothing changes."""
    total = 0
    while True:
        removed = _prune_empty_once(nodes)
        if not removed:
            return total
        total += removed


def _prune_empty_once(nodes: List[Node]) -> int:
    removed = 0
    kept: List[Node] = []
    for node in nodes:
        if isinstance(node, Rule):
            removed += _prune_empty_once(node.children)
            if not node.children:
                logger.debug("Removing empty rule: {}", node.selector)
                removed += 1
                continue
        elif isinstance(node, AtRule) and node.children is not None:
            removed += _prune_empty_once(node.children)
            if node.name in PRUNABLE_AT_RULES and not node.children:
                logger.debug("Removing empty @{} block: {}", node.name, node.prelude)
                removed += 1
                continue
        kept.append(node)
    nodes[:] = kept
    return removed


def ensure_font_display(nodes: List[Node], value: str = "swap") -> int:
    """Append `font-display` to every @font-face block that lacks it."""
    added = 0
    for font_face in walk_at_rules(nodes, "font-face"):
        if font_face.children is None:
            continue
        declared = any(
            isinstance(child, Declaration) and child.name.lower() == "font-display"
            for child in font_face.children
        )
        if not declared:
            font_face.children.append(Declaration(name="font-display", value=value))
            added += 1
    return added


def join_asset_path(root: str, asset: str) -> str:
    """`{root}/{asset}` with duplicate slashes collapsed."""
    joined = "/".join(part for part in (root, asset) if part)
    return _DUPLICATE_SLASHES.sub("/", joined)


def _match_asset(target: str, assets: Sequence[str]) -> Optional[str]:
    if target.startswith("./"):
        target = target[2:]
    if not target:
        return None
    for asset in assets:
        if asset.endswith(target):
            return asset
    return None


def _url_target(token) -> Optional[str]:
    if token.type == "url":
        return token.value
    if token.type == "function" and token.lower_name == "url":
        args = [arg for arg in token.arguments if arg.type not in ("whitespace", "comment")]
        if len(args) == 1 and args[0].type == "string":
            return args[0].value
    return None


def _rewrite_tokens(tokens, assets: Sequence[str], root: str) -> Tuple[str, bool]:
    parts = []
    changed = False
    for token in tokens:
        target = _url_target(token)
        if target is not None:
            asset = _match_asset(target, assets)
            if asset is not None:
                parts.append(f"url({join_asset_path(root, asset)})")
                changed = True
                continue
        elif token.type == "function":
            inner, inner_changed = _rewrite_tokens(token.arguments, assets, root)
            if inner_changed:
                parts.append(f"{token.name}({inner})")
                changed = True
                continue
        parts.append(token.serialize())
    return "".join(parts), changed


def rewrite_url_references(text: str, assets: Sequence[str], root: str) -> str:
    """Rewrite `url()` references in a value that point at known build assets."""
    if "url(" not in text.lower():
        return text
    rewritten, changed = _rewrite_tokens(tinycss2.parse_component_value_list(text), assets, root)
    return rewritten if changed else text


def rewrite_asset_urls(nodes: List[Node], assets: Sequence[str], root: str) -> int:
    """Point `url()` references at `{root}/{asset}` for assets of the build."""
    if not assets:
        logger.info("No assets in manifest entry; asset paths are left unchanged")
        return 0

    rewritten = 0
    for declaration, _owner in walk_declarations(nodes):
        value = rewrite_url_references(declaration.value, assets, root)
        if value != declaration.value:
            declaration.value = value
            rewritten += 1

    for at_rule in walk_at_rules(nodes, "import"):
        prelude = rewrite_url_references(at_rule.prelude, assets, root)
        if prelude != at_rule.prelude:
            at_rule.prelude = prelude
            rewritten += 1
    return rewritten


def minify_css(css: str) -> str:
    """Minify CSS text, returning it unchanged when minification fails."""
    try:
        return _minify(css)
    except CssProcessingError as e:
        logger.warning("Skipping minification: {}", e)
        return css


def _minify(css: str) -> str:
    try:
        return rcssmin.cssmin(css).strip()
    except Exception as e:
        raise CssProcessingError(f"Minifier failed: {e}") from e


def _declaration_owners(nodes: List[Node]):
    for node in nodes:
        children = child_nodes(node)
        if any(isinstance(child, Declaration) for child in children):
            yield node
        yield from _declaration_owners(children)


def _owner_label(owner) -> str:
    if isinstance(owner, Rule):
        return f"selector {owner.selector}"
    return f"@{owner.name} {owner.prelude}".strip()


def _run_pass(name: str, func: Callable[[List[Node]], int], nodes: List[Node]) -> List[Node]:
    snapshot = copy.deepcopy(nodes)
    try:
        changed = func(nodes)
    except Exception as e:
        logger.warning("CSS pass '{}' failed, keeping previous result: {}", name, e)
        return snapshot
    if changed:
        logger.info("CSS pass '{}': {} change(s)", name, changed)
    return nodes


def process_critical_css(
    raw_css: str,
    settings: EffectiveSettings,
    asset_list: Sequence[str],
    output_root_relative: str,
) -> str:
    """Clean, rewrite and minify critical CSS returned by the extractor.

    Pass order is fixed: pruning first, asset rewriting after cleanup and
    minification last.
    """
    try:
        nodes = parse_css(raw_css)
    except CssProcessingError as e:
        logger.warning("Unable to parse critical CSS, only minifying it: {}", e)
        return minify_css(raw_css)

    passes: List[Tuple[str, Callable[[List[Node]], int]]] = [
        ("properties", lambda tree: prune_properties(tree, settings.properties_remove)),
        ("selectors", lambda tree: prune_selectors(tree, settings.selectors_remove)),
    ]
    if settings.remove_important:
        passes.append(("important", strip_important))
    passes.append(("empty", prune_empty))
    if settings.force_font_display:
        passes.append(("font-display", ensure_font_display))
    passes.append(("assets", lambda tree: rewrite_asset_urls(tree, asset_list, output_root_relative)))

    for name, func in passes:
        nodes = _run_pass(name, func, nodes)

    return minify_css(serialize_css(nodes))
