"""Parsed stylesheet tree used by the critical/deferred passes.

tinycss2 does the tokenizing and the CSS Syntax Level 3 parsing; this module
turns its output into a small mutable tree of three node types:

- ``AtRule``: ``@name prelude;`` or ``@name prelude { children }``
- ``Rule``: ``selector { children }``
- ``Declaration``: ``name: value [!important]``

Blocks hold any mix of declarations, rules and at-rules, so native CSS
nesting (``.card { color: red; &:hover { ... } @media ... { ... } }``)
survives a parse/serialize round trip.

Comments are dropped while parsing. Parse errors reported by tinycss2 are
logged and the broken construct is skipped, the same way a "safe" parser
recovers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, List, Optional, Tuple, Union

import tinycss2
from loguru import logger


class CssProcessingError(Exception):
    """Raised when a stylesheet cannot be parsed or processed."""
    pass


@dataclass
class Declaration:
    name: str
    value: str
    important: bool = False


@dataclass
class Rule:
    selector: str
    children: List["Node"] = field(default_factory=list)

    @property
    def declarations(self) -> List[Declaration]:
        return [child for child in self.children if isinstance(child, Declaration)]


@dataclass
class AtRule:
    name: str
    prelude: str = ""
    children: Optional[List["Node"]] = None

    @property
    def has_block(self) -> bool:
        return self.children is not None


Node = Union[AtRule, Rule, Declaration]


def _text(tokens) -> str:
    return tinycss2.serialize(tokens).strip()


def _report_error(node, context: str) -> None:
    logger.warning("Skipping malformed CSS in {} ({}): {}", context, node.kind, node.message)


def _describe(node) -> str:
    if node.type == "at-rule":
        return f"@{node.lower_at_keyword}"
    if node.type == "qualified-rule":
        return f"rule '{_text(node.prelude)}'"
    return node.type


def _block_contents(content):
    return tinycss2.parse_blocks_contents(content, skip_comments=True, skip_whitespace=True)


def parse_css(css: str) -> List[Node]:
    """Parse a stylesheet into a list of top-level nodes."""
    if not isinstance(css, str):
        raise CssProcessingError(f"Expected CSS text, got {type(css).__name__}")
    try:
        nodes = tinycss2.parse_stylesheet(css, skip_comments=True, skip_whitespace=True)
        return _convert_nodes(nodes, "stylesheet")
    except CssProcessingError:
        raise
    except Exception as e:
        raise CssProcessingError(f"Unable to parse stylesheet: {e}") from e


def _convert_nodes(nodes, context: str) -> List[Node]:
    result: List[Node] = []
    for node in nodes:
        if node.type == "declaration":
            result.append(Declaration(name=node.name, value=_text(node.value), important=node.important))
        elif node.type == "qualified-rule":
            selector = _text(node.prelude)
            result.append(Rule(selector=selector, children=_convert_nodes(_block_contents(node.content), selector)))
        elif node.type == "at-rule":
            result.append(_convert_at_rule(node))
        elif node.type == "error":
            _report_error(node, context)
        else:
            logger.warning("Dropping stray {} in {}", _describe(node), context)
    return result


def _convert_at_rule(node) -> AtRule:
    name = node.lower_at_keyword
    prelude = _text(node.prelude)
    if node.content is None:
        return AtRule(name=name, prelude=prelude)

    context = f"@{name} {prelude}".strip()
    return AtRule(name=name, prelude=prelude, children=_convert_nodes(_block_contents(node.content), context))


def serialize_css(nodes: Iterable[Node]) -> str:
    """Compact text form of a node list, one top-level node per line."""
    return "\n".join(_serialize_node(node) for node in nodes)


def _serialize_node(node: Node) -> str:
    if isinstance(node, Declaration):
        return f"{node.name}:{node.value}{'!important' if node.important else ''}"
    if isinstance(node, Rule):
        return f"{node.selector}{{{_serialize_block(node.children)}}}"

    head = f"@{node.name} {node.prelude}" if node.prelude else f"@{node.name}"
    if node.children is None:
        return f"{head};"
    return f"{head}{{{_serialize_block(node.children)}}}"


def _serialize_block(children: Iterable[Node]) -> str:
    parts = []
    for child in children:
        text = _serialize_node(child)
        parts.append(f"{text};" if isinstance(child, Declaration) else text)
    return "".join(parts)


def child_nodes(node: Node) -> List[Node]:
    """Children of a Rule or block AtRule; empty for anything else."""
    if isinstance(node, (Rule, AtRule)) and node.children:
        return node.children
    return []


def walk_rules(nodes: Iterable[Node]) -> Iterator[Rule]:
    """Every Rule in document order, nested rules included."""
    for node in nodes:
        if isinstance(node, Rule):
            yield node
        yield from walk_rules(child_nodes(node))


def walk_at_rules(nodes: Iterable[Node], name: Optional[str] = None) -> Iterator[AtRule]:
    for node in nodes:
        if isinstance(node, AtRule) and (name is None or node.name == name):
            yield node
        yield from walk_at_rules(child_nodes(node), name)


def walk_declarations(nodes: Iterable[Node]) -> Iterator[Tuple[Declaration, Union[Rule, AtRule]]]:
    """Every Declaration with the Rule or AtRule that owns it."""
    for node in nodes:
        children = child_nodes(node)
        for child in children:
            if isinstance(child, Declaration):
                yield child, node
        yield from walk_declarations(child for child in children if not isinstance(child, Declaration))


def remove_rules(nodes: List[Node], predicate: Callable[[Rule], bool]) -> int:
    """Remove matching Rules in place, at any depth. Returns the number removed.

    A removed rule takes its nested rules with it.
    """
    removed = 0
    kept: List[Node] = []
    for node in nodes:
        if isinstance(node, Rule) and predicate(node):
            removed += 1
            continue
        children = child_nodes(node)
        if children:
            removed += remove_rules(children, predicate)
        kept.append(node)
    nodes[:] = kept
    return removed
