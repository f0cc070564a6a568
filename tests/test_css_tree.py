"""Tests for the parsed stylesheet tree."""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from vite_critical.css_tree import (
    AtRule,
    CssProcessingError,
    Declaration,
    Rule,
    parse_css,
    remove_rules,
    serialize_css,
    walk_declarations,
    walk_rules,
)


class TestParse(unittest.TestCase):
    def test_rules_and_media(self):
        nodes = parse_css("a{color:red}@media (min-width:10px){.b{margin:0 !important}}")

        self.assertEqual(len(nodes), 2)
        self.assertIsInstance(nodes[0], Rule)
        self.assertEqual(nodes[0].selector, "a")
        self.assertEqual(nodes[0].declarations, [Declaration("color", "red")])

        media = nodes[1]
        self.assertIsInstance(media, AtRule)
        self.assertEqual(media.name, "media")
        self.assertEqual(media.prelude, "(min-width:10px)")
        inner = media.children[0]
        self.assertEqual(inner.selector, ".b")
        self.assertEqual(inner.declarations, [Declaration("margin", "0", important=True)])

    def test_comments_are_dropped(self):
        nodes = parse_css("/* banner */\na { /* inline */ color: red; }")
        self.assertEqual(len(nodes), 1)
        self.assertEqual(nodes[0].declarations, [Declaration("color", "red")])

    def test_font_face_holds_declarations(self):
        nodes = parse_css("@font-face{font-family:Inter;src:url(inter.woff2)}")
        font_face = nodes[0]

        self.assertEqual(font_face.name, "font-face")
        self.assertEqual(
            font_face.children,
            [Declaration("font-family", "Inter"), Declaration("src", "url(inter.woff2)")],
        )

    def test_statement_at_rule(self):
        nodes = parse_css('@charset "utf-8";@import url(base.css) screen;')
        self.assertEqual([node.name for node in nodes], ["charset", "import"])
        self.assertFalse(nodes[1].has_block)
        self.assertEqual(nodes[1].prelude, "url(base.css) screen")

    def test_malformed_declaration_is_skipped(self):
        nodes = parse_css("a{color red}b{color:blue}")

        self.assertEqual([rule.selector for rule in nodes], ["a", "b"])
        self.assertEqual(nodes[0].declarations, [])
        self.assertEqual(nodes[1].declarations, [Declaration("color", "blue")])

    def test_nested_rules_are_kept(self):
        nodes = parse_css(".card{color:blue;&:hover{color:green}.x{top:0}@media (min-width:1px){color:red}}")
        card = nodes[0]

        self.assertEqual(card.declarations, [Declaration("color", "blue")])
        self.assertEqual([type(child).__name__ for child in card.children], ["Declaration", "Rule", "Rule", "AtRule"])
        self.assertEqual(card.children[1], Rule("&:hover", [Declaration("color", "green")]))
        self.assertEqual(card.children[3].children, [Declaration("color", "red")])

    def test_non_text_input_raises(self):
        with self.assertRaises(CssProcessingError):
            parse_css(None)


class TestSerialize(unittest.TestCase):
    def test_compact_output(self):
        css = "a , b { color : red ; margin:0!important }\n@media print { a { display: none } }\n@import url(x.css);"
        self.assertEqual(
            serialize_css(parse_css(css)),
            "a , b{color:red;margin:0!important;}\n@media print{a{display:none;}}\n@import url(x.css);",
        )

    def test_serialized_text_parses_to_same_tree(self):
        nodes = parse_css("@supports (display:grid){.g{display:grid}}.h{top:0}")
        self.assertEqual(parse_css(serialize_css(nodes)), nodes)


    def test_nested_rules_round_trip(self):
        css = ".card{color:blue;&:hover{color:green;}.x{top:0;}@media (min-width:1px){color:red;}}"
        self.assertEqual(serialize_css(parse_css(css)), css)


class TestWalkers(unittest.TestCase):
    def test_walk_rules_and_declarations(self):
        nodes = parse_css("a{color:red}@media print{b{top:0;left:0}}@font-face{font-family:X}")

        self.assertEqual([rule.selector for rule in walk_rules(nodes)], ["a", "b"])
        names = [(decl.name, type(owner).__name__) for decl, owner in walk_declarations(nodes)]
        self.assertEqual(
            names,
            [("color", "Rule"), ("top", "Rule"), ("left", "Rule"), ("font-family", "AtRule")],
        )

    def test_walkers_reach_nested_rules(self):
        nodes = parse_css(".card{color:blue;&:hover{color:green}@media print{display:none}}")

        self.assertEqual([rule.selector for rule in walk_rules(nodes)], [".card", "&:hover"])
        owners = [(decl.name, getattr(owner, "selector", None)) for decl, owner in walk_declarations(nodes)]
        self.assertEqual(owners, [("color", ".card"), ("color", "&:hover"), ("display", None)])

    def test_remove_nested_rule(self):
        nodes = parse_css(".card{color:blue;&:hover{color:green}}")

        self.assertEqual(remove_rules(nodes, lambda rule: rule.selector == "&:hover"), 1)
        self.assertEqual(serialize_css(nodes), ".card{color:blue;}")

    def test_remove_rules_at_any_depth(self):
        nodes = parse_css(".x{a:b}@media print{.x{a:b}.y{a:b}}")

        removed = remove_rules(nodes, lambda rule: rule.selector == ".x")

        self.assertEqual(removed, 2)
        self.assertEqual(serialize_css(nodes), "@media print{.y{a:b;}}")


if __name__ == "__main__":
    unittest.main()
