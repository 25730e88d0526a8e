import textwrap
import unittest

from langsync.code_strings import (
    CodeStringsParser,
    ExtractionAccumulator,
    LiteralFilter,
    component_name_for,
    extract_component_strings,
    find_string_literals,
    quote_literal,
)
from langsync.errors import InvalidStructureError

COMPONENT = textwrap.dedent("""\
    import React from "react";

    export function Welcome() {
      return <input className="card-body" placeholder="Your name" href="https://x.io" />;
    }
    const title = 'Welcome back';
    const greeting = "Hello";
""")


class TestLiteralFiltering(unittest.TestCase):

    def test_only_prose_literals_are_translatable(self):
        self.assertEqual(CodeStringsParser().parse(COMPONENT), {
            "0": "Your name",
            "1": "Welcome back",
            "2": "Hello",
        })

    def test_directives_and_requires_are_skipped(self):
        code = '"use client";\nconst _ = require("lodash");\nconst label = "Save";\n'
        self.assertEqual([literal.text for literal in find_string_literals(code)], ["Save"])

    def test_custom_filter(self):
        predicate = LiteralFilter(skip_characters="", skip_attributes=frozenset())
        texts = [literal.text for literal in find_string_literals(COMPONENT, predicate)]
        self.assertIn("card-body", texts)
        self.assertIn("https://x.io", texts)
        self.assertNotIn("react", texts)

    def test_blank_literals_are_skipped(self):
        self.assertEqual(find_string_literals('const a = "  ";'), [])


class TestLiteralReplacement(unittest.TestCase):

    def test_serialize_replaces_only_translated_literals(self):
        data = {"0": "Votre nom", "1": "Bon retour", "2": 'Dis "salut"'}

        result = CodeStringsParser().serialize("fr", data, original=COMPONENT)

        self.assertIn('import React from "react";', result)
        self.assertIn('className="card-body" placeholder="Votre nom" href="https://x.io"', result)
        self.assertIn("const title = 'Bon retour';", result)
        self.assertIn('const greeting = "Dis \\"salut\\"";', result)
        self.assertEqual(CodeStringsParser().parse(result)["0"], "Votre nom")

    def test_unchanged_values_leave_source_identical(self):
        parser = CodeStringsParser()
        self.assertEqual(parser.serialize("fr", parser.parse(COMPONENT), original=COMPONENT), COMPONENT)

    def test_serialize_requires_original(self):
        with self.assertRaises(InvalidStructureError):
            CodeStringsParser().serialize("fr", {"0": "x"})

    def test_unknown_ordinal_is_rejected(self):
        with self.assertRaises(InvalidStructureError):
            CodeStringsParser().serialize("fr", {"7": "x"}, original=COMPONENT)

    def test_quote_literal(self):
        self.assertEqual(quote_literal("it's", "'"), "'it\\'s'")
        self.assertEqual(quote_literal("it\\'s", "'"), "'it\\'s'")
        self.assertEqual(quote_literal("line\nbreak", '"'), '"line\\nbreak"')
        self.assertEqual(quote_literal("line\nbreak", "`"), "`line\nbreak`")
        self.assertEqual(quote_literal('"quoted"', '"'), '"quoted"')


class TestComponentExtraction(unittest.TestCase):

    CODE = textwrap.dedent("""\
        export default function WelcomeCard() {
          return (
            <div className="card">
              <h1>Welcome aboard</h1>
              <p>First paragraph</p>
              <p>Second paragraph</p>
              <input placeholder="Type here" onChange={handle} />
            </div>
          );
        }
    """)

    def test_keys_are_numbered_per_element(self):
        accumulator = ExtractionAccumulator()
        name = component_name_for(self.CODE, "Fallback")

        keys = extract_component_strings(self.CODE, name, accumulator)

        self.assertEqual(keys, [
            "welcomeCard.h1", "welcomeCard.p", "welcomeCard.p_2", "welcomeCard.placeholder",
        ])
        self.assertEqual(accumulator.translations["welcomeCard"], {
            "h1": "Welcome aboard",
            "p": "First paragraph",
            "p_2": "Second paragraph",
            "placeholder": "Type here",
        })

    def test_component_name_falls_back_to_file_name(self):
        self.assertEqual(component_name_for("export default () => null;", "Header"), "header")

    def test_merge_into_overrides_collected_components(self):
        accumulator = ExtractionAccumulator()
        accumulator.add("welcomeCard", "h1", "Welcome")
        merged = accumulator.merge_into({"other": {"x": "y"}, "welcomeCard": {"old": "z"}})
        self.assertEqual(merged, {"other": {"x": "y"}, "welcomeCard": {"h1": "Welcome"}})


if __name__ == '__main__':
    unittest.main()
