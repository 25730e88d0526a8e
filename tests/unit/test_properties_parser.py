import textwrap
import unittest

from langsync.properties_parser import PropertiesParser, parse_properties_text, reassemble_file


class TestPropertiesParser(unittest.TestCase):

    def test_parse_properties_text_with_multiline_values(self):
        """
        Tests that parse_properties_text handles comments, blank lines and
        multi-line values.
        """
        content = textwrap.dedent("""
            # This is a comment

            key.one=Simple value
            key.two=This is a multi-line value that \\
                     continues on the next line.
            # Another comment
            key.three=Another simple value
        """).lstrip()

        parsed_lines, translations = parse_properties_text(content)

        self.assertEqual(translations, {
            'key.one': 'Simple value',
            'key.two': 'This is a multi-line value that continues on the next line.',
            'key.three': 'Another simple value'
        })
        self.assertEqual([line['type'] for line in parsed_lines], [
            'comment_or_blank', 'comment_or_blank', 'entry', 'entry', 'comment_or_blank', 'entry'
        ])
        self.assertTrue(parsed_lines[3]['was_multiline'])

    def test_reassemble_keeps_untouched_lines(self):
        content = "# header\nkey.one = Simple\\\n   continued\n\n! bang comment\nkey.two:Two\n"
        parsed_lines, _ = parse_properties_text(content)
        self.assertEqual(reassemble_file(parsed_lines), content)

    def test_escaped_separators_in_keys(self):
        translations = PropertiesParser().parse("my\\ key\\:x=value\n")
        self.assertEqual(translations, {'my key:x': 'value'})

    def test_serialize_updates_in_place(self):
        original = "# c\nkey.one=Simple\nkey.two = Two\nkey.three=Three\n"
        data = {'key.one': 'Simple', 'key.two': 'Deux', 'new': 'Neu'}

        result = PropertiesParser().serialize('fr', data, original=original)

        self.assertEqual(result, "# c\nkey.one=Simple\nkey.two = Deux\nnew=Neu\n")

    def test_serialize_escapes_newlines_and_key_whitespace(self):
        result = PropertiesParser().serialize('fr', {'my key': 'line1\nline2'})
        self.assertEqual(result, "my\\ key=line1\\nline2\n")
        self.assertEqual(PropertiesParser().parse(result), {'my key': 'line1\nline2'})

    def test_multiline_value_replaced_on_a_single_line(self):
        original = "key=old line1 \\\n    old line2\nother=x\n"
        result = PropertiesParser().serialize('fr', {'key': 'new line1 new line2', 'other': 'x'}, original=original)
        self.assertEqual(result, "key=new line1 new line2\nother=x\n")

    def test_value_escapes_are_resolved(self):
        translations = PropertiesParser().parse("path=C:\\\\temp\\tdir\nwelcome=Gr\\u00fc\\u00dfe\\nzur\\u00fcck\n")
        self.assertEqual(translations, {'path': 'C:\\temp\tdir', 'welcome': 'Grüße\nzurück'})

    def test_escaped_value_survives_rewrite(self):
        data = {'path': 'C:\\temp\tdir', 'lead': ' indented'}
        result = PropertiesParser().serialize('fr', data)
        self.assertEqual(result, "path=C:\\\\temp\\tdir\nlead=\\ indented\n")
        self.assertEqual(PropertiesParser().parse(result), data)

    def test_unchanged_escaped_value_keeps_its_raw_line(self):
        original = "msg=Line\\nbreak\n"
        result = PropertiesParser().serialize('fr', {'msg': 'Line\nbreak'}, original=original)
        self.assertEqual(result, original)


if __name__ == '__main__':
    unittest.main()
