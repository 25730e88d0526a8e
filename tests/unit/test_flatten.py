import unittest
import warnings

from langsync.errors import InvalidValueError, MergeConflictWarning
from langsync.flatten import ArrayNode, ObjectNode, TextNode, flatten, split_key, to_node, unflatten
from langsync.key_codec import encode_segment


class TestFlatten(unittest.TestCase):

    def test_nested_objects_join_with_dots(self):
        self.assertEqual(flatten({"a": {"b": "hello"}}), {"a.b": "hello"})

    def test_arrays_use_index_suffixes(self):
        document = {"list": ["x", {"y": "z"}], "title": "T"}
        self.assertEqual(flatten(document), {"list[0]": "x", "list[1].y": "z", "title": "T"})

    def test_order_follows_document(self):
        flat = flatten({"z": "1", "a": {"m": "2", "b": "3"}})
        self.assertEqual(list(flat), ["z", "a.m", "a.b"])

    def test_unsafe_keys_are_encoded(self):
        self.assertEqual(flatten({"allow-multiple": "yes"}), {"__encoded__YWxsb3ctbXVsdGlwbGU=": "yes"})

    def test_prefix_nests_every_key(self):
        self.assertEqual(flatten({"b": "x", "c": ["y"]}, prefix="a"), {"a.b": "x", "a.c[0]": "y"})

    def test_empty_containers_produce_no_keys(self):
        self.assertEqual(flatten({"a": {}, "b": [], "c": "x"}), {"c": "x"})

    def test_invalid_leaf_names_the_path(self):
        with self.assertRaises(InvalidValueError) as context:
            flatten({"a": {"b": 3}})
        self.assertEqual(context.exception.path, "a.b")
        self.assertEqual(
            str(context.exception),
            'Invalid translation value at "a.b": expected string or object, got int'
        )

    def test_booleans_and_nulls_are_invalid(self):
        for value in (True, None, 1.5):
            with self.assertRaises(InvalidValueError):
                flatten({"key": value})

    def test_array_inside_array_is_invalid(self):
        with self.assertRaises(InvalidValueError) as context:
            flatten({"a": [["x"]]})
        self.assertEqual(context.exception.path, "a[0]")

    def test_non_mapping_document_is_invalid(self):
        with self.assertRaises(InvalidValueError):
            flatten(["a"])

    def test_to_node_classifies_values(self):
        node = to_node({"a": "x", "b": ["y"]})
        self.assertIsInstance(node, ObjectNode)
        self.assertEqual(node.entries[0], ("a", TextNode("x")))
        self.assertEqual(node.entries[1], ("b", ArrayNode((TextNode("y"),))))


class TestUnflatten(unittest.TestCase):

    def test_round_trip(self):
        document = {
            "nav": {"home": "Home", "allow-multiple": "Many"},
            "items": ["one", {"label": "two"}],
            "a.b": {"c d": "spaced"},
        }
        self.assertEqual(unflatten(flatten(document)), document)

    def test_arrays_rebuilt_by_index_not_arrival_order(self):
        self.assertEqual(unflatten({"l[1]": "b", "l[0]": "a"}), {"l": ["a", "b"]})

    def test_index_gaps_are_compacted(self):
        self.assertEqual(unflatten({"l[0]": "a", "l[5]": "b", "l[2]": "c"}), {"l": ["a", "c", "b"]})

    def test_encoded_segments_are_decoded(self):
        key = f"{encode_segment('a.b')}.{encode_segment('allow-multiple')}"
        self.assertEqual(unflatten({key: "x"}), {"a.b": {"allow-multiple": "x"}})

    def test_split_key_splits_before_decoding(self):
        self.assertEqual(split_key("a.__encoded__YS5i[2]"), ["a", "a.b", 2])

    def test_shape_conflict_keeps_later_key_and_warns(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            result = unflatten({"a": "x", "a.b": "y"})
        self.assertEqual(result, {"a": {"b": "y"}})
        self.assertTrue(any(issubclass(w.category, MergeConflictWarning) for w in caught))

    def test_text_replacing_structure_warns(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            result = unflatten({"a.b": "y", "a": "x"})
        self.assertEqual(result, {"a": "x"})
        self.assertTrue(any(issubclass(w.category, MergeConflictWarning) for w in caught))


if __name__ == '__main__':
    unittest.main()
