import unittest

from deduper.services.issue_text import (
    PLACEHOLDER_TITLE,
    derive_title,
    extract_stacktrace,
    parse_duplicate_of,
)


class ExtractStacktraceTests(unittest.TestCase):
    def test_keeps_plugin_frames_without_digits(self):
        body = (
            "Some description\n```\n"
            "\tat com.demonwav.mcdev.Foo.bar(Foo.java:42)\n"
            "\tat other.Baz.qux\n"
            "```\nmore text"
        )
        self.assertEqual(extract_stacktrace(body), ["com.demonwav.mcdev.Foo.bar(Foo.java:)"])

    def test_collapses_line_endings(self):
        body = (
            "x\n```\n"
            "java.lang.NullPointerException\r\n"
            "\tat com.demonwav.mcdev.A.a(A.java:1)\r\n\r\n"
            "\tat com.demonwav.mcdev.B$1.b(B.java:20)\r"
            "\tat com.demonwav.mcdev.C.c(C.java:3)\n"
            "```\n"
        )
        self.assertEqual(
            extract_stacktrace(body),
            [
                "com.demonwav.mcdev.A.a(A.java:)",
                "com.demonwav.mcdev.B$.b(B.java:)",
                "com.demonwav.mcdev.C.c(C.java:)",
            ],
        )

    def test_equal_traces_with_different_line_numbers_match(self):
        a = "\n```\n\tat com.demonwav.mcdev.Foo.bar(Foo.java:10)\n```\n"
        b = "\n```\n\tat com.demonwav.mcdev.Foo.bar(Foo.java:99)\n```\n"
        self.assertEqual(extract_stacktrace(a), extract_stacktrace(b))

    def test_missing_markers(self):
        self.assertIsNone(extract_stacktrace(None))
        self.assertIsNone(extract_stacktrace("no code block here"))
        self.assertIsNone(extract_stacktrace("only one\n```\n\tat com.demonwav.mcdev.Foo.bar"))

    def test_trace_without_plugin_frames_is_not_extractable(self):
        body = "\n```\n\tat other.Baz.qux(Baz.java:1)\n```\n"
        self.assertIsNone(extract_stacktrace(body))

    def test_custom_frame_prefix(self):
        body = "\n```\n\tat org.example.Thing.run(Thing.java:5)\n```\n"
        self.assertEqual(extract_stacktrace(body, "\tat org.example"), ["org.example.Thing.run(Thing.java:)"])


class DeriveTitleTests(unittest.TestCase):
    def test_placeholder_title_uses_exception_line(self):
        body = "Reported by the plugin\n```\nNullPointerException\n\tat com.demonwav.mcdev.Foo\n```\n"
        self.assertEqual(derive_title(PLACEHOLDER_TITLE, body), "NullPointerException")

    def test_long_title_is_truncated(self):
        body = "\n```\n" + "E" * 300 + "\n```\n"
        title = derive_title(PLACEHOLDER_TITLE, body)
        self.assertEqual(len(title), 255)
        self.assertEqual(title, "E" * 252 + "...")

    def test_title_of_exactly_max_length_is_kept(self):
        body = "\n```\n" + "E" * 255 + "\n```\n"
        self.assertEqual(derive_title(PLACEHOLDER_TITLE, body), "E" * 255)

    def test_modified_title_is_unchanged(self):
        body = "\n```\nNullPointerException\n```\n"
        self.assertEqual(derive_title("NPE when opening project", body), "NPE when opening project")

    def test_empty_exception_line_keeps_placeholder(self):
        body = "\n```\n\n\tat com.demonwav.mcdev.Foo\n```\n"
        self.assertEqual(derive_title(PLACEHOLDER_TITLE, body), PLACEHOLDER_TITLE)


class ParseDuplicateOfTests(unittest.TestCase):
    def test_matches_whole_comment_case_insensitive(self):
        self.assertEqual(parse_duplicate_of("Duplicate of #7"), 7)
        self.assertEqual(parse_duplicate_of("  duplicate OF   #123 \n"), 123)

    def test_rejects_other_text(self):
        self.assertIsNone(parse_duplicate_of("I think this is a duplicate of #7"))
        self.assertIsNone(parse_duplicate_of("Duplicate of #7, closing"))
        self.assertIsNone(parse_duplicate_of("Duplicate of 7"))
        self.assertIsNone(parse_duplicate_of(""))
        self.assertIsNone(parse_duplicate_of(None))


if __name__ == "__main__":
    unittest.main()
