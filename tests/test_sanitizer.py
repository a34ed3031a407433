from __future__ import annotations

import textwrap

import pytest

from diffguard.diff.model import LineKind
from diffguard.diff.sanitizer import sanitize, sanitize_with_report
from diffguard.diff.unified import parse_diff


def _dedent(text: str) -> str:
    return textwrap.dedent(text).lstrip("\n")


WELL_FORMED = _dedent(
    """
    diff --git a/src/a.py b/src/a.py
    --- a/src/a.py
    +++ b/src/a.py
    @@ -2,2 +2,1 @@
     two
    -three
    @@ -10,2 +9,3 @@ def helper():
     ten
    +ten-and-a-half
     eleven
    """
)


def test_end_to_end_fenced_example_is_unwrapped() -> None:
    raw = (
        "```diff\n"
        "diff --git a/src/x.js b/src/x.js\n"
        "--- a/src/x.js\n"
        "+++ b/src/x.js\n"
        "@@ -1,1 +1,1 @@\n"
        "-foo\n"
        "+bar\n"
        "```"
    )

    assert sanitize(raw) == (
        "diff --git a/src/x.js b/src/x.js\n"
        "--- a/src/x.js\n"
        "+++ b/src/x.js\n"
        "@@ -1,1 +1,1 @@\n"
        "-foo\n"
        "+bar\n"
    )


def test_fence_without_language_tag_and_crlf_are_handled() -> None:
    raw = "```\r\ndiff --git a/src/a.py b/src/a.py\r\n--- a/src/a.py\r\n+++ b/src/a.py\r\n@@ -1 +1 @@\r\n-a\r\n+b\r\n```\r\n"

    result = sanitize_with_report(raw)

    assert "\r" not in result.text
    assert "```" not in result.text
    assert result.text.endswith("+b\n")
    assert "stripped code fences" in result.adjustments


def test_preamble_before_first_section_is_removed() -> None:
    raw = "Sure! Here is the fix you asked for.\n\n" + WELL_FORMED

    result = sanitize_with_report(raw)

    assert result.text == WELL_FORMED
    assert any(note.startswith("removed 2 preamble") for note in result.adjustments)


def test_missing_git_header_is_synthesised_from_bare_markers() -> None:
    raw = _dedent(
        """
        --- a/src/util.py
        +++ b/src/util.py
        @@ -1 +1 @@
        -x = 1
        +x = 2
        --- a/src/other.py
        +++ b/src/other.py
        @@ -4 +4 @@
        -y = 1
        +y = 2
        """
    )

    result = sanitize(raw)

    assert result == _dedent(
        """
        diff --git a/src/util.py b/src/util.py
        --- a/src/util.py
        +++ b/src/util.py
        @@ -1,1 +1,1 @@
        -x = 1
        +x = 2
        diff --git a/src/other.py b/src/other.py
        --- a/src/other.py
        +++ b/src/other.py
        @@ -4,1 +4,1 @@
        -y = 1
        +y = 2
        """
    )


def test_synthesised_header_ignores_marker_timestamp() -> None:
    raw = "--- a/src/util.py\t2024-01-01 10:00:00\n+++ b/src/util.py\t2024-01-02 10:00:00\n@@ -1 +1 @@\n-a\n+b\n"

    result = sanitize(raw)

    assert result.startswith("diff --git a/src/util.py b/src/util.py\n")


def test_stray_lines_and_lone_delta_before_next_section_are_dropped() -> None:
    raw = _dedent(
        """
        diff --git a/src/a.py b/src/a.py
        --- a/src/a.py
        +++ b/src/a.py
        @@ -1,1 +1,1 @@
        -a
        +b
        Note: this fixes the bug.
        +
        diff --git a/src/b.py b/src/b.py
        index 123abc..456def 100644
        --- a/src/b.py
        +++ b/src/b.py
        @@ -3,1 +3,1 @@
        -c
        +d
        """
    )

    assert sanitize(raw) == _dedent(
        """
        diff --git a/src/a.py b/src/a.py
        --- a/src/a.py
        +++ b/src/a.py
        @@ -1,1 +1,1 @@
        -a
        +b
        diff --git a/src/b.py b/src/b.py
        index 123abc..456def 100644
        --- a/src/b.py
        +++ b/src/b.py
        @@ -3,1 +3,1 @@
        -c
        +d
        """
    )


def test_hunk_counts_are_recomputed_from_body() -> None:
    raw = _dedent(
        """
        diff --git a/src/a.py b/src/a.py
        --- a/src/a.py
        +++ b/src/a.py
        @@ -1,5 +1,9 @@
         context
        -old
        +new
        +extra
        """
    )

    result = sanitize_with_report(raw)

    assert "@@ -1,2 +1,3 @@" in result.text
    assert "src/a.py: adjusted hunk counts (-5/+9 -> -2/+3)" in result.adjustments


def test_counts_match_line_kinds_after_sanitising() -> None:
    raw = _dedent(
        """
        diff --git a/src/a.py b/src/a.py
        --- a/src/a.py
        +++ b/src/a.py
        @@ -3,1 +3,1 @@
         keep
        -drop one
        -drop two

         keep again
        +add
        @@ -20,7 +21,1 @@
        +only additions
        """
    )

    document = parse_diff(sanitize(raw))

    for hunk in document.files[0].hunks:
        removes_and_context = sum(1 for line in hunk.lines if line.kind is not LineKind.ADD)
        adds_and_context = sum(1 for line in hunk.lines if line.kind is not LineKind.REMOVE)
        assert hunk.declared_old_count == removes_and_context
        assert hunk.declared_new_count == adds_and_context


def test_hunks_are_sorted_and_rebased() -> None:
    raw = _dedent(
        """
        diff --git a/src/a.py b/src/a.py
        --- a/src/a.py
        +++ b/src/a.py
        @@ -10,2 +42,3 @@ def helper():
         ten
        +ten-and-a-half
         eleven
        @@ -2,2 +7,1 @@
         two
        -three
        """
    )

    result = sanitize_with_report(raw)

    assert result.text == WELL_FORMED
    assert "src/a.py: reordered hunks by old start line" in result.adjustments


def test_rebase_matches_cumulative_offset_formula() -> None:
    raw = _dedent(
        """
        diff --git a/src/a.py b/src/a.py
        --- a/src/a.py
        +++ b/src/a.py
        @@ -30,1 +1,1 @@
        -gone
        @@ -5,2 +1,1 @@
         five
        +five-a
        +five-b
        -six
        """
    )

    first, second = parse_diff(sanitize(raw)).files[0].hunks

    assert [first.old_start, second.old_start] == [5, 30]
    assert first.new_start == 5
    assert second.new_start == first.new_start + first.new_count + (
        second.old_start - (first.old_start + first.old_count)
    )


def test_new_start_never_drops_below_one() -> None:
    raw = _dedent(
        """
        diff --git a/src/a.py b/src/a.py
        --- a/src/a.py
        +++ b/src/a.py
        @@ -0,0 +3,2 @@
        +first
        +second
        """
    )

    assert "@@ -0,0 +1,2 @@" in sanitize(raw)


def test_each_file_section_is_rebased_independently() -> None:
    raw = _dedent(
        """
        diff --git a/src/a.py b/src/a.py
        --- a/src/a.py
        +++ b/src/a.py
        @@ -1,1 +1,3 @@
         a
        +b
        +c
        diff --git a/src/b.py b/src/b.py
        --- a/src/b.py
        +++ b/src/b.py
        @@ -8,1 +99,1 @@
        -x
        +y
        """
    )

    assert "@@ -8,1 +8,1 @@" in sanitize(raw)


@pytest.mark.parametrize(
    "raw",
    [
        WELL_FORMED,
        "```diff\n" + WELL_FORMED + "```",
        "Explanation first.\n--- a/src/a.py\n+++ b/src/a.py\n@@ -9 +1 @@\n-a\n\n+b\n",
        "diff --git a/src/a.py b/src/a.py\n--- a/src/a.py\n+++ b/src/a.py\n@@ -3,4 +3,4 @@\n ctx\n\n-old\n+new\n",
    ],
)
def test_sanitize_is_idempotent(raw: str) -> None:
    once = sanitize(raw)

    assert sanitize(once) == once


@pytest.mark.parametrize("raw", ["", "   \n\t", "```diff\n```"])
def test_blank_input_sanitises_to_empty_text(raw: str) -> None:
    assert sanitize(raw) == ""


def test_unstructured_text_is_passed_through_for_the_validator() -> None:
    assert sanitize("I could not produce a diff.") == "I could not produce a diff.\n"


def test_output_has_exactly_one_trailing_newline() -> None:
    result = sanitize(WELL_FORMED + "\n\n\n")

    assert result.endswith("\n")
    assert not result.endswith("\n\n")


def test_trailing_space_context_line_is_kept() -> None:
    raw = (
        "diff --git a/src/a.py b/src/a.py\n"
        "--- a/src/a.py\n"
        "+++ b/src/a.py\n"
        "@@ -1,3 +1,3 @@\n"
        " one\n"
        "-two\n"
        "+TWO\n"
        " \n"
    )

    result = sanitize_with_report(raw)

    assert result.text == raw
    assert not result.changed


def test_bare_section_after_git_section_gets_its_own_header() -> None:
    raw = _dedent(
        """
        diff --git a/src/a.js b/src/a.js
        --- a/src/a.js
        +++ b/src/a.js
        @@ -1,1 +1,1 @@
        -a
        +b
        --- a/src/b.js
        +++ b/src/b.js
        @@ -1,1 +1,1 @@
        -c
        +d
        """
    )

    result = sanitize_with_report(raw)

    assert result.text == _dedent(
        """
        diff --git a/src/a.js b/src/a.js
        --- a/src/a.js
        +++ b/src/a.js
        @@ -1,1 +1,1 @@
        -a
        +b
        diff --git a/src/b.js b/src/b.js
        --- a/src/b.js
        +++ b/src/b.js
        @@ -1,1 +1,1 @@
        -c
        +d
        """
    )
    assert "synthesised diff header for src/b.js" in result.adjustments
