"""Tests for header/footer scaffolding and error cleanup."""

from algorun.scaffold import clean_error, remap_error_line, wrap


class TestWrap:
    def test_no_header(self):
        wrapped = wrap("", "print(1)")
        assert wrapped.source == "print(1)"
        assert wrapped.body_line_offset == 0

    def test_header_and_footer(self):
        source, offset = wrap("import math\nN = 3", "print(N)", "print('end')")
        assert source == "import math\nN = 3\nprint(N)\nprint('end')"
        assert offset == 2

    def test_offset_counts_header_lines(self):
        header = "a = 1\nb = 2\nc = 3"
        source, offset = wrap(header, "print(a)")
        assert source.split("\n")[offset] == "print(a)"

    def test_footer_does_not_shift_body(self):
        assert wrap("", "x = 1", "print(x)").body_line_offset == 0


class TestRemapErrorLine:
    def test_two_line_header(self):
        assert remap_error_line(3, 2) == 1

    def test_never_below_one(self):
        for reported in range(-3, 6):
            for offset in range(0, 8):
                assert remap_error_line(reported, offset) >= 1

    def test_monotonic_in_reported_line(self):
        for offset in range(0, 5):
            values = [remap_error_line(line, offset) for line in range(1, 20)]
            assert values == sorted(values)

    def test_negative_offset_treated_as_zero(self):
        assert remap_error_line(4, -2) == 4


class TestCleanError:
    def test_keeps_last_kind_line_with_learner_line(self):
        tb = (
            "Traceback (most recent call last):\n"
            '  File "<exec>", line 3, in <module>\n'
            "NameError: name 'x' is not defined\n"
        )
        assert clean_error(tb, body_line_offset=2) == "Line 1: NameError: name 'x' is not defined"

    def test_deepest_script_frame_wins(self):
        tb = (
            "Traceback (most recent call last):\n"
            '  File "<string>", line 9, in <module>\n'
            '  File "<string>", line 4, in helper\n'
            "ZeroDivisionError: division by zero\n"
        )
        assert clean_error(tb) == "Line 4: ZeroDivisionError: division by zero"

    def test_library_frames_ignored(self):
        tb = (
            "Traceback (most recent call last):\n"
            '  File "/code/script.py", line 5, in <module>\n'
            '  File "/usr/lib/python3.12/json/__init__.py", line 346, in loads\n'
            "json.decoder.JSONDecodeError: Expecting value: line 1 column 1 (char 0)\n"
        )
        assert clean_error(tb, 1).startswith("Line 4: json.decoder.JSONDecodeError")

    def test_restricted_filenames(self):
        tb = '  File "<string>", line 7, in <module>\nValueError: bad\n'
        assert clean_error(tb, filenames=("<exec>",)) == "ValueError: bad"

    def test_syntax_error(self):
        tb = (
            '  File "<exec>", line 4\n'
            "    def :\n"
            "        ^\n"
            "SyntaxError: invalid syntax\n"
        )
        assert clean_error(tb, 1) == "Line 3: SyntaxError: invalid syntax"

    def test_bare_exception_name(self):
        tb = 'Traceback (most recent call last):\n  File "<exec>", line 1, in <module>\nKeyboardInterrupt\n'
        assert clean_error(tb) == "Line 1: KeyboardInterrupt"

    def test_no_frames_falls_back_to_last_line(self):
        assert clean_error("something odd happened\nKilled") == "Killed"

    def test_empty(self):
        assert clean_error("") == "Unknown error"
        assert clean_error("   \n") == "Unknown error"
