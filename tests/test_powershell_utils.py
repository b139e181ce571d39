"""Tests for PowerShell text helpers."""

from __future__ import annotations

import base64

from wsus_gateway.utils.powershell import (
    encode_command,
    escape_for_shell,
    is_valid_module_name,
    quote_literal,
    sanitize_error,
)


def _unescape_double_quoted(text: str) -> str:
    """How PowerShell reads backtick escapes inside a "..." literal."""
    out: list[str] = []
    chars = iter(text)
    for ch in chars:
        if ch == "`":
            out.append(next(chars))
        else:
            out.append(ch)
    return "".join(out)


class TestEscapeForShell:
    def test_empty(self):
        assert escape_for_shell("") == ""

    def test_plain_text_unchanged(self):
        assert escape_for_shell("Passw0rd") == "Passw0rd"

    def test_backtick_doubled(self):
        assert escape_for_shell("a`b") == "a``b"

    def test_dollar_escaped(self):
        assert escape_for_shell("$env:PATH") == "`$env:PATH"

    def test_double_quote_escaped(self):
        assert escape_for_shell('say "hi"') == 'say `"hi`"'

    def test_single_quote_doubled(self):
        assert escape_for_shell("it's") == "it''s"

    def test_escape_backticks_not_reescaped(self):
        # Backtick first, so the backtick added for "$" stays single.
        assert escape_for_shell("`$") == "```$"

    def test_no_unescaped_expansion_survives(self):
        secret = 'p@$$w`rd"; Remove-Item C:\\ -Recurse; "'
        escaped = escape_for_shell(secret)
        # Every "$" and '"' is preceded by an odd number of backticks.
        for i, ch in enumerate(escaped):
            if ch in '$"':
                run = 0
                j = i - 1
                while j >= 0 and escaped[j] == "`":
                    run += 1
                    j -= 1
                assert run % 2 == 1

    def test_reads_back_without_single_quotes(self):
        secret = 'a$b`c"d'
        assert _unescape_double_quoted(escape_for_shell(secret)) == secret


class TestQuoteLiteral:
    def test_wraps(self):
        assert quote_literal("SUSDB") == "'SUSDB'"

    def test_doubles_single_quotes(self):
        assert quote_literal("O'Brien") == "'O''Brien'"

    def test_doubles_typographic_quotes(self):
        assert quote_literal("a\u2019b") == "'a\u2019\u2019b'"

    def test_dollar_left_alone(self):
        assert quote_literal("$x") == "'$x'"


class TestModuleName:
    def test_valid(self):
        assert is_valid_module_name("UpdateServices")
        assert is_valid_module_name("Sql_Server-2")

    def test_invalid(self):
        assert not is_valid_module_name("")
        assert not is_valid_module_name("Foo; Remove-Item")
        assert not is_valid_module_name("a.b")


def test_encode_command_is_utf16le_base64():
    encoded = encode_command("Get-Service")
    assert base64.b64decode(encoded).decode("utf-16-le") == "Get-Service"


class TestSanitizeError:
    def test_paths_masked(self):
        assert "[PATH]" in sanitize_error("Cannot open C:\\Program Files\\x.mdf")

    def test_line_numbers_masked(self):
        assert sanitize_error("Line 12: bad") == "[LINE] bad"

    def test_stack_lines_removed(self):
        assert sanitize_error("boom\n   at Foo.Bar()\ndone") == "boom\n   done"

    def test_truncated(self):
        assert len(sanitize_error("x" * 500)) == 200
