"""Section 4 — Verification tool commands.

Tests TC.01–TC.25. P0 (choke point) and P1 (result handling).
"""

import json

import pytest
from unittest.mock import patch

from helpers import mock_subprocess_result

from command_gateway import (
    GatewayError,
    GovernanceResult,
    SpawnFailure,
    ToolCommandFailed,
    ValidationRejected,
)


# ---------------------------------------------------------------------------
# P0 — MUST PASS
# ---------------------------------------------------------------------------

@pytest.mark.p0
class TestToolChokePoint:

    def test_tc01_status_runs_tool_directly(self, gateway):
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result("clean\n")) as mock_run:
            out = gateway.run_tool_command(["status"])
        assert out == "clean\n"
        assert mock_run.call_args[0][0] == ["truthgit", "status"]
        assert mock_run.call_args[1]["shell"] is False

    def test_tc02_disallowed_subcommand_never_spawns(self, gateway):
        with patch("command_gateway.subprocess.run") as mock_run:
            with pytest.raises(ValidationRejected) as exc_info:
                gateway.run_tool_command(["init"])
        mock_run.assert_not_called()
        assert exc_info.value.verdict.blocked_pattern == "init"

    def test_tc03_injection_never_spawns(self, gateway):
        with patch("command_gateway.subprocess.run") as mock_run:
            with pytest.raises(ValidationRejected) as exc_info:
                gateway.run_tool_command(["verify", "claim; rm -rf /"])
        mock_run.assert_not_called()
        assert exc_info.value.verdict.blocked_pattern == ";"

    def test_tc04_empty_args_never_spawn(self, gateway):
        with patch("command_gateway.subprocess.run") as mock_run:
            with pytest.raises(ValidationRejected, match="No subcommand provided"):
                gateway.run_tool_command([])
        mock_run.assert_not_called()

    def test_tc05_claim_with_spaces_is_one_argument(self, gateway):
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result("{}")) as mock_run:
            gateway.run_tool_command(["verify", "Water boils at 100°C"])
        assert mock_run.call_args[0][0] == ["truthgit", "verify", "Water boils at 100°C"]

    def test_tc06_governance_claim_goes_through_validation(self, gateway):
        with patch("command_gateway.subprocess.run") as mock_run:
            with pytest.raises(ValidationRejected):
                gateway.governance_verify_local("claim `whoami`", "general")
        mock_run.assert_not_called()


# ---------------------------------------------------------------------------
# P1 — SHOULD PASS
# ---------------------------------------------------------------------------

@pytest.mark.p1
class TestToolResults:

    def test_tc10_nonzero_exit_raises(self, gateway):
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result("", "no repository", 1)):
            with pytest.raises(ToolCommandFailed) as exc_info:
                gateway.run_tool_command(["log"])
        assert str(exc_info.value) == "TruthGit error: no repository"
        assert exc_info.value.result.exit_code == 1

    def test_tc11_missing_tool_is_spawn_failure(self, gateway):
        with patch("command_gateway.subprocess.run",
                   side_effect=FileNotFoundError("truthgit")):
            with pytest.raises(SpawnFailure):
                gateway.run_tool_command(["status"])

    def test_tc12_custom_tool_executable(self, make_gateway):
        gateway = make_gateway(tool_executable="/opt/truthgit/bin/truthgit")
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result("1.0")) as mock_run:
            gateway.run_tool_command(["--version"])
        assert mock_run.call_args[0][0] == ["/opt/truthgit/bin/truthgit", "--version"]

    def test_tc13_tool_runs_in_default_working_directory(self, gateway, repo_root):
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result("ok")) as mock_run:
            gateway.run_tool_command(["status"])
        assert mock_run.call_args[1]["cwd"] == str(repo_root)

    def test_tc14_invalid_utf8_output_is_replaced(self, gateway):
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result(b"claim \xff")):
            assert gateway.run_tool_command(["show", "abc"]) == "claim \ufffd"

    def test_tc15_verify_claim_local(self, gateway):
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result('{"ok": true}')) as mock_run:
            out = gateway.verify_claim_local("Water is wet", "physics")
        assert out == '{"ok": true}'
        assert mock_run.call_args[0][0] == [
            "truthgit", "verify", "Water is wet", "--domain", "physics", "--json",
        ]

    def test_tc16_verify_claim_local_failure(self, gateway):
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result("", "bad domain", 2)):
            with pytest.raises(ToolCommandFailed, match="Verification failed: bad domain"):
                gateway.verify_claim_local("claim", "nowhere")

    def test_tc17_embedded_nul_is_spawn_failure(self, gateway):
        # ValueError from argv conversion, not OSError.
        with pytest.raises(SpawnFailure):
            gateway.run_tool_command(["verify", "a\x00b"])


@pytest.mark.p1
class TestGovernanceVerify:

    def test_tc20_parses_full_output(self, gateway):
        payload = {
            "status": "VERIFIED",
            "action": "pass",
            "confidence": 0.92,
            "reason": "Consensus reached",
            "audit_ref": "vf_123",
            "ontological_type": "fact",
        }
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result(json.dumps(payload))) as mock_run:
            result = gateway.governance_verify_local("Water boils at 100C", "physics", "high")
        assert result == GovernanceResult(**payload)
        assert mock_run.call_args[0][0] == [
            "truthgit", "safe-verify", "Water boils at 100C",
            "--domain", "physics", "--risk", "high", "--json",
        ]

    def test_tc21_defaults_for_missing_fields(self, gateway):
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result('{"confidence": "high"}')):
            result = gateway.governance_verify_local("claim", "general", "low")
        assert result.status == "UNKNOWN"
        assert result.action == "escalate"
        assert result.confidence == 0.0
        assert result.reason == "Local verification completed"
        assert result.audit_ref == ""
        assert result.ontological_type is None

    def test_tc22_risk_profile_from_settings(self, gateway, settings_service):
        settings_service.update(default_risk_profile="critical")
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result("{}")) as mock_run:
            gateway.governance_verify_local("claim", "general")
        argv = mock_run.call_args[0][0]
        assert argv[argv.index("--risk") + 1] == "critical"

    def test_tc23_unparseable_output(self, gateway):
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result("not json")):
            with pytest.raises(GatewayError, match="Failed to parse TruthGit output") as exc_info:
                gateway.governance_verify_local("claim", "general", "low")
        assert not isinstance(exc_info.value, ToolCommandFailed)

    def test_tc24_non_object_output(self, gateway):
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result("[1, 2]")):
            with pytest.raises(GatewayError, match="expected a JSON object"):
                gateway.governance_verify_local("claim", "general", "low")

    def test_tc25_failed_run(self, gateway):
        with patch("command_gateway.subprocess.run",
                   return_value=mock_subprocess_result("", "engine offline", 3)):
            with pytest.raises(ToolCommandFailed, match="TruthGit verification failed"):
                gateway.governance_verify_local("claim", "general", "low")
