"""
Integration tests for MCP server entry point.

Tests that server.py registers every work-order tool with proper metadata
and that the wrappers can be invoked directly.
"""

import os
import subprocess
import sys
from pathlib import Path
from unittest.mock import patch

from server import (
    create_job_tool,
    get_job_audits_tool,
    get_job_tool,
    mcp,
    qa_stats_tool,
    record_audit_tool,
    resolve_audit_tool,
    review_job_tool,
    update_job_status_tool,
    validate_job_transition_tool,
)

EXPECTED_TOOLS = [
    "validate_job_transition",
    "create_job",
    "get_job",
    "update_job_status",
    "review_job",
    "record_audit",
    "review_audit",
    "submit_audit_correction",
    "resolve_audit",
    "get_job_audits",
    "add_job_dependency",
    "update_job_dependency",
    "qa_pending_review",
    "qa_failed_audits",
    "qa_stats",
]


class TestServerIntegration:
    """Integration tests for the MCP server."""

    def test_server_has_correct_name(self):
        """Test that the MCP server uses the configured name."""
        if "WORKORDER_SERVER_NAME" not in os.environ:
            assert mcp.name == "workorder-workflow-mcp-server"

    def test_server_name_can_be_overridden_by_env(self):
        """Test that WORKORDER_SERVER_NAME is applied in a fresh process."""
        server_dir = Path(__file__).resolve().parents[1]
        env = os.environ.copy()
        env["WORKORDER_SERVER_NAME"] = "custom-server-name"
        env["PYTHONPATH"] = str(server_dir)

        proc = subprocess.run(
            [sys.executable, "-c", "import server; print(server.mcp.name)"],
            cwd=server_dir,
            env=env,
            capture_output=True,
            text=True,
            check=True,
        )

        assert proc.stdout.strip() == "custom-server-name"

    def test_server_has_instructions(self):
        """Test that the instructions describe the lifecycle and the audit flow."""
        assert mcp.instructions is not None
        assert "update_job_status" in mcp.instructions
        assert "resolve_audit" in mcp.instructions
        assert "STALE_STATE" in mcp.instructions

    def test_all_tools_are_registered(self):
        registered = mcp._tool_manager._tools
        for name in EXPECTED_TOOLS:
            assert name in registered, name
            assert registered[name].name == name
            assert registered[name].description

    def test_update_job_status_metadata(self):
        tool = mcp._tool_manager._tools["update_job_status"]
        assert "evidence" in tool.description.lower()
        assert "version" in tool.description.lower()


class TestToolWrappers:
    """Wrappers are called directly, the way FastMCP dispatches them."""

    def test_validate_job_transition_wrapper(self):
        result = validate_job_transition_tool(from_status="pending", to_status="assigned_to_gf")
        assert result["valid"] is False
        assert result["canonicalFrom"] == "new"
        assert result["requiredFields"] == ["assignedToGF"]

    def test_lifecycle_through_wrappers(self, tmp_path):
        db_path = str(tmp_path / "jobs.db")
        created = create_job_tool(title="Service drop", wo_number="WO-5", db_path=db_path)
        job_id = created["job"]["id"]

        moved = update_job_status_tool(
            job_id=job_id,
            status="assigned_to_gf",
            fields={"assignedToGF": "gf-2"},
            actor="pm-1",
            db_path=db_path,
        )
        assert "error" not in moved
        assert moved["status"] == "assigned_to_gf"

        job = get_job_tool(job_id=job_id, db_path=db_path)
        assert job["job"]["assignedToGFBy"] == "pm-1"
        assert job["validNextStatuses"] == ["pre_fielding"]

    def test_audit_through_wrappers(self, tmp_path):
        db_path = str(tmp_path / "jobs.db")
        job_id = create_job_tool(db_path=db_path)["job"]["id"]

        recorded = record_audit_tool(
            job_id=job_id, result="fail", infraction_description="Loose guy", db_path=db_path
        )
        assert recorded["has_failed_audit"] is True

        audits = get_job_audits_tool(job_id=job_id, db_path=db_path)
        assert audits["hasFailedAudit"] is True
        assert len(audits["auditHistory"]) == 1

        assert qa_stats_tool(db_path=db_path)["failed_audits"] == 1

    def test_wrapper_omits_unset_parameters(self):
        """Test that None parameters are not forwarded to the handler."""
        with patch("server.resolve_audit", return_value={"ok": True}) as mock_tool:
            result = resolve_audit_tool(job_id=3, audit_id="a1")

        assert result == {"ok": True}
        mock_tool.assert_called_once_with({"job_id": 3, "audit_id": "a1"})

    def test_review_job_wrapper(self):
        with patch("server.review_job", return_value={"ok": True}) as mock_tool:
            review_job_tool(job_id=4, action="approve", specs_referenced=["TD-1"])

        mock_tool.assert_called_once_with(
            {"job_id": 4, "action": "approve", "specs_referenced": ["TD-1"]}
        )
