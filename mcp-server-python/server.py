#!/usr/bin/env python3
"""
MCP Server entry point for the work-order workflow tools.

This server exposes the work-order lifecycle (status transitions with
evidence gates), the utility audit / go-back workflow and the QA queues to
LLM agents via the Model Context Protocol, using the FastMCP framework.

Usage:
    python server.py

The server runs in stdio mode by default, which is the standard transport
for MCP servers that are invoked by LLM agents.
"""

import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from config import get_config
from tools.audits import (
    get_job_audits,
    record_audit,
    resolve_audit,
    review_audit,
    submit_audit_correction,
)
from tools.dependencies import add_job_dependency, update_job_dependency
from tools.jobs import create_job, get_job, review_job, update_job_status
from tools.qa_queues import qa_failed_audits, qa_pending_review, qa_stats
from tools.validate_job_transition import validate_job_transition

# Create FastMCP server instance
config = get_config()
mcp = FastMCP(
    name=config.server_name,
    instructions=(
        "This server manages utility-construction work orders. "
        "\n\n"
        "JOB LIFECYCLE:\n"
        "new -> assigned_to_gf -> pre_fielding -> scheduled -> in_progress -> pending_gf_review "
        "-> pending_qa_review -> pending_pm_approval -> ready_to_submit -> submitted -> billed "
        "-> invoiced, with stuck and go_back side branches. "
        "Use validate_job_transition to check a move without writing anything. "
        "Use update_job_status to perform it; gated moves need evidence in 'fields': "
        "assignedToGF (new -> assigned_to_gf), crewScheduledDate (pre_fielding -> scheduled), "
        "safetyGateCleared (scheduled -> in_progress), stuckReason (-> stuck). "
        "Use review_job for the GF -> QA -> PM review chain (approve, reject, request_revision). "
        "Legacy statuses (pending, pre-field, in-progress, completed) are accepted on input."
        "\n\n"
        "AUDITS:\n"
        "Use record_audit for a utility inspection result (pass/fail). "
        "A failed audit goes through review_audit (accepted/disputed), submit_audit_correction "
        "(photos required) and resolve_audit. Resolving the last active failure promotes the "
        "job to ready_to_submit. STALE_STATE errors are retryable: reload and try again."
        "\n\n"
        "QA QUEUES:\n"
        "Use qa_pending_review, qa_failed_audits and qa_stats for the QA dashboard."
    ),
)


def _present(**kwargs: Any) -> dict:
    """Drop parameters the caller did not provide."""
    return {key: value for key, value in kwargs.items() if value is not None}


@mcp.tool(
    name="validate_job_transition",
    description=(
        "Check whether a job may move from one status to another. Resolves legacy aliases, "
        "checks the transition graph and the evidence gates. Read-only."
    ),
)
def validate_job_transition_tool(
    from_status: str | None = None,
    to_status: str | None = None,
    fields: dict | None = None,
) -> dict:
    """
    Validate a job status transition.

    Args:
        from_status: Current status (canonical or legacy alias).
        to_status: Desired status (canonical or legacy alias).
        fields: Gate evidence with camelCase keys.

    Returns:
        {"valid", "canonicalFrom", "canonicalTo", "requiredFields", "error"?,
        "code"?, "validNextStatuses"}
    """
    return validate_job_transition(
        _present(from_status=from_status, to_status=to_status, fields=fields)
    )


@mcp.tool(
    name="create_job",
    description="Create a work order in status 'new', optionally with dependencies.",
)
def create_job_tool(
    title: str | None = None,
    wo_number: str | None = None,
    pm_number: str | None = None,
    address: str | None = None,
    dependencies: list[dict] | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Create a work order.

    Args:
        title: Job title.
        wo_number: Work order number.
        pm_number: PM number.
        address: Site address.
        dependencies: Dependency objects ({"type", "status"?, "description"?, ...}).
        db_path: Optional SQLite path override (default: data/workorders/jobs.db).
    """
    return create_job(
        _present(
            title=title,
            wo_number=wo_number,
            pm_number=pm_number,
            address=address,
            dependencies=dependencies,
            db_path=db_path,
        )
    )


@mcp.tool(name="get_job", description="Read one work order with its audit history and dependencies.")
def get_job_tool(job_id: int, db_path: str | None = None) -> dict:
    """Read one work order."""
    return get_job(_present(job_id=job_id, db_path=db_path))


@mcp.tool(
    name="update_job_status",
    description=(
        "Move a work order to a new status. Validates the transition and its evidence gates, "
        "stamps status side effects, and writes conditionally on the job version."
    ),
)
def update_job_status_tool(
    job_id: int,
    status: str,
    fields: dict | None = None,
    actor: str | None = None,
    expected_version: int | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Move a work order to a new status.

    Args:
        job_id: Job to update.
        status: Target status (canonical or legacy alias).
        fields: Gate evidence and optional details (crewSize, estimatedHours,
            preFieldNotes, siteConditions, bidAmount, bidNotes, submissionNotes).
        actor: Acting user recorded in the stamps.
        expected_version: Version the caller last read (optimistic concurrency).
        db_path: Optional SQLite path override.
    """
    return update_job_status(
        _present(
            job_id=job_id,
            status=status,
            fields=fields,
            actor=actor,
            expected_version=expected_version,
            db_path=db_path,
        )
    )


@mcp.tool(
    name="review_job",
    description=(
        "GF, QA or PM review of a job in pending_gf_review, pending_qa_review or "
        "pending_pm_approval: approve moves it forward, reject or request_revision sends it "
        "back one stage. Stamps the stage's review fields."
    ),
)
def review_job_tool(
    job_id: int,
    action: str,
    notes: str | None = None,
    specs_referenced: list[str] | None = None,
    actor: str | None = None,
    expected_version: int | None = None,
    db_path: str | None = None,
) -> dict:
    """Review the crew's work at the job's current review stage."""
    return review_job(
        _present(
            job_id=job_id,
            action=action,
            notes=notes,
            specs_referenced=specs_referenced,
            actor=actor,
            expected_version=expected_version,
            db_path=db_path,
        )
    )


@mcp.tool(
    name="record_audit",
    description=(
        "Record a utility audit result. 'pass' closes immediately; 'fail' needs an infraction "
        "description and enters QA review."
    ),
)
def record_audit_tool(
    job_id: int,
    result: str,
    infraction_description: str | None = None,
    infraction_type: str | None = None,
    spec_reference: str | None = None,
    audit_number: str | None = None,
    audit_date: str | None = None,
    inspector_name: str | None = None,
    inspector_id: str | None = None,
    db_path: str | None = None,
) -> dict:
    """Record a utility audit result on a job."""
    return record_audit(
        _present(
            job_id=job_id,
            result=result,
            infraction_description=infraction_description,
            infraction_type=infraction_type,
            spec_reference=spec_reference,
            audit_number=audit_number,
            audit_date=audit_date,
            inspector_name=inspector_name,
            inspector_id=inspector_id,
            db_path=db_path,
        )
    )


@mcp.tool(
    name="review_audit",
    description="QA review of a failed audit: 'accepted' assigns a correction, 'disputed' closes it.",
)
def review_audit_tool(
    job_id: int,
    audit_id: str,
    decision: str,
    assign_to_gf: str | None = None,
    qa_notes: str | None = None,
    dispute_reason: str | None = None,
    specs_referenced: list[str] | None = None,
    actor: str | None = None,
    db_path: str | None = None,
    correction_notes: str | None = None,
) -> dict:
    """QA review of a failed audit."""
    return review_audit(
        _present(
            job_id=job_id,
            audit_id=audit_id,
            decision=decision,
            assign_to_gf=assign_to_gf,
            qa_notes=qa_notes,
            correction_notes=correction_notes,
            dispute_reason=dispute_reason,
            specs_referenced=specs_referenced,
            actor=actor,
            db_path=db_path,
        )
    )


@mcp.tool(
    name="submit_audit_correction",
    description="Submit correction photos for an assigned go-back. At least one photo is required.",
)
def submit_audit_correction_tool(
    job_id: int,
    audit_id: str,
    photos: list[dict],
    description: str | None = None,
    actor: str | None = None,
    db_path: str | None = None,
) -> dict:
    """Submit correction proof for an audit."""
    return submit_audit_correction(
        _present(
            job_id=job_id,
            audit_id=audit_id,
            photos=photos,
            description=description,
            actor=actor,
            db_path=db_path,
        )
    )


@mcp.tool(
    name="resolve_audit",
    description=(
        "Approve a submitted correction and resolve the audit. Promotes the job to "
        "ready_to_submit when no active failed audit remains."
    ),
)
def resolve_audit_tool(
    job_id: int,
    audit_id: str,
    resolution_notes: str | None = None,
    actor: str | None = None,
    db_path: str | None = None,
) -> dict:
    """Resolve an audit."""
    return resolve_audit(
        _present(
            job_id=job_id,
            audit_id=audit_id,
            resolution_notes=resolution_notes,
            actor=actor,
            db_path=db_path,
        )
    )


@mcp.tool(name="get_job_audits", description="Audit history and audit aggregate of a job.")
def get_job_audits_tool(job_id: int, db_path: str | None = None) -> dict:
    """Audit history of a job."""
    return get_job_audits(_present(job_id=job_id, db_path=db_path))


@mcp.tool(name="add_job_dependency", description="Add a dependency (USA ticket, traffic control...) to a job.")
def add_job_dependency_tool(
    job_id: int,
    type: str,
    description: str | None = None,
    scheduled_date: str | None = None,
    ticket_number: str | None = None,
    notes: str | None = None,
    db_path: str | None = None,
) -> dict:
    """Add a dependency to a job."""
    return add_job_dependency(
        _present(
            job_id=job_id,
            type=type,
            description=description,
            scheduled_date=scheduled_date,
            ticket_number=ticket_number,
            notes=notes,
            db_path=db_path,
        )
    )


@mcp.tool(name="update_job_dependency", description="Update one dependency of a job by identifier.")
def update_job_dependency_tool(
    job_id: int,
    dependency_id: str,
    type: str | None = None,
    status: str | None = None,
    description: str | None = None,
    scheduled_date: str | None = None,
    completed_date: str | None = None,
    ticket_number: str | None = None,
    notes: str | None = None,
    db_path: str | None = None,
) -> dict:
    """Update one dependency."""
    return update_job_dependency(
        _present(
            job_id=job_id,
            dependency_id=dependency_id,
            type=type,
            status=status,
            description=description,
            scheduled_date=scheduled_date,
            completed_date=completed_date,
            ticket_number=ticket_number,
            notes=notes,
            db_path=db_path,
        )
    )


@mcp.tool(name="qa_pending_review", description="Jobs waiting for QA review.")
def qa_pending_review_tool(limit: int | None = None, db_path: str | None = None) -> dict:
    """Jobs in pending_qa_review."""
    return qa_pending_review(_present(limit=limit, db_path=db_path))


@mcp.tool(name="qa_failed_audits", description="Jobs with at least one active failed audit.")
def qa_failed_audits_tool(limit: int | None = None, db_path: str | None = None) -> dict:
    """Jobs with active failed audits."""
    return qa_failed_audits(_present(limit=limit, db_path=db_path))


@mcp.tool(name="qa_stats", description="QA dashboard counts.")
def qa_stats_tool(db_path: str | None = None) -> dict:
    """QA dashboard counts."""
    return qa_stats(_present(db_path=db_path))


def main():
    """
    Main entry point for the MCP server.

    Runs the server in stdio mode, which is the standard transport
    for MCP servers that are invoked by LLM agents.
    """
    # Load and setup configuration
    config.setup_logging()

    # Log startup information
    logger = logging.getLogger(__name__)
    logger.info("Starting work-order workflow MCP Server")
    logger.info(f"Server name: {config.server_name}")
    logger.info(f"Database path: {config.db_path}")

    # Validate configuration and log warnings
    warnings = config.validate()
    for warning in warnings:
        logger.warning(warning)

    # Start the server
    logger.info("Server starting in stdio mode")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
