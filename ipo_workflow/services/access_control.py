"""
IPO Workflow — Capability-Based Access Control

One evaluator for every workflow operation. An actor's standing on an
application is reduced to a single *relation* (admin, assigned officer,
issuer CEO, ...), and CAPABILITY_MATRIX says which capabilities that
relation carries, optionally only while the application is in a given set
of statuses.

Pure: no database access. Callers load the application first so that a
missing entity surfaces as NotFoundError before any access decision.

Usage:
    from ipo_workflow.services.access_control import Actor, check_capability

    actor = Actor(id="p-1", role="ISSUER_CEO", company_id="c-1")
    check_capability(actor, application, "submit")   # raises ForbiddenError

    if has_capability(actor, application, "view"):
        ...
"""

from dataclasses import dataclass

from ipo_workflow.core.exceptions import ForbiddenError
from ipo_workflow.models.application import (
    APPLICATION_STATUSES,
    REGULATOR_VISIBLE_STATUSES,
    TERMINAL_STATUSES,
)
from ipo_workflow.models.directory import ISSUER_ROLES

# ── Constants ────────────────────────────────────────────────────────────────

CAPABILITIES = {
    "view",
    "edit_sections",
    "submit",
    "assign_advisor",
    "submit_to_cma",
    "create_feedback",
    "respond_feedback",
    "resolve_feedback",
    "comment",
    "internal_comment",
    "start_review",
    "issue_query",
    "review",
    "view_audit",
    "view_reviews",
}

RELATIONS = (
    "cma_admin",
    "assigned_officer",
    "regulator",
    "issuer_ceo",
    "issuer_member",
    "assigned_advisor",
    "none",
)

_NON_TERMINAL = frozenset(APPLICATION_STATUSES - TERMINAL_STATUSES)

# relation -> {capability: allowed statuses, or None for any status}
CAPABILITY_MATRIX = {
    "cma_admin": {
        "view": None,
        "comment": None,
        "internal_comment": None,
        "view_audit": None,
        "start_review": None,
        "issue_query": None,
        "review": None,
        "view_reviews": None,
    },
    "assigned_officer": {
        "view": None,
        "comment": None,
        "internal_comment": None,
        "view_audit": None,
        "start_review": None,
        "issue_query": None,
        "review": None,
        "view_reviews": None,
    },
    "regulator": {
        "view": REGULATOR_VISIBLE_STATUSES,
        "comment": REGULATOR_VISIBLE_STATUSES,
        "internal_comment": REGULATOR_VISIBLE_STATUSES,
        "view_audit": REGULATOR_VISIBLE_STATUSES,
        "issue_query": REGULATOR_VISIBLE_STATUSES,
        "start_review": None,
        "review": None,
        "view_reviews": None,
    },
    "issuer_ceo": {
        "view": None,
        "edit_sections": None,
        "submit": None,
        "assign_advisor": None,
        "respond_feedback": None,
        "resolve_feedback": None,
        "comment": None,
        "view_audit": None,
    },
    "issuer_member": {
        "view": None,
        "edit_sections": None,
        "respond_feedback": None,
        "resolve_feedback": None,
        "comment": None,
        "view_audit": None,
    },
    "assigned_advisor": {
        "view": None,
        "edit_sections": None,
        "submit_to_cma": None,
        "create_feedback": _NON_TERMINAL,
        "respond_feedback": None,
        "comment": None,
        "view_audit": None,
    },
    "none": {},
}


@dataclass(frozen=True)
class Actor:
    """The acting principal, as yielded by the identity provider."""

    id: str
    role: str
    company_id: str | None = None

    @classmethod
    def from_profile(cls, profile) -> "Actor":
        return cls(id=profile.id, role=profile.role, company_id=profile.company_id)

    @property
    def is_issuer(self) -> bool:
        return self.role in ISSUER_ROLES


def relation_to(actor: Actor, application) -> str:
    """Reduce (actor, application) to the single relation that governs access."""
    if actor is None:
        return "none"
    if actor.role == "CMA_ADMIN":
        return "cma_admin"
    if actor.role == "CMA_REGULATOR":
        if application.assigned_cma_officer and application.assigned_cma_officer == actor.id:
            return "assigned_officer"
        return "regulator"
    if actor.role in ISSUER_ROLES:
        if actor.company_id and actor.company_id == application.company_id:
            return "issuer_ceo" if actor.role == "ISSUER_CEO" else "issuer_member"
        return "none"
    if actor.role == "IB_ADVISOR":
        if application.assigned_ib_advisor and application.assigned_ib_advisor == actor.id:
            return "assigned_advisor"
    return "none"


def allowed_capabilities(actor: Actor, application) -> set[str]:
    """Every capability *actor* holds on *application* in its current status."""
    grants = CAPABILITY_MATRIX[relation_to(actor, application)]
    return {
        capability
        for capability, statuses in grants.items()
        if statuses is None or application.status in statuses
    }


def has_capability(actor: Actor, application, capability: str) -> bool:
    if capability not in CAPABILITIES:
        raise ValueError(f"Unknown capability: {capability}")
    return capability in allowed_capabilities(actor, application)


def check_capability(actor: Actor, application, capability: str) -> None:
    """
    Raise ForbiddenError if *actor* lacks *capability* on *application*.

    Raises:
        ForbiddenError: the application exists but the actor may not act.
    """
    if not has_capability(actor, application, capability):
        raise ForbiddenError(actor.id if actor else None, capability, application.id)
