"""Plain-text rendering of launch results."""

from __future__ import annotations

from smartlaunch.models import ConditionRecord, OrgMatch, PatientRecord


def format_patient(patient: PatientRecord) -> str:
    """Format a Patient as a readable card."""
    lines = [
        f"Name: {patient.display_name}",
        f"Gender: {patient.gender or 'Unknown'}",
        f"Birth Date: {patient.birth_date or 'Unknown'}",
    ]
    identifiers = patient.identifier_display
    if identifiers:
        lines.append("Identifiers:")
        lines.extend(f"  {line}" for line in identifiers)
    return "\n".join(lines)


def format_condition(condition: ConditionRecord) -> str:
    """Format a Condition as a single descriptive line."""
    parts = [condition.title]
    if condition.status:
        parts.append(f"(status: {condition.status})")
    if condition.onset:
        parts.append(f"since {condition.onset}")
    return " — ".join(parts)


def format_conditions(conditions: list[ConditionRecord]) -> str:
    if not conditions:
        return "No conditions recorded."
    lines = [f"- {format_condition(c)}" for c in conditions]
    return f"Conditions ({len(conditions)}):\n" + "\n".join(lines)


def format_org_match(index: int, match: OrgMatch) -> str:
    iss = match.resolved_iss or "(no FHIR endpoint; not selectable)"
    return f"{index:>2}. {match.display_name}\n    {iss}"
