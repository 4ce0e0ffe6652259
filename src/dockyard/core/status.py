"""Project status state machine and presentation labels."""

from __future__ import annotations

from dockyard.models.project import ProjectStatus

# Valid status transitions: from_status -> allowed to_statuses
VALID_TRANSITIONS: dict[ProjectStatus, set[ProjectStatus]] = {
    ProjectStatus.QUEUED: {ProjectStatus.BUILDING, ProjectStatus.ERROR},
    ProjectStatus.BUILDING: {ProjectStatus.BUILDING, ProjectStatus.ACTIVE, ProjectStatus.ERROR},
    ProjectStatus.ACTIVE: {ProjectStatus.ACTIVE, ProjectStatus.BUILDING, ProjectStatus.ERROR},
    ProjectStatus.ERROR: {ProjectStatus.ERROR, ProjectStatus.BUILDING, ProjectStatus.ACTIVE},
}

# States a Redeploy may start from
REDEPLOYABLE = {ProjectStatus.ACTIVE, ProjectStatus.ERROR, ProjectStatus.BUILDING}

# States the platform probe is allowed to refresh
PROBE_REFRESHABLE = {ProjectStatus.ACTIVE, ProjectStatus.ERROR}

_CALLBACK_STATUS: dict[str, ProjectStatus] = {
    "success": ProjectStatus.ACTIVE,
    "active": ProjectStatus.ACTIVE,
    "building": ProjectStatus.BUILDING,
    "in_progress": ProjectStatus.BUILDING,
    "queued": ProjectStatus.BUILDING,
    "error": ProjectStatus.ERROR,
    "failure": ProjectStatus.ERROR,
    "failed": ProjectStatus.ERROR,
    "cancelled": ProjectStatus.ERROR,
}

LABELS: dict[str, dict[ProjectStatus, str]] = {
    "en": {
        ProjectStatus.QUEUED: "Queued",
        ProjectStatus.BUILDING: "Building",
        ProjectStatus.ACTIVE: "Live",
        ProjectStatus.ERROR: "Error",
    },
    "ru": {
        ProjectStatus.QUEUED: "В очереди",
        ProjectStatus.BUILDING: "Сборка",
        ProjectStatus.ACTIVE: "Активен",
        ProjectStatus.ERROR: "Ошибка",
    },
}


def can_transition(current: ProjectStatus, new: ProjectStatus) -> bool:
    return new in VALID_TRANSITIONS.get(current, set())


def status_from_callback(raw: str) -> tuple[ProjectStatus, bool]:
    """Map a runner status string to the canonical enum.

    Returns the status and whether the raw value was recognised. Unknown
    values count as a failed build.
    """
    status = _CALLBACK_STATUS.get(raw.strip().lower())
    if status is not None:
        return status, True
    try:
        return parse_status(raw), True
    except ValueError:
        return ProjectStatus.ERROR, False


def status_label(status: ProjectStatus, lang: str = "en") -> str:
    labels = LABELS.get(lang, LABELS["en"])
    return labels[status]


def parse_status(value: str) -> ProjectStatus:
    """Canonical enum from a canonical value or any localized label."""
    try:
        return ProjectStatus(value.strip().lower())
    except ValueError:
        pass
    for labels in LABELS.values():
        for status, label in labels.items():
            if label.lower() == value.strip().lower():
                return status
    raise ValueError(f"Unknown status: {value}")
