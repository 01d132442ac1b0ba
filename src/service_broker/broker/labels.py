"""Default labels attached to provisioned resources."""

from __future__ import annotations

import re

from .requests import ProvisionDetails

MAX_LABEL_LENGTH = 63

_INVALID_LABEL_CHARS = re.compile(r"[^a-z0-9_-]")


def sanitize_label_value(value: str) -> str:
    """Lowercase, replace characters outside ``[a-z0-9_-]`` with ``_`` and truncate."""
    return _INVALID_LABEL_CHARS.sub("_", value.lower())[:MAX_LABEL_LENGTH]


def extract_default_labels(instance_id: str, details: ProvisionDetails) -> dict[str, str]:
    """Labels identifying the platform organization, space and instance.

    Args:
        instance_id: Id of the instance being provisioned
        details: Provision request

    Returns:
        Label map safe to attach to backend resources

    Example:
        >>> extract_default_labels("Inst.1", ProvisionDetails(
        ...     service_id="s", plan_id="p", organization_guid="ORG", space_guid="space"))
        {'pcf-organization-guid': 'org', 'pcf-space-guid': 'space', 'pcf-instance-id': 'inst_1'}
    """
    labels = {
        "pcf-organization-guid": details.organization_guid,
        "pcf-space-guid": details.space_guid,
        "pcf-instance-id": instance_id,
    }
    return {key: sanitize_label_value(value) for key, value in labels.items()}


__all__ = ["MAX_LABEL_LENGTH", "extract_default_labels", "sanitize_label_value"]
