"""Lenient parsing of ARM resource identifiers.

The control plane hands back ids such as
``/subscriptions/{sub}/resourceGroups/{rg}/providers/...``. This layer does
not validate their format: anything it cannot read comes back as empty
strings, and callers must treat an empty component as unresolvable.
"""

from __future__ import annotations

from dataclasses import dataclass

SUBSCRIPTIONS_SEGMENT = "subscriptions"
RESOURCE_GROUPS_SEGMENT = "resourcegroups"


@dataclass(frozen=True)
class ResourceLocation:
    """Subscription and resource group derived from a resource id."""

    subscription: str
    resource_group: str

    @property
    def resolvable(self) -> bool:
        return bool(self.subscription and self.resource_group)

    def to_dict(self) -> dict[str, str]:
        return {"subscription": self.subscription, "resourceGroup": self.resource_group}


def _segment_after(segments: list[str], marker: str) -> str:
    for index, segment in enumerate(segments[:-1]):
        if segment.lower() == marker:
            return segments[index + 1]
    return ""


def parse_resource_id(resource_id: str | None) -> ResourceLocation:
    """Split a resource id into its subscription and resource group.

    Never raises. ``parse_resource_id("not-a-resource-id")`` returns two
    empty strings.
    """
    if not resource_id:
        return ResourceLocation(subscription="", resource_group="")

    segments = [s for s in resource_id.strip().split("/") if s]
    return ResourceLocation(
        subscription=_segment_after(segments, SUBSCRIPTIONS_SEGMENT),
        resource_group=_segment_after(segments, RESOURCE_GROUPS_SEGMENT),
    )


def resource_group_id(subscription_id: str, resource_group: str) -> str:
    return f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"


def resolve_resource_group_scope(resource_group: str, default_subscription_id: str) -> str:
    """Return a resource-group scope from a bare name or a full id."""
    if resource_group.lower().startswith(f"/{SUBSCRIPTIONS_SEGMENT}/"):
        return resource_group.rstrip("/")
    return resource_group_id(default_subscription_id, resource_group)
