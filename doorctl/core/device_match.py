"""Device name resolution and target matching."""

from __future__ import annotations

from doorctl.core.model import UNKNOWN_NAME, Advertisement, DiscoveredDevice


def resolve_display_name(advertisement: Advertisement) -> str:
    """Advertised local name first, then the platform-cached name."""
    if advertisement.local_name:
        return advertisement.local_name
    if advertisement.cached_name:
        return advertisement.cached_name
    return UNKNOWN_NAME


def name_matches_target(name: str, target_name: str) -> bool:
    if not target_name:
        return False
    return name.lower() == target_name.lower()


def device_matches_target(device: DiscoveredDevice, target_name: str) -> bool:
    return name_matches_target(device.display_name, target_name)
