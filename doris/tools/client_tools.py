"""Tools that involve the client device.

``open_maps`` runs on the server and only attaches a client action to the
reply. The rest are remote: the server returns the call to the client,
which executes it (MapKit, CoreLocation) and sends the result back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import Field

from doris.tools.base import ClientAction, ToolParams, ToolResult

if TYPE_CHECKING:
    from collections.abc import Iterable

    from doris.tools.registry import ToolRegistry

MAPS = "maps"
LOCATION = "location"

# Capability names sent by older clients, expanded to the ones tools use.
CAPABILITY_ALIASES: dict[str, tuple[str, ...]] = {
    "mapkit": (MAPS, LOCATION),
}


def expand_capabilities(capabilities: Iterable[str]) -> set[str]:
    expanded: set[str] = set()
    for capability in capabilities:
        expanded.add(capability)
        expanded.update(CAPABILITY_ALIASES.get(capability, ()))
    return expanded


class OpenMapsParams(ToolParams):
    lat: float = Field(description="Destination latitude")
    lon: float = Field(description="Destination longitude")
    label: str | None = Field(default=None, description="Name of the destination")


class SearchLocalPlacesParams(ToolParams):
    query: str = Field(description="What to look for, e.g. 'coffee' or 'pharmacy'")


class GetDirectionsParams(ToolParams):
    destination: str | None = Field(
        default=None, description="Place name or address (if no coordinates)"
    )
    lat: float | None = Field(default=None, description="Destination latitude")
    lon: float | None = Field(default=None, description="Destination longitude")
    transport_mode: Literal["driving", "walking", "transit"] = Field(
        default="driving", description="How the user is travelling"
    )


def register_client_tools(registry: ToolRegistry) -> None:
    @registry.tool(
        name="open_maps",
        description=(
            "Open turn-by-turn navigation to a coordinate on the user's device. "
            "Use after get_directions or search_local_places when the user "
            "wants to go there."
        ),
        category="client",
        params_model=OpenMapsParams,
    )
    async def open_maps(lat: float, lon: float, label: str | None = None) -> ToolResult:
        if not (-90 <= lat <= 90 and -180 <= lon <= 180):
            return ToolResult(error=f"Invalid coordinates: {lat}, {lon}")
        parameters: dict = {"lat": lat, "lon": lon}
        if label:
            parameters["label"] = label
        return ToolResult(
            data={"opened": True, **parameters},
            actions=[ClientAction(type="open_maps", parameters=parameters)],
        )

    registry.register_remote(
        "search_local_places",
        description=(
            "Search for places near the user's current location. Returns up to "
            "five results with name, coordinates, distance and address."
        ),
        capability=MAPS,
        params_model=SearchLocalPlacesParams,
    )
    registry.register_remote(
        "get_directions",
        description=(
            "Travel time and distance from the user's current location to a "
            "destination, given either coordinates or a place name."
        ),
        capability=MAPS,
        params_model=GetDirectionsParams,
    )
    registry.register_remote(
        "location_get_current",
        description="Get the user's current location (neighborhood, city, state).",
        capability=LOCATION,
    )
