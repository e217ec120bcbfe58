"""
Narrative Service response contract
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from .services import ServiceModel

FALLBACK_NARRATION = "The narrator is gathering their thoughts..."
FALLBACK_SUMMARY = "System error occurred."


class LocationUpdate(ServiceModel):
    sector: str = ""
    zone: str = ""
    site_name: str = ""
    site_id: str = ""
    narrative_detail: str = ""
    is_new_site: bool = False


class NPCResolution(ServiceModel):
    name: str
    action: Literal["existing", "new", "leaves"] = "existing"
    summary: str = ""


class SuggestedActor(ServiceModel):
    name: str
    template: str = ""
    difficulty: str = "Medium"
    is_ship: bool = Field(default=False, alias="isShip")
    race: Optional[str] = None


class AlignmentOption(ServiceModel):
    label: str
    alignment: str = "Neutral"


class ObjectiveUpdate(ServiceModel):
    title: str
    content: str = ""
    status: Literal["active", "completed", "failed"] = "active"
    is_tracked: bool = Field(default=False, alias="isTracked")


class NarratorUpdates(ServiceModel):
    gm_notes: Optional[str] = Field(default=None, alias="gmNotes")
    objectives: List[ObjectiveUpdate] = Field(default_factory=list)


class NarratorResponse(ServiceModel):
    location_update: LocationUpdate
    npc_resolution: List[NPCResolution] = Field(default_factory=list)
    narration: str
    turn_summary: str = Field(default="", alias="turnSummary")
    adventure_brief: str = ""
    active_engagement: bool = False
    suggested_actors: List[SuggestedActor] = Field(
        default_factory=list, alias="suggestedActors"
    )
    alignment_options: List[AlignmentOption] = Field(
        default_factory=list, alias="alignmentOptions"
    )
    updates: NarratorUpdates = Field(default_factory=NarratorUpdates)

    @classmethod
    def fallback(cls, site_name: str, zone: str = "", brief: str = "") -> "NarratorResponse":
        """Safe turn used when the service fails or returns garbage."""
        return cls(
            location_update=LocationUpdate(site_name=site_name, zone=zone, is_new_site=False),
            npc_resolution=[],
            narration=FALLBACK_NARRATION,
            turnSummary=FALLBACK_SUMMARY,
            adventure_brief=brief,
            active_engagement=False,
            suggestedActors=[],
            alignmentOptions=[],
        )


_STRING = {"type": "string"}
_BOOL = {"type": "boolean"}

NARRATOR_JSON_SCHEMA: Dict[str, Any] = {
    "title": "NarratorResponse",
    "type": "object",
    "properties": {
        "location_update": {
            "type": "object",
            "properties": {
                "sector": _STRING,
                "zone": _STRING,
                "site_name": {
                    "type": "string",
                    "description": "Physical location name only, never an event name. "
                    "Unchanged if no move occurred.",
                },
                "site_id": _STRING,
                "narrative_detail": _STRING,
                "is_new_site": _BOOL,
            },
            "required": ["site_name"],
        },
        "npc_resolution": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": _STRING,
                    "action": {"type": "string", "enum": ["existing", "new", "leaves"]},
                    "summary": _STRING,
                },
                "required": ["name", "action"],
            },
        },
        "narration": _STRING,
        "turnSummary": _STRING,
        "adventure_brief": _STRING,
        "active_engagement": _BOOL,
        "suggestedActors": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": _STRING,
                    "template": _STRING,
                    "difficulty": _STRING,
                    "isShip": _BOOL,
                    "race": _STRING,
                },
                "required": ["name"],
            },
        },
        "alignmentOptions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"label": _STRING, "alignment": _STRING},
                "required": ["label"],
            },
        },
        "updates": {
            "type": "object",
            "properties": {
                "gmNotes": _STRING,
                "objectives": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "title": _STRING,
                            "content": _STRING,
                            "status": {
                                "type": "string",
                                "enum": ["active", "completed", "failed"],
                            },
                            "isTracked": _BOOL,
                        },
                        "required": ["title"],
                    },
                },
            },
        },
    },
    "required": [
        "location_update",
        "npc_resolution",
        "narration",
        "turnSummary",
        "adventure_brief",
        "active_engagement",
        "alignmentOptions",
        "updates",
    ],
}
