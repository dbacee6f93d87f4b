"""活动策划场景的工具目录。

只描述工具的参数 schema 与确认分类；真正读写活动/供应商/赞助商记录的
处理函数由外部协作方注册到 ToolExecutor。

requires_confirmation=True 的工具会产生外部副作用（创建/更新记录、发起询价），
其余为只读工具，可在同一轮内自动执行。
"""

from typing import Dict, List

from .definitions import ToolDef, ToolParam


# 成功执行后会结束会话的终结动作，data 中的 eventId 作为会话关联实体
TERMINAL_TOOL = "createEvent"
TERMINAL_ENTITY_KEY = "eventId"

EVENT_TYPES = ["conference", "hackathon", "workshop", "meetup", "corporate", "webinar", "concert", "exhibition", "other"]
VENDOR_CATEGORIES = ["catering", "av", "photography", "decoration", "security", "transportation", "entertainment", "staffing"]
SPONSOR_TIERS = ["platinum", "gold", "silver", "bronze"]


def _param(name: str, description: str, schema: Dict, required: bool = False) -> ToolParam:
    return ToolParam(name=name, description=description, required=required, schema=schema)


def _string(name: str, description: str, required: bool = False, enum: List[str] = None) -> ToolParam:
    schema: Dict = {"type": "string"}
    if enum:
        schema["enum"] = enum
    return _param(name, description, schema, required)


def _number(name: str, description: str, required: bool = False) -> ToolParam:
    return _param(name, description, {"type": "number"}, required)


def _params(*params: ToolParam) -> Dict[str, ToolParam]:
    return {p.name: p for p in params}


def default_tool_defs() -> List[ToolDef]:
    requirement_flags = {
        key: {"type": "boolean", "description": f"Whether {label} is needed"}
        for key, label in (
            ("catering", "catering"),
            ("av", "AV equipment"),
            ("photography", "photography/videography"),
            ("security", "security"),
            ("transportation", "transportation"),
            ("decoration", "decoration"),
        )
    }
    return [
        ToolDef(
            name="createEvent",
            description=(
                "Create a new event with the provided details. Use this when you have gathered "
                "enough information from the user to create an event."
            ),
            params=_params(
                _string("title", "The name/title of the event", required=True),
                _string("description", "A detailed description of the event"),
                _string("eventType", "The type of event", required=True, enum=EVENT_TYPES),
                _string("startDate", "Start date in YYYY-MM-DD format", required=True),
                _string("startTime", "Start time in HH:MM format (24-hour)"),
                _string("endDate", "End date in YYYY-MM-DD format (optional, defaults to start date)"),
                _string("endTime", "End time in HH:MM format (24-hour)"),
                _string(
                    "locationType",
                    "Whether the event is in-person, virtual, or hybrid",
                    enum=["in-person", "virtual", "hybrid"],
                ),
                _string("venueName", "Name of the venue (for in-person/hybrid events)"),
                _string("venueAddress", "Full address of the venue"),
                _string("virtualPlatform", "Platform for virtual attendance (e.g., Zoom, Google Meet)"),
                _number("expectedAttendees", "Expected number of attendees"),
                _number("budget", "Total budget for the event in USD"),
                _param(
                    "requirements",
                    "Vendor requirements for the event",
                    {"type": "object", "properties": requirement_flags},
                ),
            ),
            requires_confirmation=True,
            category="events",
        ),
        ToolDef(
            name="updateEvent",
            description="Update an existing event with new details",
            params=_params(
                _string("eventId", "The ID of the event to update", required=True),
                _string("title", "New title for the event"),
                _string("description", "New description"),
                _string("startDate", "New start date (YYYY-MM-DD)"),
                _string("startTime", "New start time (HH:MM)"),
                _number("expectedAttendees", "Updated attendee count"),
                _number("budget", "Updated budget"),
            ),
            requires_confirmation=True,
            category="events",
        ),
        ToolDef(
            name="getEventDetails",
            description="Get details about a specific event",
            params=_params(_string("eventId", "The ID of the event to retrieve", required=True)),
            category="events",
        ),
        ToolDef(
            name="getUpcomingEvents",
            description="Get the user's upcoming events",
            params=_params(
                _number("limit", "Maximum number of events to return (default: 5)"),
                _string("status", "Filter by event status", enum=["draft", "planning", "active", "completed"]),
            ),
            category="events",
        ),
        ToolDef(
            name="searchVendors",
            description=(
                "Search for vendors that match specific criteria. Use this to find catering, AV, "
                "photography, and other service providers for events."
            ),
            params=_params(
                _string("category", "The type of vendor to search for", enum=VENDOR_CATEGORIES),
                _string("location", "Location to search in (city or region)"),
                _string("priceRange", "Budget range", enum=["budget", "mid-range", "premium", "luxury"]),
                _number("minRating", "Minimum rating (1-5)"),
                _number("limit", "Maximum number of results (default: 5)"),
            ),
            category="vendors",
        ),
        ToolDef(
            name="addVendorToEvent",
            description="Add a vendor to an event and create an inquiry",
            params=_params(
                _string("eventId", "The ID of the event", required=True),
                _string("vendorId", "The ID of the vendor to add", required=True),
                _number("proposedBudget", "Proposed budget for this vendor"),
                _string("notes", "Notes or special requests for the vendor"),
            ),
            requires_confirmation=True,
            category="vendors",
        ),
        ToolDef(
            name="searchSponsors",
            description=(
                "Search for potential sponsors that match event criteria. Use this to find companies "
                "interested in sponsoring events."
            ),
            params=_params(
                _string(
                    "industry",
                    "Industry to search in",
                    enum=["technology", "finance", "healthcare", "education", "media", "retail", "automotive", "consumer-goods"],
                ),
                _string("eventType", "Type of event they sponsor"),
                _number("minBudget", "Minimum sponsorship budget"),
                _number("maxBudget", "Maximum sponsorship budget"),
                _string("tier", "Sponsorship tier level", enum=SPONSOR_TIERS),
                _number("limit", "Maximum number of results (default: 5)"),
            ),
            category="sponsors",
        ),
        ToolDef(
            name="addSponsorToEvent",
            description="Add a sponsor to an event and create a sponsorship inquiry",
            params=_params(
                _string("eventId", "The ID of the event", required=True),
                _string("sponsorId", "The ID of the sponsor to add", required=True),
                _string("tier", "Proposed sponsorship tier", enum=SPONSOR_TIERS),
                _number("proposedAmount", "Proposed sponsorship amount"),
                _param(
                    "benefits",
                    "List of benefits to offer the sponsor",
                    {"type": "array", "items": {"type": "string"}},
                ),
            ),
            requires_confirmation=True,
            category="sponsors",
        ),
        ToolDef(
            name="getUserProfile",
            description="Get the current user's profile and preferences to personalize recommendations",
            params={},
            category="profile",
        ),
    ]
