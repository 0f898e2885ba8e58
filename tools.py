"""MCP tools for strava-mcp-gateway.

Thin wrappers over the Strava API. Each tool forwards to StravaClient and
turns upstream failures into a ToolError the MCP client can display.
"""

import base64
import binascii
import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from formatters import activity_as_document, activity_url, format_distance
from strava_client import StravaClient, StravaError, format_error

logger = logging.getLogger(__name__)

SERVER_NAME = "strava-mcp-gateway"

STREAM_TYPES = [
    "time", "latlng", "distance", "altitude", "velocity_smooth", "heartrate",
    "cadence", "watts", "temp", "moving", "grade_smooth",
]
UPLOAD_DATA_TYPES = ["fit", "fit.gz", "tcx", "tcx.gz", "gpx", "gpx.gz"]
SEARCH_RESULT_LIMIT = 10


def date_filter_for_query(query: str, now: Optional[datetime] = None) -> dict[str, int]:
    """Translate time words in a search query into before/after epoch bounds."""
    now = now or datetime.now()
    text = query.lower()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # Weeks start on Sunday
    week_start = midnight - timedelta(days=(midnight.weekday() + 1) % 7)

    if "today" in text:
        return {"after": int(midnight.timestamp())}
    if "last week" in text:
        return {
            "after": int((week_start - timedelta(days=7)).timestamp()),
            "before": int(week_start.timestamp()),
        }
    if "week" in text:
        return {"after": int(week_start.timestamp())}
    if "recent" in text:
        return {"after": int((now - timedelta(days=30)).timestamp())}
    return {"after": int((now - timedelta(days=90)).timestamp())}


def without_none(values: dict) -> dict:
    return {key: value for key, value in values.items() if value is not None}


def check_per_page(per_page: int) -> None:
    if not 1 <= per_page <= 200:
        raise ToolError("per_page must be between 1 and 200")


def create_mcp(client: StravaClient) -> FastMCP:
    """Create the FastMCP server with tools bound to ``client``."""
    mcp = FastMCP(SERVER_NAME)

    async def call(tool: str, method: str, endpoint: str, **kwargs):
        logger.info(f"[TOOL] {tool} invoked")
        try:
            return await client.request(method, endpoint, **kwargs)
        except (httpx.HTTPError, StravaError) as e:
            logger.warning(f"[TOOL] {tool} failed: {e}")
            raise ToolError(format_error(e))

    # ============== Athlete ==============

    @mcp.tool()
    async def get_athlete() -> dict:
        """Retrieve the authenticated athlete's profile information."""
        return await call("get_athlete", "GET", "/athlete")

    @mcp.tool()
    async def get_athlete_stats(athlete_id: Optional[int] = None) -> dict:
        """Retrieve recent, year-to-date and all-time activity totals.

        Args:
            athlete_id: Athlete ID (defaults to the authenticated athlete)
        """
        if athlete_id is None:
            athlete = await call("get_athlete_stats", "GET", "/athlete")
            athlete_id = athlete["id"]
        return await call("get_athlete_stats", "GET", f"/athletes/{athlete_id}/stats")

    # ============== Activities ==============

    @mcp.tool()
    async def get_activities(
        before: Optional[int] = None,
        after: Optional[int] = None,
        page: int = 1,
        per_page: int = 30,
    ) -> list:
        """List the authenticated athlete's activities, newest first.

        Args:
            before: Only activities before this unix timestamp
            after: Only activities after this unix timestamp
            page: Page number
            per_page: Activities per page (max 200)
        """
        check_per_page(per_page)
        params = without_none({"before": before, "after": after, "page": page, "per_page": per_page})
        return await call("get_activities", "GET", "/athlete/activities", params=params)

    @mcp.tool()
    async def get_activity_by_id(activity_id: int, include_all_efforts: bool = False) -> dict:
        """Retrieve one activity in detail.

        Args:
            activity_id: The activity ID
            include_all_efforts: Include all segment efforts
        """
        return await call(
            "get_activity_by_id",
            "GET",
            f"/activities/{activity_id}",
            params={"include_all_efforts": str(include_all_efforts).lower()},
        )

    @mcp.tool()
    async def create_activity(
        name: str,
        sport_type: str,
        start_date_local: str,
        elapsed_time: int,
        type: Optional[str] = None,
        description: Optional[str] = None,
        distance: Optional[float] = None,
        trainer: Optional[bool] = None,
        commute: Optional[bool] = None,
    ) -> dict:
        """Create a manual activity (requires activity:write).

        Args:
            name: Activity name
            sport_type: Sport type, e.g. Run, TrailRun, Ride, Swim, WeightTraining
            start_date_local: ISO 8601 start time, e.g. 2024-01-13T06:00:00Z
            elapsed_time: Total elapsed time in seconds
            type: Legacy activity type (deprecated, use sport_type)
            description: Activity description
            distance: Distance in meters
            trainer: Indoor/trainer activity
            commute: Commute activity
        """
        body = without_none({
            "name": name,
            "sport_type": sport_type,
            "start_date_local": start_date_local,
            "elapsed_time": elapsed_time,
            "type": type,
            "description": description,
            "distance": distance,
            "trainer": trainer,
            "commute": commute,
        })
        return await call("create_activity", "POST", "/activities", json=body)

    @mcp.tool()
    async def update_activity(
        activity_id: int,
        name: Optional[str] = None,
        type: Optional[str] = None,
        sport_type: Optional[str] = None,
        description: Optional[str] = None,
        trainer: Optional[bool] = None,
        commute: Optional[bool] = None,
        hide_from_home: Optional[bool] = None,
        gear_id: Optional[str] = None,
    ) -> dict:
        """Update an existing activity; only the given fields change (requires activity:write).

        Use it to give auto-imported activities a meaningful name, a
        description with training notes, or the right sport type.

        Args:
            activity_id: The activity ID
            name: New activity name
            type: Legacy activity type (deprecated)
            sport_type: Sport type, e.g. Run, TrailRun, VirtualRun, Ride
            description: Description / training notes
            trainer: Mark as trainer activity
            commute: Mark as commute
            hide_from_home: Hide from the home feed
            gear_id: ID of the gear used
        """
        body = without_none({
            "name": name,
            "type": type,
            "sport_type": sport_type,
            "description": description,
            "trainer": trainer,
            "commute": commute,
            "hide_from_home": hide_from_home,
            "gear_id": gear_id,
        })
        if not body:
            raise ToolError("Nothing to update: give at least one field")
        return await call("update_activity", "PUT", f"/activities/{activity_id}", json=body)

    @mcp.tool()
    async def get_activity_zones(activity_id: int) -> list:
        """Retrieve heart rate and power zone distribution for an activity (Summit feature).

        Args:
            activity_id: The activity ID
        """
        return await call("get_activity_zones", "GET", f"/activities/{activity_id}/zones")

    @mcp.tool()
    async def get_activity_streams(
        activity_id: int,
        keys: Optional[list[str]] = None,
        key_by_type: bool = True,
    ) -> dict:
        """Retrieve time-series sensor data (streams) for an activity.

        Args:
            activity_id: The activity ID
            keys: Stream types: time, latlng, distance, altitude, velocity_smooth,
                heartrate, cadence, watts, temp, moving, grade_smooth (default: all)
            key_by_type: Return streams keyed by type
        """
        keys = keys or STREAM_TYPES
        unknown = [key for key in keys if key not in STREAM_TYPES]
        if unknown:
            raise ToolError(f"Unknown stream types: {', '.join(unknown)}")

        streams = await call(
            "get_activity_streams",
            "GET",
            f"/activities/{activity_id}/streams",
            params={"keys": ",".join(keys), "key_by_type": str(key_by_type).lower()},
        )
        if isinstance(streams, list):
            return {stream.get("type", str(i)): stream for i, stream in enumerate(streams)}
        return streams

    # ============== Clubs ==============

    @mcp.tool()
    async def get_club_activities(club_id: int, page: int = 1, per_page: int = 30) -> list:
        """List recent activities by members of a club.

        Args:
            club_id: The club ID
            page: Page number
            per_page: Activities per page (max 200)
        """
        check_per_page(per_page)
        return await call(
            "get_club_activities",
            "GET",
            f"/clubs/{club_id}/activities",
            params={"page": page, "per_page": per_page},
        )

    # ============== Uploads ==============

    @mcp.tool()
    async def create_upload(
        file: str,
        data_type: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        trainer: Optional[bool] = None,
        commute: Optional[bool] = None,
        external_id: Optional[str] = None,
    ) -> dict:
        """Upload an activity file; processing is asynchronous, poll get_upload for the result.

        Args:
            file: Base64 encoded file content
            data_type: File format: fit, fit.gz, tcx, tcx.gz, gpx, gpx.gz
            name: Activity name
            description: Activity description
            trainer: Trainer activity
            commute: Commute activity
            external_id: Your identifier for the upload
        """
        if data_type not in UPLOAD_DATA_TYPES:
            raise ToolError(f"data_type must be one of: {', '.join(UPLOAD_DATA_TYPES)}")
        try:
            content = base64.b64decode(file, validate=True)
        except (binascii.Error, ValueError):
            raise ToolError("file must be base64 encoded")

        form = without_none({
            "data_type": data_type,
            "name": name,
            "description": description,
            "trainer": None if trainer is None else str(int(trainer)),
            "commute": None if commute is None else str(int(commute)),
            "external_id": external_id,
        })
        return await call(
            "create_upload",
            "POST",
            "/uploads",
            data=form,
            files={"file": (f"activity.{data_type}", content, "application/octet-stream")},
        )

    @mcp.tool()
    async def get_upload(upload_id: int) -> dict:
        """Check the processing status of an upload; activity_id is set once it is done.

        Args:
            upload_id: The upload ID returned by create_upload
        """
        return await call("get_upload", "GET", f"/uploads/{upload_id}")

    # ============== Search / fetch ==============

    @mcp.tool()
    async def search(query: str) -> dict:
        """Search the athlete's activities with a natural language query.

        Understands "today", "this week", "last week" and "recent"; anything
        else searches the last 90 days. Returns up to 10 results to use with fetch.

        Args:
            query: e.g. "today's run", "activities this week"
        """
        params = date_filter_for_query(query)
        params["per_page"] = 30
        activities = await call("search", "GET", "/athlete/activities", params=params)
        return {
            "results": [
                {
                    "id": str(activity["id"]),
                    "title": (
                        f"{activity.get('name')} - {activity.get('sport_type')} "
                        f"({format_distance(activity.get('distance', 0))})"
                    ),
                    "url": activity_url(activity["id"]),
                }
                for activity in activities[:SEARCH_RESULT_LIMIT]
            ]
        }

    @mcp.tool()
    async def fetch(id: str) -> dict:
        """Retrieve the full details of one activity as a readable document.

        Args:
            id: Activity ID from search results
        """
        try:
            activity_id = int(id)
        except ValueError:
            raise ToolError(f"Invalid activity ID: {id}")

        activity = await call("fetch", "GET", f"/activities/{activity_id}")
        metadata = {
            "sport_type": activity.get("sport_type"),
            "date": activity.get("start_date_local"),
            "distance_meters": activity.get("distance"),
            "moving_time_seconds": activity.get("moving_time"),
            "total_elevation_gain_meters": activity.get("total_elevation_gain"),
            "trainer": activity.get("trainer"),
            "commute": activity.get("commute"),
        }
        if activity.get("average_heartrate"):
            metadata["average_heartrate"] = activity["average_heartrate"]
        if activity.get("average_watts"):
            metadata["average_watts"] = activity["average_watts"]

        return {
            "id": str(activity["id"]),
            "title": activity.get("name"),
            "text": activity_as_document(activity),
            "url": activity_url(activity["id"]),
            "metadata": metadata,
        }

    return mcp
