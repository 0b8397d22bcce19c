"""Owner availability signals used to pick the delivery time."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

import httpx
from dateutil.parser import parse as parse_datetime

from logger import logger
from . import config


@dataclass
class MeetingStatus:
    in_meeting: bool
    end_time: Optional[datetime] = None


@dataclass
class Availability:
    available: bool
    next_available_time: Optional[datetime] = None


class MeetingLookup(Protocol):
    async def current_meeting(self, owner_id: str) -> MeetingStatus:
        ...


class AvailabilityLookup(Protocol):
    async def check(self, owner_id: str) -> Availability:
        ...


class NoMeetingLookup:
    """Used when no calendar is configured."""

    async def current_meeting(self, owner_id: str) -> MeetingStatus:
        return MeetingStatus(in_meeting=False)


class AlwaysAvailable:
    """Used when no availability signal (device activity, presence) is wired in."""

    async def check(self, owner_id: str) -> Availability:
        return Availability(available=True)


class CalendarMeetingLookup:
    """Ask the calendar API whether the owner is in a meeting right now.

    Expects `GET {base_url}/calendar/current?owner_id=...` to return
    `{"in_meeting": bool, "end_time": iso8601 | null}`.
    """

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    async def current_meeting(self, owner_id: str) -> MeetingStatus:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self.base_url}/calendar/current",
                    params={"owner_id": owner_id},
                    timeout=config.CALENDAR_TIMEOUT
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Calendar lookup failed for {owner_id}: {e}")
            return MeetingStatus(in_meeting=False)

        if not data.get("in_meeting"):
            return MeetingStatus(in_meeting=False)

        end_time = None
        if data.get("end_time"):
            try:
                end_time = parse_datetime(data["end_time"])
            except (ValueError, OverflowError):
                logger.warning(f"Unparseable meeting end time: {data['end_time']}")

        return MeetingStatus(in_meeting=True, end_time=end_time)
