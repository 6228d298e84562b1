from pydantic import BaseModel, model_validator
from typing import Dict, List
from datetime import date, time

from ..models.availability import Weekday

class DayAvailability(BaseModel):
    available: bool = False
    slots: List[time] = []

class WeeklyTemplate(BaseModel):
    """A doctor's recurring availability, one entry per weekday.

    Weekdays missing from the input are treated as unavailable, so a
    template always describes the whole week.
    """
    days: Dict[Weekday, DayAvailability] = {}

    @model_validator(mode="after")
    def fill_missing_days(self) -> "WeeklyTemplate":
        for weekday in Weekday:
            self.days.setdefault(weekday, DayAvailability())
        # Keep Monday-first order for stable JSON output
        self.days = {weekday: self.days[weekday] for weekday in Weekday}
        return self

    def for_day(self, day: date) -> DayAvailability:
        return self.days[Weekday.of(day)]

class FreeSlotsResponse(BaseModel):
    doctor_id: int
    day: date
    weekday: Weekday
    slots: List[time]
