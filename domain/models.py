from datetime import datetime
from enum import Enum
from typing import Any


class State(Enum):
    planning = "planning"
    ordering = "ordering"
    picked_up = "picked up"
    delivered = "delivered"


SUCCESSORS: dict[State, tuple[State, ...]] = {
    State.planning: (State.ordering,),
    State.ordering: (State.picked_up,),
    State.picked_up: (State.delivered,),
    State.delivered: (),
}


class RequestStatus(Enum):
    pending = "pending"
    fulfilled = "fulfilled"


class PlanningSession:
    def __init__(
        self,
        *,
        id: str,
        created_at: datetime,
        last_activity: datetime,
    ) -> None:
        self.id = id
        self.created_at = created_at
        self.last_activity = last_activity

    def __repr__(self) -> str:
        return f"<PlanningSession(id={self.id})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at.isoformat(),
            "lastActivity": self.last_activity.isoformat(),
        }


class User:
    def __init__(self, *, id: str, name: str, email: str | None = None) -> None:
        self.id = id
        self.name = name
        self.email = email

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name={self.name})>"

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email}


class LunchOption:
    def __init__(
        self,
        *,
        id: str,
        name: str,
        description: str,
        added_by: str,
        created_at: datetime,
    ) -> None:
        self.id = id
        self.name = name
        self.description = description
        self.added_by = added_by
        self.created_at = created_at

    def __repr__(self) -> str:
        return f"<LunchOption(id={self.id}, name={self.name})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "addedBy": self.added_by,
            "createdAt": self.created_at.isoformat(),
        }


class Vote:
    def __init__(
        self,
        *,
        id: str,
        user_id: str,
        option_id: str,
        created_at: datetime,
    ) -> None:
        self.id = id
        self.user_id = user_id
        self.option_id = option_id
        self.created_at = created_at

    def __repr__(self) -> str:
        return f"<Vote(user_id={self.user_id}, option_id={self.option_id})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "optionId": self.option_id,
            "createdAt": self.created_at.isoformat(),
        }


class Volunteer:
    """Hand-off record: who went for the food and which option was winning."""

    def __init__(
        self,
        *,
        id: str,
        user_id: str,
        option_id: str,
        date: datetime,
    ) -> None:
        self.id = id
        self.user_id = user_id
        self.option_id = option_id
        self.date = date

    def __repr__(self) -> str:
        return f"<Volunteer(user_id={self.user_id}, option_id={self.option_id})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "optionId": self.option_id,
            "date": self.date.isoformat(),
        }


class FoodRequest:
    def __init__(
        self,
        *,
        id: str,
        user_id: str,
        volunteer_id: str,
        request: str,
        status: RequestStatus = RequestStatus.pending,
        created_at: datetime,
    ) -> None:
        self.id = id
        self.user_id = user_id
        self.volunteer_id = volunteer_id
        self.request = request
        self.status = status
        self.created_at = created_at

    def __repr__(self) -> str:
        return f"<FoodRequest(user_id={self.user_id}, status={self.status.value})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "volunteerId": self.volunteer_id,
            "request": self.request,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
        }


class Status:
    def __init__(
        self,
        *,
        state: State = State.planning,
        volunteer_id: str | None = None,
        last_reset: datetime | None = None,
    ) -> None:
        self.state = state
        self.volunteer_id = volunteer_id
        self.last_reset = last_reset

    def __repr__(self) -> str:
        return f"<Status(state={self.state.value}, volunteer_id={self.volunteer_id})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "volunteerId": self.volunteer_id,
            "lastReset": self.last_reset.isoformat() if self.last_reset else None,
        }
