import asyncio
import contextlib
from datetime import datetime
import logging
import sqlite3
from typing import Iterator

from databases import Database
from databases.interfaces import Record

from domain.exceptions import StorageUnavailable
from domain.models import (
    FoodRequest,
    LunchOption,
    PlanningSession,
    RequestStatus,
    State,
    Status,
    User,
    Volunteer,
    Vote,
)


logger = logging.getLogger(__name__)


CREATE_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id VARCHAR(64) PRIMARY KEY,
        created_at VARCHAR(64) NOT NULL,
        last_activity VARCHAR(64) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS statuses (
        session_id VARCHAR(64) PRIMARY KEY,
        state VARCHAR(32) NOT NULL,
        volunteer_id VARCHAR(256),
        last_reset VARCHAR(64)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id VARCHAR(256) PRIMARY KEY,
        name VARCHAR(256) NOT NULL,
        email VARCHAR(256)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS options (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id VARCHAR(64) UNIQUE NOT NULL,
        session_id VARCHAR(64) NOT NULL,
        name VARCHAR(256) NOT NULL,
        description VARCHAR(3000) NOT NULL,
        added_by VARCHAR(256) NOT NULL,
        created_at VARCHAR(64) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS votes (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id VARCHAR(64) UNIQUE NOT NULL,
        session_id VARCHAR(64) NOT NULL,
        user_id VARCHAR(256) NOT NULL,
        option_id VARCHAR(64) NOT NULL,
        created_at VARCHAR(64) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS volunteers (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id VARCHAR(64) UNIQUE NOT NULL,
        session_id VARCHAR(64) NOT NULL,
        user_id VARCHAR(256) NOT NULL,
        option_id VARCHAR(64) NOT NULL,
        date VARCHAR(64) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS requests (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id VARCHAR(64) UNIQUE NOT NULL,
        session_id VARCHAR(64) NOT NULL,
        user_id VARCHAR(256) NOT NULL,
        volunteer_id VARCHAR(256) NOT NULL,
        request VARCHAR(3000) NOT NULL,
        status VARCHAR(32) NOT NULL,
        created_at VARCHAR(64) NOT NULL
    )
    """,
)


CREATE_SESSION = """
INSERT INTO sessions(id, created_at, last_activity)
VALUES (:id, :created_at, :last_activity)
"""

GET_SESSION = "SELECT * FROM sessions WHERE id = :id"

TOUCH_SESSION = "UPDATE sessions SET last_activity = :last_activity WHERE id = :id"


GET_STATUS = "SELECT * FROM statuses WHERE session_id = :session_id"

SAVE_STATUS = """
INSERT INTO statuses(session_id, state, volunteer_id, last_reset)
VALUES (:session_id, :state, :volunteer_id, :last_reset)
ON CONFLICT(session_id) DO UPDATE SET
    state = excluded.state,
    volunteer_id = excluded.volunteer_id,
    last_reset = excluded.last_reset
"""


SAVE_USER = """
INSERT INTO users(id, name, email) VALUES (:id, :name, :email)
ON CONFLICT(id) DO UPDATE SET
    name = excluded.name,
    email = COALESCE(excluded.email, users.email)
"""

ENSURE_USER = """
INSERT INTO users(id, name, email) VALUES (:id, :name, NULL)
ON CONFLICT(id) DO NOTHING
"""

GET_USER = "SELECT * FROM users WHERE id = :id"

LIST_USERS = "SELECT * FROM users ORDER BY rowid"


CREATE_OPTION = """
INSERT INTO options(id, session_id, name, description, added_by, created_at)
VALUES (:id, :session_id, :name, :description, :added_by, :created_at)
"""

LIST_OPTIONS = "SELECT * FROM options WHERE session_id = :session_id ORDER BY seq"


CREATE_VOTE = """
INSERT INTO votes(id, session_id, user_id, option_id, created_at)
VALUES (:id, :session_id, :user_id, :option_id, :created_at)
"""

FIND_VOTE = """
SELECT * FROM votes
WHERE session_id = :session_id AND user_id = :user_id AND option_id = :option_id
"""

DELETE_VOTES = """
DELETE FROM votes
WHERE session_id = :session_id AND user_id = :user_id AND option_id = :option_id
"""

LIST_VOTES = "SELECT * FROM votes WHERE session_id = :session_id ORDER BY seq"


CREATE_VOLUNTEER = """
INSERT INTO volunteers(id, session_id, user_id, option_id, date)
VALUES (:id, :session_id, :user_id, :option_id, :date)
"""

LIST_VOLUNTEERS = "SELECT * FROM volunteers WHERE session_id = :session_id ORDER BY seq"


CREATE_REQUEST = """
INSERT INTO requests(id, session_id, user_id, volunteer_id, request, status, created_at)
VALUES (:id, :session_id, :user_id, :volunteer_id, :request, :status, :created_at)
"""

LIST_REQUESTS = "SELECT * FROM requests WHERE session_id = :session_id ORDER BY seq"


CLEAR_DAILY = tuple(
    f"DELETE FROM {table} WHERE session_id = :session_id"
    for table in ("options", "votes", "volunteers", "requests")
)


@contextlib.contextmanager
def storage_errors() -> Iterator[None]:
    try:
        yield
    except (sqlite3.Error, OSError) as e:
        logger.error("Record store failure: %r", e)
        raise StorageUnavailable(str(e)) from e


def _dt(value: str | None) -> datetime | None:
    return None if value is None else datetime.fromisoformat(value)


def _iso(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def _option(r: Record) -> LunchOption:
    return LunchOption(
        id=r["id"],
        name=r["name"],
        description=r["description"],
        added_by=r["added_by"],
        created_at=datetime.fromisoformat(r["created_at"]),
    )


def _vote(r: Record) -> Vote:
    return Vote(
        id=r["id"],
        user_id=r["user_id"],
        option_id=r["option_id"],
        created_at=datetime.fromisoformat(r["created_at"]),
    )


def _volunteer(r: Record) -> Volunteer:
    return Volunteer(
        id=r["id"],
        user_id=r["user_id"],
        option_id=r["option_id"],
        date=datetime.fromisoformat(r["date"]),
    )


def _request(r: Record) -> FoodRequest:
    return FoodRequest(
        id=r["id"],
        user_id=r["user_id"],
        volunteer_id=r["volunteer_id"],
        request=r["request"],
        status=RequestStatus(r["status"]),
        created_at=datetime.fromisoformat(r["created_at"]),
    )


class LunchRepository:
    """Per-session lunch records plus the shared user directory."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, session_id: str) -> asyncio.Lock:
        """One writer at a time per session within this process."""
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    async def create_tables(self) -> None:
        with storage_errors():
            for query in CREATE_TABLES:
                await self.db.execute(query=query)  # pyright: ignore[reportUnknownMemberType]

    # Sessions

    async def add_session(self, session: PlanningSession) -> None:
        with storage_errors():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                CREATE_SESSION,
                values={
                    "id": session.id,
                    "created_at": _iso(session.created_at),
                    "last_activity": _iso(session.last_activity),
                },
            )

    async def get_session(self, id: str) -> PlanningSession | None:
        with storage_errors():
            r = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
                GET_SESSION, values={"id": id}
            )
        if r is None:
            return None
        return PlanningSession(
            id=r["id"],
            created_at=datetime.fromisoformat(r["created_at"]),
            last_activity=datetime.fromisoformat(r["last_activity"]),
        )

    async def create_session(self, session: PlanningSession, status: Status) -> None:
        with storage_errors():
            async with self.db.transaction():
                await self.add_session(session)
                await self.save_status(session.id, status)

    async def touch_session(self, id: str, when: datetime) -> None:
        with storage_errors():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                TOUCH_SESSION, values={"id": id, "last_activity": _iso(when)}
            )

    # Status

    async def get_status(self, session_id: str) -> Status | None:
        with storage_errors():
            r = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
                GET_STATUS, values={"session_id": session_id}
            )
        if r is None:
            return None
        return Status(
            state=State(r["state"]),
            volunteer_id=r["volunteer_id"],
            last_reset=_dt(r["last_reset"]),
        )

    async def save_status(self, session_id: str, status: Status) -> None:
        with storage_errors():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                SAVE_STATUS,
                values={
                    "session_id": session_id,
                    "state": status.state.value,
                    "volunteer_id": status.volunteer_id,
                    "last_reset": _iso(status.last_reset),
                },
            )

    async def save_status_change(
        self,
        session_id: str,
        status: Status,
        *,
        volunteer_id: str | None = None,
        volunteer: Volunteer | None = None,
    ) -> None:
        """Save a status together with the volunteer and their hand-off record."""
        with storage_errors():
            async with self.db.transaction():
                await self.save_status(session_id, status)
                if volunteer_id:
                    await self.ensure_user(volunteer_id)
                if volunteer is not None:
                    await self.add_volunteer(session_id, volunteer)

    async def reset_daily(self, session_id: str, status: Status) -> None:
        """Drop the day's options, votes, volunteers and requests, then save status."""
        with storage_errors():
            async with self.db.transaction():
                for query in CLEAR_DAILY:
                    await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                        query, values={"session_id": session_id}
                    )
                await self.save_status(session_id, status)

    # Users

    async def save_user(self, user: User) -> None:
        with storage_errors():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                SAVE_USER, values=user.to_dict()
            )

    async def ensure_user(self, id: str) -> None:
        with storage_errors():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                ENSURE_USER, values={"id": id, "name": id}
            )

    async def get_user(self, id: str) -> User | None:
        with storage_errors():
            r = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
                GET_USER, values={"id": id}
            )
        if r is None:
            return None
        return User(id=r["id"], name=r["name"], email=r["email"])

    async def list_users(self) -> list[User]:
        with storage_errors():
            rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
                LIST_USERS
            )
        return [User(id=r["id"], name=r["name"], email=r["email"]) for r in rows]

    # Options

    async def add_option(self, session_id: str, option: LunchOption) -> None:
        with storage_errors():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                CREATE_OPTION,
                values={
                    "id": option.id,
                    "session_id": session_id,
                    "name": option.name,
                    "description": option.description,
                    "added_by": option.added_by,
                    "created_at": _iso(option.created_at),
                },
            )

    async def list_options(self, session_id: str) -> list[LunchOption]:
        with storage_errors():
            rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
                LIST_OPTIONS, values={"session_id": session_id}
            )
        return [_option(r) for r in rows]

    # Votes

    async def add_vote(self, session_id: str, vote: Vote) -> None:
        with storage_errors():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                CREATE_VOTE,
                values={
                    "id": vote.id,
                    "session_id": session_id,
                    "user_id": vote.user_id,
                    "option_id": vote.option_id,
                    "created_at": _iso(vote.created_at),
                },
            )

    async def find_vote(
        self, session_id: str, user_id: str, option_id: str
    ) -> Vote | None:
        with storage_errors():
            r = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
                FIND_VOTE,
                values={
                    "session_id": session_id,
                    "user_id": user_id,
                    "option_id": option_id,
                },
            )
        return None if r is None else _vote(r)

    async def remove_votes(self, session_id: str, user_id: str, option_id: str) -> None:
        with storage_errors():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                DELETE_VOTES,
                values={
                    "session_id": session_id,
                    "user_id": user_id,
                    "option_id": option_id,
                },
            )

    async def list_votes(self, session_id: str) -> list[Vote]:
        with storage_errors():
            rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
                LIST_VOTES, values={"session_id": session_id}
            )
        return [_vote(r) for r in rows]

    # Volunteers

    async def add_volunteer(self, session_id: str, volunteer: Volunteer) -> None:
        with storage_errors():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                CREATE_VOLUNTEER,
                values={
                    "id": volunteer.id,
                    "session_id": session_id,
                    "user_id": volunteer.user_id,
                    "option_id": volunteer.option_id,
                    "date": _iso(volunteer.date),
                },
            )

    async def list_volunteers(self, session_id: str) -> list[Volunteer]:
        with storage_errors():
            rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
                LIST_VOLUNTEERS, values={"session_id": session_id}
            )
        return [_volunteer(r) for r in rows]

    # Food requests

    async def add_request(self, session_id: str, request: FoodRequest) -> None:
        with storage_errors():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                CREATE_REQUEST,
                values={
                    "id": request.id,
                    "session_id": session_id,
                    "user_id": request.user_id,
                    "volunteer_id": request.volunteer_id,
                    "request": request.request,
                    "status": request.status.value,
                    "created_at": _iso(request.created_at),
                },
            )

    async def list_requests(self, session_id: str) -> list[FoodRequest]:
        with storage_errors():
            rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
                LIST_REQUESTS, values={"session_id": session_id}
            )
        return [_request(r) for r in rows]
