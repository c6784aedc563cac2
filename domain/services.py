"""Session registry, voting, status hand-off and food requests.

Every function takes the repository explicitly. Anything addressed by a
session id goes through `_enter`, which checks the session exists, bumps its
activity timestamp and clears yesterday's data before doing anything else.
"""

from datetime import datetime
import logging
import re
from typing import Any
import uuid

from domain.exceptions import (
    InvalidTransition,
    PhaseClosed,
    SessionNotFound,
)
from domain.models import (
    SUCCESSORS,
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
from domain.repository import LunchRepository
from domain.tally import tally, voting_complete, winner


logger = logging.getLogger(__name__)


def now() -> datetime:
    return datetime.now()


def new_id() -> str:
    return uuid.uuid4().hex


# Session registry


async def create_session(*, repository: LunchRepository, id_length: int = 8) -> str:
    id = new_id()[:id_length]
    while await repository.get_session(id) is not None:
        id = new_id()[:id_length]

    created = now()
    await repository.create_session(
        PlanningSession(id=id, created_at=created, last_activity=created),
        Status(last_reset=created),
    )

    logger.info("Created planning session %s", id)
    return id


async def get_session(
    session_id: str, *, repository: LunchRepository
) -> PlanningSession | None:
    return await repository.get_session(session_id)


async def touch_activity(session_id: str, *, repository: LunchRepository) -> None:
    await repository.touch_session(session_id, now())


async def _maybe_reset_daily(session_id: str, repository: LunchRepository) -> bool:
    today = now()
    status = await repository.get_status(session_id)

    if status is None:
        # First use: nothing to clear.
        await repository.save_status(session_id, Status(last_reset=today))
        return False

    if status.last_reset is not None and status.last_reset.date() == today.date():
        return False

    await repository.reset_daily(session_id, Status(last_reset=today))
    logger.info("Daily reset of session %s", session_id)
    return True


async def maybe_reset_daily(session_id: str, *, repository: LunchRepository) -> bool:
    """Clear the session's working data if it was last reset on an earlier day."""
    await _require(session_id, repository)
    async with repository.lock(session_id):
        return await _maybe_reset_daily(session_id, repository)


async def _require(session_id: str, repository: LunchRepository) -> None:
    if await repository.get_session(session_id) is None:
        raise SessionNotFound(session_id)


async def _enter(session_id: str, repository: LunchRepository) -> None:
    await _require(session_id, repository)
    await touch_activity(session_id, repository=repository)
    await _maybe_reset_daily(session_id, repository)


async def _status(session_id: str, repository: LunchRepository) -> Status:
    status = await repository.get_status(session_id)
    return Status() if status is None else status


async def _ensure_planning(session_id: str, repository: LunchRepository) -> None:
    status = await _status(session_id, repository)
    if status.state != State.planning:
        raise PhaseClosed(f"Session {session_id} is {status.state.value}.")


# Users


def user_id_from_name(name: str) -> str:
    slug = re.sub(r"\s+", "_", name).lower()
    return f"user_{slug}_{new_id()[:7]}"


async def register_user(
    name: str,
    *,
    repository: LunchRepository,
    email: str | None = None,
    user_id: str | None = None,
) -> User:
    name = name.strip()
    if not name:
        raise ValueError("Please enter your name.")
    user = User(
        id=user_id_from_name(name) if user_id is None else user_id,
        name=name,
        email=email,
    )
    await repository.save_user(user)
    return user


# Lunch data and voting


async def get_lunch_data(
    session_id: str, *, repository: LunchRepository
) -> dict[str, Any]:
    await _require(session_id, repository)
    async with repository.lock(session_id):
        await _enter(session_id, repository)
        return {
            "users": await repository.list_users(),
            "options": await repository.list_options(session_id),
            "votes": await repository.list_votes(session_id),
        }


async def add_lunch_option(
    session_id: str,
    *,
    name: str,
    description: str,
    added_by: str,
    repository: LunchRepository,
) -> LunchOption:
    name = name.strip()
    if not name:
        raise ValueError("An option needs a name.")

    await _require(session_id, repository)
    async with repository.lock(session_id):
        await _enter(session_id, repository)
        await _ensure_planning(session_id, repository)
        await repository.ensure_user(added_by)
        option = LunchOption(
            id=new_id(),
            name=name,
            description=description,
            added_by=added_by,
            created_at=now(),
        )
        await repository.add_option(session_id, option)

    logger.info("%s added %r to session %s", added_by, name, session_id)
    return option


async def add_vote(
    session_id: str,
    option_id: str,
    user_id: str,
    *,
    repository: LunchRepository,
) -> list[Vote]:
    """Toggle `user_id`'s vote on `option_id` and return the session's votes."""
    await _require(session_id, repository)
    async with repository.lock(session_id):
        await _enter(session_id, repository)
        await _ensure_planning(session_id, repository)

        options = await repository.list_options(session_id)
        if option_id not in {o.id for o in options}:
            raise ValueError(f"Unknown option: {option_id}")

        existing = await repository.find_vote(session_id, user_id, option_id)
        if existing is not None:
            await repository.remove_votes(session_id, user_id, option_id)
            logger.debug("%s withdrew vote for %s", user_id, option_id)
        else:
            await repository.ensure_user(user_id)
            await repository.add_vote(
                session_id,
                Vote(id=new_id(), user_id=user_id, option_id=option_id, created_at=now()),
            )
            logger.debug("%s voted for %s", user_id, option_id)

        return await repository.list_votes(session_id)


# Status


async def get_status(session_id: str, *, repository: LunchRepository) -> Status:
    await _require(session_id, repository)
    async with repository.lock(session_id):
        await _enter(session_id, repository)
        return await _status(session_id, repository)


def check_transition(current: State, requested: State) -> None:
    if requested not in SUCCESSORS[current]:
        raise InvalidTransition(current.value, requested.value)


async def update_status(
    session_id: str,
    state: State | str,
    volunteer_id: str | None = None,
    *,
    repository: LunchRepository,
    strict: bool = False,
) -> Status:
    """Move the session to `state`.

    A missing `volunteer_id` keeps whoever volunteered before. Entering
    `ordering` with a volunteer records who went and which option was winning.
    With `strict` only forward single steps are accepted.
    """
    state = State(state)

    await _require(session_id, repository)
    async with repository.lock(session_id):
        await _enter(session_id, repository)
        current = await _status(session_id, repository)

        if strict:
            check_transition(current.state, state)
            if state == State.ordering and not (volunteer_id or current.volunteer_id):
                raise ValueError("Someone has to volunteer before ordering.")
        elif state not in SUCCESSORS[current.state]:
            logger.warning(
                "Session %s jumped from %r to %r",
                session_id,
                current.state.value,
                state.value,
            )

        updated = Status(
            state=state,
            volunteer_id=volunteer_id or current.volunteer_id,
            last_reset=current.last_reset,
        )
        record = None
        if state == State.ordering and volunteer_id:
            record = await _volunteer_record(session_id, volunteer_id, repository)

        await repository.save_status_change(
            session_id,
            updated,
            volunteer_id=volunteer_id if state == State.ordering else None,
            volunteer=record,
        )
        logger.info("Session %s is now %s", session_id, state.value)
        if record is not None:
            logger.info(
                "%s is getting %s for session %s",
                record.user_id,
                record.option_id,
                session_id,
            )

    return updated


async def _volunteer_record(
    session_id: str, volunteer_id: str, repository: LunchRepository
) -> Volunteer | None:
    """Hand-off record for the current winner, if anything has been voted on."""
    options = await repository.list_options(session_id)
    votes = await repository.list_votes(session_id)
    if not votes:
        return None

    chosen = winner(options, votes)
    if chosen is None:
        return None
    return Volunteer(id=new_id(), user_id=volunteer_id, option_id=chosen.id, date=now())


async def get_volunteers(
    session_id: str, *, repository: LunchRepository
) -> list[Volunteer]:
    await _require(session_id, repository)
    async with repository.lock(session_id):
        await _enter(session_id, repository)
        return await repository.list_volunteers(session_id)


# Food requests


async def add_food_request(
    session_id: str,
    *,
    user_id: str,
    volunteer_id: str,
    request: str,
    repository: LunchRepository,
) -> FoodRequest:
    if not request.strip():
        raise ValueError("A food request cannot be empty.")

    await _require(session_id, repository)
    async with repository.lock(session_id):
        await _enter(session_id, repository)
        await repository.ensure_user(user_id)
        food_request = FoodRequest(
            id=new_id(),
            user_id=user_id,
            volunteer_id=volunteer_id,
            request=request,
            status=RequestStatus.pending,
            created_at=now(),
        )
        await repository.add_request(session_id, food_request)

    return food_request


async def get_food_requests(
    session_id: str, *, repository: LunchRepository
) -> list[FoodRequest]:
    await _require(session_id, repository)
    async with repository.lock(session_id):
        await _enter(session_id, repository)
        return await repository.list_requests(session_id)


# Board


async def get_board(
    session_id: str,
    *,
    repository: LunchRepository,
    threshold: int = 2,
) -> dict[str, Any]:
    """Everything the planning page shows, read in one go."""
    await _require(session_id, repository)
    async with repository.lock(session_id):
        await _enter(session_id, repository)
        session = await repository.get_session(session_id)
        status = await _status(session_id, repository)
        users = await repository.list_users()
        options = await repository.list_options(session_id)
        votes = await repository.list_votes(session_id)
        requests = await repository.list_requests(session_id)

    volunteer = next((u for u in users if u.id == status.volunteer_id), None)
    complete = voting_complete(votes, threshold)
    return {
        "session": session,
        "status": status,
        "users": users,
        "options": options,
        "votes": votes,
        "tally": tally(options, votes),
        "winner": winner(options, votes),
        "voting_complete": complete,
        "can_volunteer": status.state == State.planning and complete,
        "volunteer": volunteer,
        "requests": requests,
    }
