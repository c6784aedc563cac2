from datetime import datetime, timedelta

import pytest

from domain import services
from domain.exceptions import (
    InvalidTransition,
    PhaseClosed,
    SessionNotFound,
    StorageUnavailable,
)
from domain.models import RequestStatus, State, Status
from domain.repository import LunchRepository


async def add_option(repository: LunchRepository, session_id: str, name: str, by: str):
    return await services.add_lunch_option(
        session_id,
        name=name,
        description=f"{name} place",
        added_by=by,
        repository=repository,
    )


@pytest.mark.asyncio
async def test_create_session(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    assert len(session_id) == 8

    session = await services.get_session(session_id, repository=repository)
    assert session is not None
    status = await services.get_status(session_id, repository=repository)
    assert status.state == State.planning
    assert status.volunteer_id is None
    assert status.last_reset is not None
    assert status.last_reset.date() == datetime.now().date()


@pytest.mark.asyncio
async def test_create_session_ids_are_unique(repository: LunchRepository) -> None:
    ids = {await services.create_session(repository=repository) for _ in range(5)}
    assert len(ids) == 5


@pytest.mark.asyncio
async def test_unknown_session(repository: LunchRepository) -> None:
    assert await services.get_session("missing", repository=repository) is None
    with pytest.raises(SessionNotFound):
        await services.get_lunch_data("missing", repository=repository)
    with pytest.raises(SessionNotFound):
        await services.get_status("missing", repository=repository)


@pytest.mark.asyncio
async def test_reads_touch_activity(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    before = await services.get_session(session_id, repository=repository)
    await services.get_food_requests(session_id, repository=repository)
    after = await services.get_session(session_id, repository=repository)
    assert before is not None and after is not None
    assert after.last_activity >= before.last_activity
    assert after.created_at == before.created_at


@pytest.mark.asyncio
async def test_pizza_scenario(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    pizza = await add_option(repository, session_id, "Pizza", "u1")
    tacos = await add_option(repository, session_id, "Tacos", "u2")

    await services.add_vote(session_id, pizza.id, "u1", repository=repository)
    await services.add_vote(session_id, pizza.id, "u2", repository=repository)
    await services.add_vote(session_id, tacos.id, "u1", repository=repository)

    board = await services.get_board(session_id, repository=repository)
    assert board["tally"] == {pizza.id: 2, tacos.id: 1}
    assert board["winner"].id == pizza.id
    assert board["voting_complete"]
    assert board["can_volunteer"]


@pytest.mark.asyncio
async def test_vote_twice_toggles_back(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    pizza = await add_option(repository, session_id, "Pizza", "u1")
    await services.add_vote(session_id, pizza.id, "u2", repository=repository)
    before = await services.get_lunch_data(session_id, repository=repository)

    added = await services.add_vote(session_id, pizza.id, "u1", repository=repository)
    assert len(added) == 2
    removed = await services.add_vote(session_id, pizza.id, "u1", repository=repository)

    assert [v.id for v in removed] == [v.id for v in before["votes"]]


@pytest.mark.asyncio
async def test_user_may_vote_for_several_options(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    pizza = await add_option(repository, session_id, "Pizza", "u1")
    tacos = await add_option(repository, session_id, "Tacos", "u1")
    await services.add_vote(session_id, pizza.id, "u1", repository=repository)
    votes = await services.add_vote(session_id, tacos.id, "u1", repository=repository)
    assert {v.option_id for v in votes} == {pizza.id, tacos.id}


@pytest.mark.asyncio
async def test_vote_for_unknown_option(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    with pytest.raises(ValueError):
        await services.add_vote(session_id, "nope", "u1", repository=repository)


@pytest.mark.asyncio
async def test_voting_closed_after_planning(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    pizza = await add_option(repository, session_id, "Pizza", "u1")
    await services.update_status(session_id, "ordering", "u1", repository=repository)

    with pytest.raises(PhaseClosed):
        await services.add_vote(session_id, pizza.id, "u2", repository=repository)
    with pytest.raises(PhaseClosed):
        await add_option(repository, session_id, "Sushi", "u2")


@pytest.mark.asyncio
async def test_option_needs_a_name(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    with pytest.raises(ValueError):
        await add_option(repository, session_id, "   ", "u1")


@pytest.mark.asyncio
async def test_adding_an_option_creates_the_user(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    await add_option(repository, session_id, "Pizza", "u9")
    data = await services.get_lunch_data(session_id, repository=repository)
    assert "u9" in [u.id for u in data["users"]]


@pytest.mark.asyncio
async def test_volunteer_is_recorded_with_winner(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    pizza = await add_option(repository, session_id, "Pizza", "u1")
    await services.add_vote(session_id, pizza.id, "u1", repository=repository)
    await services.add_vote(session_id, pizza.id, "u2", repository=repository)

    status = await services.update_status(
        session_id, State.ordering, "u1", repository=repository
    )

    assert status.state == State.ordering
    assert status.volunteer_id == "u1"
    history = await services.get_volunteers(session_id, repository=repository)
    assert len(history) == 1
    assert history[0].user_id == "u1"
    assert history[0].option_id == pizza.id


@pytest.mark.asyncio
async def test_no_volunteer_record_without_votes(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    await add_option(repository, session_id, "Pizza", "u1")

    status = await services.update_status(
        session_id, "ordering", "u1", repository=repository
    )

    assert status.volunteer_id == "u1"
    assert await services.get_volunteers(session_id, repository=repository) == []


@pytest.mark.asyncio
async def test_volunteer_sticks_across_updates(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    await services.update_status(session_id, "ordering", "u2", repository=repository)
    status = await services.update_status(session_id, "picked up", repository=repository)
    assert status.state == State.picked_up
    assert status.volunteer_id == "u2"

    stored = await services.get_status(session_id, repository=repository)
    assert stored.volunteer_id == "u2"


@pytest.mark.asyncio
async def test_status_update_keeps_last_reset(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    await add_option(repository, session_id, "Pizza", "u1")
    await services.update_status(session_id, "ordering", "u1", repository=repository)

    # A lost reset stamp would wipe the session on the next read.
    status = await services.get_status(session_id, repository=repository)
    assert status.state == State.ordering
    data = await services.get_lunch_data(session_id, repository=repository)
    assert len(data["options"]) == 1


@pytest.mark.asyncio
async def test_lenient_status_allows_any_jump(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    await services.update_status(session_id, "delivered", "u1", repository=repository)
    status = await services.update_status(session_id, "planning", repository=repository)
    assert status.state == State.planning
    assert status.volunteer_id == "u1"


@pytest.mark.asyncio
async def test_strict_status_rejects_jumps(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    with pytest.raises(InvalidTransition):
        await services.update_status(
            session_id, "delivered", "u1", repository=repository, strict=True
        )
    with pytest.raises(ValueError):
        await services.update_status(
            session_id, "ordering", repository=repository, strict=True
        )

    for state in ("ordering", "picked up", "delivered"):
        await services.update_status(
            session_id, state, "u1", repository=repository, strict=True
        )

    with pytest.raises(InvalidTransition):
        await services.update_status(
            session_id, "planning", repository=repository, strict=True
        )


@pytest.mark.asyncio
async def test_unknown_state(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    with pytest.raises(ValueError):
        await services.update_status(session_id, "eaten", repository=repository)


@pytest.mark.asyncio
async def test_food_requests(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    await services.update_status(session_id, "ordering", "u1", repository=repository)

    first = await services.add_food_request(
        session_id, user_id="u2", volunteer_id="u1", request="Margherita", repository=repository
    )
    await services.add_food_request(
        session_id, user_id="u2", volunteer_id="u1", request="Extra olives", repository=repository
    )

    assert first.status == RequestStatus.pending
    requests = await services.get_food_requests(session_id, repository=repository)
    assert [r.request for r in requests] == ["Margherita", "Extra olives"]


@pytest.mark.asyncio
async def test_blank_food_request(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    with pytest.raises(ValueError):
        await services.add_food_request(
            session_id, user_id="u2", volunteer_id="u1", request=" ", repository=repository
        )


@pytest.mark.asyncio
async def test_daily_reset_on_read(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    pizza = await add_option(repository, session_id, "Pizza", "u1")
    await services.add_vote(session_id, pizza.id, "u1", repository=repository)
    await services.add_vote(session_id, pizza.id, "u2", repository=repository)
    await services.update_status(session_id, "ordering", "u1", repository=repository)
    await services.add_food_request(
        session_id, user_id="u2", volunteer_id="u1", request="Margherita", repository=repository
    )
    created = (await services.get_session(session_id, repository=repository)).created_at

    yesterday = datetime.now() - timedelta(days=1)
    await repository.save_status(
        session_id,
        Status(state=State.ordering, volunteer_id="u1", last_reset=yesterday),
    )

    status = await services.get_status(session_id, repository=repository)
    assert status.state == State.planning
    assert status.volunteer_id is None
    assert status.last_reset is not None
    assert status.last_reset.date() == datetime.now().date()

    data = await services.get_lunch_data(session_id, repository=repository)
    assert data["options"] == []
    assert data["votes"] == []
    assert await services.get_food_requests(session_id, repository=repository) == []
    assert await services.get_volunteers(session_id, repository=repository) == []

    session = await services.get_session(session_id, repository=repository)
    assert session is not None and session.created_at == created


@pytest.mark.asyncio
async def test_maybe_reset_daily_same_day(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    await add_option(repository, session_id, "Pizza", "u1")
    assert not await services.maybe_reset_daily(session_id, repository=repository)
    data = await services.get_lunch_data(session_id, repository=repository)
    assert len(data["options"]) == 1


@pytest.mark.asyncio
async def test_missing_status_is_first_use(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    await repository.db.execute(
        "DELETE FROM statuses WHERE session_id = :id", values={"id": session_id}
    )
    assert not await services.maybe_reset_daily(session_id, repository=repository)
    status = await services.get_status(session_id, repository=repository)
    assert status.state == State.planning


@pytest.mark.asyncio
async def test_register_user(repository: LunchRepository) -> None:
    user = await services.register_user("Jordan Lee", repository=repository)
    assert user.id.startswith("user_jordan_lee_")
    assert user.name == "Jordan Lee"

    with pytest.raises(ValueError):
        await services.register_user("  ", repository=repository)


@pytest.mark.asyncio
async def test_board_names_the_volunteer(repository: LunchRepository) -> None:
    session_id = await services.create_session(repository=repository)
    user = await services.register_user("Sam Smith", repository=repository)
    await services.update_status(session_id, "ordering", user.id, repository=repository)

    board = await services.get_board(session_id, repository=repository)
    assert board["volunteer"].name == "Sam Smith"
    assert not board["can_volunteer"]


@pytest.mark.asyncio
async def test_unknown_sessions_leave_no_locks(repository: LunchRepository) -> None:
    for i in range(50):
        with pytest.raises(SessionNotFound):
            await services.get_status(f"bogus-{i}", repository=repository)
        with pytest.raises(SessionNotFound):
            await services.maybe_reset_daily(f"bogus-{i}", repository=repository)
    assert repository._locks == {}


@pytest.mark.asyncio
async def test_failed_hand_off_leaves_status_untouched(
    repository: LunchRepository, monkeypatch: pytest.MonkeyPatch
) -> None:
    session_id = await services.create_session(repository=repository)
    pizza = await add_option(repository, session_id, "Pizza", "u1")
    await services.add_vote(session_id, pizza.id, "u1", repository=repository)

    async def broken(*args, **kwargs) -> None:
        raise StorageUnavailable("disk full")

    monkeypatch.setattr(repository, "add_volunteer", broken)
    with pytest.raises(StorageUnavailable):
        await services.update_status(session_id, "ordering", "u7", repository=repository)
    monkeypatch.undo()

    status = await services.get_status(session_id, repository=repository)
    assert status.state == State.planning
    assert status.volunteer_id is None
    assert await services.get_volunteers(session_id, repository=repository) == []
    users = (await services.get_lunch_data(session_id, repository=repository))["users"]
    assert "u7" not in [u.id for u in users]
