import contextlib
import functools
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from databases import Database
from jinja2 import Environment, FileSystemLoader, select_autoescape
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from app import config
from domain import services
from domain.exceptions import (
    InvalidTransition,
    PhaseClosed,
    SessionNotFound,
    StorageUnavailable,
)
from domain.repository import LunchRepository


logger = logging.getLogger(__name__)


def aHTMLResponse(route: Callable[..., Awaitable[str | tuple[str, int]]]):
    @functools.wraps(route)
    async def wrapper(*args: Any, **kwargs: Any) -> HTMLResponse:
        resp = await route(*args, **kwargs)
        if not isinstance(resp, tuple):
            html, code = resp, 200
        else:
            html, code = resp
        return HTMLResponse(html, status_code=code)

    return wrapper


def _repo(request: Request) -> LunchRepository:
    return request.app.state.repo


def _config(request: Request) -> config.Config:
    return request.app.state.config


def _templates(request: Request) -> Environment:
    return request.app.state.templates


async def _body(request: Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        raise ValueError("Body must be JSON.")
    if not isinstance(data, dict):
        raise ValueError("Body must be a JSON object.")
    return data


def _field(data: dict[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str):
        raise ValueError(f"Missing field: {name}")
    return value


def _optional_field(data: dict[str, Any], name: str) -> str | None:
    value = data.get(name)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"Field must be a string: {name}")
    return value


def _board_json(board: dict[str, Any]) -> dict[str, Any]:
    return {
        "session": board["session"].to_dict(),
        "status": board["status"].to_dict(),
        "users": [u.to_dict() for u in board["users"]],
        "options": [o.to_dict() for o in board["options"]],
        "votes": [v.to_dict() for v in board["votes"]],
        "tally": board["tally"],
        "winner": board["winner"].to_dict() if board["winner"] else None,
        "votingComplete": board["voting_complete"],
        "canVolunteer": board["can_volunteer"],
        "volunteer": board["volunteer"].to_dict() if board["volunteer"] else None,
        "requests": [r.to_dict() for r in board["requests"]],
    }


# Pages


@aHTMLResponse
async def homepage(request: Request) -> str:
    return _templates(request).get_template("index.html").render()


async def new_planning(request: Request) -> RedirectResponse:
    session_id = await services.create_session(
        repository=_repo(request),
        id_length=_config(request).session_id_length,
    )
    return RedirectResponse(f"/planning/{session_id}", status_code=303)


async def planning_page(request: Request) -> Response:
    session_id = request.path_params["id"]
    try:
        board = await services.get_board(
            session_id,
            repository=_repo(request),
            threshold=_config(request).voting_threshold,
        )
    except SessionNotFound:
        return RedirectResponse("/", status_code=303)
    html = _templates(request).get_template("planning.html").render(
        board=board,
        poll_interval=_config(request).poll_interval,
    )
    return HTMLResponse(html)


# API


async def create_session(request: Request) -> JSONResponse:
    session_id = await services.create_session(
        repository=_repo(request),
        id_length=_config(request).session_id_length,
    )
    return JSONResponse({"id": session_id}, status_code=201)


async def get_session(request: Request) -> JSONResponse:
    session = await services.get_session(
        request.path_params["id"], repository=_repo(request)
    )
    if session is None:
        return JSONResponse({"detail": "Session not found."}, status_code=404)
    return JSONResponse(session.to_dict())


async def lunch_data(request: Request) -> JSONResponse:
    data = await services.get_lunch_data(
        request.path_params["id"], repository=_repo(request)
    )
    return JSONResponse({k: [item.to_dict() for item in v] for k, v in data.items()})


async def add_option(request: Request) -> JSONResponse:
    data = await _body(request)
    option = await services.add_lunch_option(
        request.path_params["id"],
        name=_field(data, "name"),
        description=_optional_field(data, "description") or "",
        added_by=_field(data, "addedBy"),
        repository=_repo(request),
    )
    return JSONResponse(option.to_dict(), status_code=201)


async def add_vote(request: Request) -> JSONResponse:
    data = await _body(request)
    votes = await services.add_vote(
        request.path_params["id"],
        _field(data, "optionId"),
        _field(data, "userId"),
        repository=_repo(request),
    )
    return JSONResponse([v.to_dict() for v in votes])


async def status(request: Request) -> JSONResponse:
    session_id = request.path_params["id"]
    match request.method.lower():
        case "get":
            current = await services.get_status(session_id, repository=_repo(request))
        case "put":
            data = await _body(request)
            current = await services.update_status(
                session_id,
                _field(data, "state"),
                _optional_field(data, "volunteerId") or None,
                repository=_repo(request),
                strict=_config(request).strict_transitions,
            )
        case _:
            raise ValueError("Unsupported method.")
    return JSONResponse(current.to_dict())


async def food_requests(request: Request) -> JSONResponse:
    session_id = request.path_params["id"]
    match request.method.lower():
        case "get":
            requests = await services.get_food_requests(
                session_id, repository=_repo(request)
            )
            return JSONResponse([r.to_dict() for r in requests])
        case "post":
            data = await _body(request)
            food_request = await services.add_food_request(
                session_id,
                user_id=_field(data, "userId"),
                volunteer_id=_optional_field(data, "volunteerId") or "",
                request=_field(data, "request"),
                repository=_repo(request),
            )
            return JSONResponse(food_request.to_dict(), status_code=201)
        case _:
            raise ValueError("Unsupported method.")


async def volunteers(request: Request) -> JSONResponse:
    history = await services.get_volunteers(
        request.path_params["id"], repository=_repo(request)
    )
    return JSONResponse([v.to_dict() for v in history])


async def board(request: Request) -> JSONResponse:
    snapshot = await services.get_board(
        request.path_params["id"],
        repository=_repo(request),
        threshold=_config(request).voting_threshold,
    )
    return JSONResponse(_board_json(snapshot))


async def register_user(request: Request) -> JSONResponse:
    data = await _body(request)
    user = await services.register_user(
        _field(data, "name"),
        email=_optional_field(data, "email"),
        user_id=_optional_field(data, "id"),
        repository=_repo(request),
    )
    return JSONResponse(user.to_dict(), status_code=201)


# Errors


def _error(status_code: int) -> Callable[[Request, Exception], Awaitable[JSONResponse]]:
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=status_code)

    return handler


async def session_not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"detail": f"Session not found: {exc}"}, status_code=404)


EXCEPTION_HANDLERS = {
    SessionNotFound: session_not_found,
    ValueError: _error(400),
    PhaseClosed: _error(409),
    InvalidTransition: _error(409),
    StorageUnavailable: _error(503),
}


def create_app(cfg: config.Config | None = None) -> Starlette:
    cfg = config.Config() if cfg is None else cfg
    db = Database(cfg.db_url)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await db.connect()
        await app.state.repo.create_tables()
        logger.info("Record store ready at %s", cfg.db_url)
        yield
        await db.disconnect()

    app = Starlette(
        debug=True if cfg.env == config.Env.local else False,
        routes=[
            Route("/", homepage),
            Route("/planning", new_planning, methods=["POST"]),
            Route("/planning/{id:str}", planning_page),
            Route("/api/users", register_user, methods=["POST"]),
            Route("/api/sessions", create_session, methods=["POST"]),
            Route("/api/sessions/{id:str}", get_session),
            Route("/api/sessions/{id:str}/lunch", lunch_data),
            Route("/api/sessions/{id:str}/board", board),
            Route("/api/sessions/{id:str}/options", add_option, methods=["POST"]),
            Route("/api/sessions/{id:str}/votes", add_vote, methods=["POST"]),
            Route("/api/sessions/{id:str}/status", status, methods=["GET", "PUT"]),
            Route(
                "/api/sessions/{id:str}/requests",
                food_requests,
                methods=["GET", "POST"],
            ),
            Route("/api/sessions/{id:str}/volunteers", volunteers),
        ],
        exception_handlers=EXCEPTION_HANDLERS,
        lifespan=lifespan,
    )

    app.state.config = cfg
    app.state.repo = LunchRepository(db)
    app.state.templates = Environment(
        loader=FileSystemLoader(cfg.html_dir),
        autoescape=select_autoescape(),
    )
    return app
