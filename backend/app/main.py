from __future__ import annotations

import logging
from pathlib import Path

import httpx
from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from . import census_service
from .census_service import ApiConfig, FetchError, SearchValidationError
from .config import load_settings
from .dashboard import SearchController, SearchInProgressError, SessionStore
from .schemas import DashboardView, ErrorResponse, ZipSearchRequest

SESSION_COOKIE = "census_explorer_session"

settings = load_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

api_config = ApiConfig.from_settings(settings)
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))

app = FastAPI(title="US Census Explorer", version="0.1.0")
app.state.sessions = SessionStore(api_config, max_sessions=settings.max_sessions)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _render(
    request: Request,
    session_id: str,
    controller: SearchController,
    status_code: int = 200,
) -> HTMLResponse:
    response = templates.TemplateResponse(
        request,
        "dashboard.html",
        {
            "view": controller.view(),
            "api_key": controller.api_key,
            "preview_limit": census_service.RECORD_PREVIEW_LIMIT,
        },
        status_code=status_code,
    )
    response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax")
    return response


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/", response_class=HTMLResponse)
def dashboard(request: Request) -> HTMLResponse:
    session_id, controller = request.app.state.sessions.get(request.cookies.get(SESSION_COOKIE))
    return _render(request, session_id, controller)


@app.post("/", response_class=HTMLResponse)
def submit_search(
    request: Request,
    zip_code: str = Form(""),
    api_key: str = Form(""),
) -> HTMLResponse:
    session_id, controller = request.app.state.sessions.get(request.cookies.get(SESSION_COOKIE))
    try:
        with httpx.Client(follow_redirects=True) as client:
            controller.search(client, zip_code, api_key)
    except SearchInProgressError:
        logger.warning("Rejected search for session %s: previous search still pending", session_id)
        return _render(request, session_id, controller, status_code=409)
    return _render(request, session_id, controller)


@app.post(
    "/api/census/by-zip",
    response_model=DashboardView,
    responses={502: {"model": ErrorResponse}},
)
def census_by_zip(body: ZipSearchRequest) -> DashboardView:
    """Stateless search: returns the dashboard view for one zip code as JSON."""
    try:
        with httpx.Client(follow_redirects=True) as client:
            result = census_service.run_search(
                client,
                zip_code=body.zip_code,
                api_key=body.api_key,
                config=api_config,
            )
    except SearchValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except FetchError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return DashboardView(
        zip_code=result.zip_code,
        searched_zip=result.zip_code,
        stats=result.stats,
        coordinates=result.coordinates,
        record=census_service.build_record_preview(result.record),
    )
