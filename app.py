# app.py — Sourcing Academy lesson service
# - Every route lives under API_PREFIX; all but health/signup/login need a bearer token
# - Handlers report "not found" as 404 and never leak stack traces

import json
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, Body, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

import kv_store
from curriculum import CurriculumCatalog, CurriculumSeeder, load_catalog
from env_validation import (
    DEFAULT_CURRICULUM_PATH,
    get_api_prefix,
    get_cors_origins,
    get_env_int,
    validate_environment,
)
from identity import (
    DEFAULT_TOKEN_TTL_SECONDS,
    DuplicateIdentity,
    Identity,
    IdentityProvider,
    InvalidCredentials,
)
from kv_store import StoreUnavailable
from lessons import LessonStore
from recommendations import MODULES, RecommendationStore, derive_recommendations, is_lesson_recommended
from responses import ResponseCollector
from schemas import (
    AnswerCheckBody,
    EssayQuestion,
    EssayResponseBody,
    LoginBody,
    OnboardingAnswers,
    RoleBody,
    SignupBody,
)

logger = logging.getLogger(__name__)

_HTTP_LOGGER = logging.getLogger("sourcing.http")
if not _HTTP_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _HTTP_LOGGER.addHandler(_handler)
_HTTP_LOGGER.setLevel(logging.INFO)
_HTTP_LOGGER.propagate = False


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        validate_environment()
        logging.basicConfig(level=os.environ["LOG_LEVEL"].upper())
        kv_store.init(os.environ["DB_PATH"])
        catalog = _catalog()
        logger.info("Serving %s with %d curriculum lessons", API_PREFIX or "/", len(catalog))
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise
    finally:
        if kv_store._store is not None:
            kv_store._store.close()


API_PREFIX = get_api_prefix()

app = FastAPI(title="Sourcing Academy", version="1.4.0", lifespan=_lifespan)
router = APIRouter(prefix=API_PREFIX)

_PUBLIC_PATHS = frozenset({f"{API_PREFIX}/health", f"{API_PREFIX}/signup", f"{API_PREFIX}/login"})


# ---------- Services ----------
def _identity() -> IdentityProvider:
    ttl = get_env_int("TOKEN_TTL_SECONDS", DEFAULT_TOKEN_TTL_SECONDS, minimum=1)
    return IdentityProvider(kv_store.get_store(), token_ttl_seconds=ttl)


def _lessons() -> LessonStore:
    return LessonStore(kv_store.get_store(), _identity())


def _catalog() -> CurriculumCatalog:
    return load_catalog(os.getenv("CURRICULUM_PATH") or str(DEFAULT_CURRICULUM_PATH))


def _seeder() -> CurriculumSeeder:
    return CurriculumSeeder(_lessons(), kv_store.get_store(), _catalog())


def _recommendations() -> RecommendationStore:
    return RecommendationStore(kv_store.get_store(), _identity())


def _responses() -> ResponseCollector:
    return ResponseCollector(kv_store.get_store())


def _current_user(request: Request) -> Identity:
    return request.state.user


# ---------- Auth ----------
def _normalize_path(path: str) -> str:
    if not path or path == "/":
        return "/"
    return path.rstrip("/")


def _extract_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    candidate = header_value.strip()
    if " " in candidate:
        prefix, token = candidate.split(" ", 1)
        if prefix.lower() != "bearer":
            return None
        candidate = token.strip()
    return candidate or None


def _is_protected(request: Request) -> bool:
    if request.method == "OPTIONS":
        return False
    path = _normalize_path(request.url.path)
    if path in _PUBLIC_PATHS:
        return False
    return path.startswith(f"{API_PREFIX}/")


@app.middleware("http")
async def _enforce_token(request: Request, call_next):
    if _is_protected(request):
        token = _extract_token(request.headers.get("authorization"))
        user = _identity().authenticate(token)
        if user is None:
            return JSONResponse(status_code=401, content={"detail": "Unauthorized - missing or invalid token"})
        request.state.user = user
    return await call_next(request)


@app.middleware("http")
async def _log_and_contain(request: Request, call_next):
    start = time.perf_counter()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    finally:
        _HTTP_LOGGER.info(
            json.dumps(
                {
                    "event": "http_request",
                    "method": request.method,
                    "path": request.url.path,
                    "status": status,
                    "latency_ms": int((time.perf_counter() - start) * 1000),
                }
            )
        )


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def _request_validation_failed(_: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(ValidationError)
async def _record_validation_failed(_: Request, exc: ValidationError):
    errors = exc.errors(include_url=False, include_context=False, include_input=False)
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(errors)})


@app.exception_handler(StoreUnavailable)
async def _store_unavailable(request: Request, exc: StoreUnavailable):
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---------- Public ----------
@router.get("/health")
def health():
    return {"status": "ok", "message": "Server is running"}


@router.post("/signup")
def signup(body: SignupBody):
    try:
        user = _identity().create_user(body.email, body.password, name=body.name, role=body.role)
    except DuplicateIdentity as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"user": user.to_dict()}


@router.post("/login")
def login(body: LoginBody):
    try:
        return _identity().sign_in(body.email, body.password)
    except InvalidCredentials as exc:
        raise HTTPException(status_code=401, detail=str(exc))


@router.post("/update-role")
def update_role(request: Request, body: RoleBody):
    user = _identity().update_metadata(_current_user(request).id, {"role": body.role})
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "user": user.to_dict()}


# ---------- Lessons ----------
def _require_title(payload: dict[str, Any], *, required: bool) -> None:
    if not required and "title" not in payload:
        return
    title = payload.get("title")
    if not isinstance(title, str) or not title.strip():
        raise HTTPException(status_code=400, detail="title is required")


@router.post("/lessons")
def create_lesson(request: Request, payload: dict[str, Any] = Body(...)):
    _require_title(payload, required=True)
    lesson = _lessons().create(_current_user(request).id, payload)
    return {"lessonId": lesson.id, "lesson": lesson.to_wire()}


@router.get("/lessons")
def list_lessons(request: Request):
    lessons = _lessons().list_owned(_current_user(request).id)
    return {"lessons": [lesson.to_wire() for lesson in lessons]}


@router.get("/lessons/{lesson_id}")
def get_lesson(request: Request, lesson_id: str):
    lesson = _lessons().get(_current_user(request).id, lesson_id)
    if lesson is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return {"lesson": lesson.to_wire()}


@router.put("/lessons/{lesson_id}")
def update_lesson(request: Request, lesson_id: str, payload: dict[str, Any] = Body(...)):
    _require_title(payload, required=False)
    lesson = _lessons().update(_current_user(request).id, lesson_id, payload)
    if lesson is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return {"success": True, "lesson": lesson.to_wire()}


@router.delete("/lessons/{lesson_id}")
def delete_lesson(request: Request, lesson_id: str):
    _lessons().delete(_current_user(request).id, lesson_id)
    return {"success": True}


@router.post("/lessons/{lesson_id}/add-to-dashboard")
def add_to_dashboard(request: Request, lesson_id: str):
    copy = _lessons().copy_to_owner(lesson_id, _current_user(request).id)
    if copy is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return {"success": True, "lessonId": copy.id}


@router.post("/lessons/{lesson_id}/questions/{question_number}/check")
def check_answer(request: Request, lesson_id: str, question_number: int, body: AnswerCheckBody):
    lesson = _lessons().get(_current_user(request).id, lesson_id)
    if lesson is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    question = lesson.question_at(question_number)
    if question is None:
        raise HTTPException(status_code=404, detail="Question not found")
    if isinstance(question, EssayQuestion):
        raise HTTPException(status_code=400, detail="Essay questions are submitted, not checked")
    if body.selected_answer >= len(question.options):
        raise HTTPException(status_code=400, detail="selectedAnswer is not one of the options")
    return {
        "correct": question.is_correct(body.selected_answer),
        "correctAnswer": question.correct_answer,
        "explanation": question.explanation_for(body.selected_answer),
    }


@router.get("/browse/lessons")
def browse_lessons():
    return {"lessons": _lessons().list_all()}


@router.get("/modules/{module_key}/lessons")
def module_lessons(request: Request, module_key: str):
    module_name = MODULES.get(module_key)
    if module_name is None:
        raise HTTPException(status_code=404, detail="Module not found")
    user = _current_user(request)
    recommendations = _recommendations().recommendations_for(user.id)
    lessons = []
    for lesson in _lessons().list_owned(user.id):
        if lesson.category != module_name:
            continue
        payload = lesson.to_wire()
        payload["recommended"] = is_lesson_recommended(lesson, recommendations)
        lessons.append(payload)
    return {"module": module_name, "recommendations": recommendations, "lessons": lessons}


# ---------- Curriculum ----------
@router.post("/init-curriculum")
def init_curriculum(request: Request, force: bool = False):
    report = _seeder().ensure_seeded(_current_user(request).id, force=force)
    return report.to_dict()


@router.get("/curriculum/status")
def curriculum_status(request: Request):
    return _seeder().status(_current_user(request).id)


@router.post("/clear-curriculum-lessons")
def clear_curriculum_lessons(request: Request):
    deleted = _lessons().clear_curriculum(_current_user(request).id)
    return {"success": True, "deleted": deleted}


# ---------- Essay responses ----------
@router.post("/essay-responses")
def submit_essay_response(request: Request, body: EssayResponseBody):
    response_id = _responses().submit(
        body.lesson_id, body.question_number, _current_user(request), body.response
    )
    return {"success": True, "responseId": response_id}


@router.get("/essay-responses/{lesson_id}")
def essay_responses(lesson_id: str):
    grouped = _responses().list_by_lesson(lesson_id)
    return {
        "responses": {
            str(number): [response.to_wire() for response in responses]
            for number, responses in grouped.items()
        }
    }


# ---------- Onboarding ----------
@router.post("/onboarding-quiz")
def onboarding_quiz(request: Request, body: OnboardingAnswers):
    recommendations = derive_recommendations(body)
    _recommendations().save(_current_user(request).id, body, recommendations)
    return {"success": True, "recommendations": recommendations}


@router.get("/recommendations")
def get_recommendations(request: Request):
    return {"recommendations": _recommendations().recommendations_for(_current_user(request).id)}


app.include_router(router)
