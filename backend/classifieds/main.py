import logging
from typing import Any
from uuid import UUID

from fastapi import BackgroundTasks, Body, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .auth_utils import REFRESH, create_token, decode_token
from .categories import get_category
from .config import settings
from .errors import ClassifiedsError
from .persistence import get_persistence
from .schemas import (
    AccessTokenResponse,
    AdCategory,
    AdPageResponse,
    AdResponse,
    ApiErrorDetail,
    ApiErrorPayload,
    ApiErrorResponse,
    AuthResponse,
    HealthResponse,
    LoginRequest,
    MessageResponse,
    PushTokenRequest,
    RefreshRequest,
    RegisterRequest,
    SaveAdRequest,
    SavedAdResponse,
    UnsaveAdRequest,
    UnsaveResponse,
    UserProfileResponse,
)
from .services import listings, saved_ads, users
from .services.images import ImageBatchProcessor
from .services.pipeline import AdSubmissionPipeline
from .services.push import get_push_gateway
from .services.uploads import get_uploader

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Classifieds API",
    version="0.1.0",
    description="Multi-category classified ads: submission, listings, saved ads and push notifications.",
)

persistence = get_persistence()
uploader = get_uploader()
push_gateway = get_push_gateway()
pipeline = AdSubmissionPipeline(persistence, ImageBatchProcessor(uploader), push_gateway)


def build_error_response(
    details: list[ApiErrorDetail],
    message: str = "Invalid request payload",
    code: str = "VALIDATION_ERROR",
    status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
    limit: int | None = None,
) -> JSONResponse:
    payload = ApiErrorResponse(
        error=ApiErrorPayload(code=code, message=message, details=details, limit=limit)
    )
    return JSONResponse(status_code=status_code, content=payload.model_dump(exclude_none=True))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: list[ApiErrorDetail] = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", []) if item != "body")
        details.append(ApiErrorDetail(field=loc or "body", message=err.get("msg", "validation error")))
    return build_error_response(details)


@app.exception_handler(ClassifiedsError)
async def classifieds_exception_handler(request: Request, exc: ClassifiedsError) -> JSONResponse:
    message = exc.message
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
        # Storage and gateway internals stay in the log.
        message = exc.default_message
    return build_error_response(
        [ApiErrorDetail(field=field, message=msg) for field, msg in exc.details],
        message=message,
        code=exc.code,
        status_code=exc.status_code,
        **exc.extra(),
    )


def _token_from_header(authorization: str | None) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="missing Authorization header")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="invalid Authorization header")
    return parts[1].strip()


def _require_user(authorization: str | None = None) -> UUID:
    token = _token_from_header(authorization)
    user_id = decode_token(token)
    if user_id is None or users.get_user(persistence, user_id) is None:
        raise HTTPException(status_code=401, detail="invalid or expired token")
    return user_id


def _optional_user(authorization: str | None = None) -> UUID | None:
    if not authorization:
        return None
    return _require_user(authorization)


def _auth_response(user: dict[str, Any]) -> AuthResponse:
    return AuthResponse(
        accessToken=create_token(user["id"]),
        refreshToken=create_token(user["id"], REFRESH),
        user=UserProfileResponse(**users.profile(user)),
    )


@app.get("/api/v1/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


# ---- auth ----


@app.post("/api/v1/auth/register", response_model=AuthResponse, status_code=201)
async def auth_register(payload: RegisterRequest) -> AuthResponse:
    user = users.register_user(persistence, payload.username, payload.email, payload.password)
    logger.info("user %s registered", user["id"])
    return _auth_response(user)


@app.post("/api/v1/auth/login", response_model=AuthResponse)
async def auth_login(payload: LoginRequest) -> AuthResponse:
    user = users.authenticate_user(persistence, payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="invalid email or password")
    return _auth_response(user)


@app.post("/api/v1/auth/refresh", response_model=AccessTokenResponse)
async def auth_refresh(payload: RefreshRequest) -> AccessTokenResponse:
    user_id = decode_token(payload.refreshToken, REFRESH)
    if user_id is None or users.get_user(persistence, user_id) is None:
        raise HTTPException(status_code=401, detail="invalid or expired refresh token")
    return AccessTokenResponse(accessToken=create_token(user_id))


@app.post("/api/v1/auth/push-token", response_model=MessageResponse)
async def auth_push_token(payload: PushTokenRequest, authorization: str | None = Header(default=None)) -> MessageResponse:
    user_id = _require_user(authorization)
    users.set_push_token(persistence, user_id, payload.token)
    return MessageResponse(message="push token saved")


@app.get("/api/v1/auth/me", response_model=UserProfileResponse)
async def auth_me(authorization: str | None = Header(default=None)) -> UserProfileResponse:
    user_id = _require_user(authorization)
    user = users.get_user(persistence, user_id)
    return UserProfileResponse(**users.profile(user))


# ---- saved ads ----


@app.post("/api/v1/saved-ads", response_model=SavedAdResponse, status_code=201)
async def save_ad(payload: SaveAdRequest, authorization: str | None = Header(default=None)) -> SavedAdResponse:
    user_id = _require_user(authorization)
    row = saved_ads.save(persistence, user_id, payload.adId, payload.adCategory)
    return SavedAdResponse(**row)


@app.get("/api/v1/saved-ads", response_model=list[SavedAdResponse])
async def list_saved_ads(authorization: str | None = Header(default=None)) -> list[SavedAdResponse]:
    user_id = _require_user(authorization)
    return [SavedAdResponse(**row) for row in saved_ads.list_saved(persistence, user_id)]


@app.delete("/api/v1/saved-ads", response_model=UnsaveResponse)
async def unsave_ad(payload: UnsaveAdRequest, authorization: str | None = Header(default=None)) -> UnsaveResponse:
    user_id = _require_user(authorization)
    saved_ads.unsave(persistence, user_id, payload.adId)
    return UnsaveResponse()


@app.delete("/api/v1/saved-ads/{ad_id}", response_model=UnsaveResponse)
async def unsave_ad_by_id(ad_id: UUID, authorization: str | None = Header(default=None)) -> UnsaveResponse:
    user_id = _require_user(authorization)
    saved_ads.unsave(persistence, user_id, ad_id)
    return UnsaveResponse()


# ---- ads ----
#
# Ad writes reach blocking storage and upload clients, so these routes are plain
# functions and run in the threadpool.


@app.post("/api/v1/ads/{category}", response_model=AdResponse, status_code=201)
def create_ad(
    category: AdCategory,
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
) -> AdResponse:
    user_id = _require_user(authorization)
    submission = pipeline.create(user_id, category, payload, schedule=background_tasks.add_task)
    return listings.present(persistence, submission.ad, user_id)


@app.get("/api/v1/ads/{category}", response_model=AdPageResponse)
async def list_ads(
    category: AdCategory,
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.default_page_size, ge=1, le=settings.max_page_size),
    authorization: str | None = Header(default=None),
) -> AdPageResponse:
    requester_id = _optional_user(authorization)
    result = listings.list_ads(
        persistence,
        get_category(category),
        request.query_params,
        page,
        limit,
        settings.no_filter_value,
        requester_id,
    )
    return AdPageResponse(
        items=result.items,
        page=result.page,
        pageSize=result.page_size,
        totalItems=result.total_items,
        totalPages=result.total_pages,
    )


@app.get("/api/v1/ads/{category}/mine", response_model=list[AdResponse])
async def list_my_ads(category: AdCategory, authorization: str | None = Header(default=None)) -> list[AdResponse]:
    user_id = _require_user(authorization)
    return listings.list_mine(persistence, get_category(category), user_id)


@app.get("/api/v1/ads/{category}/{ad_id}", response_model=AdResponse)
async def get_ad(category: AdCategory, ad_id: UUID, authorization: str | None = Header(default=None)) -> AdResponse:
    requester_id = _optional_user(authorization)
    return listings.get_ad(persistence, get_category(category), ad_id, requester_id)


@app.put("/api/v1/ads/{category}/{ad_id}", response_model=AdResponse)
def update_ad(
    category: AdCategory,
    ad_id: UUID,
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
) -> AdResponse:
    user_id = _require_user(authorization)
    updated = pipeline.update(user_id, category, ad_id, payload)
    return listings.present(persistence, updated, user_id)


@app.delete("/api/v1/ads/{category}/{ad_id}", response_model=MessageResponse)
def delete_ad(category: AdCategory, ad_id: UUID, authorization: str | None = Header(default=None)) -> MessageResponse:
    user_id = _require_user(authorization)
    pipeline.delete(user_id, category, ad_id)
    return MessageResponse(message="ad deleted")
