from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Optional
import logging
import threading
from datetime import date, datetime

import analyzer
import auth
import config
import scheduler
from models import (
    AiCancelResult,
    Credentials,
    MessageResult,
    Preferences,
    PreferencesResult,
    PreferencesUpdate,
    ProfileResult,
    RefreshRequest,
    RegisterResult,
    ScanResult,
    StatsResult,
    SubscriptionCreate,
    SubscriptionList,
    SubscriptionResult,
    SubscriptionStatus,
    SubscriptionUpdate,
    TokenPair,
    UpgradeRequest,
    UpgradeResult,
)
from providers import CancellationAgent, MockCancellationAgent, MockScanProvider, ScanProvider
from store import EmailTaken, ScanQuotaExceeded, Store

logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
log = logging.getLogger("api")

PUBLIC_API_PATHS = ("/api/auth/login", "/api/auth/register", "/api/auth/refresh", "/api/auth/logout")


# ── Errors ────────────────────────────────────────────────────────────────────
class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def error_response(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip()
    return ""


def create_app(store: Optional[Store] = None,
               scan_provider: Optional[ScanProvider] = None,
               cancellation_agent: Optional[CancellationAgent] = None,
               start_scheduler: bool = False) -> FastAPI:
    store = store or Store()
    scan_provider = scan_provider or MockScanProvider()
    cancellation_agent = cancellation_agent or MockCancellationAgent()

    app = FastAPI(title="SubTrack API")
    app.state.store = store

    # ── Auth gate ─────────────────────────────────────────────────────────────
    @app.middleware("http")
    async def auth_middleware(request: Request, call_next):
        path = request.url.path
        if path.startswith("/api/") and path not in PUBLIC_API_PATHS and request.method != "OPTIONS":
            user_id = auth.user_for_access_token(store, bearer_token(request))
            if user_id is None:
                return error_response(401, "unauthorized", "Missing or invalid access token.")
            request.state.user_id = user_id
        return await call_next(request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Error handlers ────────────────────────────────────────────────────────
    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        return error_response(exc.status_code, exc.code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
            for err in exc.errors()
        ]
        return error_response(422, "validation_error", "Request validation failed.", details)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(404, "not_found", "Page not found.")
        return error_response(exc.status_code, "http_error", str(exc.detail))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        log.exception(f"Unhandled application error on {request.method} {request.url.path}: {exc}")
        return error_response(500, "internal_error", "There was an error serving your request.")

    @app.on_event("startup")
    def on_startup():
        """Start the scheduler thread when the API server boots."""
        if start_scheduler:
            threading.Thread(target=scheduler.run_scheduler, args=(store,), daemon=True).start()
            log.info("Background scheduler thread launched.")

    def get_subscription_or_404(user_id: str, sub_id: str):
        sub = store.get_subscription(user_id, sub_id)
        if sub is None:
            raise ApiError(404, "not_found", "Subscription not found.")
        return sub

    # ── Auth routes ───────────────────────────────────────────────────────────
    @app.post("/api/auth/register", response_model=RegisterResult)
    def register(creds: Credentials):
        if len(creds.password) < config.MIN_PASSWORD_LENGTH:
            raise ApiError(400, "validation_error",
                           f"Password must be at least {config.MIN_PASSWORD_LENGTH} characters.")
        try:
            user = store.create_user(creds.email, auth.hash_password(creds.password))
        except EmailTaken:
            raise ApiError(400, "email_taken", "A user with this email already exists.")
        return RegisterResult(email=user["email"])

    @app.post("/api/auth/login", response_model=TokenPair)
    def login(creds: Credentials):
        user = store.find_user_by_email(creds.email)
        if user is None or not auth.verify_password(creds.password, user["password_hash"]):
            raise ApiError(401, "invalid_credentials", "Email or password is incorrect.")
        log.info(f"User logged in: {user['email']}")
        return auth.issue_tokens(store, user["id"])

    @app.post("/api/auth/refresh", response_model=TokenPair)
    def refresh(body: RefreshRequest):
        pair = auth.rotate_refresh_token(store, body.refresh_token)
        if pair is None:
            raise ApiError(401, "unauthorized", "Refresh token is invalid or expired.")
        return pair

    @app.post("/api/auth/logout", response_model=MessageResult)
    def logout(request: Request):
        token = bearer_token(request)
        if token:
            auth.revoke(store, token)
        return MessageResult(message="User logged out successfully")

    # ── Subscriptions ─────────────────────────────────────────────────────────
    @app.get("/api/subscriptions", response_model=SubscriptionList)
    def list_subscriptions(request: Request):
        now = datetime.now()
        subs = store.list_subscriptions(request.state.user_id)
        subs.sort(key=lambda s: s.created_at)
        return SubscriptionList(subscriptions=[analyzer.present(s, now) for s in subs])

    @app.get("/api/subscriptions/stats", response_model=StatsResult)
    def subscription_stats(request: Request):
        now = datetime.now()
        subs = [analyzer.present(s, now) for s in store.list_subscriptions(request.state.user_id)]
        return StatsResult(stats=analyzer.compute_stats(subs, now))

    @app.post("/api/subscriptions", response_model=SubscriptionResult)
    def add_subscription(request: Request, data: SubscriptionCreate):
        sub = store.add_subscription(request.state.user_id, data)
        return SubscriptionResult(subscription=analyzer.present(sub, derive_status=False))

    @app.post("/api/subscriptions/scan", response_model=ScanResult)
    def scan_subscriptions(request: Request):
        user_id = request.state.user_id
        today = date.today()
        try:
            profile = store.consume_scan(user_id, today)
        except ScanQuotaExceeded:
            raise ApiError(403, "scan_quota_exceeded",
                           "Daily scan limit reached. Upgrade to premium for more scans.")
        try:
            found = scan_provider.find_subscriptions(store.get_user(user_id))
        except Exception:
            store.refund_scan(user_id, today)
            raise
        log.info(f"Scan complete for {profile.email}: {len(found)} candidate(s)")
        return ScanResult(found_subscriptions=found)

    @app.put("/api/subscriptions/{sub_id}", response_model=SubscriptionResult)
    def update_subscription(request: Request, sub_id: str, changes: SubscriptionUpdate):
        sub = store.update_subscription(request.state.user_id, sub_id, changes)
        if sub is None:
            raise ApiError(404, "not_found", "Subscription not found.")
        return SubscriptionResult(subscription=analyzer.present(sub))

    @app.delete("/api/subscriptions/{sub_id}", response_model=MessageResult)
    def delete_subscription(request: Request, sub_id: str):
        if not store.delete_subscription(request.state.user_id, sub_id):
            raise ApiError(404, "not_found", "Subscription not found.")
        return MessageResult(message="Subscription deleted successfully")

    @app.post("/api/subscriptions/{sub_id}/cancel-ai", response_model=AiCancelResult)
    def ai_cancel_subscription(request: Request, sub_id: str):
        user_id = request.state.user_id
        sub = get_subscription_or_404(user_id, sub_id)
        plan = cancellation_agent.plan(sub)
        store.update_subscription(user_id, sub_id, SubscriptionUpdate(status=SubscriptionStatus.CANCELLED))
        log.info(f"AI cancellation initiated for {sub.name} ({sub_id})")
        return AiCancelResult(
            message=plan.message,
            cancellation_steps=plan.steps,
            estimated_time=plan.estimated_time,
            cancellation_url=plan.cancellation_url,
        )

    # ── User ──────────────────────────────────────────────────────────────────
    @app.get("/api/user/profile", response_model=ProfileResult)
    def user_profile(request: Request):
        return ProfileResult(user=store.profile(request.state.user_id, date.today()))

    @app.put("/api/user/preferences", response_model=PreferencesResult)
    def update_preferences(request: Request, changes: PreferencesUpdate):
        user_id = request.state.user_id
        if changes.sms_notifications and not store.profile(user_id).is_premium:
            raise ApiError(403, "premium_required", "SMS notifications require a premium plan.")
        prefs: Preferences = store.update_preferences(user_id, changes)
        return PreferencesResult(preferences=prefs)

    @app.post("/api/user/upgrade", response_model=UpgradeResult)
    def upgrade(request: Request, body: UpgradeRequest):
        if body.plan_type not in config.PLAN_TYPES:
            raise ApiError(400, "invalid_plan", f"Unknown plan type: {body.plan_type}")
        log.info(f"Upgrade checkout started ({body.plan_type}) for user {request.state.user_id}")
        return UpgradeResult(checkout_url=f"{config.CHECKOUT_URL}?plan={body.plan_type}")

    return app


app = create_app(start_scheduler=config.RUN_SCHEDULER)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
