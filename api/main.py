from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from activity import router as activity_router
from admin import router as admin_router
from auth import csrf
from auth import router as auth_router
from billing import router as billing_router
from categories import router as categories_router
from comments import router as comments_router
from core import db, errors, log, middleware, monitoring, responses, settings
from holiday_calendar import router as holidays_router
from jobs.scheduler import Scheduler
from me import router as me_router
from onboarding import router as onboarding_router
from reminders import router as reminders_router
from tasks import router as tasks_router
from workspaces import router as workspaces_router

log.configure()
monitoring.init_error_tracking()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize the DB pool once per process, then start periodic jobs.
    await db.init_pool()
    scheduler = Scheduler()
    scheduler.start()
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        await scheduler.stop()
        await db.close_pool()


app = FastAPI(title="Todoria API", lifespan=lifespan)

errors.install(app)
csrf.install(app)
middleware.install(app)

# Added last so it wraps everything, including error and CSRF responses.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", csrf.HEADER_NAME, "X-Request-Id"],
    expose_headers=["X-Request-Id", "Retry-After"],
)

app.include_router(auth_router.router, tags=["auth"])
app.include_router(workspaces_router.router, tags=["workspaces"])
app.include_router(onboarding_router.router, tags=["onboarding"])
app.include_router(categories_router.router, tags=["categories"])
app.include_router(tasks_router.router, tags=["tasks"])
app.include_router(comments_router.router, tags=["comments"])
app.include_router(billing_router.router, tags=["billing"])
app.include_router(activity_router.router, tags=["activity"])
app.include_router(me_router.router, tags=["me"])
app.include_router(admin_router.router, tags=["admin"])
app.include_router(reminders_router.router, tags=["reminders"])
app.include_router(holidays_router.router, tags=["holidays"])


@app.get("/health")
@app.get("/api/health")
def health() -> dict:
    return {"status": "ok", "environment": settings.app_env()}


@app.get("/api/db-test")
async def db_test() -> dict:
    now = await db.fetch_val("SELECT now()")
    return responses.success({"databaseTime": now}, message="Database connection successful")
