import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from app.routers import listings, projects, videos, usage, webhooks, admin_projects
from app.core.redis import RedisClient
from app.core.config import settings
from app.core.notifications import RedisChangeRelay

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

change_relay = RedisChangeRelay()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Startup and shutdown events"""
    print("\n" + "=" * 50)
    print("  Starting Listing Reel API...")
    print("=" * 50)
    print(f"  Environment: {settings.APP_ENV}")
    print("-" * 50)

    try:
        from sqlalchemy import text
        from app.core.database import engine, init_db
        init_db()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print(f"  [OK]   Database  ({engine.dialect.name})")
    except Exception as e:
        print(f"  [FAIL] Database  - {e}")

    if settings.redis_enabled:
        try:
            RedisClient.get_client().ping()
            print(f"  [OK]   Redis     ({settings.REDIS_HOST}:{settings.REDIS_PORT})")
            if change_relay.start():
                print("  [OK]   Change relay (project_changes)")
        except Exception as e:
            print(f"  [FAIL] Redis     - {e}")
    else:
        print("  [SKIP] Redis     (REDIS_HOST not set, in-process change bus)")

    print(f"  Pipeline: {settings.PIPELINE_MODE} | Render engine: {settings.RENDER_ENGINE}")
    if settings.PIPELINE_MODE == "queue" and not settings.redis_enabled:
        print("  [WARN] PIPELINE_MODE=queue needs Redis, generate requests will fail")

    print("-" * 50)
    print("  Listing Reel API is ready!")
    print("=" * 50 + "\n")
    yield

    print("\nShutting down Listing Reel API...")
    change_relay.stop()
    try:
        RedisClient.close()
    except Exception as e:
        print(f"  Redis close failed: {e}")


is_production = settings.APP_ENV == "production"

app = FastAPI(
    title="Listing Reel API",
    lifespan=lifespan,
    docs_url=None if is_production else "/docs",
    redoc_url=None if is_production else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def health_check():
    return {"status": True}


app.include_router(listings.router)
app.include_router(projects.router)
app.include_router(videos.router)
app.include_router(usage.router)
app.include_router(webhooks.router)
app.include_router(admin_projects.router)
