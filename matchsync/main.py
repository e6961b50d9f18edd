# matchsync/main.py
from fastapi import FastAPI
from matchsync.db import Base, engine
import matchsync.models  # noqa: F401 ensure models are imported so tables are known
from matchsync.api.routes import router as api_router
from matchsync.scheduler import start_scheduler, stop_scheduler

# create FastAPI instance
app = FastAPI(title="matchsync")
app.include_router(api_router)


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    start_scheduler()


@app.on_event("shutdown")
def on_shutdown():
    stop_scheduler()
