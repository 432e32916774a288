import logging

from dotenv import load_dotenv
from fastapi import FastAPI

from app.config import LOG_FORMAT, LOG_LEVEL
from app.database import Base, engine
from app.routers.community import router as community_router
from app.routers.login import router as login_router
from app.routers.pairs import router as pairs_router
from app.routers.projects import router as projects_router
from app.routers.shares import router as shares_router
from app.routers.storage import router as storage_router

load_dotenv()

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

# Ensure database tables exist
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Before & After Vault")

app.include_router(login_router)
app.include_router(projects_router)
app.include_router(pairs_router)
app.include_router(shares_router)
app.include_router(community_router)
app.include_router(storage_router)

# Reminder: JWT_SECRET_KEY must match the identity provider's signing secret
