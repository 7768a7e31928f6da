import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from app.config import settings
from app.database import engine
from app.models.all_models import Base
from app.routes.auth.router import router as auth_router
from app.routes.clinic.router import router as clinic_router
from app.routes.team.router import router as team_router
from app.routes.patients.router import router as patients_router
from app.routes.appointments.router import router as appointments_router
from app.routes.visits.router import router as visits_router
from app.routes.payments.router import router as payments_router
from app.routes.inventory.router import router as inventory_router
from app.routes.reports.router import router as reports_router
from app.routes.sms.router import router as sms_router
from app.routes.admin.router import router as admin_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Database ready")
    yield


app = FastAPI(title="JuaAfya API", version="1.0.0", lifespan=lifespan)


@app.get("/", include_in_schema=False)
def read_root():
    return RedirectResponse(url="/docs")


api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(auth_router)
api_v1_router.include_router(clinic_router)
api_v1_router.include_router(team_router)
api_v1_router.include_router(patients_router)
api_v1_router.include_router(appointments_router)
api_v1_router.include_router(visits_router)
api_v1_router.include_router(payments_router)
api_v1_router.include_router(inventory_router)
api_v1_router.include_router(reports_router)
api_v1_router.include_router(sms_router)
api_v1_router.include_router(admin_router)

app.include_router(api_v1_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
