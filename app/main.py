# app/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings

# Import routers (router objects, not modules)
from app.api.student_assessments import router as student_assessments_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Assessment Submission Service",
    version="1.0.0"
)

# --------------------------------------------------
# CORS CONFIG
# --------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    # allow origin variations on localhost (ports) during development
    allow_origin_regex=r"http://localhost(:[0-9]+)?",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --------------------------------------------------
# API ROUTES
# --------------------------------------------------

# Student attempts: start, save answer, submit, results, history
app.include_router(
    student_assessments_router,
    prefix="/api/v1",
    tags=["Student Assessments"]
)

# --------------------------------------------------
# ROOT HEALTH CHECK
# --------------------------------------------------
@app.get("/")
def health_check():
    return {
        "status": "ok",
        "service": "Assessment Submission Service",
        "version": "1.0.0"
    }
