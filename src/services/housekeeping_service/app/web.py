# src/services/housekeeping_service/app/web.py
from fastapi import FastAPI
from replay_common.health import create_health_router

app = FastAPI(title="Housekeeping Service - Health")

# Deletes need the database and every catalog table to be present.
health_router = create_health_router('db', 'event_tables')
app.include_router(health_router)
