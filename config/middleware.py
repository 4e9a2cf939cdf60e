# middleware.py
import os
from fastapi.middleware.cors import CORSMiddleware

DEFAULT_ORIGINS = "http://localhost:3000,http://localhost:5173"


def add_cors_middleware(app):
    origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", DEFAULT_ORIGINS).split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
