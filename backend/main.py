# backend/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from config import settings
from database import init_db

load_dotenv()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# Router imports
from routes.shop import router as shop_router
from routes.deals import router as deals_router
from routes.cart import router as cart_router
from routes.payments import router as payments_router
from routes.orders import router as orders_router
from routes.realtime import router as realtime_router

# Initialization
init_db()

app = FastAPI(title="Corner Store Pickup API", version="1.0.0")

# CORS Configuration
origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Router registration
app.include_router(shop_router)
app.include_router(deals_router)
app.include_router(cart_router)
app.include_router(payments_router)
app.include_router(orders_router)
app.include_router(realtime_router)

@app.get("/")
def read_root():
    return {"message": "Corner Store Pickup API is running"}
