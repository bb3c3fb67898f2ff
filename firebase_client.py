from contextlib import asynccontextmanager
import asyncio
import inspect
import logging
from fastapi import FastAPI
import firebase_admin
from firebase_admin import credentials, firestore_async
from config import settings
from google.maps import routing_v2
from google.oauth2 import service_account
from auth import FirebaseAuthenticator
from notifier import RealtimeNotifier
from store import FirestoreCollection
from services.geocoding import NominatimGeocoder
from services.instance_generator import run_generation_forever
from services.location_cache import DriverLocationCache

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    app.state.notifier = RealtimeNotifier(app.state.sio, emit_timeout=settings.NOTIFY_TIMEOUT_SECONDS)
    app.state.location_cache = DriverLocationCache(
        ttl_seconds=settings.DRIVER_LOCATION_TTL_SECONDS,
        max_entries=settings.DRIVER_LOCATION_CACHE_SIZE,
    )
    app.state.geocoder = NominatimGeocoder(
        settings.GEOCODER_URL,
        timeout=settings.GEOCODER_TIMEOUT_SECONDS,
        user_agent=settings.GEOCODER_USER_AGENT,
    )

    db = None
    firebase_app = None
    routes_client = None
    requests_ref = instances_ref = trips_ref = drivers_ref = None
    authenticator = None
    try:
        cred = credentials.Certificate(settings.CREDENTIALS_PATH)
        firebase_app = firebase_admin.initialize_app(cred, {
            'databaseURL': settings.DATABASE_URL
        })
        db = firestore_async.client(app=firebase_app, database_id=settings.FIRESTORE_DATABASE_ID)
        timeout = settings.STORE_TIMEOUT_SECONDS
        requests_ref = FirestoreCollection(db, "ride_requests", timeout)
        instances_ref = FirestoreCollection(db, "ride_instances", timeout)
        trips_ref = FirestoreCollection(db, "trips", timeout)
        drivers_ref = FirestoreCollection(db, "drivers", timeout)
        authenticator = FirebaseAuthenticator(firebase_app)
        print("Firebase Admin SDK initialized successfully.")

        routes_credentials = service_account.Credentials.from_service_account_file(
            settings.CREDENTIALS_PATH,
            scopes=['https://www.googleapis.com/auth/cloud-platform']
        )
        routes_client = routing_v2.RoutesAsyncClient(credentials=routes_credentials)
        print("Google Maps Routes API client initialized successfully.")
    except Exception as e:
        print(f"Error initializing Firebase Admin SDK: {e}")

    app.state.requests_ref = requests_ref
    app.state.instances_ref = instances_ref
    app.state.trips_ref = trips_ref
    app.state.drivers_ref = drivers_ref
    app.state.authenticator = authenticator
    app.state.db = db
    app.state.firebase_app = firebase_app
    app.state.routes_client = routes_client

    generator_task = None
    if requests_ref and instances_ref:
        generator_task = asyncio.create_task(run_generation_forever(
            app.state,
            interval_seconds=settings.GENERATION_INTERVAL_SECONDS,
            days_ahead=settings.INSTANCE_WINDOW_DAYS,
            school_days_only=settings.SCHOOL_DAYS_ONLY,
        ))
        logger.info(f"Instance generation scheduled every {settings.GENERATION_INTERVAL_SECONDS}s")
    yield

    # --- Shutdown ---
    if generator_task:
        generator_task.cancel()
        try:
            await generator_task
        except asyncio.CancelledError:
            pass
    await app.state.geocoder.close()
    try:
        if db:
            print("Closing Firestore client...")
            closing = db.close()
            if inspect.isawaitable(closing):
                await closing
            print("Firestore client closed.")
        if firebase_app:
            firebase_admin.delete_app(firebase_app)
            print("Firebase Admin SDK app deleted successfully.")
    except Exception as e:
        print(f"Error deleting Firebase Admin SDK app: {e}")
