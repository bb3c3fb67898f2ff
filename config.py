from pydantic_settings import BaseSettings
from pydantic import ConfigDict

class Settings(BaseSettings):
    PORT: int
    DATABASE_URL: str
    FIRESTORE_DATABASE_ID: str = "rides"
    CREDENTIALS_PATH: str = "credentials.json"
    LOG_LEVEL: str = "INFO"

    # Matching, all distances in meters
    MATCH_RADIUS_METERS: float = 10000
    MATCH_LIMIT: int = 10
    MATCH_POLICY: str = "status"
    AVAILABLE_DRIVERS_RADIUS_METERS: float = 50000

    # Recurring instance generation
    INSTANCE_WINDOW_DAYS: int = 14
    SCHOOL_DAYS_ONLY: bool = True
    GENERATION_INTERVAL_SECONDS: int = 86400

    DRIVER_LOCATION_TTL_SECONDS: int = 300
    DRIVER_LOCATION_CACHE_SIZE: int = 5000

    STORE_TIMEOUT_SECONDS: float = 10
    NOTIFY_TIMEOUT_SECONDS: float = 5

    GEOCODER_URL: str = "https://nominatim.openstreetmap.org"
    GEOCODER_TIMEOUT_SECONDS: float = 5
    GEOCODER_USER_AGENT: str = "school-ride-service"

    BASE_FARE: float = 25
    FARE_PER_KM: float = 12
    FARE_PER_MINUTE: float = 0.5

    model_config = ConfigDict(env_file='.env')

settings = Settings()
