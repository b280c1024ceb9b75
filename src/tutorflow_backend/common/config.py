'''
Holds all the configurations
'''
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """
    Manages application configuration using environment variables.
    """
    # Application Metadata
    APP_NAME: str = "TutorFlow Backend"
    APP_VERSION: str = "0.4.0"
    APP_DESCRIPTION: str = "The backend API for the TutorFlow tutoring platform."
    TEST_MODE: bool = False
    LOG_LEVEL: str = "INFO"

    # Database URL
    DATABASE_URL_PROD: str = "postgresql+asyncpg://localhost/tutorflow"
    DATABASE_URL_TEST: str = "sqlite+aiosqlite://"
    @property
    def database_url(self) -> str:
        """
        Dynamically returns the correct database URL based on the test_mode flag.
        """
        if self.TEST_MODE:
            return self.DATABASE_URL_TEST
        return self.DATABASE_URL_PROD

    # JWT Settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    BACKEND_CORS_ORIGINS: list[str] = []

    # External providers
    STRIPE_API_KEY: str = ""
    RESEND_API_KEY: str = ""
    EMAIL_FROM_ADDRESS: str = "TutorFlow <noreply@tutorflow.app>"
    CURRENCY: str = "brl"

    # Recurrence generation
    GENERATION_BUFFER_DAYS: int = 14
    MAX_GENERATED_PER_SERIES: int = 20

    # Class exceptions
    MAX_EXCEPTION_OCCURRENCES: int = 1000
    EXCEPTION_HORIZON_DAYS: int = 365

    # Cancellation policy fallbacks
    DEFAULT_CANCELLATION_HOURS: int = 24
    DEFAULT_CHARGE_PERCENTAGE: int = 0
    DEFAULT_CLASS_PRICE: int = 100
    CANCELLATION_INVOICE_DUE_DAYS: int = 7

    # Billing jobs
    ORPHAN_CHARGE_CUTOFF_DAYS: int = 45
    ORPHAN_CHARGE_PERCENTAGE: int = 50
    DEFAULT_PAYMENT_DUE_DAYS: int = 15
    ARCHIVE_AFTER_MONTHS: int = 18

    class Config:
        env_file = ".env" # automatically loads the .env

# Create a single, importable instance of the settings
settings = Settings()
