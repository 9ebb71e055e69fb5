from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./treatments.db"
    APP_NAME: str = "Treatment Pricing Engine"
    LOG_LEVEL: str = "INFO"
    CURRENCY: str = "GBP"  # display only, no conversion

    # "Not yet entered" measurement values, used only at the
    # calc_bom_and_price boundary, never inside the engine
    DEFAULT_RAIL_WIDTH_MM: float = 1000.0
    DEFAULT_DROP_MM: float = 2000.0

    # Grids without an explicit unit whose largest dimension reaches this are mm
    GRID_MM_THRESHOLD: float = 500.0

    SEED_ON_STARTUP: bool = False

    class Config:
        env_file = ".env"


settings = Settings()
