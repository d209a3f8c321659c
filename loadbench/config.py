"""
Run configuration loaded from the environment (and an optional ``.env`` file).

Values here are raw inputs; range checks happen when scenarios are built from
them, so every invalid value surfaces as a ``ConfigurationError`` before the
run starts.
"""

from functools import lru_cache
from typing import Optional, Union

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from loadbench.errors import ConfigurationError
from loadbench.models.scenario import parse_duration

Duration = Union[float, str]

POSITIVE_DURATIONS = (
    "HTTP_TIMEOUT",
    "BROWSER_NAVIGATION_TIMEOUT",
    "BROWSER_CLOSE_TIMEOUT",
    "RELEASE_TIMEOUT",
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: Optional[str] = None

    # Target
    BASE_URL: str = "http://ubuntu1.cat:30180"

    # Dataset
    DATASET_PATH: str = "form-data.csv"
    DATASET_DELIMITER: str = ","

    # simpleForm scenario (per-vu-iterations)
    SCENARIO_SIMPLE_FORM_VUS: int = 10
    SCENARIO_SIMPLE_FORM_ITERATIONS: int = 20
    SCENARIO_SIMPLE_FORM_START_TIME: Duration = "20s"
    SCENARIO_SIMPLE_FORM_MAX_DURATION: Duration = "5m"

    # samplePage scenario (constant-arrival-rate)
    SCENARIO_SAMPLE_PAGE_RATE: float = 2
    SCENARIO_SAMPLE_PAGE_DURATION: Duration = "2m"
    SCENARIO_SAMPLE_PAGE_PREALLOCATED_VUS: int = 100
    SCENARIO_SAMPLE_PAGE_MAX_VUS: Optional[int] = None

    # browser scenario (shared-iterations, opt-in)
    SCENARIO_UI_ENABLED: bool = False
    SCENARIO_UI_ITERATIONS: int = 15
    SCENARIO_UI_VUS: int = 1

    GRACEFUL_STOP: Duration = "5s"
    THINK_TIME: Duration = "3s"
    UI_THINK_TIME: Duration = "5s"

    # HTTP client
    HTTP_TIMEOUT: Duration = "60s"
    HTTP_MAX_REDIRECTS: int = 10

    # Browser client
    BROWSER_TYPE: str = "chromium"
    BROWSER_HEADLESS: bool = True
    BROWSER_NAVIGATION_TIMEOUT: Duration = "30s"
    BROWSER_CLOSE_TIMEOUT: Duration = "5s"

    # Release budget for per-iteration resources
    RELEASE_TIMEOUT: Duration = "5s"

    def seconds(self, name: str) -> float:
        """Value of a duration field in seconds."""
        try:
            return parse_duration(getattr(self, name))
        except ValueError as e:
            raise ConfigurationError(f"Invalid {name}: {e}") from e

    def check_ranges(self) -> None:
        """
        Validate client ranges the field types cannot express.

        Raises:
            ConfigurationError: On the first invalid value.
        """
        for name in POSITIVE_DURATIONS:
            if self.seconds(name) <= 0:
                raise ConfigurationError(f"{name} must be > 0")
        for name in ("THINK_TIME", "UI_THINK_TIME"):
            self.seconds(name)
        if self.HTTP_MAX_REDIRECTS < 0:
            raise ConfigurationError("HTTP_MAX_REDIRECTS must be >= 0")


@lru_cache
def get_settings() -> Settings:
    """
    Load settings once per process.

    Raises:
        ConfigurationError: If an environment value cannot be parsed.
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid run configuration: {e}") from e
