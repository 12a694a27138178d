"""
Configuration for the app result fetcher.

Settings come from two JSON files, as the lab's run tooling writes them:

    config.json      apiServer, apiVersion, accessToken
    runConfig.json   numPairs, projectID, negativeControl

Either file may also set pollingInterval, timeout (both in seconds),
template and outputDir. The access token can be supplied through the
BASESPACE_ACCESS_TOKEN environment variable (or a .env file) instead.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from exceptions import ConfigError
from utils import DEFAULT_TEMPLATE

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("config.json")
DEFAULT_RUN_CONFIG_FILE = Path("runConfig.json")

ACCESS_TOKEN_ENV = "BASESPACE_ACCESS_TOKEN"

# Seconds; use 10 for testing against a quiet project
DEFAULT_POLLING_INTERVAL = 60.0
# Two hours
DEFAULT_TIMEOUT = 7200.0


class Settings(BaseModel):
    """Immutable settings consumed by the poller."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    api_server: str = Field(..., alias="apiServer", min_length=1)
    api_version: str = Field(..., alias="apiVersion")
    access_token: str = Field(..., alias="accessToken", min_length=1)
    num_pairs: int = Field(
        ..., alias="numPairs", ge=1, description="Number of app results expected"
    )
    project_id: str = Field(..., alias="projectID", min_length=1)
    negative_control: str = Field(..., alias="negativeControl", min_length=1)
    polling_interval: float = Field(
        default=DEFAULT_POLLING_INTERVAL, alias="pollingInterval", gt=0
    )
    timeout: float = Field(default=DEFAULT_TIMEOUT, alias="timeout", gt=0)
    template: str = Field(default=DEFAULT_TEMPLATE, alias="template", min_length=1)
    output_dir: Path = Field(default=Path("."), alias="outputDir")

    @field_validator("project_id", mode="before")
    @classmethod
    def _project_id_as_string(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


def _read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def load_settings(
    config_file: Path = DEFAULT_CONFIG_FILE,
    run_config_file: Path = DEFAULT_RUN_CONFIG_FILE,
    overrides: Optional[Dict[str, Any]] = None,
) -> Settings:
    """
    Load and validate settings from the generic and run-specific config files.

    Args:
        config_file: Generic config (API server, version, token)
        run_config_file: Run-specific config (pairs, project, negative control)
        overrides: Values that win over both files, keyed by field name or
            alias; None values are ignored

    Returns:
        Validated Settings

    Raises:
        ConfigError: If a file is missing or the merged values are invalid
    """
    load_dotenv()

    values: Dict[str, Any] = {}
    values.update(_read_json(Path(config_file)))
    values.update(_read_json(Path(run_config_file)))

    token = os.getenv(ACCESS_TOKEN_ENV)
    if token:
        logger.debug(f"Using access token from {ACCESS_TOKEN_ENV}")
        values["accessToken"] = token

    if overrides:
        for key, value in overrides.items():
            if value is None:
                continue
            field = Settings.model_fields.get(key)
            values[field.alias if field and field.alias else key] = value

    try:
        return Settings.model_validate(values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
