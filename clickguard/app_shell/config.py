import logging
import os
from pathlib import Path

from clickguard.rules.models import Rules

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Startup configuration is unusable."""


def validate_ops_rules(rules: Rules, data_dir: Path | None = None) -> None:
    """
    Validate operational requirements before startup.
    Raises ConfigurationError listing everything that is missing.
    """
    problems: list[str] = []

    missing = [name for name in rules.ops.required_env if name not in os.environ]
    if missing:
        problems.append(f"Missing required environment variables: {', '.join(missing)}")

    if data_dir is not None:
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            problems.append(f"Data directory {data_dir} is not writable: {e}")

    if problems:
        raise ConfigurationError("; ".join(problems))

    logger.info("Configuration validated")
