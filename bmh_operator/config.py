"""
Controller configuration.

Every setting comes from the environment (optionally a .env file) and is read
once into the classes below; logging setup and startup validation live here too.
"""

import os
import logging
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# ============================================================================
# Default .env
# ============================================================================
# Class attributes below read os.environ at import time
load_dotenv()

# ============================================================================
# Environment Loading
# ============================================================================

def load_environment(env_file: Optional[str] = None) -> bool:
    """
    Apply an env file on top of the process environment.

    Values from the file win over variables already set, so an operator can
    point a local run at a different cluster or backend. Config classes only
    see the new values after the module is reloaded.

    Args:
        env_file: Path to the env file, None re-reads ./.env

    Returns:
        True when a file was found and applied
    """
    log = logging.getLogger(__name__)
    if not env_file:
        return load_dotenv(override=True)

    env_path = Path(env_file)
    if not env_path.is_file():
        log.warning(f"Env file {env_file} does not exist, keeping the current environment")
        return False
    load_dotenv(env_path, override=True)
    log.info(f"Controller environment loaded from {env_path.resolve()}")
    return True


# ============================================================================
# Application Constants
# ============================================================================

class AppConfig:
    """Application-wide configuration constants"""

    APP_NAME = "Bare Metal Host Controller"
    APP_VERSION = "1.0.0"
    APP_DESCRIPTION = "Registers, inspects and power-manages bare metal hosts through their BMC"

    # Health/status API
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8080"))
    API_PREFIX = "/api"


class ControllerConfig:
    """Reconciliation loop tuning"""

    WORKERS = int(os.getenv("WORKERS", "4"))
    RESYNC_INTERVAL = int(os.getenv("RESYNC_INTERVAL", "600"))  # 10 minutes

    # Retry backoff
    BACKOFF_BASE_SECONDS = float(os.getenv("BACKOFF_BASE_SECONDS", "10"))
    BACKOFF_MAX_SECONDS = float(os.getenv("BACKOFF_MAX_SECONDS", "600"))

    # Backend selection: "kubernetes" or "memory"
    BACKEND = os.getenv("CONTROLLER_BACKEND", "kubernetes").lower()


class KubernetesConfig:
    """Kubernetes cluster configuration"""

    # Empty means all namespaces
    NAMESPACE = os.getenv("WATCH_NAMESPACE", "")
    IN_CLUSTER = os.getenv("K8S_IN_CLUSTER", "true").lower() == "true"
    KUBECONFIG = os.getenv("KUBECONFIG")
    TIMEOUT = int(os.getenv("K8S_TIMEOUT", "30"))

    @classmethod
    def get_namespace(cls) -> Optional[str]:
        """Namespace to watch, or None for cluster-wide"""
        return cls.NAMESPACE.strip() or None


class RedfishConfig:
    """Redfish BMC access settings"""

    TIMEOUT = int(os.getenv("BMC_TIMEOUT", "30"))
    VERIFY_SSL = os.getenv("BMC_VERIFY_SSL", "false").lower() == "true"


# ============================================================================
# Logging Configuration
# ============================================================================

class LogConfig:
    """Logging configuration"""

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    # Worker thread plus file/line
    DETAILED_FORMAT = (
        "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s %(filename)s:%(lineno)d] - %(message)s"
    )

    LOG_FILE = os.getenv("LOG_FILE")  # Optional
    LOG_FILE_MAX_BYTES = int(os.getenv("LOG_FILE_MAX_BYTES", "10485760"))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.getenv("LOG_FILE_BACKUP_COUNT", "5"))


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """
    Configure controller logging.

    Reconciliations run in worker threads, so the verbose format carries the
    thread name next to the source location.

    Args:
        verbose: DEBUG level with the detailed format
        log_file: Rotating log file, overrides LOG_FILE
    """
    log_level = logging.DEBUG if verbose else getattr(logging, LogConfig.LOG_LEVEL, logging.INFO)
    log_format = LogConfig.DETAILED_FORMAT if verbose else LogConfig.LOG_FORMAT

    logging.basicConfig(level=log_level, format=log_format, datefmt=LogConfig.LOG_DATE_FORMAT)

    file_path = log_file or LogConfig.LOG_FILE
    if file_path:
        from logging.handlers import RotatingFileHandler

        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=LogConfig.LOG_FILE_MAX_BYTES,
            backupCount=LogConfig.LOG_FILE_BACKUP_COUNT
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(log_format, LogConfig.LOG_DATE_FORMAT))
        logging.getLogger().addHandler(file_handler)
        logger.info(f"Controller log file: {file_path}")

    # BMC sessions and API watches log every request at INFO
    for name in ("urllib3", "kubernetes", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Controller logging at {logging.getLevelName(log_level)}")


logger = logging.getLogger(__name__)


# ============================================================================
# Feature Flags
# ============================================================================

class FeatureFlags:
    """Feature flags for optional functionality"""

    ENABLE_HEALTH_API = os.getenv("ENABLE_HEALTH_API", "true").lower() == "true"
    ENABLE_WATCH = os.getenv("ENABLE_WATCH", "true").lower() == "true"

    # Development
    DEBUG = os.getenv("DEBUG", "false").lower() == "true"


# ============================================================================
# Validation
# ============================================================================

def validate_config():
    """
    Validate configuration on startup.
    Raises ValueError if critical configuration is invalid.
    """
    errors = []

    if ControllerConfig.WORKERS < 1:
        errors.append(f"WORKERS must be at least 1 (got {ControllerConfig.WORKERS})")

    if ControllerConfig.RESYNC_INTERVAL <= 0:
        errors.append(f"RESYNC_INTERVAL must be positive (got {ControllerConfig.RESYNC_INTERVAL})")

    if ControllerConfig.BACKOFF_BASE_SECONDS <= 0:
        errors.append("BACKOFF_BASE_SECONDS must be positive")

    if ControllerConfig.BACKOFF_MAX_SECONDS < ControllerConfig.BACKOFF_BASE_SECONDS:
        errors.append("BACKOFF_MAX_SECONDS must not be smaller than BACKOFF_BASE_SECONDS")

    if ControllerConfig.BACKEND not in ("kubernetes", "memory"):
        errors.append(f"Unknown CONTROLLER_BACKEND: {ControllerConfig.BACKEND}")

    if ControllerConfig.BACKEND == "kubernetes" and not KubernetesConfig.IN_CLUSTER:
        if KubernetesConfig.KUBECONFIG and not Path(KubernetesConfig.KUBECONFIG).exists():
            errors.append(f"KUBECONFIG points to a missing file: {KubernetesConfig.KUBECONFIG}")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)

    if not RedfishConfig.VERIFY_SSL:
        logger.warning("BMC TLS verification disabled (BMC_VERIFY_SSL=false)")

    logger.info(
        f"Configuration validated: backend={ControllerConfig.BACKEND}, "
        f"workers={ControllerConfig.WORKERS}"
    )


__all__ = [
    'AppConfig',
    'ControllerConfig',
    'KubernetesConfig',
    'RedfishConfig',
    'LogConfig',
    'FeatureFlags',
    'load_environment',
    'setup_logging',
    'validate_config',
]
