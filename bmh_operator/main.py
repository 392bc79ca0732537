"""
Process entry point: builds the controller for the configured backend and
serves it behind the health/status API.
"""

import argparse
import asyncio
import importlib
import logging
import sys

from . import config
from .adapters import FixtureAdapter, FixtureFleet
from .health_api import create_app
from .repositories import AdapterFactory, InMemoryHostRepository, InMemorySecretStore
from .services import BackoffPolicy, HostController

logger = logging.getLogger(__name__)


def build_controller() -> HostController:
    """
    Create the controller from configuration.

    Returns:
        HostController wired to Kubernetes or to the in-memory backend
    """
    adapter_factory = AdapterFactory(
        verify_ssl=config.RedfishConfig.VERIFY_SSL,
        timeout=config.RedfishConfig.TIMEOUT
    )

    if config.ControllerConfig.BACKEND == "memory":
        logger.warning("Using the in-memory backend; hosts are not persisted")
        repository = InMemoryHostRepository()
        secret_store = InMemorySecretStore()
        adapter_factory.configure(FixtureAdapter, fleet=FixtureFleet())
    else:
        from .repositories.kubernetes_repository import (
            KubernetesHostRepository,
            KubernetesSecretStore,
            build_api_client,
        )

        api_client = build_api_client()
        namespace = config.KubernetesConfig.get_namespace()
        repository = KubernetesHostRepository(api_client, namespace, config.KubernetesConfig.TIMEOUT)
        secret_store = KubernetesSecretStore(api_client, namespace, config.KubernetesConfig.TIMEOUT)

    return HostController(
        repository,
        secret_store,
        adapter_factory,
        workers=config.ControllerConfig.WORKERS,
        resync_interval=config.ControllerConfig.RESYNC_INTERVAL,
        backoff=BackoffPolicy(
            config.ControllerConfig.BACKOFF_BASE_SECONDS,
            config.ControllerConfig.BACKOFF_MAX_SECONDS
        ),
        enable_watch=config.FeatureFlags.ENABLE_WATCH,
    )


async def run_headless(controller: HostController) -> None:
    """Run the controller without the HTTP API until cancelled"""
    await controller.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await controller.stop()


def main():
    """
    Main entry point.

    Supports:
        --env-file: Path to .env file
        --verbose: Enable debug logging
        --log-file: Path to log file
    """
    parser = argparse.ArgumentParser(
        description=f"{config.AppConfig.APP_NAME} - {config.AppConfig.APP_DESCRIPTION}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with default .env
  python -m bmh_operator

  # Use custom .env file
  python -m bmh_operator --env-file /path/to/custom.env

  # Enable verbose logging to a file
  python -m bmh_operator --verbose --log-file controller.log
        """
    )

    parser.add_argument(
        "--env-file", "-e",
        help="Path to .env file (default: .env)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )

    parser.add_argument(
        "--log-file",
        help="Path to log file (optional)"
    )

    args = parser.parse_args()

    # Load environment
    if args.env_file:
        config.load_environment(args.env_file)
        # Config classes read env vars when the module is imported
        importlib.reload(config)

    config.setup_logging(verbose=args.verbose or config.FeatureFlags.DEBUG, log_file=args.log_file)

    try:
        config.validate_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        controller = build_controller()
    except Exception as e:
        logger.error(f"Failed to initialize controller: {e}", exc_info=True)
        sys.exit(1)

    logger.info(f"Starting {config.AppConfig.APP_NAME} v{config.AppConfig.APP_VERSION}")
    logger.info(f"Backend: {config.ControllerConfig.BACKEND}, workers: {config.ControllerConfig.WORKERS}")

    if not config.FeatureFlags.ENABLE_HEALTH_API:
        try:
            asyncio.run(run_headless(controller))
        except KeyboardInterrupt:
            logger.info("Interrupted")
        return

    logger.info(f"Health API: {config.AppConfig.HOST}:{config.AppConfig.PORT}")

    import uvicorn
    uvicorn.run(
        create_app(controller),
        host=config.AppConfig.HOST,
        port=config.AppConfig.PORT,
        log_level="debug" if args.verbose else "info"
    )


if __name__ == "__main__":
    main()
