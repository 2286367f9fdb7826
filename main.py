import argparse
import logging
import signal
import sys
import threading

from agent import TelemetryAgent
from config import ConfigError, load_config, resolve_config_path
from shadow_service import ShadowService
from utility import setup_logging


logger = logging.getLogger("main")


def command_line_parser(argv=None):
    """
    Parse command line arguments
    Args:
        argv:   Arguments to parse. Defaults to sys.argv[1:]
    Return:
        A namespace containing all command line arguments.
    Raises:
        None
    """
    parser = argparse.ArgumentParser(
        description="Report host cpu and memory usage to an aws IoT thing."
    )
    parser.add_argument(
        "-c",
        dest="config",
        default=None,
        help="Path to the IoT config file. Default: $IOT_CONFIG_PATH, "
        "then /home/pi/certs/config.json",
    )
    parser.add_argument(
        "-l",
        dest="logger_config",
        default=None,
        help="Path to the logging yaml. Default: $IOT_LOGGER_CONFIG, "
        "then ./logger_config.yaml",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Turn on debug logging of the aws IoT SDK",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = command_line_parser(argv)
    setup_logging(args.logger_config)

    # load connection config. Nothing can be done without credentials.
    config_path = resolve_config_path(args.config)
    try:
        config = load_config(config_path)
    except ConfigError:
        logger.exception("Error! Cannot load IoT config.")
        sys.exit(1)

    service = ShadowService(config, debug=args.debug)
    agent = TelemetryAgent(config, service.publish)
    agent.bind(service)

    shutdown = threading.Event()

    def request_shutdown(signum, frame):
        logger.info(f"Received signal {signum}. Shutting down.")
        shutdown.set()
        service.stop()

    signal.signal(signal.SIGINT, request_shutdown)
    signal.signal(signal.SIGTERM, request_shutdown)

    # connecting blocks until the first connection succeeds, so it runs
    # off the main thread to keep signals responsive
    connector = threading.Thread(target=service.connect, name="connector", daemon=True)
    connector.start()
    shutdown.wait()

    agent.on_close()
    service.disconnect()
    logger.info("Telemetry agent stopped")


# main driver
if __name__ == "__main__":
    main()
