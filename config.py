# config file loader for connecting the telemetry agent to aws IoT
import configparser
import json
import logging
import os
from typing import Dict, NamedTuple, Optional


logger = logging.getLogger("config")

# Environment variable pointing to the config file, and the fallback location
# where the device provisioning script drops it on a Raspberry Pi.
CONFIG_PATH_ENV = "IOT_CONFIG_PATH"
DEFAULT_CONFIG_PATH = "/home/pi/certs/config.json"

# Section name in the INI config file.
SECTION = "iot"

REQUIRED_FIELDS = (
    "Host",
    "Port",
    "Region",
    "ClientId",
    "ThingName",
    "ThingTypeName",
    "CaCert",
    "ClientCert",
    "PrivateKey",
)


class ConfigError(Exception):
    """ Raised when the config file cannot be turned into an IoTConfig """


class IoTConfig(NamedTuple):
    host: str
    port: int
    region: str
    client_id: str
    thing_name: str
    thing_type_name: str
    ca_cert: str
    client_cert: str
    private_key: str

    @property
    def hello_topic(self) -> str:
        return f"{self.thing_type_name}/hello"

    @property
    def report_topic(self) -> str:
        return f"{self.thing_type_name}/{self.thing_name}"


def resolve_config_path(cli_path: Optional[str] = None) -> str:
    """
    Pick the config file location. Command line wins over the environment,
    which wins over the default path.
    """
    if cli_path:
        return cli_path
    return os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH


def _read_ini(path: str) -> Dict[str, str]:
    parser = configparser.ConfigParser()
    try:
        with open(path, "r") as f:
            parser.read_file(f)
    except configparser.Error as e:
        raise ConfigError(f"Malformed config file {path}: {e}") from e
    if not parser.has_section(SECTION):
        raise ConfigError(f"Config file {path} has no [{SECTION}] section")
    # configparser lower-cases keys; map them back to the canonical names
    section = parser[SECTION]
    return {
        field: section[field] for field in REQUIRED_FIELDS if field in section
    }


def _read_json(path: str) -> Dict[str, str]:
    with open(path, "r") as f:
        try:
            raw = json.load(f)
        except ValueError as e:
            raise ConfigError(f"Malformed config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must hold a JSON object")
    return {field: raw[field] for field in REQUIRED_FIELDS if field in raw}


def load_config(path: str) -> IoTConfig:
    """
    Load connection parameters for aws IoT from `path`. Files ending in
    `.json` are read as a flat JSON object, anything else as an INI file with
    an [iot] section.

    Args:
        path:       Location of the config file.
    Returns:
        An immutable IoTConfig.
    Raises:
        ConfigError if the file is missing, unreadable or malformed, or if any
        of the required fields is absent or empty. Nothing is defaulted.
    """
    try:
        if path.lower().endswith(".json"):
            values = _read_json(path)
        else:
            values = _read_ini(path)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    missing = [
        field
        for field in REQUIRED_FIELDS
        if field not in values or str(values[field]).strip() == ""
    ]
    if missing:
        raise ConfigError(
            f"Config file {path} is missing required fields: {', '.join(missing)}"
        )

    try:
        port = int(values["Port"])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Port must be an integer, got {values['Port']!r}") from e
    if not 0 < port < 65536:
        raise ConfigError(f"Port out of range: {port}")

    config = IoTConfig(
        host=str(values["Host"]).strip(),
        port=port,
        region=str(values["Region"]).strip(),
        client_id=str(values["ClientId"]).strip(),
        thing_name=str(values["ThingName"]).strip(),
        thing_type_name=str(values["ThingTypeName"]).strip(),
        ca_cert=str(values["CaCert"]).strip(),
        client_cert=str(values["ClientCert"]).strip(),
        private_key=str(values["PrivateKey"]).strip(),
    )
    logger.info(f"Loaded config for {config.thing_name} from {path}")
    return config
