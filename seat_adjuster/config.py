"""Configuration loader for seat-adjuster."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from . import constants

DEFAULT_REQUEST_TOPICS = [constants.TOPIC_REQUEST, constants.TOPIC_REQUEST_RIGHT]


@dataclass(slots=True)
class MQTTConfig:
    broker_host: str = constants.DEFAULT_BROKER_HOST
    broker_port: int = constants.DEFAULT_BROKER_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = constants.DEFAULT_CLIENT_ID
    keepalive: int = 60
    qos: int = 1


@dataclass(slots=True)
class DataBrokerConfig:
    url: str = constants.DEFAULT_DATABROKER_URL
    token: Optional[str] = None
    request_timeout_seconds: float = 5.0
    reconnect_initial_seconds: float = 1.0
    reconnect_max_seconds: float = 30.0


@dataclass(slots=True)
class SeatAdjusterConfig:
    request_topics: List[str] = field(
        default_factory=lambda: list(DEFAULT_REQUEST_TOPICS)
    )
    response_topic: str = constants.TOPIC_RESPONSE
    current_position_topic: str = constants.TOPIC_CURRENT_POSITION
    speed_signal: str = constants.SIGNAL_SPEED
    seat_position_signal: str = constants.SIGNAL_SEAT_POSITION


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class AppConfig:
    mqtt: MQTTConfig
    databroker: DataBrokerConfig
    seat_adjuster: SeatAdjusterConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


def _parse_list(value: str, *, default: Iterable[str]) -> List[str]:
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "mqtt": {
                "broker_host": constants.DEFAULT_BROKER_HOST,
                "broker_port": str(constants.DEFAULT_BROKER_PORT),
                "client_id": constants.DEFAULT_CLIENT_ID,
                "keepalive": "60",
                "qos": "1",
            },
            "databroker": {
                "url": constants.DEFAULT_DATABROKER_URL,
                "request_timeout_seconds": "5.0",
                "reconnect_initial_seconds": "1.0",
                "reconnect_max_seconds": "30.0",
            },
            "seat_adjuster": {
                "request_topics": ",".join(DEFAULT_REQUEST_TOPICS),
                "response_topic": constants.TOPIC_RESPONSE,
                "current_position_topic": constants.TOPIC_CURRENT_POSITION,
                "speed_signal": constants.SIGNAL_SPEED,
                "seat_position_signal": constants.SIGNAL_SEAT_POSITION,
            },
            "logging": {
                "level": "INFO",
                "log_network": "false",
            },
            "health": {
                "enabled": "false",
                "host": "127.0.0.1",
                "port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    broker_host_value = parser.get("mqtt", "broker_host")
    broker_port_value = parser.getint(
        "mqtt", "broker_port", fallback=constants.DEFAULT_BROKER_PORT
    )

    if ":" in broker_host_value:
        host_part, port_part = broker_host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            broker_host_value = host_part
            broker_port_value = parsed_port
            parser.set("mqtt", "broker_host", host_part)
            parser.set("mqtt", "broker_port", str(parsed_port))

    mqtt = MQTTConfig(
        broker_host=broker_host_value,
        broker_port=broker_port_value,
        username=parser.get("mqtt", "username", fallback=None),
        password=parser.get("mqtt", "password", fallback=None),
        client_id=parser.get("mqtt", "client_id"),
        keepalive=max(1, parser.getint("mqtt", "keepalive", fallback=60)),
        qos=min(2, max(0, parser.getint("mqtt", "qos", fallback=1))),
    )

    databroker = DataBrokerConfig(
        url=parser.get("databroker", "url"),
        token=parser.get("databroker", "token", fallback=None),
        request_timeout_seconds=max(
            0.1,
            parser.getfloat("databroker", "request_timeout_seconds", fallback=5.0),
        ),
        reconnect_initial_seconds=max(
            0.0,
            parser.getfloat("databroker", "reconnect_initial_seconds", fallback=1.0),
        ),
        reconnect_max_seconds=max(
            0.0,
            parser.getfloat("databroker", "reconnect_max_seconds", fallback=30.0),
        ),
    )

    seat_adjuster = SeatAdjusterConfig(
        request_topics=_parse_list(
            parser.get("seat_adjuster", "request_topics", fallback=""),
            default=DEFAULT_REQUEST_TOPICS,
        ),
        response_topic=parser.get("seat_adjuster", "response_topic"),
        current_position_topic=parser.get("seat_adjuster", "current_position_topic"),
        speed_signal=parser.get("seat_adjuster", "speed_signal"),
        seat_position_signal=parser.get("seat_adjuster", "seat_position_signal"),
    )

    log_path_value = parser.get("logging", "path", fallback="")
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    return AppConfig(
        mqtt=mqtt,
        databroker=databroker,
        seat_adjuster=seat_adjuster,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )


def save_config(config: AppConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
