"""Peer channel configuration file parsing."""
from __future__ import annotations

import datetime
import logging
import logging.handlers
import os
import pathlib
import sys

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from peerlink.utils.config import dump
from peerlink.utils.config import load_path

LOG_FORMAT = (
    '[%(asctime)s.%(msecs)03d] %(levelname)-5s (%(name)s) :: %(message)s'
)
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LIBRARY_LOGGERS = ('aiortc', 'aioice', 'websockets')


class IceServerConfig(BaseModel):
    """STUN or TURN server descriptor.

    Attributes:
        urls: One or more server URLs (e.g., `stun:stun.l.google.com:19302`).
        username: Optional TURN username.
        credential: Optional TURN credential. Excluded from the
            [`repr()`][repr] of this class.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    urls: list[str]
    username: str | None = None
    credential: str | None = Field(default=None, repr=False)

    @field_validator('urls')
    @classmethod
    def _urls_not_empty(cls, urls: list[str]) -> list[str]:
        if len(urls) == 0:
            raise ValueError('An ICE server requires at least one URL.')
        return urls


class NegotiationConfig(BaseModel):
    """Negotiation timing configuration.

    Attributes:
        candidate_timeout: Seconds to wait for a connection to be able to
            accept a received ICE candidate before the candidate is dropped.
        candidate_poll_interval: Seconds between checks while waiting.
    """

    model_config = ConfigDict(extra='forbid')

    candidate_timeout: float = Field(default=5.0, gt=0)
    candidate_poll_interval: float = Field(default=0.1, gt=0)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Logging level for the root logger.
        log_file: Optional file to also write logs to. The file is rotated
            weekly.
        library_level: Logging level for the `aiortc`, `aioice`, and
            `websockets` loggers which log with much higher frequency.
    """

    model_config = ConfigDict(extra='forbid')

    level: int | str = logging.INFO
    log_file: str | None = None
    library_level: int | str = logging.WARNING


class PeerChannelConfig(BaseModel):
    """Configuration shared by every peer channel in a session.

    Attributes:
        signaling_address: Address of the signaling relay. Should start
            with `ws://` or `wss://`.
        ice_servers: STUN/TURN servers used by every connection. An empty
            list only gathers host candidates.
        negotiation: Negotiation timing configuration.
        logging: Logging configuration.
    """

    model_config = ConfigDict(extra='forbid')

    signaling_address: str | None = None
    ice_servers: list[IceServerConfig] = Field(
        default_factory=list,
    )
    negotiation: NegotiationConfig = Field(default_factory=NegotiationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse a TOML config file.

        Example:
            ```toml title="peer.toml"
            signaling_address = "wss://relay.example.com"

            [[ice_servers]]
            urls = ["stun:stun.l.google.com:19302"]

            [[ice_servers]]
            urls = ["turn:turn.example.com:3478"]
            username = "user"
            credential = "secret"

            [negotiation]
            candidate_timeout = 5.0
            candidate_poll_interval = 0.1

            [logging]
            level = "DEBUG"
            ```

            ```python
            from peerlink.config import PeerChannelConfig

            config = PeerChannelConfig.from_toml('peer.toml')
            ```

        Note:
            Omitted values will be set to their defaults.
        """
        return load_path(cls, filepath)

    def write_toml(self, filepath: str | pathlib.Path) -> None:
        """Write the config to a TOML file.

        The file can be read back with
        [`from_toml()`][peerlink.config.PeerChannelConfig.from_toml]. Parent
        directories of `filepath` are created if needed and unset optional
        values are omitted.
        """
        os.makedirs(os.path.dirname(os.path.abspath(filepath)), exist_ok=True)
        with open(filepath, 'wb') as f:
            dump(self, f)


def init_logging(config: LoggingConfig) -> None:
    """Configure the root logger according to `config`.

    Logs are written to stdout and, if `config.log_file` is set, to a file
    rotated every Sunday at midnight.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file is not None:
        log_dir = os.path.dirname(config.log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                config.log_file,
                when='W6',
                atTime=datetime.time(hour=0, minute=0, second=0),
            ),
        )

    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        level=config.level,
        handlers=handlers,
        force=True,
    )

    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(config.library_level)
