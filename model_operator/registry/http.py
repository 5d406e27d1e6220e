"""Model registry client speaking JSON over HTTP.

The registry exposes two endpoints:

- `POST /v1/models` with a body of `{"model": {...}}` installs a model and
  answers `409 Conflict` when the model is already installed.
- `DELETE /v1/models/{name}/{version}` removes a model and answers
  `404 Not Found` when the model is not installed.
"""

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import aiohttp

from model_operator.config import RegistryClientConfig
from model_operator.exceptions import (
    ModelAlreadyExistsError,
    ModelNotFoundError,
    RegistryException,
)
from model_operator.manifest import GetStateMode

from .client import RegistryClient
from .model import ConfigModel

__all__ = [
    "HttpRegistryClient",
]

_LOGGER = logging.getLogger(__name__)

MODELS_PATH = "/v1/models"

# The registry protocol has its own spelling of the get state modes
WIRE_GET_STATE_MODES = {
    GetStateMode.NONE: "NONE",
    GetStateMode.OP_STATE: "OP_STATE",
    GetStateMode.EXPLICIT_RO_PATHS: "EXPLICIT_RO_PATHS",
    GetStateMode.EXPLICIT_RO_PATHS_EXPAND_WILDCARDS: "EXPLICIT_RO_PATHS_EXPAND_WILDCARDS",
}


def encode_model(model: ConfigModel) -> dict[str, Any]:
    """Return the wire representation of a model."""
    return {
        "name": model.name,
        "version": model.version,
        "getStateMode": WIRE_GET_STATE_MODES[model.get_state_mode],
        "modules": [
            {
                "name": module.name,
                "organization": module.organization,
                "revision": module.revision,
                "file": module.file,
            }
            for module in model.modules
        ],
        "files": dict(model.files),
    }


class HttpRegistryClient(RegistryClient):
    """RegistryClient implementation backed by an aiohttp session."""

    def __init__(
        self,
        config: RegistryClientConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Client configuration.
            session: Optional session to use. A session passed in is owned by
                the caller and is not closed by `close`.
        """
        self._config = config or RegistryClientConfig()
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.timeout)
            )
        return self._session

    async def close(self) -> None:
        """Close the session if it was created by this client."""
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    async def _request(
        self, method: str, url: str, **kwargs: Any
    ) -> tuple[int, str]:
        """Issue a request and return the status code and body of the response."""
        _LOGGER.debug("%s %s", method, url)
        try:
            async with self._get_session().request(method, url, **kwargs) as resp:
                return resp.status, await resp.text()
        except aiohttp.ClientError as err:
            raise RegistryException(f"Request {method} {url} failed: {err}") from err
        except asyncio.TimeoutError as err:
            raise RegistryException(f"Request {method} {url} timed out") from err

    async def push_model(self, address: str, model: ConfigModel) -> None:
        """Install the model into the registry."""
        url = f"http://{address}{MODELS_PATH}"
        status, body = await self._request(
            "POST", url, json={"model": encode_model(model)}
        )
        if status == 409:
            raise ModelAlreadyExistsError(
                f"Model {model.name}/{model.version} already exists at {address}"
            )
        if status >= 300:
            raise RegistryException(
                f"Failed to push model {model.name}/{model.version} to {address}: "
                f"{status} {body}"
            )

    async def delete_model(self, address: str, name: str, version: str) -> None:
        """Remove the model from the registry."""
        url = (
            f"http://{address}{MODELS_PATH}/{quote(name, safe='')}/"
            f"{quote(version, safe='')}"
        )
        status, body = await self._request("DELETE", url)
        if status == 404:
            raise ModelNotFoundError(f"Model {name}/{version} not found at {address}")
        if status >= 300:
            raise RegistryException(
                f"Failed to delete model {name}/{version} from {address}: "
                f"{status} {body}"
            )
