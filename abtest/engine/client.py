import asyncio
import enum
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as SchemaError

from abtest.models.schemas.assignment import AssignmentRecord
from abtest.models.schemas.experiment import Experiment

from .config import EngineConfig
from .errors import NetworkError
from .identity import VisitorIdentity

logger = logging.getLogger(__name__)


class WriteOutcome(enum.Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already exists"


class PersistenceClient:
    """
    HTTP client for the assignment store.

    Every call is bounded by ``config.timeout_ms`` and raises NetworkError on
    timeout, transport failure, a non-2xx status or an unreadable body.
    Nothing is cached or retried here.
    """

    def __init__(
        self,
        config: EngineConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            transport=transport, timeout=config.timeout_seconds
        )

    async def __aenter__(self) -> "PersistenceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        headers.update(self.config.custom_headers)
        return headers

    def _url(self, path: str) -> str:
        return f"{self.config.api_url.rstrip('/')}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        url = self._url(path)
        try:
            response = await asyncio.wait_for(
                self._http.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers(),
                    timeout=self.config.timeout_seconds,
                ),
                timeout=self.config.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise NetworkError(
                f"{method} {url} timed out after {self.config.timeout_ms} ms"
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

        if not response.is_success:
            raise NetworkError(
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _identity_params(identity: VisitorIdentity) -> Dict[str, str]:
        if identity.is_anonymous:
            raise ValueError("Assignments can only be stored for an identified visitor.")
        return identity.as_params()

    async def read_assignment(
        self, experiment_id: str, identity: VisitorIdentity
    ) -> Optional[AssignmentRecord]:
        """Returns the stored assignment for this visitor, or None."""
        params = self._identity_params(identity)
        logger.debug("Getting variation for experiment %s", experiment_id)
        try:
            response = await self._request(
                "GET", f"/internal/experiments/{experiment_id}/variation", params=params
            )
            rows: List[AssignmentRecord] = [
                AssignmentRecord.model_validate(row) for row in response.json()
            ]
        except (ValueError, TypeError, SchemaError) as e:
            logger.error("Failed to get variation for experiment %s: %s", experiment_id, e)
            raise NetworkError(f"Malformed variation response: {e}") from e
        except NetworkError as e:
            logger.error("Failed to get variation for experiment %s: %s", experiment_id, e)
            raise
        return rows[0] if rows else None

    async def write_assignment(
        self, experiment_id: str, identity: VisitorIdentity, variant: str
    ) -> WriteOutcome:
        """Stores ``variant`` unless an assignment already exists for this visitor."""
        params = self._identity_params(identity)
        logger.debug("Persisting variation %s for experiment %s", variant, experiment_id)
        try:
            response = await self._request(
                "POST",
                f"/internal/experiments/{experiment_id}/variation",
                params=params,
                json={"experimentId": experiment_id, "variation": variant},
            )
        except NetworkError as e:
            logger.error("Failed to persist variation for experiment %s: %s", experiment_id, e)
            raise
        if response.status_code == httpx.codes.CREATED:
            return WriteOutcome.CREATED
        return WriteOutcome.ALREADY_EXISTS

    async def fetch_experiment(self, experiment_id: str) -> Experiment:
        logger.debug("Getting experiment %s", experiment_id)
        try:
            response = await self._request("GET", f"/experiments/{experiment_id}")
            return Experiment.model_validate(response.json())
        except (ValueError, SchemaError) as e:
            logger.error("Failed to get experiment %s: %s", experiment_id, e)
            raise NetworkError(f"Malformed experiment response: {e}") from e
        except NetworkError as e:
            logger.error("Failed to get experiment %s: %s", experiment_id, e)
            raise

    async def track_success(
        self,
        experiment_id: str,
        user_id: str,
        event: str = "success",
        value: Optional[float] = 1,
    ) -> None:
        logger.debug("Tracking success %s for experiment %s", event, experiment_id)
        try:
            await self._request(
                "POST",
                f"/experiments/{experiment_id}/success",
                json={"userId": user_id, "event": event, "value": value},
            )
        except NetworkError as e:
            logger.error("Failed to track success for experiment %s: %s", experiment_id, e)
            raise
