import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from abtest.models.schemas.experiment import Experiment

from .activity import is_experiment_active
from .client import PersistenceClient
from .config import EngineConfig
from .errors import EngineError, NetworkError, as_engine_error
from .identity import VisitorIdentity
from .resolver import AssignmentResolver, Resolution, Source, fallback_or_raise
from .storage import ClientCache

logger = logging.getLogger(__name__)


class Phase(enum.Enum):
    INIT = "init"
    LOADING = "loading"
    RESOLVED = "resolved"
    ERRORED = "errored"


@dataclass(frozen=True)
class AssignmentState:
    """Immutable snapshot of one experiment's assignment."""

    phase: Phase = Phase.INIT
    experiment_id: Optional[str] = None
    variant: Optional[str] = None
    source: Optional[Source] = None
    error: Optional[EngineError] = None
    experiment: Optional[Experiment] = None
    is_active: bool = True
    metadata: Optional[Dict[str, str]] = None

    @property
    def is_loading(self) -> bool:
        return self.phase is Phase.LOADING


Listener = Callable[[AssignmentState], None]


def build_metadata(experiment: Optional[Experiment]) -> Optional[Dict[str, str]]:
    if experiment is None:
        return None
    fields = {
        "version": experiment.version,
        "description": experiment.description,
        "startDate": experiment.start_date,
        "endDate": experiment.end_date,
    }
    metadata = {key: value for key, value in fields.items() if value is not None}
    return metadata or None


class AssignmentStateMachine:
    """
    Owns the assignment state for one experiment slot.

    ``load`` moves INIT/RESOLVED/ERRORED to LOADING and on to RESOLVED or
    ERRORED. Resolution re-runs when a different experiment is loaded or
    when ``identify`` supplies an identity where there was none, so that a
    variant chosen anonymously gets written to the backend under the new
    identity. ``reset`` returns to INIT.

    In-flight calls are never cancelled. Each transition bumps a generation
    counter and results belonging to an older generation are dropped.
    """

    def __init__(
        self,
        config: EngineConfig,
        client: Optional[PersistenceClient] = None,
        cache: Optional[ClientCache] = None,
        resolver: Optional[AssignmentResolver] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self._owns_client = client is None
        self.client = client or PersistenceClient(config)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.resolver = resolver or AssignmentResolver(
            config, self.client, cache=cache, clock=self._clock
        )
        self._identity = config.identity
        self._state = AssignmentState()
        self._generation = 0
        self._listeners: List[Listener] = []

    async def __aenter__(self) -> "AssignmentStateMachine":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.reset()
        if self._owns_client:
            await self.client.aclose()

    @property
    def state(self) -> AssignmentState:
        return self._state

    @property
    def identity(self) -> VisitorIdentity:
        return self._identity

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Calls ``listener`` with every new state; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _transition(self, state: AssignmentState) -> AssignmentState:
        self._state = state
        for listener in list(self._listeners):
            listener(state)
        return state

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    async def load(self, experiment_id: str) -> AssignmentState:
        """Fetches the experiment and resolves the visitor's variant for it."""
        self._generation += 1
        generation = self._generation
        self._transition(AssignmentState(phase=Phase.LOADING, experiment_id=experiment_id))

        experiment: Optional[Experiment] = None
        try:
            experiment = await self.client.fetch_experiment(experiment_id)
            if self._is_stale(generation):
                return self._discard(experiment_id)
            resolution = await self.resolver.resolve(experiment, self._identity)
        except Exception as e:
            if self._is_stale(generation):
                return self._discard(experiment_id)
            return self._fail(experiment_id, experiment, as_engine_error(e))

        if self._is_stale(generation):
            return self._discard(experiment_id)
        return self._resolved(experiment, resolution)

    async def identify(self, identity: VisitorIdentity) -> AssignmentState:
        """Records a new visitor identity, re-resolving on the anonymous-to-known edge."""
        previous = self._identity
        self._identity = identity
        logged_in = previous.is_anonymous and not identity.is_anonymous
        if logged_in and self._state.experiment_id is not None:
            logger.debug(
                "Visitor identified, re-resolving experiment %s", self._state.experiment_id
            )
            return await self.load(self._state.experiment_id)
        return self._state

    def reset(self) -> AssignmentState:
        self._generation += 1
        return self._transition(AssignmentState())

    async def track_success(self, event: str = "success", value: Optional[float] = 1) -> bool:
        """
        Reports a success event for the resolved experiment.

        Needs a RESOLVED state and a known user id. Failures are logged and
        reported as False; they never change the assignment state.
        """
        state = self._state
        if state.phase is not Phase.RESOLVED or not self._identity.user_id:
            logger.debug("Not tracking %s: no resolved assignment for a known user", event)
            return False
        try:
            await self.client.track_success(
                state.experiment_id, self._identity.user_id, event=event, value=value
            )
        except NetworkError as e:
            logger.error(
                "Failed to track success for experiment %s: %s", state.experiment_id, e
            )
            return False
        logger.debug("Tracked success %s for experiment %s", event, state.experiment_id)
        return True

    def _discard(self, experiment_id: str) -> AssignmentState:
        logger.debug("Discarding late result for experiment %s", experiment_id)
        return self._state

    def _resolved(self, experiment: Experiment, resolution: Resolution) -> AssignmentState:
        return self._transition(
            AssignmentState(
                phase=Phase.RESOLVED,
                experiment_id=experiment.id,
                variant=resolution.variant,
                source=resolution.source,
                experiment=experiment,
                is_active=is_experiment_active(experiment, now=self._clock()),
                metadata=build_metadata(experiment),
            )
        )

    def _fail(
        self, experiment_id: str, experiment: Optional[Experiment], error: EngineError
    ) -> AssignmentState:
        try:
            resolution = fallback_or_raise(self.config, experiment_id, error)
        except EngineError:
            # A variant the visitor already saw stays on the errored snapshot
            cached = self.resolver.cached_resolution(experiment_id)
            return self._transition(
                AssignmentState(
                    phase=Phase.ERRORED,
                    experiment_id=experiment_id,
                    variant=cached.variant if cached else None,
                    source=cached.source if cached else None,
                    error=error,
                    experiment=experiment,
                    metadata=build_metadata(experiment),
                )
            )
        return self._transition(
            AssignmentState(
                phase=Phase.RESOLVED,
                experiment_id=experiment_id,
                variant=resolution.variant,
                source=resolution.source,
                experiment=experiment,
                metadata=build_metadata(experiment),
            )
        )
