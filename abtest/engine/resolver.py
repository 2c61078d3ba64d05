import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from abtest.models.schemas.experiment import Experiment

from .activity import is_experiment_active, resolve_inactive_variant
from .client import PersistenceClient, WriteOutcome
from .config import EngineConfig
from .errors import CacheError, EngineError, ValidationError, as_engine_error
from .identity import VisitorIdentity
from .sampling import pick_weighted_variant
from .storage import ClientCache

logger = logging.getLogger(__name__)


class Source(enum.Enum):
    """Where a resolved variant came from."""

    COOKIE = "cookie"
    LOCAL_CACHE = "local-cache"
    BACKEND = "backend"
    GENERATED = "generated"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Resolution:
    variant: str
    source: Source


def fallback_or_raise(config: EngineConfig, experiment_id: str, error: EngineError) -> Resolution:
    """The single failure handler: serve the configured fallback or re-raise."""
    logger.error("Experiment error occurred for %s: %s", experiment_id, error)
    if config.fallback:
        logger.debug("Serving fallback %s for experiment %s", config.fallback, experiment_id)
        return Resolution(config.fallback, Source.FALLBACK)
    raise error


class AssignmentResolver:
    """
    Decides which variant a visitor sees for one experiment.

    Sources are consulted in a fixed order: cookie, durable cache, backend,
    then a fresh weighted sample. Whatever is chosen is written to both cache
    tiers. Identified visitors get the choice persisted to the backend once;
    anonymous visitors never touch the backend.

    When a cached variant is written through and the backend already holds a
    different one for the same identity, the backend record wins and
    replaces the cached value.
    """

    def __init__(
        self,
        config: EngineConfig,
        client: PersistenceClient,
        cache: Optional[ClientCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.client = client
        self.cache = cache if cache is not None else ClientCache()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        config.apply_logging()

    async def resolve(
        self, experiment: Experiment, identity: Optional[VisitorIdentity] = None
    ) -> Resolution:
        """
        Resolves the visitor's variant, substituting ``config.fallback`` for
        any failure. Without a fallback the failure is raised as an EngineError.
        """
        if identity is None:
            identity = self.config.identity
        try:
            return await self._resolve(experiment, identity)
        except Exception as e:
            return fallback_or_raise(self.config, experiment.id, as_engine_error(e))

    def cached_resolution(self, experiment_id: str) -> Optional[Resolution]:
        """The variant already held by a cache tier, or None if none is readable."""
        try:
            variant = self.cache.read_cookie(experiment_id)
            if variant:
                return Resolution(variant, Source.COOKIE)
            variant = self.cache.read_durable(experiment_id)
        except CacheError as e:
            logger.warning("Cache unreadable for experiment %s: %s", experiment_id, e)
            return None
        if variant:
            return Resolution(variant, Source.LOCAL_CACHE)
        return None

    async def _resolve(self, experiment: Experiment, identity: VisitorIdentity) -> Resolution:
        if not experiment.variants:
            raise ValidationError(f"Experiment {experiment.id} has no variants.")

        if not is_experiment_active(experiment, now=self._clock()):
            variant = resolve_inactive_variant(experiment, self.config.inactive_variant)
            self.cache.remember(experiment.id, variant)
            logger.debug(
                "Experiment %s is inactive, serving %s", experiment.id, variant
            )
            return Resolution(variant, Source.GENERATED)

        cookie_variant = self.cache.read_cookie(experiment.id)
        if cookie_variant:
            logger.debug(
                "Using variation %s from cookie for experiment %s", cookie_variant, experiment.id
            )
            return await self._adopt_cached(experiment, identity, cookie_variant, Source.COOKIE)

        local_variant = self.cache.read_durable(experiment.id)
        if local_variant:
            logger.debug(
                "Using variation %s from local cache for experiment %s",
                local_variant,
                experiment.id,
            )
            return await self._adopt_cached(
                experiment, identity, local_variant, Source.LOCAL_CACHE
            )

        if not identity.is_anonymous:
            record = await self.client.read_assignment(experiment.id, identity)
            if record is not None:
                self.cache.remember(experiment.id, record.variation)
                logger.debug(
                    "Loaded variation %s from backend for experiment %s",
                    record.variation,
                    experiment.id,
                )
                return Resolution(record.variation, Source.BACKEND)

            variant = self._sample(experiment)
            return await self._persist(experiment, identity, variant, Source.GENERATED)

        return Resolution(self._sample(experiment), Source.GENERATED)

    def _sample(self, experiment: Experiment) -> str:
        variant = pick_weighted_variant(experiment.variants, self.config.random_fn)
        self.cache.remember(experiment.id, variant)
        logger.debug("Generated new variation %s for experiment %s", variant, experiment.id)
        return variant

    async def _adopt_cached(
        self,
        experiment: Experiment,
        identity: VisitorIdentity,
        variant: str,
        source: Source,
    ) -> Resolution:
        self.cache.remember(experiment.id, variant)
        if identity.is_anonymous:
            return Resolution(variant, source)

        record = await self.client.read_assignment(experiment.id, identity)
        if record is None:
            return await self._persist(experiment, identity, variant, source)
        if record.variation != variant:
            return self._adopt_backend(experiment, record.variation, replaced=variant)
        return Resolution(variant, source)

    async def _persist(
        self,
        experiment: Experiment,
        identity: VisitorIdentity,
        variant: str,
        source: Source,
    ) -> Resolution:
        outcome = await self.client.write_assignment(experiment.id, identity, variant)
        if outcome is WriteOutcome.CREATED:
            logger.debug("Persisted variation %s for experiment %s", variant, experiment.id)
            return Resolution(variant, source)

        # Another writer got there first; its row is authoritative.
        record = await self.client.read_assignment(experiment.id, identity)
        if record is not None and record.variation != variant:
            return self._adopt_backend(experiment, record.variation, replaced=variant)
        return Resolution(variant, source)

    def _adopt_backend(self, experiment: Experiment, variant: str, replaced: str) -> Resolution:
        logger.info(
            "Backend holds variation %s for experiment %s, replacing %s",
            variant,
            experiment.id,
            replaced,
        )
        self.cache.remember(experiment.id, variant)
        return Resolution(variant, Source.BACKEND)
