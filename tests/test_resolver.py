from datetime import datetime, timedelta, timezone

import pytest

from abtest.engine.config import EngineConfig
from abtest.engine.errors import (
    CacheError,
    EngineError,
    NetworkError,
    NoBaselineError,
    ValidationError,
)
from abtest.engine.identity import ANONYMOUS, VisitorIdentity
from abtest.engine.resolver import AssignmentResolver, Resolution, Source
from abtest.engine.storage import ClientCache, JsonFileStore
from tests.conftest import make_experiment

USER = VisitorIdentity(user_id="user-123")


def _resolver(fake_client, cache=None, **config):
    config.setdefault("api_url", "http://test/api")
    return AssignmentResolver(EngineConfig(**config), fake_client, cache=cache or ClientCache())


@pytest.mark.asyncio
async def test_second_resolution_comes_from_cookie(fake_client):
    resolver = _resolver(fake_client, random_fn=lambda: 0.99)
    experiment = make_experiment()

    first = await resolver.resolve(experiment, USER)
    second = await resolver.resolve(experiment, USER)

    assert first == Resolution("B", Source.GENERATED)
    assert second == Resolution("B", Source.COOKIE)


@pytest.mark.asyncio
async def test_identified_first_visit_samples_and_persists(fake_client):
    resolver = _resolver(fake_client, random_fn=lambda: 0.99)
    experiment = make_experiment()

    result = await resolver.resolve(experiment, USER)

    assert result == Resolution("B", Source.GENERATED)
    assert fake_client.rows == {("exp-1", USER): "B"}
    assert fake_client.calls == [("read", "exp-1"), ("write", "exp-1")]
    assert resolver.cache.read_cookie("exp-1") == "B"
    assert resolver.cache.read_durable("exp-1") == "B"


@pytest.mark.asyncio
async def test_backend_record_used_when_caches_empty(fake_client):
    fake_client.rows[("exp-1", USER)] = "A"
    resolver = _resolver(fake_client, random_fn=lambda: 0.99)

    result = await resolver.resolve(make_experiment(), USER)

    assert result == Resolution("A", Source.BACKEND)
    assert resolver.cache.read_cookie("exp-1") == "A"
    assert resolver.cache.read_durable("exp-1") == "A"
    assert ("write", "exp-1") not in fake_client.calls


@pytest.mark.asyncio
async def test_anonymous_visitor_never_reaches_backend(fake_client):
    resolver = _resolver(fake_client, random_fn=lambda: 0.1)

    result = await resolver.resolve(make_experiment(), ANONYMOUS)

    assert result == Resolution("A", Source.GENERATED)
    assert fake_client.calls == []
    assert resolver.cache.read_durable("exp-1") == "A"


@pytest.mark.asyncio
async def test_inactive_experiment_serves_baseline_without_backend(fake_client):
    start = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
    experiment = make_experiment([("X", 0.1, True), ("Y", 0.9, False)], start_date=start)
    resolver = _resolver(fake_client, random_fn=lambda: 0.99)

    result = await resolver.resolve(experiment, USER)

    assert result == Resolution("X", Source.GENERATED)
    assert fake_client.calls == []
    assert resolver.cache.read_cookie("exp-1") == "X"
    assert resolver.cache.read_durable("exp-1") == "X"


@pytest.mark.asyncio
async def test_inactive_experiment_without_baseline_uses_default_variant(fake_client):
    end = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    experiment = make_experiment([("A", 0.5, False), ("B", 0.5, False)], end_date=end)
    resolver = _resolver(fake_client)

    result = await resolver.resolve(experiment, USER)

    assert result == Resolution("control", Source.GENERATED)


@pytest.mark.asyncio
async def test_inactive_experiment_without_any_fallback_raises(fake_client):
    end = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    experiment = make_experiment([("A", 0.5, False), ("B", 0.5, False)], end_date=end)
    resolver = _resolver(fake_client, default_variant=None)

    with pytest.raises(NoBaselineError):
        await resolver.resolve(experiment, USER)


@pytest.mark.asyncio
async def test_cookie_is_mirrored_and_written_through(fake_client):
    cache = ClientCache()
    cache.cookies.set("exp-1", "B")
    resolver = _resolver(fake_client, cache=cache, random_fn=lambda: 0.0)

    result = await resolver.resolve(make_experiment(), USER)

    assert result == Resolution("B", Source.COOKIE)
    assert cache.read_durable("exp-1") == "B"
    assert fake_client.rows == {("exp-1", USER): "B"}


@pytest.mark.asyncio
async def test_cookie_write_through_skips_existing_matching_row(fake_client):
    fake_client.rows[("exp-1", USER)] = "B"
    cache = ClientCache()
    cache.cookies.set("exp-1", "B")
    resolver = _resolver(fake_client, cache=cache)

    result = await resolver.resolve(make_experiment(), USER)

    assert result == Resolution("B", Source.COOKIE)
    assert fake_client.calls == [("read", "exp-1")]


@pytest.mark.asyncio
async def test_durable_cache_is_used_when_cookie_missing(fake_client):
    cache = ClientCache()
    cache.durable.set("exp-exp-1", "A")
    resolver = _resolver(fake_client, cache=cache, random_fn=lambda: 0.99)

    result = await resolver.resolve(make_experiment(), USER)

    assert result == Resolution("A", Source.LOCAL_CACHE)
    assert cache.read_cookie("exp-1") == "A"
    assert fake_client.rows == {("exp-1", USER): "A"}


@pytest.mark.asyncio
async def test_backend_record_wins_over_different_cached_value(fake_client):
    fake_client.rows[("exp-1", USER)] = "A"
    cache = ClientCache()
    cache.durable.set("exp-exp-1", "B")
    resolver = _resolver(fake_client, cache=cache)

    result = await resolver.resolve(make_experiment(), USER)

    assert result == Resolution("A", Source.BACKEND)
    assert cache.read_cookie("exp-1") == "A"
    assert cache.read_durable("exp-1") == "A"
    assert fake_client.rows == {("exp-1", USER): "A"}


@pytest.mark.asyncio
async def test_losing_a_write_race_adopts_the_winner(fake_client):
    resolver = _resolver(fake_client, random_fn=lambda: 0.99)
    real_read = fake_client.read_assignment
    reads = []

    async def racing_read(experiment_id, identity):
        reads.append(experiment_id)
        if len(reads) == 1:
            # Another tab persists "A" between our read and our write
            result = await real_read(experiment_id, identity)
            fake_client.rows[(experiment_id, identity)] = "A"
            return result
        return await real_read(experiment_id, identity)

    fake_client.read_assignment = racing_read

    result = await resolver.resolve(make_experiment(), USER)

    assert result == Resolution("A", Source.BACKEND)
    assert resolver.cache.read_cookie("exp-1") == "A"


@pytest.mark.asyncio
async def test_experiment_without_variants_is_rejected(fake_client):
    draws = []
    resolver = _resolver(fake_client, random_fn=lambda: draws.append(1) or 0.5)

    with pytest.raises(ValidationError):
        await resolver.resolve(make_experiment([]), USER)

    assert draws == []
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_network_error_served_as_fallback(fake_client):
    fake_client.fail_with = NetworkError("boom")
    resolver = _resolver(fake_client, fallback="A")

    result = await resolver.resolve(make_experiment(), USER)

    assert result == Resolution("A", Source.FALLBACK)


@pytest.mark.asyncio
async def test_network_error_raised_without_fallback(fake_client):
    fake_client.fail_with = NetworkError("boom")
    resolver = _resolver(fake_client)

    with pytest.raises(NetworkError):
        await resolver.resolve(make_experiment(), USER)


@pytest.mark.asyncio
async def test_identity_defaults_to_config(fake_client):
    resolver = _resolver(fake_client, user_id="user-123", random_fn=lambda: 0.1)

    await resolver.resolve(make_experiment())

    assert fake_client.rows == {("exp-1", USER): "A"}


def _corrupt_cache(tmp_path):
    path = tmp_path / "assignments.json"
    path.write_text("{truncated", encoding="utf-8")
    return ClientCache(durable=JsonFileStore(path))


@pytest.mark.asyncio
async def test_unreadable_cache_served_as_fallback(fake_client, tmp_path):
    resolver = _resolver(fake_client, cache=_corrupt_cache(tmp_path), fallback="A")

    result = await resolver.resolve(make_experiment(), USER)

    assert result == Resolution("A", Source.FALLBACK)


@pytest.mark.asyncio
async def test_unreadable_cache_raised_without_fallback(fake_client, tmp_path):
    resolver = _resolver(fake_client, cache=_corrupt_cache(tmp_path))

    with pytest.raises(CacheError):
        await resolver.resolve(make_experiment(), USER)


@pytest.mark.asyncio
async def test_unexpected_failure_is_wrapped_as_engine_error(fake_client):
    def broken_random():
        raise RuntimeError("entropy exhausted")

    resolver = _resolver(fake_client, random_fn=broken_random)

    with pytest.raises(EngineError, match="RuntimeError: entropy exhausted") as excinfo:
        await resolver.resolve(make_experiment(), ANONYMOUS)

    assert isinstance(excinfo.value.__cause__, RuntimeError)

    with_fallback = _resolver(fake_client, random_fn=broken_random, fallback="A")
    assert await with_fallback.resolve(make_experiment(), ANONYMOUS) == Resolution(
        "A", Source.FALLBACK
    )


def test_cached_resolution_prefers_cookie(fake_client):
    resolver = _resolver(fake_client)
    assert resolver.cached_resolution("exp-1") is None

    resolver.cache.durable.set("exp-exp-1", "A")
    assert resolver.cached_resolution("exp-1") == Resolution("A", Source.LOCAL_CACHE)

    resolver.cache.cookies.set("exp-1", "B")
    assert resolver.cached_resolution("exp-1") == Resolution("B", Source.COOKIE)
