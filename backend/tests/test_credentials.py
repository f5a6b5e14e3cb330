"""Credential resolution and cache tests"""
from unittest.mock import Mock

import pytest

from storefront.db import redis as redis_module
from storefront.db.cache import MemoryCache, RedisCache
from storefront.services.credentials import CredentialResolver

from conftest import make_tenant


@pytest.mark.critical
class TestCredentialResolver:
    """Test per-tenant credential selection"""

    def test_test_mode_selects_test_keys(self, db_session):
        """Test environment resolves the test key pair and test webhook secret"""
        make_tenant(db_session, webhook_secret="whsec_legacy")
        credentials = CredentialResolver(db_session).resolve("shop-a")
        assert credentials.secret_key == "sk_test_shop_a"
        assert credentials.publishable_key == "pk_test_shop_a"
        assert credentials.is_test_mode is True
        assert credentials.webhook_secret == "whsec_test_shop_a"

    def test_live_mode_selects_live_keys(self, db_session):
        """Live environment resolves the live key pair"""
        make_tenant(db_session, environment="live", live_secret_key="sk_live_a",
                    live_publishable_key="pk_live_a", live_webhook_secret="whsec_live_a")
        credentials = CredentialResolver(db_session).resolve("shop-a")
        assert credentials.secret_key == "sk_live_a"
        assert credentials.is_test_mode is False
        assert credentials.webhook_secret == "whsec_live_a"

    def test_falls_back_to_legacy_webhook_secret(self, db_session):
        """Without a per-environment secret the legacy secret is used"""
        make_tenant(db_session, test_webhook_secret=None, webhook_secret="whsec_legacy")
        assert CredentialResolver(db_session).resolve("shop-a").webhook_secret == "whsec_legacy"

    def test_unconfigured_tenant_resolves_empty(self, db_session):
        """is_configured=false resolves to nothing"""
        make_tenant(db_session, is_configured=False)
        assert CredentialResolver(db_session).resolve("shop-a") is None

    def test_missing_tenant_resolves_empty(self, db_session):
        """Unknown tenants resolve to nothing"""
        assert CredentialResolver(db_session).resolve("nope") is None
        assert CredentialResolver(db_session).resolve(None) is None

    def test_missing_secret_for_environment_resolves_empty(self, db_session):
        """A live tenant without a live secret key resolves to nothing"""
        make_tenant(db_session, environment="live")
        assert CredentialResolver(db_session).resolve("shop-a") is None

    def test_lookup_failure_resolves_empty(self):
        """Store errors never escape the resolver"""
        db = Mock()
        db.query.side_effect = RuntimeError("database unavailable")
        assert CredentialResolver(db, cache=MemoryCache()).resolve("shop-a") is None

    def test_secrets_not_in_repr(self, db_session):
        """Credential repr never contains key material"""
        make_tenant(db_session)
        text = repr(CredentialResolver(db_session).resolve("shop-a"))
        assert "sk_test" not in text
        assert "whsec" not in text


class TestCredentialCaching:
    """Test credential caching behavior"""

    def test_resolved_credentials_are_cached(self, db_session, credential_cache):
        """A second resolve is served from the cache"""
        tenant = make_tenant(db_session)
        resolver = CredentialResolver(db_session, cache=credential_cache)
        first = resolver.resolve("shop-a")

        tenant.test_secret_key = "sk_test_rotated"
        db_session.commit()
        assert resolver.resolve("shop-a") == first

        resolver.invalidate("shop-a")
        assert resolver.resolve("shop-a").secret_key == "sk_test_rotated"

    def test_cache_is_shared_between_resolvers(self, db_session, credential_cache):
        """Resolvers built on one cache see each other's entries"""
        tenant = make_tenant(db_session)
        first = CredentialResolver(db_session, cache=credential_cache).resolve("shop-a")

        tenant.test_secret_key = "sk_test_rotated"
        db_session.commit()
        assert CredentialResolver(db_session, cache=credential_cache).resolve("shop-a") == first
        assert CredentialResolver(db_session).resolve("shop-a").secret_key == "sk_test_rotated"

    def test_empty_results_are_not_cached(self, db_session, credential_cache):
        """A tenant finishing setup is picked up immediately"""
        tenant = make_tenant(db_session, is_configured=False)
        resolver = CredentialResolver(db_session, cache=credential_cache)
        assert resolver.resolve("shop-a") is None

        tenant.is_configured = True
        db_session.commit()
        assert resolver.resolve("shop-a") is not None

    def test_memory_cache_expires(self):
        """Entries expire after the TTL"""
        now = [1000.0]
        cache = MemoryCache(maxsize=4, ttl=60, timer=lambda: now[0])
        cache.set("k", "v")
        assert cache.get("k") == "v"
        now[0] += 61
        assert cache.get("k") is None

    def test_redis_cache_round_trip(self, mock_redis):
        """Redis cache stores prefixed keys with a TTL"""
        cache = RedisCache(redis_module.get_redis_client, prefix="pseudo_product", ttl=120)
        cache.set("shop-a:test:shipping", "prod_1")
        assert cache.get("shop-a:test:shipping") == "prod_1"
        assert 0 < mock_redis.ttl("pseudo_product:shop-a:test:shipping") <= 120

        cache.clear()
        assert cache.get("shop-a:test:shipping") is None

    def test_redis_errors_are_cache_misses(self):
        """An unreachable Redis behaves like an empty cache"""
        broken = Mock()
        broken.get.side_effect = ConnectionError("redis down")
        cache = RedisCache(lambda: broken, prefix="x", ttl=10)
        assert cache.get("k") is None
