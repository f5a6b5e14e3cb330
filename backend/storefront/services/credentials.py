"""Per-tenant Stripe credential resolution"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.db.cache import KeyValueCache, MemoryCache
from storefront.models.tenant import Tenant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantCredentials:
    secret_key: str
    publishable_key: Optional[str]
    is_test_mode: bool
    webhook_secret: Optional[str]

    def __repr__(self):
        # Keep secrets out of logs and tracebacks
        mode = "test" if self.is_test_mode else "live"
        return f"TenantCredentials(mode={mode}, has_webhook_secret={bool(self.webhook_secret)})"


def new_credential_cache() -> MemoryCache:
    return MemoryCache(maxsize=settings.CREDENTIAL_CACHE_SIZE, ttl=settings.CREDENTIAL_CACHE_TTL)


def credentials_from_tenant(tenant: Optional[Tenant]) -> Optional[TenantCredentials]:
    """Select the key pair and webhook secret for the tenant's environment.

    Returns None when the tenant is missing, not configured, or has no secret
    key for its environment.
    """
    if tenant is None or not tenant.is_configured:
        return None

    is_test_mode = (tenant.environment or "test").lower() != "live"
    if is_test_mode:
        secret_key = tenant.test_secret_key
        publishable_key = tenant.test_publishable_key
        webhook_secret = tenant.test_webhook_secret or tenant.webhook_secret
    else:
        secret_key = tenant.live_secret_key
        publishable_key = tenant.live_publishable_key
        webhook_secret = tenant.live_webhook_secret or tenant.webhook_secret

    if not secret_key:
        return None

    return TenantCredentials(
        secret_key=secret_key,
        publishable_key=publishable_key,
        is_test_mode=is_test_mode,
        webhook_secret=webhook_secret or None,
    )


class CredentialResolver:
    """Resolves tenant credentials through a TTL cache.

    The application shares one cache across requests and passes it in; a
    resolver built without one caches for its own lifetime only.

    ``resolve`` never raises: any lookup failure is logged and reported as
    "no credentials" so callers can move on to the next tenant candidate.
    Empty results are not cached.
    """

    def __init__(self, db: Session, cache: Optional[KeyValueCache] = None):
        self.db = db
        self.cache = cache if cache is not None else new_credential_cache()

    @staticmethod
    def _cache_key(tenant_id: str) -> str:
        return f"credentials:{tenant_id}"

    def resolve(self, tenant_id: Optional[str]) -> Optional[TenantCredentials]:
        if not tenant_id:
            return None

        try:
            cached = self.cache.get(self._cache_key(tenant_id))
            if cached is not None:
                return cached

            tenant = self.db.query(Tenant).filter(Tenant.tenant_id == tenant_id).first()
            credentials = credentials_from_tenant(tenant)
            if credentials is not None:
                self.cache.set(self._cache_key(tenant_id), credentials)
            return credentials
        except Exception as e:
            logger.warning(f"Credential lookup failed for tenant {tenant_id}: {type(e).__name__}")
            return None

    def invalidate(self, tenant_id: str) -> None:
        self.cache.delete(self._cache_key(tenant_id))
