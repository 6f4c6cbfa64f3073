from tenantbook.store.backends import CompressedFileBackend, InMemoryBackend, create_backend
from tenantbook.store.tenant_store import TenantStore

__all__ = ["TenantStore", "InMemoryBackend", "CompressedFileBackend", "create_backend"]
