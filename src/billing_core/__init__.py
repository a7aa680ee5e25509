from .auth_store import AuthStore
from .catalog import CatalogService
from .checkout import CheckoutService, format_bill_number
from .config import ClientConfig, ConfigError, load_config
from .connectivity import ConnectivityMonitor
from .context_storage import JsonFileStorage, KeyValueStorage, MemoryStorage
from .counter_session import CounterSessionStore, derive_key
from .exceptions import (
    ApiError,
    BillingError,
    ConstraintViolationError,
    InvalidResponseError,
    NoActiveCounterError,
    RemoteUnavailableError,
    StorageError,
    StorageUnavailableError,
    TenantResolutionError,
)
from .http_client import HttpClient, TraceContext
from .local_cache import LocalCache
from .models import (
    AuthSession,
    CatalogEntry,
    CounterSession,
    Principal,
    ReconcileResult,
    RoleRecord,
    TransactionRecord,
    UserRole,
)
from .remote import AuthEvent, RemoteStore, RestRemoteStore
from .session import BillingSession, TenantWorkspace
from .sync import SyncReconciler
from .tab_identity import TabIdentityProvider
from .telemetry import TelemetryLogger
from .tenant import ResolutionStatus, TenantResolver, TenantState

__version__ = "0.1.0"

__all__ = [
    "ApiError",
    "AuthEvent",
    "AuthSession",
    "AuthStore",
    "BillingError",
    "BillingSession",
    "CatalogEntry",
    "CatalogService",
    "CheckoutService",
    "ClientConfig",
    "ConfigError",
    "ConnectivityMonitor",
    "ConstraintViolationError",
    "CounterSession",
    "CounterSessionStore",
    "HttpClient",
    "InvalidResponseError",
    "JsonFileStorage",
    "KeyValueStorage",
    "LocalCache",
    "MemoryStorage",
    "NoActiveCounterError",
    "Principal",
    "ReconcileResult",
    "RemoteStore",
    "RemoteUnavailableError",
    "ResolutionStatus",
    "RestRemoteStore",
    "RoleRecord",
    "StorageError",
    "StorageUnavailableError",
    "SyncReconciler",
    "TabIdentityProvider",
    "TelemetryLogger",
    "TenantResolutionError",
    "TenantResolver",
    "TenantState",
    "TenantWorkspace",
    "TraceContext",
    "TransactionRecord",
    "UserRole",
    "derive_key",
    "format_bill_number",
    "load_config",
]
