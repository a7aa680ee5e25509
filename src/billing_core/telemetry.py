from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from .config import ClientConfig
from .logger import get_logger
from .models import ReconcileResult, TransactionRecord
from .tenant import ResolutionStatus, TenantState

TELEMETRY_FILENAME = "telemetry.jsonl"

EVENT_KINDS = {"outbox_reconciled", "sale_completed", "tenant_fallback", "tenant_failed"}

# Customer and credential fields never leave the device through telemetry.
_FORBIDDEN_DETAIL_KEYS = {
    "email",
    "password",
    "phone",
    "customer_name",
    "customer_phone",
    "customer_id",
    "address",
    "token",
    "access_token",
    "refresh_token",
    "authorization",
}

logger = get_logger(__name__)


@dataclass(frozen=True)
class BillingEvent:
    kind: str
    recorded_at: str
    tenant_id: str | None = None
    tab_id: str | None = None
    duration_ms: int | None = None
    ok: bool | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        payload = {key: value for key, value in asdict(self).items() if value is not None and value != {}}
        return json.dumps(payload, sort_keys=True)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def check_details(details: dict[str, Any]) -> None:
    illegal = sorted(key for key in details if key.lower() in _FORBIDDEN_DETAIL_KEYS)
    if illegal:
        raise ValueError(f"Customer or credential fields are not allowed in telemetry: {illegal}")


class TelemetryLogger:
    """Appends billing events as JSON lines to a file under the data directory.

    Nothing is written unless ``enabled`` is set. A write failure is logged and
    never interrupts billing.
    """

    def __init__(
        self,
        log_file: str | Path,
        *,
        enabled: bool = True,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.log_file = Path(log_file)
        self.enabled = enabled
        self.clock = clock

    @classmethod
    def from_config(cls, config: ClientConfig) -> TelemetryLogger:
        return cls(config.resolved_data_dir() / TELEMETRY_FILENAME, enabled=config.telemetry_enabled)

    def record(
        self,
        kind: str,
        *,
        tenant_id: str | None = None,
        tab_id: str | None = None,
        duration_ms: int | None = None,
        ok: bool | None = None,
        **details: Any,
    ) -> bool:
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown telemetry event: {kind}")
        check_details(details)
        if not self.enabled:
            return False

        event = BillingEvent(
            kind=kind,
            recorded_at=self.clock().isoformat(),
            tenant_id=tenant_id,
            tab_id=tab_id,
            duration_ms=duration_ms,
            ok=ok,
            details=details,
        )
        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with self.log_file.open("a", encoding="utf-8") as fp:
                fp.write(f"{event.to_json()}\n")
        except OSError as exc:
            logger.warning("Could not write telemetry to %s: %s", self.log_file, exc)
            return False
        return True

    def sync_reconciled(self, tenant_id: str, result: ReconcileResult, duration_ms: int) -> bool:
        return self.record(
            "outbox_reconciled",
            tenant_id=tenant_id,
            duration_ms=duration_ms,
            ok=not result.failed,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
        )

    def sale_completed(self, record: TransactionRecord, *, tenant_id: str, tab_id: str) -> bool:
        return self.record(
            "sale_completed",
            tenant_id=tenant_id,
            tab_id=tab_id,
            ok=True,
            bill_number=record.bill_number,
            counter_id=record.counter_id,
            synced=record.synced,
        )

    def tenant_state(self, state: TenantState, *, tab_id: str | None = None) -> bool:
        """Record degraded resolutions only; a clean resolve is not an event."""
        if state.status == ResolutionStatus.FAILED:
            kind = "tenant_failed"
        elif state.status == ResolutionStatus.RESOLVED and state.fallback:
            kind = "tenant_fallback"
        else:
            return False
        return self.record(
            kind,
            tenant_id=state.tenant_id,
            tab_id=tab_id,
            ok=False,
            role=state.role.value if state.role else None,
            reason=state.reason,
        )
