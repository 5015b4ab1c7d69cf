from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[2]


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


DB_PATH = Path(os.getenv("SOS_DB_PATH", str(BASE_DIR / "silentsos.db")))
AUTHORITY_NUMBER = os.getenv("SOS_AUTHORITY_NUMBER", "100")
AUTHORITY_CALL_DELAY_SECONDS = float(os.getenv("SOS_AUTHORITY_CALL_DELAY_SECONDS", "5"))
DEVIATION_THRESHOLD_METERS = float(os.getenv("SOS_DEVIATION_THRESHOLD_METERS", "500"))
RESPONDER_LIMIT = int(os.getenv("SOS_RESPONDER_LIMIT", "3"))
MAX_CONCURRENT_SENDS = int(os.getenv("SOS_MAX_CONCURRENT_SENDS", "8"))
AWAIT_DELIVERY = _flag("SOS_AWAIT_DELIVERY", "1")
CANCEL_AUTHORITY_CALL_ON_RESOLVE = _flag("SOS_CANCEL_AUTHORITY_CALL_ON_RESOLVE", "1")


@dataclass(frozen=True)
class EngineConfig:
    deviation_threshold_m: float = 500.0
    responder_limit: int = 3
    call_priority_cutoff: int = 2
    max_concurrent_sends: int = 8
    authority_number: str = "100"
    authority_call_delay_s: float = 5.0
    cancel_authority_call_on_resolve: bool = True
    # When False, contact and responder delivery runs in the background and
    # trigger returns as soon as the descriptor is stored.
    await_delivery: bool = True
    journey_contact_count: int = 2
    journey_eta_minutes: int = 30
    safe_spot_radius_m: float = 5000.0

    @classmethod
    def from_env(cls) -> EngineConfig:
        return cls(
            deviation_threshold_m=DEVIATION_THRESHOLD_METERS,
            responder_limit=RESPONDER_LIMIT,
            max_concurrent_sends=MAX_CONCURRENT_SENDS,
            authority_number=AUTHORITY_NUMBER,
            authority_call_delay_s=AUTHORITY_CALL_DELAY_SECONDS,
            cancel_authority_call_on_resolve=CANCEL_AUTHORITY_CALL_ON_RESOLVE,
            await_delivery=AWAIT_DELIVERY,
        )
