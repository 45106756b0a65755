from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from eve_industry_planner.application.plans.service import PlanLocks


@dataclass
class AppState:
    # Lifecycle
    init_state: str = "Not Started"
    init_error: Optional[str] = None
    init_lock: threading.Lock = field(default_factory=threading.Lock)

    # Databases
    db_app: Any = None
    db_sde: Any = None

    # Collaborators
    pricing: Any = None
    # Loaded lazily from the SDE on first use.
    blueprint_catalog: Any = None

    plan_locks: PlanLocks = field(default_factory=PlanLocks)


state = AppState()
