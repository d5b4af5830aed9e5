"""Request-scoped actor and company context."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class RequestContext:
    """Who is acting, and on behalf of which company.

    Threaded explicitly through every service call; nothing in the
    calculation path reads ambient process state.
    """

    company_id: UUID
    actor_id: UUID | None = None
