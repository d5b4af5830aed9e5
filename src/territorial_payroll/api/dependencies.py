"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator, Iterable
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from territorial_payroll.config import Settings
from territorial_payroll.context import RequestContext
from territorial_payroll.events import DomainEvent, EventEmitter


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency. Routes commit explicitly."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def _parse_uuid(value: str, header: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_request_context(
    x_company_id: Annotated[str | None, Header()] = None,
    x_user_id: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """Build the acting company/user from headers."""
    if not x_company_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Company-ID header is required",
        )
    return RequestContext(
        company_id=_parse_uuid(x_company_id, "X-Company-ID"),
        actor_id=_parse_uuid(x_user_id, "X-User-ID") if x_user_id else None,
    )


def get_emitter(request: Request) -> EventEmitter:
    return request.app.state.emitter


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def commit_and_publish(
    db: AsyncSession, emitter: EventEmitter, *event_lists: Iterable[DomainEvent]
) -> None:
    """Commit, then publish the events collected during the request."""
    await db.commit()
    for events in event_lists:
        emitter.emit_all(events)


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Context = Annotated[RequestContext, Depends(get_request_context)]
Emitter = Annotated[EventEmitter, Depends(get_emitter)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
