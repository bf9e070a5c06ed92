"""
Async DB helpers for the Circles backend.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, Iterable, List
from uuid import uuid4

from sqlalchemy import (
    JSON, Boolean, DateTime, ForeignKey, String, Text, func, select, update
)
from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column
)
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncSession
)

from app.types.delivery_contract import (
    ContactInfo,
    DeliveryOutcome,
    HouseholdInfo,
    HouseholdStatus,
    InviteDetails,
    InviteDraft,
    Recipient,
    StatusUpdate,
)

# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid4())

# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith("sqlite"):
        return url
    if "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        pool_args = {} if url.startswith("sqlite") else {"pool_size": 5, "max_overflow": 5}
        _engine = create_async_engine(url, **pool_args)
    return _engine

def get_session() -> AsyncGenerator[AsyncSession, None]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async def _session_scope():
        async with _session_maker() as session:
            yield session
    return _session_scope()

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

class Household(Base):
    __tablename__ = "households"

    id:                 Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name:               Mapped[str] = mapped_column(String(100))
    status_state:       Mapped[str] = mapped_column(String(20), default="available")
    status_note:        Mapped[str | None] = mapped_column(String(200))
    status_time_window: Mapped[str | None] = mapped_column(String(50))
    status_updated_at:  Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at:         Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class User(Base):
    __tablename__ = "users"

    id:                Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    phone:             Mapped[str | None] = mapped_column(String(20), unique=True)
    push_subscription: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at:        Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class HouseholdMember(Base):
    __tablename__ = "household_members"

    household_id: Mapped[str]  = mapped_column(ForeignKey("households.id", ondelete="CASCADE"), primary_key=True)
    user_id:      Mapped[str]  = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    is_primary:   Mapped[bool] = mapped_column(Boolean, default=False)


class Contact(Base):
    __tablename__ = "contacts"

    id:                  Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_household_id:  Mapped[str] = mapped_column(ForeignKey("households.id", ondelete="CASCADE"), index=True)
    linked_household_id: Mapped[str | None] = mapped_column(
        ForeignKey("households.id", ondelete="SET NULL"), index=True
    )
    phone:               Mapped[str | None] = mapped_column(String(20))
    display_name:        Mapped[str] = mapped_column(String(100))
    created_at:          Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Invite(Base):
    __tablename__ = "invites"

    id:                      Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    created_by_household_id: Mapped[str] = mapped_column(ForeignKey("households.id", ondelete="CASCADE"), index=True)
    activity_type:           Mapped[str | None] = mapped_column(String(50))
    activity_name:           Mapped[str | None] = mapped_column(String(100))
    location:                Mapped[str | None] = mapped_column(String(200))
    proposed_date:           Mapped[str | None] = mapped_column(String(10))
    proposed_time:           Mapped[str | None] = mapped_column(String(50))
    message:                 Mapped[str | None] = mapped_column(Text)
    status:                  Mapped[str] = mapped_column(String(20), default="pending", index=True)
    created_at:              Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at:              Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class InviteRecipient(Base):
    __tablename__ = "invite_recipients"

    invite_id:    Mapped[str] = mapped_column(ForeignKey("invites.id", ondelete="CASCADE"), primary_key=True)
    household_id: Mapped[str] = mapped_column(ForeignKey("households.id", ondelete="CASCADE"), primary_key=True)
    response:     Mapped[str] = mapped_column(String(20), default="pending")
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at:   Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class InviteDeliveryLog(Base):
    __tablename__ = "invite_delivery_logs"

    id:         Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    invite_id:  Mapped[str] = mapped_column(ForeignKey("invites.id", ondelete="CASCADE"), index=True)
    results:    Mapped[dict[str, Any]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (run once at startup or from Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. Row → contract converters
# ──────────────────────────────────────────────────────────────────────
def _household_out(row: Household) -> HouseholdInfo:
    return HouseholdInfo(
        id=row.id,
        name=row.name,
        status=HouseholdStatus(
            state=row.status_state or "available",
            note=row.status_note,
            time_window=row.status_time_window,
            updated_at=row.status_updated_at,
        ),
    )


def _invite_out(row: Invite) -> InviteDetails:
    return InviteDetails(
        id=row.id,
        created_by_household_id=row.created_by_household_id,
        activity_type=row.activity_type,
        activity_name=row.activity_name,
        location=row.location,
        proposed_date=row.proposed_date,
        proposed_time=row.proposed_time,
        message=row.message,
        status=row.status,
        created_at=row.created_at,
    )


def _contact_out(row: Contact) -> ContactInfo:
    return ContactInfo(
        id=row.id,
        owner_household_id=row.owner_household_id,
        display_name=row.display_name,
        linked_household_id=row.linked_household_id,
        phone=row.phone,
    )


def _primary_members():
    """Subquery: one row per household with its primary member's contact points."""
    return (
        select(
            HouseholdMember.household_id,
            User.id.label("user_id"),
            User.phone,
            User.push_subscription,
        )
        .join(User, User.id == HouseholdMember.user_id)
        .where(HouseholdMember.is_primary.is_(True))
        .subquery()
    )


# ──────────────────────────────────────────────────────────────────────
# 6. CRUD helpers
# ──────────────────────────────────────────────────────────────────────

# 6.1 Households & members ---------------------------------------------
async def insert_household(name: str) -> HouseholdInfo:
    household = Household(id=_new_id(), name=name, status_state="available")
    async for s in get_session():
        s.add(household)
        await s.commit()
    return HouseholdInfo(id=household.id, name=name)


async def get_household(household_id: str) -> HouseholdInfo | None:
    async for s in get_session():
        row = await s.get(Household, household_id)
        return _household_out(row) if row else None


async def insert_user(
    phone: str | None,
    household_id: str | None = None,
    is_primary: bool = True,
    push_subscription: dict | None = None,
) -> str:
    uid = _new_id()
    async for s in get_session():
        s.add(User(id=uid, phone=phone, push_subscription=push_subscription))
        await s.flush()
        if household_id:
            s.add(HouseholdMember(household_id=household_id, user_id=uid, is_primary=is_primary))
        await s.commit()
    return uid


async def fetch_primary_contact_point(household_id: str) -> Recipient | None:
    """Phone / push subscription of the household's primary member."""
    async for s in get_session():
        stmt = (
            select(User)
            .join(HouseholdMember, HouseholdMember.user_id == User.id)
            .where(
                HouseholdMember.household_id == household_id,
                HouseholdMember.is_primary.is_(True),
            )
            .limit(1)
        )
        user = (await s.execute(stmt)).scalar_one_or_none()
        if user is None:
            return None
        return Recipient(
            household_id=household_id,
            user_id=user.id,
            phone=user.phone,
            push_subscription=user.push_subscription,
        )


# 6.2 Push subscriptions -----------------------------------------------
async def save_push_subscription(user_id: str, subscription: dict) -> bool:
    async for s in get_session():
        res = await s.execute(
            update(User).where(User.id == user_id).values(push_subscription=subscription)
        )
        await s.commit()
        return res.rowcount > 0


async def clear_push_subscription(user_id: str) -> None:
    async for s in get_session():
        await s.execute(
            update(User).where(User.id == user_id).values(push_subscription=None)
        )
        await s.commit()


# 6.3 Contacts ----------------------------------------------------------
async def insert_contact(
    owner_household_id: str,
    display_name: str,
    phone: str | None = None,
    linked_household_id: str | None = None,
) -> ContactInfo:
    contact = Contact(
        id=_new_id(),
        owner_household_id=owner_household_id,
        display_name=display_name,
        phone=phone,
        linked_household_id=linked_household_id,
    )
    async for s in get_session():
        s.add(contact)
        await s.commit()
    return _contact_out(contact)


async def fetch_owned_contacts(owner_household_id: str, contact_ids: Iterable[str]) -> list[ContactInfo]:
    ids = list(contact_ids)
    if not ids:
        return []
    async for s in get_session():
        stmt = select(Contact).where(
            Contact.id.in_(ids),
            Contact.owner_household_id == owner_household_id,
        )
        res = await s.execute(stmt)
        return [_contact_out(c) for c in res.scalars()]


async def fetch_watcher_household_ids(household_id: str) -> list[str]:
    """Distinct households holding *household_id* as a linked contact."""
    async for s in get_session():
        stmt = (
            select(Contact.owner_household_id)
            .where(Contact.linked_household_id == household_id)
            .distinct()
        )
        res = await s.execute(stmt)
        return list(res.scalars())


async def fetch_contact_statuses(owner_household_id: str) -> list[dict]:
    async for s in get_session():
        stmt = (
            select(Contact, Household)
            .join(Household, Contact.linked_household_id == Household.id)
            .where(Contact.owner_household_id == owner_household_id)
            .order_by(Contact.display_name)
        )
        res = await s.execute(stmt)
        return [
            {
                "contactId": contact.id,
                "displayName": contact.display_name,
                "householdId": household.id,
                "householdName": household.name,
                "status": _household_out(household).status.model_dump(mode="json", by_alias=True),
            }
            for contact, household in res.all()
        ]


# 6.4 Status ------------------------------------------------------------
async def update_household_status(household_id: str, change: StatusUpdate) -> HouseholdInfo | None:
    """Write state, note, time window and timestamp in one UPDATE."""
    now = datetime.now(timezone.utc)
    async for s in get_session():
        res = await s.execute(
            update(Household)
            .where(Household.id == household_id)
            .values(
                status_state=change.state,
                status_note=change.note,
                status_time_window=change.time_window,
                status_updated_at=now,
            )
        )
        await s.commit()
        if res.rowcount == 0:
            return None
        row = await s.get(Household, household_id)
        return HouseholdInfo(
            id=household_id,
            name=row.name if row else "",
            status=HouseholdStatus(
                state=change.state,
                note=change.note,
                time_window=change.time_window,
                updated_at=now,
            ),
        )


# 6.5 Invites -----------------------------------------------------------
async def insert_invite(household_id: str, draft: InviteDraft) -> InviteDetails:
    invite = Invite(
        id=_new_id(),
        created_by_household_id=household_id,
        activity_type=draft.activity_type,
        activity_name=draft.activity_name,
        location=draft.location,
        proposed_date=draft.proposed_date,
        proposed_time=draft.proposed_time,
        message=draft.message,
        status="pending",
        created_at=datetime.now(timezone.utc),
    )
    async for s in get_session():
        s.add(invite)
        await s.commit()
    return _invite_out(invite)


async def get_invite(invite_id: str) -> InviteDetails | None:
    async for s in get_session():
        row = await s.get(Invite, invite_id)
        return _invite_out(row) if row else None


async def add_invite_recipient(invite_id: str, household_id: str) -> None:
    async for s in get_session():
        s.add(InviteRecipient(invite_id=invite_id, household_id=household_id, response="pending"))
        await s.commit()


async def fetch_invite_recipients(invite_id: str) -> list[dict]:
    async for s in get_session():
        stmt = (
            select(InviteRecipient, Household.name)
            .outerjoin(Household, Household.id == InviteRecipient.household_id)
            .where(InviteRecipient.invite_id == invite_id)
        )
        res = await s.execute(stmt)
        return [
            {
                "householdId": r.household_id,
                "householdName": name,
                "response": r.response,
                "respondedAt": r.responded_at.isoformat() if r.responded_at else None,
            }
            for r, name in res.all()
        ]


async def record_invite_response(invite_id: str, household_id: str, response: str) -> bool:
    """Set a recipient's response; False when the household was not invited."""
    async for s in get_session():
        res = await s.execute(
            update(InviteRecipient)
            .where(
                InviteRecipient.invite_id == invite_id,
                InviteRecipient.household_id == household_id,
            )
            .values(response=response, responded_at=datetime.now(timezone.utc))
        )
        await s.commit()
        return res.rowcount > 0


async def fetch_delivery_recipients(invite_id: str) -> list[Recipient]:
    """Recipient households of an invite with their primary member's contact points."""
    primary = _primary_members()
    async for s in get_session():
        stmt = (
            select(
                InviteRecipient.household_id,
                Household.name,
                primary.c.user_id,
                primary.c.phone,
                primary.c.push_subscription,
            )
            .join(Household, Household.id == InviteRecipient.household_id)
            .outerjoin(primary, primary.c.household_id == InviteRecipient.household_id)
            .where(InviteRecipient.invite_id == invite_id)
            .order_by(InviteRecipient.created_at)
        )
        res = await s.execute(stmt)
        recipients: Dict[str, Recipient] = {}
        for household_id, name, user_id, phone, subscription in res.all():
            recipients.setdefault(
                household_id,
                Recipient(
                    household_id=household_id,
                    household_name=name,
                    user_id=user_id,
                    phone=phone,
                    push_subscription=subscription,
                ),
            )
        return list(recipients.values())


# 6.6 Delivery log ------------------------------------------------------
async def insert_delivery_log(invite_id: str, outcome: DeliveryOutcome) -> int:
    log = InviteDeliveryLog(invite_id=invite_id, results=outcome.model_dump(mode="json"))
    async for s in get_session():
        s.add(log)
        await s.commit()
    return log.id


async def fetch_delivery_logs(invite_id: str) -> List[dict]:
    async for s in get_session():
        stmt = (
            select(InviteDeliveryLog)
            .where(InviteDeliveryLog.invite_id == invite_id)
            .order_by(InviteDeliveryLog.id)
        )
        res = await s.execute(stmt)
        return [
            {"id": log.id, "invite_id": log.invite_id, "results": log.results, "created_at": log.created_at}
            for log in res.scalars()
        ]


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_maker = None
