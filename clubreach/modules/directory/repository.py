import uuid
from typing import Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.modules.directory.models import Contact

class ContactRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, org_id: uuid.UUID, **data) -> Contact:
        obj = Contact(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get_many(self, org_id: uuid.UUID, ids: Sequence[uuid.UUID]) -> Sequence[Contact]:
        if not ids:
            return []
        res = await self.session.execute(select(Contact).where(
            Contact.org_id == org_id, Contact.id.in_(list(ids)), Contact.deleted_at.is_(None)))
        return res.scalars().all()

    async def list_active(self, org_id: uuid.UUID, role: str | None = None) -> Sequence[Contact]:
        q = select(Contact).where(Contact.org_id == org_id, Contact.active.is_(True), Contact.deleted_at.is_(None))
        if role:
            q = q.where(Contact.role == role)
        res = await self.session.execute(q.order_by(Contact.display_name.asc()))
        return res.scalars().all()

    async def find_by_name(self, org_id: uuid.UUID, display_name: str) -> Contact | None:
        res = await self.session.execute(select(Contact).where(
            Contact.org_id == org_id, Contact.display_name == display_name, Contact.deleted_at.is_(None)))
        return res.scalars().first()
