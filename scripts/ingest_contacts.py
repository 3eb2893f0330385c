
import asyncio
import json
import os
import sys
import uuid

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from clubreach.core.config import settings
from clubreach.core.db import SessionLocal, init_models
from clubreach.core.channels import Channel
from clubreach.modules.directory.repository import ContactRepository

def contact_fields(row: dict) -> dict:
    """
    Maps one exported club roster row onto Contact columns.
    """
    preference = (row.get('preferred_channel') or Channel.EMAIL.value).lower()
    if preference not in {c.value for c in Channel}:
        preference = Channel.EMAIL.value
    return dict(
        display_name=row['name'],
        role=row.get('role') or 'coach',
        email=row.get('email'),
        phone=row.get('phone'),
        chat_handle=row.get('chat_handle'),
        channel_preference=preference,
        specialties=list(row.get('specialties') or []),
        location=row.get('location'),
        availability=list(row.get('availability') or []),
        ratings=[float(r) for r in row.get('ratings') or []],
        active=bool(row.get('active', True)),
    )

async def main(json_file_path: str):
    """
    Ingest coaches (and other contacts) from a JSON roster export.
    """
    print("Starting contact ingestion...")
    with open(json_file_path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    await init_models()
    org_id = uuid.UUID(settings.DEFAULT_ORG_ID)
    async with SessionLocal() as db:
        repo = ContactRepository(db)
        for row in data:
            existing = await repo.find_by_name(org_id, row['name'])
            if existing:
                print(f"  - Contact '{row['name']}' already exists. Skipping.")
                continue
            contact = await repo.create(org_id, **contact_fields(row))
            print(f"  - Created contact '{contact.display_name}' with ID: {contact.id}")

        print("\nCommitting all changes to the database...")
        await db.commit()
        print("Contact ingestion complete!")

if __name__ == "__main__":
    default_path = os.path.join(os.path.dirname(__file__), 'contacts.json')
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else default_path))
