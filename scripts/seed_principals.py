import asyncio
import json
import os
import sys

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.core.db import SessionLocal, init_models
from app.core.security import issue_token
from app.modules.identity.schemas import PrincipalCreate
from app.modules.identity.service import IdentityService
from app.modules.policy.service import PolicyService

async def main(path: str):
    """
    Load principals from a JSON list and print a development token for each.
    Existing emails are skipped.
    """
    print("Starting principal seeding...")
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    await init_models()
    async with SessionLocal() as db:
        seeded = await PolicyService(db).seed_defaults()
        if seeded:
            print(f"  - Seeded {seeded} default policy rules")

        identity = IdentityService(db)
        for raw in data:
            payload = PrincipalCreate.model_validate(raw)
            existing = await identity.repo.get_by_email(payload.email)
            if existing:
                print(f"  - Principal '{payload.email}' already exists. Skipping.")
                continue
            principal = await identity.register(payload)
            print(f"  - Created {principal.role} '{principal.email}' with ID: {principal.id}")
            print(f"    token: {issue_token(principal.id)}")

    print("Seeding complete!")

if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: python scripts/seed_principals.py principals.json")
        sys.exit(2)
    asyncio.run(main(sys.argv[1]))
