import asyncio
import os
import uuid
from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorClient

MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "CourierPWA")

# Barème initial (KES)
DESTINATIONS = [
    {"name": "Nairobi CBD", "region": "Nairobi",     "base_fee": 150},
    {"name": "Westlands",   "region": "Nairobi",     "base_fee": 120},
    {"name": "Mombasa",     "region": "Coast",       "base_fee": 250},
    {"name": "Kisumu",      "region": "Nyanza",      "base_fee": 200},
    {"name": "Eldoret",     "region": "Rift Valley", "base_fee": 180},
    {"name": "Nakuru",      "region": "Rift Valley", "base_fee": 160},
]


async def seed_destinations():
    print(f"Connexion à MongoDB : {DB_NAME}")
    client = AsyncIOMotorClient(MONGO_URL)
    db = client[DB_NAME]

    now = datetime.now(timezone.utc)
    created = 0
    for d in DESTINATIONS:
        existing = await db.destinations.find_one({"name": d["name"]})
        if existing:
            print(f"  {d['name']} existe déjà ({existing.get('base_fee')} KES).")
            continue
        await db.destinations.insert_one({
            "destination_id": f"dst_{uuid.uuid4().hex[:12]}",
            "name":           d["name"],
            "region":         d["region"],
            "base_fee":       float(d["base_fee"]),
            "created_at":     now,
            "updated_at":     now,
        })
        created += 1
        print(f"  {d['name']} ajoutée ({d['base_fee']} KES).")

    # Les fiches personnel sont créées au premier login (rôle "staff").
    # Promouvoir un admin : PUT /api/admin/staff/{staff_id} {"role": "admin"}
    print(f"Seed terminé : {created} destination(s) ajoutée(s).")
    client.close()


if __name__ == "__main__":
    asyncio.run(seed_destinations())
