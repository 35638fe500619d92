import asyncio
import os
import sys
from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorClient

from core.utils import format_phone_number
from models.common import StaffRole

MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "CourierPWA")


async def set_role(phone: str, role: StaffRole):
    client = AsyncIOMotorClient(MONGO_URL)
    db = client[DB_NAME]

    staff = await db.staffs.find_one({"phone": phone})
    if not staff:
        print(f"Membre avec le numéro {phone} introuvable.")
        print("Connectez-vous d'abord une première fois sur la console avec ce numéro.")
        client.close()
        return

    await db.staffs.update_one(
        {"phone": phone},
        {"$set": {"role": role.value, "updated_at": datetime.now(timezone.utc)}},
    )
    print(f"Rôle mis à jour : {phone} est maintenant '{role.value}'.")
    client.close()


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage : python set_role.py <numero_telephone> <role>")
        print(f"Roles possibles : {', '.join(r.value for r in StaffRole)}")
        print("Exemple : python set_role.py 0712345678 admin")
        sys.exit(1)

    try:
        role_arg = StaffRole(sys.argv[2])
    except ValueError:
        print(f"Rôle inconnu : {sys.argv[2]}")
        sys.exit(1)

    asyncio.run(set_role(format_phone_number(sys.argv[1]), role_arg))
