from enum import Enum


class ParcelStatus(str, Enum):
    PENDING    = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED  = "delivered"


# Ordre fixe de la machine d'états (avance uniquement)
STATUS_ORDER = [ParcelStatus.PENDING, ParcelStatus.IN_TRANSIT, ParcelStatus.DELIVERED]


class StaffRole(str, Enum):
    STAFF = "staff"
    ADMIN = "admin"


class LedgerEntryType(str, Enum):
    DELIVERY_FEE = "delivery_fee"   # crédit, une seule fois par colis
    BONUS        = "bonus"          # crédit
    WITHDRAWAL   = "withdrawal"     # débit
    PENALTY      = "penalty"        # débit


CREDIT_TYPES = {LedgerEntryType.DELIVERY_FEE, LedgerEntryType.BONUS}
DEBIT_TYPES  = {LedgerEntryType.WITHDRAWAL, LedgerEntryType.PENALTY}


class LifecycleEventType(str, Enum):
    RECEIVED   = "received"
    IN_TRANSIT = "in_transit"
    DELIVERED  = "delivered"
