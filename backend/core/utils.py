import random
import re
import string
import time

COUNTRY_CODE = "254"
LOCAL_PREFIXES = ("07", "01")

_E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")
_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


# ── Tracking code ─────────────────────────────────────────────────────────────
def generate_tracking_code() -> str:
    """
    Code lisible : horodatage ms en base 36 + '-' + 4 caractères aléatoires,
    tronqué à 12 caractères. Ex : MF3K2L9Q-7XA
    """
    now = _to_base36(int(time.time() * 1000))
    rand = "".join(random.choices(_BASE36, k=4))
    return f"{now}-{rand}"[:12]


# ── Téléphones ────────────────────────────────────────────────────────────────
def format_phone_number(phone: str) -> str:
    """
    Normalise un numéro kényan au format E.164.
    0712345678 -> +254712345678 ; 254712345678 -> +254712345678.
    Un format non reconnu est renvoyé tel quel.
    """
    if phone.startswith(LOCAL_PREFIXES):
        return f"+{COUNTRY_CODE}{phone[1:]}"
    if phone.startswith(COUNTRY_CODE):
        return f"+{phone}"
    return phone


def validate_phone_number(phone: str) -> bool:
    return bool(_E164_RE.match(format_phone_number(phone)))


def mask_phone(phone: str) -> str:
    """
    Masque un numéro de téléphone en ne laissant que l'indicatif (si présent)
    et les 2 derniers chiffres.
    Format type: +254 712 345 678 -> +254 ••• •• 78
    """
    if not phone:
        return ""

    clean_phone = phone.replace(" ", "")
    if len(clean_phone) <= 4:
        return "••••"

    match = re.match(r"^(\+\d{1,3})", clean_phone)
    prefix = match.group(1) if match else ""
    suffix = clean_phone[-2:]
    return f"{prefix} ••• •• {suffix}" if prefix else f"••• •• {suffix}"
