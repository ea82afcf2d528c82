from datetime import date, datetime, timedelta, timezone
import random
import string
from typing import Optional

from bloodline.models.donation import UNIT_SHELF_LIFE_DAYS


def generate_unit_serial(length: int = 6) -> str:
    """Generate a unit serial number in format UNIT-YYYYMMDD-XXXXXX"""
    date_part = datetime.now(timezone.utc).strftime("%Y%m%d")
    random_part = "".join(random.choices(string.ascii_uppercase + string.digits, k=length))
    return f"UNIT-{date_part}-{random_part}"


def calculate_expiry_date(collected_at: Optional[datetime] = None) -> date:
    """Expiry date of a whole-blood unit collected at ``collected_at``"""
    collected_at = collected_at or datetime.now(timezone.utc)
    return (collected_at + timedelta(days=UNIT_SHELF_LIFE_DAYS)).date()
