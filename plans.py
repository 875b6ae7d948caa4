"""
Static plan catalog for panel accounts
A plan is uniquely resolved by (id, panel type, access tier)
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple, List

from config import PanelType, AccessType


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    type: PanelType
    access: AccessType
    memory: int  # MB, 0 = unlimited
    disk: int  # MB, 0 = unlimited
    cpu: int  # percent of one core, 0 = unlimited
    price: int  # IDR
    features: Tuple[str, ...] = field(default_factory=tuple)


_TIERS = [
    # id, label, memory, disk, cpu, regular price
    ("1gb", "1GB", 1024, 1024, 40, 1000),
    ("2gb", "2GB", 2048, 2048, 60, 2000),
    ("3gb", "3GB", 3072, 3072, 80, 3000),
    ("4gb", "4GB", 4096, 4096, 100, 4000),
    ("5gb", "5GB", 5120, 5120, 120, 5000),
    ("6gb", "6GB", 6144, 6144, 140, 6000),
    ("7gb", "7GB", 7168, 7168, 160, 7000),
    ("8gb", "8GB", 8192, 8192, 180, 8000),
    ("9gb", "9GB", 9216, 9216, 200, 9000),
    ("10gb", "10GB", 10240, 10240, 220, 10000),
    ("unli", "UNLI", 0, 0, 0, 15000),
]

# Public panels are shared nodes and cheaper; admin accounts cost more
_PRICE_FACTOR = {
    (PanelType.PRIVATE, AccessType.REGULAR): 1.0,
    (PanelType.PRIVATE, AccessType.ADMIN): 2.0,
    (PanelType.PUBLIC, AccessType.REGULAR): 0.5,
    (PanelType.PUBLIC, AccessType.ADMIN): 1.0,
}


def _build_catalog() -> Tuple[Plan, ...]:
    catalog: List[Plan] = []
    for (panel_type, access), factor in _PRICE_FACTOR.items():
        for plan_id, label, memory, disk, cpu, price in _TIERS:
            features = (
                f"RAM {label}" if memory else "RAM Unlimited",
                f"Disk {label}" if disk else "Disk Unlimited",
                f"CPU {cpu}%" if cpu else "CPU Unlimited",
                "Garansi 12 hari",
            )
            if access is AccessType.ADMIN:
                features = features + ("Akses admin panel",)
            catalog.append(Plan(
                id=plan_id,
                name=f"Panel {label} {panel_type.value.title()}" + (" Admin" if access is AccessType.ADMIN else ""),
                type=panel_type,
                access=access,
                memory=memory,
                disk=disk,
                cpu=cpu,
                price=int(price * factor),
                features=features,
            ))
    return tuple(catalog)


PLANS: Tuple[Plan, ...] = _build_catalog()


def find_plan(plan_id: str, panel_type: PanelType = PanelType.PRIVATE,
              access_type: AccessType = AccessType.REGULAR,
              catalog: Tuple[Plan, ...] = PLANS) -> Optional[Plan]:
    """Resolve a plan by its (id, type, access) triple"""
    panel_type = PanelType(panel_type)
    access_type = AccessType(access_type)
    for plan in catalog:
        if plan.id == plan_id and plan.type is panel_type and plan.access is access_type:
            return plan
    return None


def get_plan(plan_id: str, catalog: Tuple[Plan, ...] = PLANS) -> Optional[Plan]:
    """Resolve a plan by id alone (first match)"""
    for plan in catalog:
        if plan.id == plan_id:
            return plan
    return None


def list_plans(panel_type: PanelType, access_type: AccessType,
               catalog: Tuple[Plan, ...] = PLANS) -> List[Plan]:
    panel_type = PanelType(panel_type)
    access_type = AccessType(access_type)
    return [p for p in catalog if p.type is panel_type and p.access is access_type]
