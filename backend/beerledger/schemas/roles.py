from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple


class Role(str, Enum):
    RETAILER = "Retailer"
    WHOLESALER = "Wholesaler"
    DISTRIBUTOR = "Distributor"
    FACTORY = "Factory"

    @property
    def tier(self) -> int:
        """Position in the chain, 0 for the Retailer up to 3 for the Factory."""
        return ROLE_SEQUENCE.index(self)

    @property
    def upstream(self) -> Optional["Role"]:
        """The supplier this role orders from (None for the Factory)."""
        idx = self.tier + 1
        return ROLE_SEQUENCE[idx] if idx < len(ROLE_SEQUENCE) else None

    @property
    def downstream(self) -> Optional["Role"]:
        """The customer this role ships to (None for the Retailer)."""
        idx = self.tier - 1
        return ROLE_SEQUENCE[idx] if idx >= 0 else None

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        if isinstance(value, Role):
            return value
        text = str(value).strip()
        for role in cls:
            if text.lower() in (role.value.lower(), role.name.lower()):
                return role
        # Older configurations call the top tier "manufacturer"
        if text.lower() == "manufacturer":
            return cls.FACTORY
        raise ValueError(f"Unknown role: {value!r}")


#: Customer demand enters at the Retailer; orders travel up this sequence and
#: goods travel back down it.
ROLE_SEQUENCE: Tuple[Role, ...] = (
    Role.RETAILER,
    Role.WHOLESALER,
    Role.DISTRIBUTOR,
    Role.FACTORY,
)


class Party(str, Enum):
    """Anyone who can send an order: the external customer or one of the roles."""

    CUSTOMER = "Customer"
    RETAILER = "Retailer"
    WHOLESALER = "Wholesaler"
    DISTRIBUTOR = "Distributor"
    FACTORY = "Factory"

    @classmethod
    def of(cls, role: Optional[Role]) -> "Party":
        return cls.CUSTOMER if role is None else cls(role.value)

    @property
    def role(self) -> Optional[Role]:
        return None if self is Party.CUSTOMER else Role(self.value)

    @property
    def tier(self) -> int:
        return -1 if self is Party.CUSTOMER else Role(self.value).tier


def is_valid_flow(sender: Party, recipient: Role) -> bool:
    """Orders must go exactly one tier upstream: Customer→Retailer→…→Factory."""
    return recipient.tier == sender.tier + 1
