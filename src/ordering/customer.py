"""Customer data handed to checkout by the identity collaborator."""

from dataclasses import dataclass, field

from shared.exceptions import ValidationError


@dataclass(frozen=True)
class Address:
    id: str
    name: str
    phone: str
    line1: str
    city: str
    state: str
    postal_code: str
    landmark: str | None = None
    country: str = "India"
    email: str | None = None
    is_default: bool = False


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    email: str | None = None
    addresses: tuple[Address, ...] = field(default_factory=tuple)

    def resolve_address(self, address_id: str | None = None, label: str = "shipping_address_id") -> Address:
        """Explicit id first, then the default address, then the first one on file."""
        if address_id:
            for address in self.addresses:
                if address.id == address_id:
                    return address
            raise ValidationError({label: ["Address not found"]})

        for address in self.addresses:
            if address.is_default:
                return address
        if self.addresses:
            return self.addresses[0]
        raise ValidationError({label: ["Customer has no address on file"]})
