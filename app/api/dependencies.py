from uuid import UUID

from fastapi import Header

from app.domain.accounting.errors import ValidationError


def get_organization_id(x_organization_id: str = Header(..., alias="X-Organization-Id")) -> UUID:
    """Organization scope of the request, taken from the X-Organization-Id header."""
    try:
        return UUID(x_organization_id)
    except ValueError:
        raise ValidationError(
            f"X-Organization-Id {x_organization_id!r} is not a valid id",
            field="X-Organization-Id",
        )


def get_idempotency_key(idempotency_key: str | None = Header(default=None, alias="Idempotency-Key")) -> str | None:
    return idempotency_key or None
