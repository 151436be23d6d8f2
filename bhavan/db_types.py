"""Column types shared by the models so they run on both SQLite and PostgreSQL."""
from sqlalchemy import JSON, BigInteger
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

# JSONB is PostgreSQL-specific, JSON works with both
JSONType = JSON

UUIDType = PG_UUID

# Money is stored in minor units (paise for INR)
MinorUnits = BigInteger
