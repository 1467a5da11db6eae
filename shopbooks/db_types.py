"""Database-agnostic type definitions for SQLAlchemy models.

These types work with both SQLite (tests, local runs) and PostgreSQL.
"""
from sqlalchemy import Numeric, Uuid

# Native UUID on PostgreSQL, CHAR(32) elsewhere
UUIDType = Uuid

# Money is stored with 2 decimal places; quantities allow fractional units
MoneyType = Numeric(14, 2)
QuantityType = Numeric(14, 3)
RateType = Numeric(5, 2)
