"""
==========================
Utility Functions Package.
==========================

Driver glue between compiled statements and SQLAlchemy engines.

Modules:
    database_utils: Engine creation, connection adapter and availability checks
"""

__version__ = "0.1.0"
__all__ = [
    'DRIVERS',
    'QueryResult',
    'SQLAlchemyConnection',
    'SQLAlchemyConnectionFactory',
    'check_database_available',
    'create_sqlalchemy_engine',
    'get_connection_url',
    'register_driver',
]

from .database_utils import (
    DRIVERS,
    QueryResult,
    SQLAlchemyConnection,
    SQLAlchemyConnectionFactory,
    check_database_available,
    create_sqlalchemy_engine,
    get_connection_url,
    register_driver,
)
