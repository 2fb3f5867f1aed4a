from norm.backends.sqlalchemy.connection import SqlAlchemyConnection
from norm.backends.sqlalchemy.dialects import LimitOffsetConnection, TopConnection, create_connection
