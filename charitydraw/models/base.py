from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

from charitydraw.db.metadata import metadata_obj

# Person-like keys are BIGINT; SQLite only autoincrements INTEGER primary keys.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    metadata = metadata_obj
