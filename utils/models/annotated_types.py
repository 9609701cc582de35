from sqlalchemy import BigInteger, Boolean, DateTime, func, String
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import mapped_column, Mapped
from datetime import datetime
from typing import Optional
from typing_extensions import Annotated


class Uint256(TypeDecorator):
    """uint256 values (wei amounts, token ids) stored as decimal strings.

    Integers above 2**63 do not fit BigInteger; sqlite NUMERIC turns them into floats.
    """

    impl = String(78)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = int(value)
        if value < 0:
            raise ValueError(f"uint256 cannot be negative: {value}")
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


# Primary key types
BigIntegerPrimaryKeyType = Mapped[
    Annotated[int, mapped_column(BigInteger, primary_key=True)]
]
StringPrimaryKeyType = Mapped[Annotated[str, mapped_column(String, primary_key=True)]]
Uint256PrimaryKeyType = Mapped[Annotated[int, mapped_column(Uint256, primary_key=True)]]

# Normal types
BigIntegerType = Mapped[Annotated[int, mapped_column(BigInteger)]]
BooleanType = Mapped[Annotated[bool, mapped_column(Boolean)]]
StringType = Mapped[Annotated[str, mapped_column(String)]]
Uint256Type = Mapped[Annotated[int, mapped_column(Uint256)]]

# Nullable types
NullableBigIntegerType = Mapped[
    Annotated[Optional[int], mapped_column(BigInteger, nullable=True)]
]
NullableStringType = Mapped[
    Annotated[Optional[str], mapped_column(String, nullable=True)]
]
NullableUint256Type = Mapped[
    Annotated[Optional[int], mapped_column(Uint256, nullable=True)]
]

# Timestamp types
InsertedAtType = Mapped[
    Annotated[datetime, mapped_column(DateTime(timezone=True), default=func.now())]
]
UpdatedAtType = Mapped[
    Annotated[
        datetime,
        mapped_column(
            DateTime(timezone=True),
            default=func.now(),
            onupdate=func.now(),
        ),
    ]
]
