"""
Module: production_kernel.db.types
Responsibility: Annotated type aliases for production workflow columns so
    every model declares job numbers, quantities and status codes the same way.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.
"""

from typing import Annotated

from sqlalchemy import BigInteger, String

# Human-assigned job number (e.g. "NRC-2024-0113")
JobNumber = Annotated[str, String(100)]

# Piece counts: sheets, boards, cartons
Quantity = Annotated[int, BigInteger]

# Stored value of a str Enum
StatusCode = Annotated[str, String(20)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Long text for remarks and descriptions
LongText = Annotated[str, String(4000)]
