"""Batch code generation.

Format tokens:
  {product}    → product type, upper-cased, non-alphanumerics dropped
  {date}       → YYYYMMDD
  {seq:N}      → zero-padded sequence number, N digits, resets daily per prefix

Default format:
  batch:  {product}-{date}-{seq:3}    e.g. CHERRY-20260310-001
"""

import re
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.batch import Batch

DEFAULT_FORMAT = "{product}-{date}-{seq:3}"


def _product_token(product_type: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", product_type.upper()) or "BATCH"


# Processing stages a code prefix can name, raw to finished
PRODUCT_TYPES = ("cherry", "parchment", "green_bean", "roasted", "ground")


def product_type_for_code(code: str) -> str | None:
    """Product type named by a code's leading segment, if any.

    GREENBEAN-001 → green_bean, ROAST-001 → roasted; GB-A → None.
    """
    lead = _product_token(code.split("-", 1)[0])
    for product_type in PRODUCT_TYPES:
        token = _product_token(product_type)
        if lead == token or (len(lead) >= 4 and token.startswith(lead)):
            return product_type
    return None


def _build_prefix(fmt: str, product: str, date_str: str) -> str:
    """Everything before {seq:N}, used to count codes issued today."""
    prefix = fmt.replace("{product}", product).replace("{date}", date_str)
    return re.sub(r"\{seq:\d+\}.*$", "", prefix)


async def generate_batch_code(
    db: AsyncSession,
    product_type: str,
    on_date: date | None = None,
    fmt: str = DEFAULT_FORMAT,
) -> str:
    """Generate the next free batch code for a product and day.

    Args:
        db: Database session (the caller's transaction)
        product_type: e.g. "cherry", "green_bean"
        on_date: Day the code is issued for (default: today)

    Returns:
        Generated code string, e.g. "GREENBEAN-20260310-002"
    """
    date_str = (on_date or date.today()).strftime("%Y%m%d")
    product = _product_token(product_type)
    prefix = _build_prefix(fmt, product, date_str)

    count = (
        await db.execute(
            select(func.count(Batch.id)).where(Batch.code.like(f"{prefix}%"))
        )
    ).scalar() or 0

    seq_match = re.search(r"\{seq:(\d+)\}", fmt)
    seq_width = int(seq_match.group(1)) if seq_match else 3

    # Explicit codes can occupy a slot in the sequence, so skip taken ones
    seq_num = count + 1
    while True:
        code = fmt.replace("{product}", product).replace("{date}", date_str)
        code = re.sub(r"\{seq:\d+\}", f"{seq_num:0{seq_width}d}", code)
        taken = (
            await db.execute(select(Batch.id).where(Batch.code == code))
        ).scalar_one_or_none()
        if taken is None:
            return code
        seq_num += 1
