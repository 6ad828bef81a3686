"""Single-document conditional updates. All balance mutations go through here."""

from typing import Any, TypeVar

from beanie import Document
from pymongo import ReturnDocument

D = TypeVar("D", bound=Document)


async def find_one_and_update(
    model: type[D],
    filter_: dict[str, Any],
    update: dict[str, Any],
    upsert: bool = False,
) -> D | None:
    """Apply update to the first document matching filter_; return it as updated, or None if nothing matched."""
    raw = await model.get_motor_collection().find_one_and_update(
        filter_,
        update,
        upsert=upsert,
        return_document=ReturnDocument.AFTER,
    )
    if raw is None:
        return None
    return model.model_validate(raw)
