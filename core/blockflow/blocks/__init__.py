"""Block catalog and runners."""

from blockflow.blocks.catalog import BlockCatalog, BlockInput, BlockInputType, BlockSpec
from blockflow.blocks.runner import (
    BlockHandler,
    BlockInputs,
    BlockRunner,
    LocalBlockRunner,
    create_default_runner,
)

__all__ = [
    "BlockCatalog",
    "BlockInput",
    "BlockInputType",
    "BlockSpec",
    "BlockHandler",
    "BlockInputs",
    "BlockRunner",
    "LocalBlockRunner",
    "create_default_runner",
]
