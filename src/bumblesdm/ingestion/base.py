"""
Shared shape of the tabular loaders.

A loader reads its source as-is, normalises it into the columns of a
pandera schema and validates the result before any stage sees it.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

import pandas as pd
import pandera.pandas as pa

from bumblesdm.utils.logging import get_logger

log = get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=pa.DataFrameModel)


class DataLoader(ABC, Generic[SchemaT]):
    """
    Read, normalise and validate one tabular source.

    Subclasses implement ``_load_raw`` and usually ``_prepare``; rows a
    subclass rejects while preparing are its own to count.
    """

    def __init__(self, schema: type[SchemaT]) -> None:
        self.schema = schema

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def _load_raw(self) -> pd.DataFrame:
        """Read the source without interpretation."""

    def _prepare(self, df: pd.DataFrame) -> pd.DataFrame:
        return df

    def load(self, *, validate: bool = True) -> pd.DataFrame:
        """
        Run the read, prepare and validate steps.

        Args:
            validate: Check the prepared frame against the schema.

        Returns:
            The prepared frame, coerced to the schema's dtypes when validated.

        Raises:
            pandera.errors.SchemaError: If the prepared frame breaks the schema.
        """
        raw = self._load_raw()
        log.debug("Read source", loader=self.name, rows=len(raw), columns=list(raw.columns))

        prepared = self._prepare(raw)
        if not validate:
            return prepared

        validated = self.schema.validate(prepared)
        log.debug("Validated", loader=self.name, schema=self.schema.__name__, rows=len(validated))
        return validated
