"""
Reference Mapper

Builds the two lookup tables used to patch missing labels:

- category_id -> representative category_code
- product_id  -> representative brand

Only non-null labels take part. When one id carries several distinct labels
the configured LabelPolicy picks a single representative; the ambiguity is
counted and logged, never raised.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import polars as pl
import structlog

from transaction_insights.config import LabelPolicy, PipelineSettings, get_settings

logger = structlog.get_logger(__name__)


@dataclass
class ReferenceMap:
    """
    Lookup table from a numeric id to one representative label.

    The mapping lives in ``frame`` with columns ``[key_column, mapped_column]``
    so it can be joined directly; ``lookup`` serves point queries.
    """
    key_column: str
    label_column: str
    frame: pl.DataFrame
    policy: LabelPolicy
    ambiguous_keys: List[int] = field(default_factory=list)

    @property
    def mapped_column(self) -> str:
        return f"mapped_{self.label_column}"

    def __len__(self) -> int:
        return self.frame.height

    def __contains__(self, key: int) -> bool:
        return self.lookup(key) is not None

    def lookup(self, key: int) -> Optional[str]:
        """Return the representative label, or None when the id has no mapping"""
        hit = self.frame.filter(pl.col(self.key_column) == key)
        if hit.is_empty():
            return None
        return hit[self.mapped_column][0]

    def as_dict(self) -> Dict[int, str]:
        return dict(zip(self.frame[self.key_column].to_list(), self.frame[self.mapped_column].to_list()))

    @property
    def ambiguity_count(self) -> int:
        return len(self.ambiguous_keys)


class ReferenceMapper:
    """
    Builds reference maps from the full raw record set.

    Example:
        mapper = ReferenceMapper()
        category_map = mapper.build_category_map(raw_df)
        category_map.lookup(5)  # "electronics.smartphone"
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or get_settings().pipeline

    def _select_representative(
        self,
        labelled: pl.DataFrame,
        key_column: str,
        label_column: str,
        mapped_column: str,
    ) -> pl.DataFrame:
        """Pick one label per id according to the configured policy"""
        policy = self.settings.label_policy

        if policy == LabelPolicy.MAX:
            return labelled.group_by(key_column).agg(
                pl.col(label_column).max().alias(mapped_column)
            )

        if policy == LabelPolicy.MOST_FREQUENT:
            counts = labelled.group_by([key_column, label_column]).agg(
                pl.len().alias("_occurrences")
            )
            return (
                counts
                .sort(
                    [key_column, "_occurrences", label_column],
                    descending=[False, True, True],
                )
                .group_by(key_column, maintain_order=True)
                .agg(pl.col(label_column).first().alias(mapped_column))
            )

        raise ValueError(f"Unsupported label policy: {policy}")

    def _build(self, raw: pl.DataFrame, key_column: str, label_column: str) -> ReferenceMap:
        mapped_column = f"mapped_{label_column}"
        labelled = raw.select([key_column, label_column]).filter(
            pl.col(label_column).is_not_null()
        )

        mapping = self._select_representative(
            labelled, key_column, label_column, mapped_column
        ).sort(key_column)

        ambiguous = (
            labelled.group_by(key_column)
            .agg(pl.col(label_column).n_unique().alias("_distinct_labels"))
            .filter(pl.col("_distinct_labels") > 1)
            .sort(key_column)
        )
        ambiguous_keys = ambiguous[key_column].to_list()

        if ambiguous_keys:
            logger.warning(
                "Ambiguous reference mapping resolved by policy",
                key_column=key_column,
                label_column=label_column,
                policy=self.settings.label_policy.value,
                ambiguous_ids=len(ambiguous_keys),
                sample=ambiguous_keys[:5],
            )

        logger.info(
            "Reference map built",
            key_column=key_column,
            entries=mapping.height,
            ambiguous_ids=len(ambiguous_keys),
        )

        return ReferenceMap(
            key_column=key_column,
            label_column=label_column,
            frame=mapping,
            policy=self.settings.label_policy,
            ambiguous_keys=ambiguous_keys,
        )

    def build_category_map(self, raw: pl.DataFrame) -> ReferenceMap:
        """category_id -> representative category_code"""
        return self._build(raw, "category_id", "category_code")

    def build_brand_map(self, raw: pl.DataFrame) -> ReferenceMap:
        """product_id -> representative brand"""
        return self._build(raw, "product_id", "brand")


def build_category_map(raw: pl.DataFrame, settings: Optional[PipelineSettings] = None) -> ReferenceMap:
    """Convenience wrapper around ReferenceMapper.build_category_map"""
    return ReferenceMapper(settings).build_category_map(raw)


def build_brand_map(raw: pl.DataFrame, settings: Optional[PipelineSettings] = None) -> ReferenceMap:
    """Convenience wrapper around ReferenceMapper.build_brand_map"""
    return ReferenceMapper(settings).build_brand_map(raw)
