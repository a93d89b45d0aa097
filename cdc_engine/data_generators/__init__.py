"""Synthetic data generators."""

from cdc_engine.data_generators.generators import (
    GENERATORS,
    ImdbGenerator,
    generator_for,
    write_tsv,
)

__all__ = ["GENERATORS", "ImdbGenerator", "generator_for", "write_tsv"]
