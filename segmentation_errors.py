#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
segmentation_errors.py

Errors shared by the scaler, the factor model and the clusterer.
All are ValueError subclasses so callers can catch them the usual way.
"""


class DegenerateColumnError(ValueError):
    """Zero-variance column(s) that cannot be standardized."""

    def __init__(self, columns):
        self.columns = list(columns)
        super().__init__(f"Zero-variance column(s) cannot be standardized: {self.columns}")


class InsufficientDimensionalityError(ValueError):
    """More factors requested than the data rank supports."""


class InsufficientDataError(ValueError):
    """Not enough (distinct) rows for the requested operation."""
