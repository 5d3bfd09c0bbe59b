"""
ACFL Abundance

Reproducibility package for a hierarchical distance-removal analysis of
Acadian Flycatcher point counts along the Roanoke River.

Core modules:
    - paths: Canonical root and path resolution
    - logging_utils: JSONL structured logging
    - io_utils: Atomic writes and I/O helpers
    - schemas: Schema validation for survey tables and outputs
    - qa: Data-integrity checks and expected-value assertions
    - loader / aggregate / frame: Survey records -> survey frame
    - formulas / model: Distance-removal abundance model
    - selection / predict / simulate: Model selection, inference, power
    - figures / report / citations: Output artifacts
"""

__version__ = "0.1.0"
__author__ = "ACFL Abundance Team"
