"""
Core of the self-recorder decoder: page layout, settings, calibration,
sample reconstruction and session chain detection.

Nothing in this subpackage touches the filesystem except the settings
loaders, so the report and CLI layers can be tested against in-memory pages.
"""

from .calibration import CalibrationEngine, calc_pressure, calc_temperature
from .chains import Chain, detect_chains, partition, session_start_indices
from .config import (
    AppSettings,
    CalibrationProfile,
    MemInfo,
    P16Coeffs,
    PressureUnit,
    T5Coeffs,
    load_settings,
    load_storage,
)
from .interleave import ReconstructedSample, SampleReconstructor
from .pages import NO_DATA_ID, PageHeader, PageUnpacker, RawPage, Record, pack_page

__all__ = [
    "CalibrationEngine",
    "calc_pressure",
    "calc_temperature",
    "Chain",
    "detect_chains",
    "partition",
    "session_start_indices",
    "AppSettings",
    "CalibrationProfile",
    "MemInfo",
    "P16Coeffs",
    "PressureUnit",
    "T5Coeffs",
    "load_settings",
    "load_storage",
    "ReconstructedSample",
    "SampleReconstructor",
    "NO_DATA_ID",
    "PageHeader",
    "PageUnpacker",
    "RawPage",
    "Record",
    "pack_page",
]
