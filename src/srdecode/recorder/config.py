from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

P_COEFFS_COUNT = 16
T_COEFFS_COUNT = 5


def _f32(value: Any, name: str) -> float:
    # the device stores every coefficient as f32
    return float(np.float32(_number(value, name)))


class PressureUnit(enum.Enum):
    """Display unit for pressure, keyed by the device unit code."""

    Pa = 0x00220000
    Bar = 0x004E0000
    At = 0x00A10000
    mmH2O = 0x00A20000
    mHg = 0x00A30000
    Atm = 0x00A40000
    PSI = 0x00AB0000

    @property
    def multiplier(self) -> float:
        """Factor converting bar into this unit."""
        return _UNIT_MULTIPLIERS[self]

    @property
    def label(self) -> str:
        return self.name

    @classmethod
    def parse(cls, value: Any) -> "PressureUnit":
        if isinstance(value, PressureUnit):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid pressure unit {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ValueError(f"Invalid pressure unit code 0x{value:08X}") from None
        name = str(value).strip()
        name = _UNIT_ALIASES.get(name, name)
        try:
            return cls[name]
        except KeyError:
            expected = ", ".join(member.name for member in cls)
            raise ValueError(f"Invalid pressure unit '{value}'. Expected one of {expected}") from None


_UNIT_MULTIPLIERS: Dict[PressureUnit, float] = {
    PressureUnit.Pa: 100000.0,
    PressureUnit.Bar: 1.0,
    PressureUnit.At: 1.0197162,
    PressureUnit.mmH2O: 10197.162,
    PressureUnit.mHg: 750.06158 / 1000.0,
    PressureUnit.Atm: 0.98692327,
    PressureUnit.PSI: 14.5,
}

# device firmware spells millimetres of water with a zero
_UNIT_ALIASES = {"mmH20": "mmH2O"}


@dataclass(frozen=True)
class P16Coeffs:
    Fp0: float
    Ft0: float
    A: Tuple[float, ...]

    @staticmethod
    def from_mapping(data: Any) -> "P16Coeffs":
        data = _section(data, "P_Coefficients")
        if "Fp0" not in data or "Ft0" not in data or "A" not in data:
            raise ValueError("P_Coefficients requires fields 'Fp0', 'Ft0', and 'A'")
        values = data["A"]
        if not isinstance(values, list) or len(values) != P_COEFFS_COUNT:
            raise ValueError(f"P_Coefficients.A must be a list of {P_COEFFS_COUNT} numbers")
        return P16Coeffs(
            Fp0=_f32(data["Fp0"], "P_Coefficients.Fp0"),
            Ft0=_f32(data["Ft0"], "P_Coefficients.Ft0"),
            A=tuple(_f32(value, f"P_Coefficients.A[{i}]") for i, value in enumerate(values)),
        )


@dataclass(frozen=True)
class T5Coeffs:
    F0: float
    T0: float
    C: Tuple[float, ...]

    @staticmethod
    def from_mapping(data: Any) -> "T5Coeffs":
        data = _section(data, "T_Coefficients")
        if "F0" not in data or "T0" not in data or "C" not in data:
            raise ValueError("T_Coefficients requires fields 'F0', 'T0', and 'C'")
        values = data["C"]
        if not isinstance(values, list) or len(values) != T_COEFFS_COUNT:
            raise ValueError(f"T_Coefficients.C must be a list of {T_COEFFS_COUNT} numbers")
        return T5Coeffs(
            F0=_f32(data["F0"], "T_Coefficients.F0"),
            T0=_f32(data["T0"], "T_Coefficients.T0"),
            C=tuple(_f32(value, f"T_Coefficients.C[{i}]") for i, value in enumerate(values)),
        )


@dataclass(frozen=True)
class WorkRange:
    minimum: float
    maximum: float
    absolute_maximum: Optional[float] = None

    @staticmethod
    def from_mapping(data: Any, key: str) -> Optional["WorkRange"]:
        if data is None:
            return None
        data = _section(data, key)
        if not data:
            return None
        absolute = data.get("absolute_maximum")
        return WorkRange(
            minimum=_number(data.get("minimum", 0.0), f"{key}.minimum"),
            maximum=_number(data.get("maximum", 0.0), f"{key}.maximum"),
            absolute_maximum=None if absolute is None else _number(absolute, f"{key}.absolute_maximum"),
        )


@dataclass(frozen=True)
class CalibrationDate:
    day: int
    month: int
    year: int

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    @staticmethod
    def from_mapping(data: Any) -> Optional["CalibrationDate"]:
        if data is None:
            return None
        data = _section(data, "calibration_date")
        if not data:
            return None
        return CalibrationDate(
            day=_integer(data.get("Day", 1), "calibration_date.Day"),
            month=_integer(data.get("Month", 1), "calibration_date.Month"),
            year=_integer(data.get("Year", 1970), "calibration_date.Year"),
        )


@dataclass(frozen=True)
class WriteConfig:
    base_interval_ms: int = 1000
    p_write_divider: int = 1
    t_write_divider: int = 1

    @staticmethod
    def from_mapping(data: Any) -> "WriteConfig":
        if data is None:
            return WriteConfig()
        data = _section(data, "writeConfig")
        return WriteConfig(
            base_interval_ms=_integer(data.get("BaseInterval_ms", 1000), "writeConfig.BaseInterval_ms"),
            p_write_divider=_integer(data.get("PWriteDevider", 1), "writeConfig.PWriteDevider"),
            t_write_divider=_integer(data.get("TWriteDevider", 1), "writeConfig.TWriteDevider"),
        )


@dataclass(frozen=True)
class Monitoring:
    overpress: bool = False
    overheat: bool = False
    cpu_overheat: bool = False
    over_power: bool = False

    def is_set(self) -> bool:
        return self.overpress or self.overheat or self.cpu_overheat or self.over_power

    @staticmethod
    def from_mapping(data: Any) -> "Monitoring":
        if data is None:
            return Monitoring()
        data = _section(data, "monitoring")
        return Monitoring(
            overpress=_as_bool(data.get("Ovarpress", False), "monitoring.Ovarpress"),
            overheat=_as_bool(data.get("Ovarheat", False), "monitoring.Ovarheat"),
            cpu_overheat=_as_bool(data.get("CPUOvarheat", False), "monitoring.CPUOvarheat"),
            over_power=_as_bool(data.get("OverPower", False), "monitoring.OverPower"),
        )


@dataclass(frozen=True)
class CalibrationProfile:
    """Everything the transfer functions need, fixed for the whole run."""

    p_coeffs: P16Coeffs
    t_coeffs: T5Coeffs
    unit: PressureUnit
    p_enabled: bool = True
    t_enabled: bool = True


@dataclass(frozen=True)
class AppSettings:
    p_coefficients: P16Coeffs
    t_coefficients: T5Coeffs
    pressure_unit: PressureUnit
    fref: float = 16_000_000.0
    serial: int = 0
    p_measure_time_ms: int = 1000
    t_measure_time_ms: int = 1000
    p_enabled: bool = True
    t_enabled: bool = True
    tcpu_enabled: bool = True
    vbat_enabled: bool = True
    p_work_range: Optional[WorkRange] = None
    t_work_range: Optional[WorkRange] = None
    tcpu_work_range: Optional[WorkRange] = None
    vbat_work_range: Optional[WorkRange] = None
    p_zero_correction: float = 0.0
    t_zero_correction: float = 0.0
    calibration_date: Optional[CalibrationDate] = None
    write_config: WriteConfig = field(default_factory=WriteConfig)
    start_delay: int = 0
    monitoring: Monitoring = field(default_factory=Monitoring)

    def calibration_profile(self) -> CalibrationProfile:
        return CalibrationProfile(
            p_coeffs=self.p_coefficients,
            t_coeffs=self.t_coefficients,
            unit=self.pressure_unit,
            p_enabled=self.p_enabled,
            t_enabled=self.t_enabled,
        )

    @staticmethod
    def from_mapping(data: Dict[str, Any]) -> "AppSettings":
        for key in ("P_Coefficients", "T_Coefficients", "pressureMeassureUnits"):
            if key not in data:
                raise ValueError(f"Settings missing required field '{key}'")
        return AppSettings(
            p_coefficients=P16Coeffs.from_mapping(data["P_Coefficients"]),
            t_coefficients=T5Coeffs.from_mapping(data["T_Coefficients"]),
            pressure_unit=PressureUnit.parse(data["pressureMeassureUnits"]),
            fref=_number(data.get("Fref", 16_000_000.0), "Fref"),
            serial=_integer(data.get("Serial", 0), "Serial"),
            p_measure_time_ms=_integer(data.get("PMesureTime_ms", 1000), "PMesureTime_ms"),
            t_measure_time_ms=_integer(data.get("TMesureTime_ms", 1000), "TMesureTime_ms"),
            p_enabled=_as_bool(data.get("P_enabled", True), "P_enabled"),
            t_enabled=_as_bool(data.get("T_enabled", True), "T_enabled"),
            tcpu_enabled=_as_bool(data.get("TCPUEnabled", True), "TCPUEnabled"),
            vbat_enabled=_as_bool(data.get("VBatEnabled", True), "VBatEnabled"),
            p_work_range=WorkRange.from_mapping(data.get("PWorkRange"), "PWorkRange"),
            t_work_range=WorkRange.from_mapping(data.get("TWorkRange"), "TWorkRange"),
            tcpu_work_range=WorkRange.from_mapping(data.get("TCPUWorkRange"), "TCPUWorkRange"),
            vbat_work_range=WorkRange.from_mapping(data.get("VbatWorkRange"), "VbatWorkRange"),
            p_zero_correction=_number(data.get("PZeroCorrection", 0.0), "PZeroCorrection"),
            t_zero_correction=_number(data.get("TZeroCorrection", 0.0), "TZeroCorrection"),
            calibration_date=CalibrationDate.from_mapping(data.get("calibration_date")),
            write_config=WriteConfig.from_mapping(data.get("writeConfig")),
            start_delay=_integer(data.get("startDelay", 0), "startDelay"),
            monitoring=Monitoring.from_mapping(data.get("monitoring")),
        )


@dataclass(frozen=True)
class MemInfo:
    flash_page_size: int
    flash_pages: int
    flash_used_pages: int

    @staticmethod
    def from_mapping(data: Dict[str, Any]) -> "MemInfo":
        if "FlashPageSize" not in data:
            raise ValueError("Storage configuration missing required field 'FlashPageSize'")
        page_size = _integer(data["FlashPageSize"], "FlashPageSize")
        if page_size <= 0:
            raise ValueError("FlashPageSize must be positive")
        return MemInfo(
            flash_page_size=page_size,
            flash_pages=_integer(data.get("FlashPages", 0), "FlashPages"),
            flash_used_pages=_integer(data.get("FlashUsedPages", 0), "FlashUsedPages"),
        )


def _section(data: Any, key: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"'{key}' must be a JSON object")
    return data


def _number(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Field '{name}' must be a number, got {value!r}")
    return float(value)


def _integer(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ValueError(f"Field '{name}' must be an integer, got {value!r}")
    return int(value)


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return value.lower() == "true"
    raise ValueError(f"Field '{name}' must be a boolean, got {value!r}")


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Failed to parse {path.name}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} must contain a JSON object")
    return data


def load_settings(path: Path | str, overrides: Sequence[str] | None = None) -> AppSettings:
    """
    Load device settings (``config.var``) and apply CLI-style overrides.

    Overrides are expressed as dotted `key=value` pairs, e.g.:
        ["P_enabled=false", "P_Coefficients.Fp0=32000", "pressureMeassureUnits=PSI"]
    """
    data = _load_json(Path(path))
    for override in overrides or []:
        keys, value = _parse_override(override)
        _apply_override(data, keys, value)
    return AppSettings.from_mapping(data)


def load_storage(path: Path | str) -> MemInfo:
    return MemInfo.from_mapping(_load_json(Path(path)))


def _parse_override(item: str) -> Tuple[Tuple[str, ...], Any]:
    key, sep, raw_value = item.partition("=")
    keys = tuple(part.strip() for part in key.split("."))
    if not sep:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    if not all(keys):
        raise ValueError(f"Override '{item}' has an empty key")
    return keys, _coerce_value(raw_value.strip())


def _coerce_value(raw: str) -> Any:
    """JSON literal when `raw` is one (numbers, booleans, lists, objects), else the bare string."""

    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    if raw[:2].lower() == "0x":
        try:
            return int(raw, 16)
        except ValueError:
            return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _apply_override(settings: Dict[str, Any], keys: Tuple[str, ...], value: Any) -> None:
    # intermediate sections are created or replaced; siblings of the leaf stay
    node = settings
    for part in keys[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[keys[-1]] = value
