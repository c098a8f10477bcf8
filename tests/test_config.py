from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from srdecode.demo import demo_settings
from srdecode.recorder.config import MemInfo, PressureUnit, load_settings, load_storage


def _write_settings(tmp_path: Path, **changes) -> Path:
    data = demo_settings()
    data.update(changes)
    path = tmp_path / "config.var"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_settings_reads_device_fields(tmp_path: Path) -> None:
    settings = load_settings(_write_settings(tmp_path))
    assert settings.pressure_unit is PressureUnit.Bar
    assert settings.fref == 16_000_000.0
    assert settings.p_coefficients.Fp0 == 32768.0
    assert len(settings.p_coefficients.A) == 16
    assert settings.t_coefficients.C[:2] == (float(np.float32(0.05)), float(np.float32(0.0001)))
    assert settings.write_config.t_write_divider == 2
    assert str(settings.calibration_date) == "2024-03-01"
    assert settings.p_work_range is not None and settings.p_work_range.absolute_maximum == 15.0
    assert settings.t_work_range is not None and settings.t_work_range.absolute_maximum is None
    assert not settings.monitoring.is_set()


def test_load_settings_overrides(tmp_path: Path) -> None:
    path = _write_settings(tmp_path)
    settings = load_settings(
        path,
        overrides=["P_enabled=false", "pressureMeassureUnits=PSI", "P_Coefficients.Fp0=32000.5"],
    )
    assert settings.p_enabled is False
    assert settings.pressure_unit is PressureUnit.PSI
    assert settings.p_coefficients.Fp0 == 32000.5
    # untouched siblings of an overridden nested key survive the merge
    assert settings.p_coefficients.Ft0 == 30000.0

    profile = settings.calibration_profile()
    assert profile.unit is PressureUnit.PSI
    assert profile.p_enabled is False
    assert profile.t_enabled is True


def test_coefficients_are_narrowed_to_f32(tmp_path: Path) -> None:
    data = demo_settings()
    data["P_Coefficients"]["A"][0] = 0.1
    path = tmp_path / "config.var"
    path.write_text(json.dumps(data), encoding="utf-8")
    settings = load_settings(path)
    assert settings.p_coefficients.A[0] == float(np.float32(0.1))


@pytest.mark.parametrize("value", ["INVALID_ZERO", 0, "Torr", True])
def test_invalid_pressure_unit_rejected(tmp_path: Path, value) -> None:
    path = _write_settings(tmp_path, pressureMeassureUnits=value)
    with pytest.raises(ValueError):
        load_settings(path)


def test_pressure_unit_parse_accepts_codes_and_alias() -> None:
    assert PressureUnit.parse(0x00AB0000) is PressureUnit.PSI
    assert PressureUnit.parse("mmH20") is PressureUnit.mmH2O
    assert PressureUnit.parse("Atm") is PressureUnit.Atm


def test_missing_coefficients_rejected(tmp_path: Path) -> None:
    data = demo_settings()
    del data["T_Coefficients"]
    path = tmp_path / "config.var"
    path.write_text(json.dumps(data), encoding="utf-8")
    with pytest.raises(ValueError, match="T_Coefficients"):
        load_settings(path)


def test_wrong_coefficient_count_rejected(tmp_path: Path) -> None:
    data = demo_settings()
    data["P_Coefficients"]["A"] = [0.0] * 15
    path = tmp_path / "config.var"
    path.write_text(json.dumps(data), encoding="utf-8")
    with pytest.raises(ValueError, match="16"):
        load_settings(path)


def test_malformed_json_rejected(tmp_path: Path) -> None:
    path = tmp_path / "config.var"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(path)


def test_bad_override_syntax_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="key=value"):
        load_settings(_write_settings(tmp_path), overrides=["P_enabled"])


def test_load_storage(tmp_path: Path) -> None:
    path = tmp_path / "storage.var"
    path.write_text(json.dumps({"FlashPageSize": 4096, "FlashPages": 512, "FlashUsedPages": 17}), encoding="utf-8")
    assert load_storage(path) == MemInfo(flash_page_size=4096, flash_pages=512, flash_used_pages=17)

    path.write_text(json.dumps({"FlashPages": 512}), encoding="utf-8")
    with pytest.raises(ValueError, match="FlashPageSize"):
        load_storage(path)


@pytest.mark.parametrize(
    "key,value",
    [
        ("calibration_date", "2024-03-01"),
        ("P_Coefficients", None),
        ("T_Coefficients", 30000.0),
        ("writeConfig", [1000, 1, 2]),
        ("monitoring", True),
        ("PWorkRange", 15.0),
    ],
)
def test_non_object_sections_rejected(tmp_path: Path, key: str, value) -> None:
    path = _write_settings(tmp_path, **{key: value})
    with pytest.raises(ValueError, match=f"'{key}' must be a JSON object"):
        load_settings(path)


@pytest.mark.parametrize(
    "override,field",
    [
        ("Fref=fast", "Fref"),
        ("P_Coefficients.Fp0=null", "P_Coefficients.Fp0"),
        ("writeConfig.BaseInterval_ms=0.5", "writeConfig.BaseInterval_ms"),
        ("calibration_date.Year=soon", "calibration_date.Year"),
        ("monitoring.Ovarheat=1", "monitoring.Ovarheat"),
    ],
)
def test_mistyped_fields_rejected(tmp_path: Path, override: str, field: str) -> None:
    with pytest.raises(ValueError, match=field.replace(".", r"\.")):
        load_settings(_write_settings(tmp_path), overrides=[override])


def test_override_values_are_json_literals(tmp_path: Path) -> None:
    settings = load_settings(
        _write_settings(tmp_path),
        overrides=[
            "pressureMeassureUnits=0x00A40000",
            "T_Coefficients.C=[0.5, 0, 0, 0, 0]",
            "calibration_date={\"Day\": 2, \"Month\": 4, \"Year\": 2025}",
            "writeConfig.TWriteDevider=4",
        ],
    )
    assert settings.pressure_unit is PressureUnit.Atm
    assert settings.t_coefficients.C == (0.5, 0.0, 0.0, 0.0, 0.0)
    assert str(settings.calibration_date) == "2025-04-02"
    assert settings.write_config.t_write_divider == 4
    assert settings.write_config.base_interval_ms == 1000


def test_override_replaces_non_object_section(tmp_path: Path) -> None:
    path = _write_settings(tmp_path, writeConfig=None)
    settings = load_settings(path, overrides=["writeConfig.PWriteDevider=3"])
    assert settings.write_config.p_write_divider == 3
