from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any, Dict, List, Mapping

import pandas as pd

from spectro_qc.engine.plugin_api import FieldKey, FieldKind
from spectro_qc.engine.ranges import InterPercentileRange, IPRModel

FORMAT_VERSION = 1


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _serialize_range(ipr: InterPercentileRange) -> Dict[str, Any]:
    if isinstance(ipr.key, FieldKey):
        key: Any = {"name": ipr.key.name, "kind": ipr.key.kind.value}
    else:
        key = float(ipr.key)
    return {"key": key, "low": float(ipr.low), "high": float(ipr.high)}


def _deserialize_range(data: Mapping[str, Any]) -> InterPercentileRange:
    raw = data["key"]
    if isinstance(raw, Mapping):
        key: Any = FieldKey(str(raw["name"]), FieldKind(raw.get("kind", FieldKind.NUMERIC.value)))
    else:
        key = float(raw)
    return InterPercentileRange(key, float(data["low"]), float(data["high"]))


def model_to_dict(model: IPRModel) -> Dict[str, Any]:
    return {
        "format": FORMAT_VERSION,
        "sample_type": model.sample_type,
        "lower_percentile": model.lower_percentile,
        "upper_percentile": model.upper_percentile,
        "chunk_size": model.chunk_size,
        "chunk_count": model.chunk_count,
        "trained_at": model.trained_at,
        "amplitudes": [_serialize_range(ipr) for ipr in model.amplitude_ranges.values()],
        "fields": [_serialize_range(ipr) for ipr in model.field_ranges.values()],
    }


def model_from_dict(data: Mapping[str, Any]) -> IPRModel:
    version = data.get("format", FORMAT_VERSION)
    if version != FORMAT_VERSION:
        raise ValueError(f"Unsupported model format {version!r}")
    amplitudes = [_deserialize_range(item) for item in data.get("amplitudes") or []]
    fields = [_deserialize_range(item) for item in data.get("fields") or []]
    return IPRModel(
        amplitude_ranges={ipr.key: ipr for ipr in amplitudes},
        field_ranges={ipr.key: ipr for ipr in fields},
        sample_type=str(data.get("sample_type") or ""),
        lower_percentile=float(data.get("lower_percentile", 0.25)),
        upper_percentile=float(data.get("upper_percentile", 0.75)),
        chunk_size=int(data.get("chunk_size") or 0),
        chunk_count=int(data.get("chunk_count") or 0),
        trained_at=str(data.get("trained_at") or _now_iso()),
    )


def save_model(model: IPRModel, path: str | Path) -> Path:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(model_to_dict(model), handle, indent=2)
    return path


def load_model(path: str | Path) -> IPRModel:
    path = Path(path).expanduser()
    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"Model file {path} does not contain a model")
    return model_from_dict(payload)


def model_details_frame(model: IPRModel) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for ipr in model.amplitude_ranges.values():
        rows.append({"type": "wave_number", "key": str(ipr.key), "low": ipr.low,
                     "high": ipr.high, "range": ipr.clamped_width})
    for ipr in model.field_ranges.values():
        rows.append({"type": "field", "key": str(ipr.key), "low": ipr.low,
                     "high": ipr.high, "range": ipr.clamped_width})
    return pd.DataFrame(rows, columns=["type", "key", "low", "high", "range"])


def export_model_details(model: IPRModel, path: str | Path) -> Path:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    model_details_frame(model).to_csv(path, index=False)
    return path
