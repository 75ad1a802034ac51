"""Record sources that supply training populations."""

from __future__ import annotations

from pathlib import Path
import re
from typing import Any, Dict, Iterable, List

import duckdb
import numpy as np

from spectro_qc.engine.plugin_api import FieldKey, FieldKind, Spectrum
from spectro_qc.engine.validator import MATCH_ALL

REQUIRED_TABLE_COLUMNS: Dict[str, List[str]] = {
    "spectra": ["id", "sample_id", "sample_type"],
    "amplitudes": ["spectrum_id", "position", "wave_number", "amplitude"],
    "sample_fields": ["spectrum_id", "name", "kind", "value"],
}

SCHEMA_STATEMENTS = (
    "CREATE TABLE IF NOT EXISTS spectra (id BIGINT PRIMARY KEY, sample_id VARCHAR, sample_type VARCHAR)",
    "CREATE TABLE IF NOT EXISTS amplitudes ("
    "spectrum_id BIGINT, position INTEGER, wave_number DOUBLE, amplitude DOUBLE)",
    "CREATE TABLE IF NOT EXISTS sample_fields (spectrum_id BIGINT, name VARCHAR, kind VARCHAR, value VARCHAR)",
)


class InMemoryRecordSource:
    """Population held in a list; ids are list positions."""

    def __init__(self, spectra: Iterable[Spectrum] = ()) -> None:
        self._spectra: List[Spectrum] = list(spectra)
        self.loads = 0

    def add(self, spectrum: Spectrum) -> int:
        self._spectra.append(spectrum)
        return len(self._spectra) - 1

    def __len__(self) -> int:
        return len(self._spectra)

    def load(self, record_id: int) -> Spectrum:
        self.loads += 1
        return self._spectra[record_id]

    def ids_matching(self, population_filter: str = ".*") -> List[int]:
        _validate_pattern(population_filter)
        return [
            idx
            for idx, spec in enumerate(self._spectra)
            if population_matches(population_filter, spec.sample_type)
        ]


def population_matches(pattern: str, sample_type: str | None) -> bool:
    if pattern in MATCH_ALL:
        return True
    if sample_type is None:
        return False
    return re.fullmatch(pattern, sample_type) is not None


def _validate_pattern(pattern: str) -> None:
    try:
        re.compile(pattern or ".*")
    except re.error as exc:
        raise ValueError(f"Invalid population filter '{pattern}': {exc}") from exc


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return repr(value)
    return str(value)


def _decode_value(kind: FieldKind, text: str | None) -> Any:
    if text is None:
        return None
    if kind is FieldKind.NUMERIC:
        return float(text)
    if kind is FieldKind.BOOLEAN:
        return text.strip().lower() == "true"
    return text


class DuckDBRecordSource:
    """Spectra stored in a DuckDB database file (or in memory)."""

    def __init__(self, path: str | Path = ":memory:", *, read_only: bool = False) -> None:
        self.path = str(path)
        self.con = duckdb.connect(self.path, read_only=read_only)
        if not read_only:
            self.create_schema()

    def __enter__(self) -> "DuckDBRecordSource":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        self.con.close()

    def create_schema(self) -> None:
        for statement in SCHEMA_STATEMENTS:
            self.con.execute(statement)

    def validate_schema(self) -> List[str]:
        rows = self.con.execute("SHOW TABLES").fetchall()
        tables = {str(row[0]) for row in rows}
        errors: List[str] = []
        for table, required in REQUIRED_TABLE_COLUMNS.items():
            if table not in tables:
                errors.append(f"Missing table '{table}'.")
                continue
            info = self.con.execute(f"PRAGMA table_info('{table}')").fetchall()
            existing = {str(row[1]) for row in info}
            missing = [col for col in required if col not in existing]
            if missing:
                errors.append(f"Missing columns in '{table}': {', '.join(sorted(missing))}.")
        return errors

    def insert_spectrum(self, spectrum: Spectrum) -> int:
        (next_id,) = self.con.execute("SELECT COALESCE(MAX(id), 0) + 1 FROM spectra").fetchone()
        next_id = int(next_id)
        sample_id = None if spectrum.id is None else str(spectrum.id)
        self.con.execute(
            "INSERT INTO spectra VALUES (?, ?, ?)",
            [next_id, sample_id, spectrum.sample_type],
        )
        wn = np.asarray(spectrum.wave_number, dtype=float)
        amp = np.asarray(spectrum.amplitude, dtype=float)
        points = [[next_id, pos, float(x), float(y)] for pos, (x, y) in enumerate(zip(wn, amp))]
        if points:
            self.con.executemany("INSERT INTO amplitudes VALUES (?, ?, ?, ?)", points)
        rows = [
            [next_id, key.name, key.kind.value, _encode_value(value)]
            for key, value in spectrum.fields.items()
            if value is not None
        ]
        if rows:
            self.con.executemany("INSERT INTO sample_fields VALUES (?, ?, ?, ?)", rows)
        return next_id

    def insert_many(self, spectra: Iterable[Spectrum]) -> List[int]:
        return [self.insert_spectrum(spec) for spec in spectra]

    def load(self, record_id: int) -> Spectrum:
        header = self.con.execute(
            "SELECT sample_id FROM spectra WHERE id = ?", [record_id]
        ).fetchone()
        if header is None:
            raise KeyError(f"No spectrum with id {record_id}")
        points = self.con.execute(
            "SELECT wave_number, amplitude FROM amplitudes WHERE spectrum_id = ? ORDER BY position",
            [record_id],
        ).fetchall()
        field_rows = self.con.execute(
            "SELECT name, kind, value FROM sample_fields WHERE spectrum_id = ? ORDER BY name",
            [record_id],
        ).fetchall()
        fields: Dict[FieldKey, Any] = {}
        for name, kind, value in field_rows:
            key = FieldKey(str(name), FieldKind(kind))
            fields[key] = _decode_value(key.kind, value)
        return Spectrum(
            wave_number=np.array([p[0] for p in points], dtype=float),
            amplitude=np.array([p[1] for p in points], dtype=float),
            fields=fields,
            id=header[0] if header[0] is not None else record_id,
        )

    def ids_matching(self, population_filter: str = ".*") -> List[int]:
        _validate_pattern(population_filter)
        rows = self.con.execute("SELECT id, sample_type FROM spectra ORDER BY id").fetchall()
        return [int(row[0]) for row in rows if population_matches(population_filter, row[1])]
