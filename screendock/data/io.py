"""I/O helpers for screendock: YAML config and a minimal PDBQT reader/writer."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np
import yaml

from screendock.data.structs import Ligand, Pose, Receptor
from screendock.errors import FileAccessError, ParseError

_SKIPPED_ON_WRITE = ("MODEL", "ENDMDL", "REMARK VINA")


def load_config(path: str) -> Dict[str, Any]:
    """Load a YAML configuration file."""

    try:
        with open(path, "r", encoding="utf-8") as handle:
            return yaml.safe_load(handle) or {}
    except OSError as exc:
        raise FileAccessError(path, "reading") from exc


def _read_lines(path: str) -> List[str]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read().splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise FileAccessError(path, "reading") from exc


def _atom_type(line: str) -> str:
    tail = line[77:].split()
    if tail:
        return tail[0]
    # fall back to the element guessed from the atom name
    name = line[12:16].strip()
    return "".join(ch for ch in name if ch.isalpha())[:1] or "C"


def parse_pdbqt_atoms(path: str) -> Tuple[np.ndarray, List[str], List[str], int]:
    """Read coordinates, AutoDock types, template lines and TORSDOF from a PDBQT file.

    Only ATOM/HETATM records carry data; structural records (ROOT, BRANCH, ...)
    are kept verbatim in the template so the file can be written back.
    """

    coords: list[list[float]] = []
    types: list[str] = []
    template: list[str] = []
    torsdof = 0
    for line_no, line in enumerate(_read_lines(path), start=1):
        if line.startswith(_SKIPPED_ON_WRITE):
            continue
        if line.startswith("TORSDOF"):
            try:
                torsdof = int(line.split()[1])
            except (IndexError, ValueError) as exc:
                raise ParseError(path, line_no, "TORSDOF is not an integer") from exc
        if line.startswith("ATOM") or line.startswith("HETATM"):
            try:
                x = float(line[30:38])
                y = float(line[38:46])
                z = float(line[46:54])
            except ValueError as exc:
                raise ParseError(path, line_no, "atom coordinates are not numbers") from exc
            coords.append([x, y, z])
            types.append(_atom_type(line))
        template.append(line)

    if not coords:
        raise ParseError(path, 1, "no ATOM or HETATM records")
    return np.array(coords, dtype=float), types, template, torsdof


def load_receptor(path: str) -> Receptor:
    """Load the rigid receptor from a PDBQT file."""

    coords, types, _, _ = parse_pdbqt_atoms(path)
    return Receptor(coords=coords, types=types, name=os.path.basename(path))


def load_ligand(path: str) -> Ligand:
    """Load a ligand and re-express its atoms around the heavy-atom centroid."""

    coords, types, template, torsdof = parse_pdbqt_atoms(path)
    ligand = Ligand(
        coords=coords,
        types=types,
        template_lines=template,
        torsdof=torsdof,
        name=os.path.basename(path),
    )
    mask = ligand.heavy_mask
    origin = coords[mask].mean(axis=0) if mask.any() else coords.mean(axis=0)
    ligand.coords = coords - origin.reshape(1, 3)
    ligand.origin = origin
    return ligand


def default_output(input_name: str) -> str:
    """Single-ligand output name: strip ``.pdbqt`` and append ``_out.pdbqt``."""

    if input_name.endswith(".pdbqt"):
        input_name = input_name[: -len(".pdbqt")]
    return input_name + "_out.pdbqt"


def vina_remark(energy: float, lb: float, ub: float) -> str:
    return f"REMARK VINA RESULT: {energy:9.1f}  {lb:9.3f}  {ub:9.3f}"


def _render_model(ligand: Ligand, coords: np.ndarray) -> List[str]:
    lines: list[str] = []
    atom_idx = 0
    for line in ligand.template_lines:
        if line.startswith("ATOM") or line.startswith("HETATM"):
            x, y, z = coords[atom_idx]
            padded = line.ljust(54)
            line = f"{padded[:30]}{x:8.3f}{y:8.3f}{z:8.3f}{padded[54:]}".rstrip()
            atom_idx += 1
        lines.append(line)
    return lines


def write_poses(
    path: str,
    ligand: Ligand,
    poses: Sequence[Pose],
    remarks: Sequence[str],
) -> None:
    """Write one MODEL block per pose; ``remarks[i]`` heads model ``i + 1``."""

    if len(remarks) < len(poses):
        raise ValueError("every pose needs a remark line")
    out: list[str] = []
    for idx, pose in enumerate(poses):
        out.append(f"MODEL {idx + 1}")
        out.append(remarks[idx])
        out.extend(_render_model(ligand, ligand.place(pose.params)))
        out.append("ENDMDL")
    _write_text(path, out)


def write_structure(path: str, ligand: Ligand, params: np.ndarray) -> None:
    """Write a single conformation without MODEL wrapping."""

    _write_text(path, _render_model(ligand, ligand.place(params)))


def _write_text(path: str, lines: Sequence[str]) -> None:
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
    except OSError as exc:
        raise FileAccessError(path, "writing") from exc
