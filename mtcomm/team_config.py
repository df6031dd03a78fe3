"""Helpers for running a master-worker team over MTCL-style collectives.

Rank 0 is called ``Master`` and rank ``i`` ``Worker<i>``. The rank and size
of the job are taken from the variables that MPI launchers export.
"""

from __future__ import annotations

import contextlib
import os
import re
from collections.abc import Iterator, Mapping
from typing import Optional

DEFAULT_PORT = 42000
DEFAULT_LABEL = "listen_label"
CONFIG_PROTOCOLS = ("MPI", "UCX", "MQTT")

_ENV_INT = re.compile(r"\s*[+-]?\d+")
_RANK_SIZE_VARS = (
    ("OMPI_COMM_WORLD_RANK", "OMPI_COMM_WORLD_SIZE"),
    ("PMI_RANK", "PMI_SIZE"),
    ("SLURM_PROCID", "SLURM_NTASKS"),
)


def _parse_int(text: Optional[str]) -> Optional[int]:
    if text is None or not _ENV_INT.fullmatch(text):
        return None
    return int(text)


def read_int_env(
    name: str, default: int = -1, environ: Optional[Mapping[str, str]] = None
) -> int:
    """Integer value of the variable ``name`` in 0..1000000, else ``default``."""
    env = os.environ if environ is None else environ
    value = _parse_int(env.get(name))
    if value is None or not 0 <= value <= 1_000_000:
        return default
    return value


def world_rank_size_from_env(
    environ: Optional[Mapping[str, str]] = None,
) -> tuple[int, int]:
    """Return (rank, size) from OpenMPI, MPICH/PMI or Slurm variables."""
    rank = size = -1
    for rank_var, size_var in _RANK_SIZE_VARS:
        if rank < 0:
            rank = read_int_env(rank_var, environ=environ)
        if size < 0:
            size = read_int_env(size_var, environ=environ)
    if rank < 0 or size <= 0:
        raise LookupError(
            "cannot detect the MPI rank and size from the environment; run under "
            "mpirun or set OMPI_COMM_WORLD_RANK/OMPI_COMM_WORLD_SIZE "
            "(or the PMI/SLURM equivalents)"
        )
    return rank, size


def parse_int_arg(text: Optional[str], default: int) -> int:
    """Positive integer argument up to 10**9, else ``default``."""
    value = _parse_int(text)
    if value is None or not 0 < value <= 1_000_000_000:
        return default
    return value


def app_name(rank: int) -> str:
    """Application name of the member with MPI ``rank``."""
    if rank < 0:
        raise ValueError("the rank cannot be negative")
    return "Master" if rank == 0 else f"Worker{rank}"


def team_string(nprocs: int) -> str:
    """Colon-separated list of the names of ``nprocs`` team members."""
    if nprocs < 1:
        raise ValueError("a team needs at least one member")
    return ":".join(app_name(rank) for rank in range(nprocs))


def listen_endpoint(protocol: str) -> Optional[str]:
    """Endpoint the master listens on; ``None`` where no listening is needed."""
    proto = protocol.upper()
    if proto in ("TCP", "UCX"):
        return f"{proto}:localhost:{DEFAULT_PORT}"
    if proto == "MQTT":
        return f"MQTT:{DEFAULT_LABEL}"
    if proto == "MPI":
        return None
    raise ValueError(f"unsupported protocol {protocol!r}")


def render_config(world_size: int, protocol: str) -> str:
    """Configuration text for a team of ``world_size`` over ``protocol``."""
    proto = protocol.upper()
    if proto not in CONFIG_PROTOCOLS:
        raise ValueError(
            f"unsupported protocol {protocol!r}; use one of {', '.join(CONFIG_PROTOCOLS)}"
        )
    if world_size < 1:
        raise ValueError("a team needs at least one member")
    if proto == "MPI":
        endpoint = "MPI:0"
    elif proto == "UCX":
        endpoint = f"UCX:localhost:{DEFAULT_PORT}"
    else:
        endpoint = f"MQTT:{DEFAULT_LABEL}"
    master = (
        "    {\n"
        '      "name" : "Master",\n'
        '      "host" : "0",\n'
        f'      "protocols" : ["{proto}"],\n'
        f'      "listen-endpoints" : ["{endpoint}"]\n'
        "    }"
    )
    workers = [
        "    {\n"
        f'      "name" : "Worker{rank}",\n'
        f'      "host" : "{rank}",\n'
        f'      "protocols" : ["{proto}"]\n'
        "    }"
        for rank in range(1, world_size)
    ]
    components = ",\n".join([master, *workers])
    return '{\n  "components" : [\n' + components + "\n  ]\n}\n"


@contextlib.contextmanager
def temp_config(
    world_size: int, rank: int, protocol: str, directory: str = "."
) -> Iterator[str]:
    """Write a temporary configuration file, yield its path, then remove it."""
    text = render_config(world_size, protocol)
    path = os.path.join(directory, f"tmp_masterworker_r{rank}_{os.getpid()}.json")
    with open(path, "w", encoding="utf-8") as out:
        out.write(text)
    try:
        yield path
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.remove(path)