"""
JAGS Engine
===========

Runs models through the JAGS command-line program.

Each chain is an independent `jags` process in its own working directory:

    chain1/
        model.txt       rendered model text
        data.R          bundle data in R dump format
        inits.R         initial values plus .RNG.name / .RNG.seed
        script.cmd      command script
        CODAindex.txt   written by JAGS
        CODAchain1.txt  written by JAGS

Chains run concurrently on a thread pool sized by MCMCConfig.workers; the
call returns only when every chain has finished, and any failed chain fails
the whole run.

R dump format:
    Arrays are written column-major (R's storage order) as
    structure(c(...), .Dim = c(...)); NaN is written as NA.
"""

import logging
import math
import shutil
import subprocess
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from nobo_abundance.analysis.convergence import compute_rhat
from nobo_abundance.config import MCMCConfig, Settings
from nobo_abundance.errors import SamplerInvocationError
from nobo_abundance.inference.engine import InitsFunction, SamplerResult
from nobo_abundance.models.bundle import ModelDataBundle


logger = logging.getLogger(__name__)

CODA_STEM = "CODA"


# =============================================================================
# R dump writing
# =============================================================================

def format_number(value: Union[int, float, np.number]) -> str:
    """One value in R syntax."""
    if isinstance(value, (bool, np.bool_)):
        return "1" if value else "0"
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    value = float(value)
    if math.isnan(value):
        return "NA"
    if math.isinf(value):
        raise ValueError("infinite values cannot be passed to JAGS")
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def format_value(value: object) -> str:
    """A scalar, string or array in R dump syntax."""
    if isinstance(value, str):
        return f'"{value}"'
    array = np.asarray(value)
    if array.ndim == 0:
        return format_number(array.item())
    flat = ", ".join(format_number(v) for v in array.ravel(order="F"))
    if array.ndim == 1:
        return f"c({flat})"
    dims = ", ".join(str(d) for d in array.shape)
    return f"structure(c({flat}), .Dim = c({dims}))"


def write_rdump(values: Mapping[str, object], path: Path) -> List[str]:
    """
    Write named values as an R dump file.

    Empty arrays cannot be expressed in R dump form and are skipped.

    Returns:
        Names that were written
    """
    written = []
    lines = []
    for name, value in values.items():
        if not isinstance(value, str) and np.size(value) == 0:
            logger.warning(f"Skipping empty array '{name}' in {path.name}")
            continue
        lines.append(f'"{name}" <-\n{format_value(value)}')
        written.append(name)
    path.write_text("\n".join(lines) + "\n")
    return written


def build_script(
    monitor: Sequence[str],
    settings: MCMCConfig,
    stem: str = CODA_STEM,
) -> str:
    """Command script for one chain."""
    lines = []
    if settings.dic:
        lines.append("load dic")
    lines += [
        'model in "model.txt"',
        'data in "data.R"',
        "compile, nchains(1)",
        'parameters in "inits.R"',
        "initialize",
    ]
    if settings.n_adapt:
        lines.append(f"adapt {settings.n_adapt}")
    lines.append(f"update {settings.n_burnin}")
    for name in monitor:
        lines.append(f"monitor {name}, thin({settings.n_thin})")
    if settings.dic:
        lines.append(f"monitor deviance, thin({settings.n_thin})")
    lines += [
        f"update {settings.n_iter - settings.n_burnin}",
        f"coda *, stem({stem})",
        "exit",
    ]
    return "\n".join(lines) + "\n"


# =============================================================================
# CODA reading
# =============================================================================

def read_coda(index_path: Path, chain_path: Path) -> Dict[str, np.ndarray]:
    """
    Read one chain of CODA output.

    Returns:
        Element name -> 1-D array of draws

    Raises:
        SamplerInvocationError: If the files are missing or malformed
    """
    if not index_path.exists() or not chain_path.exists():
        raise SamplerInvocationError(f"CODA output missing in {index_path.parent}")

    try:
        index = pd.read_csv(index_path, sep=r"\s+", header=None, names=["name", "start", "end"])
        chain = pd.read_csv(chain_path, sep=r"\s+", header=None, names=["iteration", "value"])
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise SamplerInvocationError(f"Malformed CODA output in {index_path.parent}: {e}") from e

    if index.empty or index.isna().any().any() or chain["value"].isna().any():
        raise SamplerInvocationError(f"Malformed CODA output in {index_path.parent}")

    values = chain["value"].to_numpy(dtype=float)
    draws = {}
    for name, start, end in index.itertuples(index=False):
        start, end = int(start), int(end)
        if start < 1 or end < start or end > values.size:
            raise SamplerInvocationError(
                f"CODA index for {name} points at lines {start}-{end} of {values.size}"
            )
        draws[str(name)] = values[start - 1:end]

    lengths = {v.size for v in draws.values()}
    if len(lengths) > 1:
        raise SamplerInvocationError(f"CODA parameters have different draw counts: {sorted(lengths)}")
    return draws


def stack_chains(chains: Sequence[Dict[str, np.ndarray]]) -> Dict[str, np.ndarray]:
    """
    Combine per-chain draws into (chains, draws) arrays.

    Raises:
        SamplerInvocationError: If chains disagree on parameters or length
    """
    names = list(chains[0])
    for c, chain in enumerate(chains[1:], start=2):
        if set(chain) != set(names):
            raise SamplerInvocationError(f"chain {c} monitored different parameters than chain 1")
    stacked = {}
    for name in names:
        lengths = {chain[name].size for chain in chains}
        if len(lengths) > 1:
            raise SamplerInvocationError(f"{name}: chains have different lengths {sorted(lengths)}")
        stacked[name] = np.vstack([chain[name] for chain in chains])
    return stacked


# =============================================================================
# Engine
# =============================================================================

class JagsEngine:
    """
    InferenceEngine backed by the `jags` executable.

    Attributes:
        executable: Path or name of the jags binary
        seed: Run seed; chain c uses RNG seed seed + c
        rng_name: JAGS RNG factory name
        workdir: Parent directory for chain directories; a temporary
            directory is used (and removed) when None

    Example:
        engine = JagsEngine(executable="jags", seed=123)
        result = engine.sample(bundle, text, inits, ["N_tot"], settings.mcmc)
    """

    def __init__(
        self,
        executable: str = "jags",
        seed: int = 123,
        rng_name: str = "base::Mersenne-Twister",
        workdir: Optional[Path] = None,
    ) -> None:
        self.executable = executable
        self.seed = seed
        self.rng_name = rng_name
        self.workdir = Path(workdir) if workdir is not None else None

        logger.info(f"JagsEngine initialized: executable={executable}, seed={seed}")

    @classmethod
    def from_settings(cls, settings: Settings, workdir: Optional[Path] = None) -> "JagsEngine":
        return cls(
            executable=settings.jags.executable,
            seed=settings.run.seed,
            rng_name=settings.jags.rng_name,
            workdir=workdir,
        )

    def sample(
        self,
        bundle: ModelDataBundle,
        model_text: str,
        inits: InitsFunction,
        monitor: Sequence[str],
        settings: MCMCConfig,
    ) -> SamplerResult:
        if shutil.which(self.executable) is None:
            raise SamplerInvocationError(f"JAGS executable not found: {self.executable}")

        workers = min(settings.workers, settings.n_chains)
        logger.info(
            f"Sampling '{bundle.model_name}': {settings.n_chains} chains on {workers} workers, "
            f"n_iter={settings.n_iter}, n_burnin={settings.n_burnin}, n_thin={settings.n_thin}"
        )

        if self.workdir is not None:
            self.workdir.mkdir(parents=True, exist_ok=True)
            return self._run(self.workdir, bundle, model_text, inits, monitor, settings, workers)
        with tempfile.TemporaryDirectory(prefix="nobo_jags_") as tmp:
            return self._run(Path(tmp), bundle, model_text, inits, monitor, settings, workers)

    def _run(
        self,
        root: Path,
        bundle: ModelDataBundle,
        model_text: str,
        inits: InitsFunction,
        monitor: Sequence[str],
        settings: MCMCConfig,
        workers: int,
    ) -> SamplerResult:
        data = bundle.to_engine_data()
        script = build_script(monitor, settings)

        chain_dirs = []
        for chain in range(1, settings.n_chains + 1):
            chain_dir = root / f"chain{chain}"
            chain_dir.mkdir(parents=True, exist_ok=True)
            (chain_dir / "model.txt").write_text(model_text)
            (chain_dir / "script.cmd").write_text(script)
            write_rdump(data, chain_dir / "data.R")
            write_rdump(self._chain_inits(inits, chain), chain_dir / "inits.R")
            chain_dirs.append(chain_dir)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            chains = list(pool.map(self._run_chain, range(1, settings.n_chains + 1), chain_dirs))

        draws = stack_chains(chains)
        deviance = draws.pop("deviance", None)
        if not draws:
            raise SamplerInvocationError("sampler returned no monitored parameters")

        result = SamplerResult(draws=draws, deviance=deviance, rhat=compute_rhat(draws))
        logger.info(
            f"Sampling finished: {result.n_chains} chains x {result.n_draws} draws, "
            f"{len(result.parameters)} monitored elements"
        )
        return result

    def _chain_inits(self, inits: InitsFunction, chain: int) -> Dict[str, object]:
        values = dict(inits(chain))
        values[".RNG.name"] = self.rng_name
        values[".RNG.seed"] = self.seed + chain
        return values

    def _run_chain(self, chain: int, chain_dir: Path) -> Dict[str, np.ndarray]:
        logger.info(f"Chain {chain}: starting jags in {chain_dir}")
        try:
            proc = subprocess.run(
                [self.executable, "script.cmd"],
                cwd=chain_dir,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise SamplerInvocationError(f"chain {chain}: could not start jags: {e}") from e

        output = proc.stdout + proc.stderr
        (chain_dir / "jags.log").write_text(output)
        if proc.returncode != 0 or _has_error(output):
            raise SamplerInvocationError(
                f"chain {chain}: jags failed (exit code {proc.returncode}): {_last_lines(output)}"
            )

        draws = read_coda(chain_dir / f"{CODA_STEM}index.txt", chain_dir / f"{CODA_STEM}chain1.txt")
        logger.info(f"Chain {chain}: finished, {len(draws)} monitored elements")
        return draws


def _has_error(output: str) -> bool:
    # jags reports compile and runtime errors on stdout and may still exit 0
    return any("error" in line.lower() for line in output.splitlines())


def _last_lines(output: str, n: int = 5) -> str:
    lines: Tuple[str, ...] = tuple(line for line in output.splitlines() if line.strip())
    return " | ".join(lines[-n:])
