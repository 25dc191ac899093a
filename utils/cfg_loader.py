import yaml, pathlib, logging
from dataclasses import asdict, fields
from typing import Optional, Union

from algorithm.backend.estimator import VARIANTS, EstimatorConfig

ROOT = pathlib.Path(__file__).resolve().parents[1]        # repo root
CONFIG_DIR = ROOT / "configs"

logger = logging.getLogger("CfgLoader")

# ----------------------------------------------------------------------
def _read(path):
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data

def _flatten(dic: dict, out: dict, prefix=""):
    """
    Push nested sections down to one level (ut.alpha -> alpha).
    setdefault: whatever was flattened first wins.
    """
    for k, v in dic.items():
        key = f"{prefix}{k}" if prefix else k
        if isinstance(v, dict):
            _flatten(v, out, prefix="")
        else:
            out.setdefault(key, v)

# ----------------------------------------------------------------------
def load_common() -> dict:
    """Tuning shared by both variants."""
    flat = {}
    _flatten(_read(CONFIG_DIR / "ukf_common.yaml"), flat)
    return flat

def load_flat(variant: str, path: Optional[Union[str, pathlib.Path]] = None) -> dict:
    """
    <variant file or explicit path> + ukf_common.yaml -> flat dict.
    Keys from the variant file override the common ones.
    """
    if variant not in VARIANTS:
        raise ValueError(f"Unknown variant: {variant}, must be one of {sorted(VARIANTS)}")
    src = pathlib.Path(path) if path is not None else CONFIG_DIR / f"ukf_{variant}.yaml"

    flat = {}
    _flatten(_read(src), flat)
    for k, v in load_common().items():
        flat.setdefault(k, v)
    return flat

def load_estimator_config(variant: str,
                          path: Optional[Union[str, pathlib.Path]] = None) -> EstimatorConfig:
    flat = load_flat(variant, path)
    known = {f.name for f in fields(EstimatorConfig)}

    unknown = sorted(k for k in flat if k not in known)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))

    cfg = EstimatorConfig(**{k: v for k, v in flat.items() if k in known})
    logger.debug("Loaded %s config: alpha=%g beta=%g kappa=%g interval=%s",
                 variant, cfg.alpha, cfg.beta, cfg.kappa, cfg.expected_interval)
    return cfg

def save_estimator_config(cfg: EstimatorConfig, path: Union[str, pathlib.Path]) -> None:
    data = asdict(cfg)
    for key in ("initial_covariance", "process_noise"):
        if data[key] is not None:
            data[key] = [float(v) for v in data[key]]
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False)
