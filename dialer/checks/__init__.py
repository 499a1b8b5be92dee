"""Check subsystem: check models, probes, check file registry, scheduler."""

from .models import (
    Check,
    CheckIdentity,
    CheckKind,
    Err,
    ErrorKind,
    Ok,
    Outcome,
    Record,
    RollupBucket,
    TrackedCheck,
)
from .probes import HttpProbe, PingProbe, Probe, default_probes
from .registry import CheckConfig, CheckRegistry, ConfigError, parse_duration
