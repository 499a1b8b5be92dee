"""Storage subsystem: SQLite datastore, identity store, recorder, rollups."""

from .db import Db, StorageError
from .identity import IdentityStore
from .recorder import ResultRecorder
from .rollup import InvalidRangeError, RollupAggregator, Series, bucket_width, rollup, to_series
