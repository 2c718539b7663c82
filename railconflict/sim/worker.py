from __future__ import annotations
import asyncio
import itertools
import logging
from concurrent.futures import Executor, ProcessPoolExecutor
from typing import List, Optional

from railconflict.core.config import EngineConfig
from railconflict.core.detector import DetectionResult, detect
from railconflict.core.handles import Handle
from railconflict.core.models import Journey
from railconflict.core.network import Network
from railconflict.sim.snapshot import DetectionOut, SnapshotIn, load_snapshot, make_snapshot, result_from_model, result_to_model

logger = logging.getLogger(__name__)


def run_detection_job(payload: str) -> str:
    """Worker entry point: JSON snapshot in, JSON detection result out.

    Module level so it can be pickled into a process pool.
    """
    snap = SnapshotIn.model_validate_json(payload)
    network, journeys, path, cfg, skipped = load_snapshot(snap)
    result = detect(network, journeys, path, cfg)
    result.skipped = skipped + result.skipped
    return result_to_model(result, network).model_dump_json()


class DetectionWorker:
    """Runs detection off the caller's thread; only the latest request counts.

    Each submission takes a fresh token. A result that comes back after a
    newer submission is discarded whole, never merged.
    """

    def __init__(self, executor: Optional[Executor] = None, max_workers: int = 1) -> None:
        self._owns_executor = executor is None
        self._executor = executor or ProcessPoolExecutor(max_workers=max_workers)
        self._tokens = itertools.count(1)
        self._latest = 0

    @property
    def latest_token(self) -> int:
        return self._latest

    def is_current(self, token: int) -> bool:
        return token == self._latest

    def next_token(self) -> int:
        self._latest = next(self._tokens)
        return self._latest

    async def run(
        self,
        network: Network,
        journeys: List[Journey],
        reference_path: List[Handle],
        config: Optional[EngineConfig] = None,
    ) -> Optional[DetectionResult]:
        payload = make_snapshot(network, journeys, reference_path, config).model_dump_json()
        return await self.run_payload(payload)

    async def run_payload(self, payload: str) -> Optional[DetectionResult]:
        token = self.next_token()
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(self._executor, run_detection_job, payload)
        if not self.is_current(token):
            logger.info(f"Discarding detection result {token}, superseded by {self._latest}")
            return None
        return result_from_model(DetectionOut.model_validate_json(raw))

    def shutdown(self) -> None:
        # injected executors belong to the caller
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "DetectionWorker":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
