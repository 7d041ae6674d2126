"""
generate.py

Runs the generation pipeline (volume -> verification -> atlas -> metadata) and
carries it across a background-task boundary.

run_generation() is the synchronous core: config in, GenerationResult out.
GenerationSession runs it on a worker thread and hands back tagged messages
(Progress / Result / Verification / Error) through a queue.
"""

import queue
import logging
import itertools
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, Union

import numpy as np

from .atlas import AtlasLayout, generate_metadata, volume_to_atlas16, volume_to_raw16
from .errors import GenerationError, NoiseAtlasError
from .png import encode_png16
from .verify import VerificationResult, verify_tileability
from .volume import generate_volume

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class GenerationResult:
    volume: np.ndarray
    atlas: bytes
    layout: AtlasLayout
    metadata: Dict[str, Any]
    verification: VerificationResult
    resolution: int

    def raw16(self) -> bytes:
        return volume_to_raw16(self.volume, self.resolution)

    def png(self, compress=None, level: int = 9) -> bytes:
        return encode_png16(self.atlas, self.layout.atlas_width, self.layout.atlas_height,
                            compress=compress, level=level)


def _stage(name: str, func, *args, **kwargs):
    """Run one pipeline stage, tagging any failure with the stage name."""
    try:
        return func(*args, **kwargs)
    except NoiseAtlasError:
        raise
    except Exception as e:
        logger.error(f"Stage '{name}' failed: {e}")
        raise GenerationError(f"{type(e).__name__}: {e}", stage=name) from e


def run_generation(config, on_progress: Optional[Callable[[float], None]] = None,
                   distributed: bool = False) -> GenerationResult:
    """
    Generate the volume and everything derived from it.

    Parameters:
    -----------
    config      : GenerationConfig
        Pre-validated parameters.
    on_progress : callable or None
        Receives a non-decreasing percentage, at most once per finished slice.
    distributed : bool
        Compute z-slabs as ray tasks (ray must be initialized).

    Returns:
    --------
    GenerationResult
    """
    if distributed:
        from .cluster import generate_volume_distributed
        volume = _stage("volume", generate_volume_distributed, config, on_progress)
    else:
        volume = _stage("volume", generate_volume, config, on_progress)

    verification = _stage("verify", verify_tileability, config)
    atlas, layout = _stage("atlas", volume_to_atlas16, volume, config.resolution)
    metadata = _stage("metadata", generate_metadata, config, layout, verification)

    logger.info(
        f"Generated {config.resolution}^3 volume, atlas {layout.atlas_width}x{layout.atlas_height} "
        f"({layout.tiles_x}x{layout.tiles_y} tiles), tileability {verification.status} "
        f"(max error {verification.max_error:.2e})"
    )
    return GenerationResult(
        volume=volume,
        atlas=atlas,
        layout=layout,
        metadata=metadata,
        verification=verification,
        resolution=config.resolution,
    )


# ------------------------------------------------------------------------
# Task boundary messages
# ------------------------------------------------------------------------

@dataclass(frozen=True)
class Progress:
    task_id: int
    percent: float


@dataclass(frozen=True, eq=False)
class Result:
    task_id: int
    result: GenerationResult


@dataclass(frozen=True)
class Verification:
    task_id: int
    result: VerificationResult


@dataclass(frozen=True)
class Error:
    task_id: int
    stage: str
    reason: str


Message = Union[Progress, Result, Verification, Error]
FINAL_MESSAGES = (Result, Verification, Error)


class GenerationSession:
    """
    One background worker plus a message queue.

    Only the most recently submitted task is of interest: submitting again
    supersedes the previous task, whose messages are then dropped. There is no
    cancellation, a superseded task still runs to completion.
    """

    def __init__(self):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="noise-atlas")
        self._queue: "queue.Queue[Message]" = queue.Queue()
        self._ids = itertools.count(1)
        self.current_task: Optional[int] = None
        self.last_result: Optional[GenerationResult] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self._executor.shutdown(wait=True)

    def submit(self, config) -> int:
        """Start generating `config` in the background; returns the task id."""
        task_id = next(self._ids)
        self.current_task = task_id
        self.last_result = None
        logger.debug(f"Submitting generation task {task_id}")
        self._executor.submit(self._generate, task_id, config)
        return task_id

    def submit_verify(self, config) -> int:
        """Run only the tileability check in the background."""
        task_id = next(self._ids)
        self.current_task = task_id
        logger.debug(f"Submitting verification task {task_id}")
        self._executor.submit(self._verify, task_id, config)
        return task_id

    def _generate(self, task_id: int, config):
        def report(percent):
            self._queue.put(Progress(task_id, percent))

        try:
            result = run_generation(config, on_progress=report)
        except NoiseAtlasError as e:
            self._queue.put(Error(task_id, e.stage, e.reason))
        except Exception as e:
            logger.exception(f"Task {task_id} failed")
            self._queue.put(Error(task_id, "task", f"{type(e).__name__}: {e}"))
        else:
            self._queue.put(Result(task_id, result))

    def _verify(self, task_id: int, config):
        try:
            result = verify_tileability(config)
        except NoiseAtlasError as e:
            self._queue.put(Error(task_id, e.stage, e.reason))
        except Exception as e:
            logger.exception(f"Task {task_id} failed")
            self._queue.put(Error(task_id, "task", f"{type(e).__name__}: {e}"))
        else:
            self._queue.put(Verification(task_id, result))

    def messages(self, timeout: Optional[float] = None) -> Iterator[Message]:
        """
        Yield messages of the current task up to and including its final
        Result, Verification or Error. Messages of superseded tasks are dropped.
        Raises queue.Empty if nothing arrives within `timeout` seconds.
        """
        while True:
            message = self._queue.get(timeout=timeout)
            if message.task_id != self.current_task:
                logger.debug(f"Discarding stale {type(message).__name__} from task {message.task_id}")
                continue
            if isinstance(message, Result):
                self.last_result = message.result
            elif isinstance(message, Error):
                self.last_result = None
            yield message
            if isinstance(message, FINAL_MESSAGES):
                return

    def wait(self, timeout: Optional[float] = None) -> Message:
        """Drain the current task's messages and return the final one."""
        final = None
        for message in self.messages(timeout=timeout):
            final = message
        return final
