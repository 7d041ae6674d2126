import logging
from typing import Optional, Callable

import numpy as np
import ray
from tqdm import tqdm

from .errors import GenerationError
from .noises import NoiseParams
from .volume import check_resolution, generate_slice

logger = logging.getLogger(__name__)


def init_ray_cluster(address: Optional[str] = None, num_cpus: Optional[int] = None) -> None:
    """
    Connect to the cluster at `address`, or start a local one limited to
    `num_cpus`. Failures are raised as GenerationError(stage="cluster").
    """
    try:
        if address:
            ray.init(address=address, ignore_reinit_error=True)
        else:
            ray.init(ignore_reinit_error=True, num_cpus=num_cpus)
        resources = ray.cluster_resources()
        logger.info(f"Ray cluster initialized successfully with resources: {resources}")
    except Exception as e:
        logger.error(f"Failed to initialize Ray cluster at address {address}. Error: {e}")
        raise GenerationError(f"could not start ray ({address or 'local'}): {e}", stage="cluster") from e


def shutdown_ray_cluster() -> None:
    """
    Shutdown the Ray cluster.
    """
    try:
        ray.shutdown()
        logger.info("Ray cluster has been shut down.")
    except Exception as e:
        logger.error(f"Error shutting down Ray cluster: {e}")


@ray.remote
def generate_slab(config, z_start: int, z_end: int):
    """
    Generate slices [z_start, z_end) on a worker. Each worker rebuilds the
    permutation table from the seed, so nothing mutable crosses processes.
    """
    params = NoiseParams.from_config(config)
    slab = np.stack([generate_slice(z, config, params) for z in range(z_start, z_end)])
    return z_start, slab


def generate_volume_distributed(
    config,
    on_progress: Optional[Callable[[float], None]] = None,
    slab_size: Optional[int] = None,
) -> np.ndarray:
    """
    Same output as volume.generate_volume, with z-slabs computed as ray tasks.

    Progress is reported once per finished slab as the percentage of slices
    done so far; slabs may finish out of order but the percentage only grows.
    Ray must already be initialized (see init_ray_cluster).
    """
    n = check_resolution(config.resolution)
    # fail fast on bad parameters before scheduling anything
    NoiseParams.from_config(config)

    if slab_size is None:
        workers = max(1, int(ray.available_resources().get("CPU", 1)))
        slab_size = max(1, -(-n // (workers * 4)))
    slab_size = max(1, int(slab_size))

    pending = [
        generate_slab.remote(config, z, min(z + slab_size, n))
        for z in range(0, n, slab_size)
    ]
    logger.debug(f"Scheduled {len(pending)} slabs of up to {slab_size} slices for {n}^3 volume")

    volume = np.zeros((n, n, n), dtype=np.float32)
    done = 0
    pbar = tqdm(total=n, desc="Volume", unit="slice") if on_progress is None else None
    try:
        while pending:
            ready, pending = ray.wait(pending, num_returns=1)
            z_start, slab = ray.get(ready[0])
            volume[z_start:z_start + len(slab)] = slab
            done += len(slab)
            if pbar is not None:
                pbar.update(len(slab))
            else:
                on_progress(done / n * 100)
    finally:
        if pbar is not None:
            pbar.close()

    volume = volume.reshape(-1)
    volume.flags.writeable = False
    return volume
