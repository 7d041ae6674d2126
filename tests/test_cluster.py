import numpy as np
import pytest

ray = pytest.importorskip("ray")

from noise_atlas.cluster import generate_volume_distributed, init_ray_cluster, shutdown_ray_cluster
from noise_atlas.config import GenerationConfig
from noise_atlas.generate import run_generation
from noise_atlas.volume import generate_volume

CONFIG = GenerationConfig(resolution=16, seed=42, frequency=4, octaves=3)


@pytest.fixture(scope="module", autouse=True)
def ray_cluster():
    init_ray_cluster(num_cpus=2)
    yield
    shutdown_ray_cluster()


@pytest.mark.parametrize("slab_size", [1, 5, 16])
def test_distributed_matches_sequential(slab_size):
    progress = []
    distributed = generate_volume_distributed(CONFIG, on_progress=progress.append, slab_size=slab_size)

    assert np.array_equal(distributed, generate_volume(CONFIG)), "Slab order must not change any voxel."
    assert not distributed.flags.writeable
    assert progress == sorted(progress)
    assert progress[-1] == 100.0
    assert len(progress) == -(-16 // slab_size), "One report per finished slab."


def test_distributed_default_slab_size_with_progress_bar():
    volume = generate_volume_distributed(CONFIG.replace(warp_strength=0.2))
    assert np.array_equal(volume, generate_volume(CONFIG.replace(warp_strength=0.2)))


def test_run_generation_distributed():
    result = run_generation(CONFIG, distributed=True)
    assert result.verification.tileable
    assert result.atlas == run_generation(CONFIG).atlas
