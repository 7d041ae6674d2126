import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import Progress, BarColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from .atlas import compute_atlas_layout
from .config import GenerationConfig, Settings, load_config, setup_logging, validate_config
from .errors import NoiseAtlasError
from .generate import run_generation
from .png import crc32, iter_chunks
from .storage import ALL_FORMATS, export_all
from .verify import verify_tileability
from .volume import generate_volume, save_slice_preview

app = typer.Typer(help="Tileable 3D noise volumes packed into 16-bit PNG atlases.")
console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {"pass": "bold green", "fail": "bold red", "approximate": "bold yellow"}


def _build_config(
    config_file: Optional[str],
    resolution: Optional[int],
    seed: Optional[int],
    frequency: Optional[int],
    octaves: Optional[int],
    lacunarity: Optional[float],
    gain: Optional[float],
    warp_strength: Optional[float],
    gamma: Optional[float],
    brightness: Optional[float],
    contrast: Optional[float],
    threshold: Optional[float],
) -> GenerationConfig:
    base = load_config(config_file) if config_file else GenerationConfig()
    config = base.replace(
        resolution=resolution,
        seed=seed,
        frequency=frequency,
        octaves=octaves,
        lacunarity=lacunarity,
        gain=gain,
        warp_strength=warp_strength,
        gamma=gamma,
        brightness=brightness,
        contrast=contrast,
        threshold=threshold,
    )
    return validate_config(config)


def _status_text(verification) -> str:
    style = STATUS_STYLES[verification.status]
    label = verification.status.upper()
    if verification.warped:
        label += " (domain warp active)"
    return f"[{style}]{label}[/{style}] max boundary error {verification.max_error:.2e}"


def _fail(e: NoiseAtlasError):
    logger.debug("Failure details", exc_info=e)
    console.print(f"[bold red]Error ({e.stage}):[/bold red] {e.reason}")
    raise typer.Exit(code=1)


def _load_settings(verbose: bool) -> Settings:
    try:
        settings = Settings()
    except NoiseAtlasError as e:
        setup_logging(verbose)
        _fail(e)
    setup_logging(verbose, settings.get_setting("log_level"))
    return settings


# shared option declarations
CONFIG_OPT = typer.Option(None, "--config", "-c", help="JSON config file (camelCase or snake_case keys).")
RES_OPT = typer.Option(None, "--resolution", "-r", help="Volume side N (16-256).")
SEED_OPT = typer.Option(None, "--seed", "-s", help="32-bit seed.")
FREQ_OPT = typer.Option(None, "--frequency", help="Base frequency in cycles per unit cube (1-32).")
OCT_OPT = typer.Option(None, "--octaves", help="Number of fBm octaves (1-8).")
LAC_OPT = typer.Option(None, "--lacunarity", help="Frequency multiplier per octave.")
GAIN_OPT = typer.Option(None, "--gain", help="Amplitude multiplier per octave.")
WARP_OPT = typer.Option(None, "--warp-strength", help="Domain warp strength (0 disables; breaks exact tiling).")
GAMMA_OPT = typer.Option(None, "--gamma")
BRIGHT_OPT = typer.Option(None, "--brightness")
CONTRAST_OPT = typer.Option(None, "--contrast")
THRESH_OPT = typer.Option(None, "--threshold")
VERBOSE_OPT = typer.Option(False, "--verbose", "-v", help="Enable verbose output.")


@app.command()
def generate(
    config_file: Optional[str] = CONFIG_OPT,
    resolution: Optional[int] = RES_OPT,
    seed: Optional[int] = SEED_OPT,
    frequency: Optional[int] = FREQ_OPT,
    octaves: Optional[int] = OCT_OPT,
    lacunarity: Optional[float] = LAC_OPT,
    gain: Optional[float] = GAIN_OPT,
    warp_strength: Optional[float] = WARP_OPT,
    gamma: Optional[float] = GAMMA_OPT,
    brightness: Optional[float] = BRIGHT_OPT,
    contrast: Optional[float] = CONTRAST_OPT,
    threshold: Optional[float] = THRESH_OPT,
    output_dir: Optional[str] = typer.Option(None, "--output-dir", "-o", help="Defaults to NOISE_ATLAS_OUTPUT_DIR or ./output."),
    formats: List[str] = typer.Option(ALL_FORMATS, "--format", "-f", help="png, raw and/or json (repeatable)."),
    distributed: bool = typer.Option(False, "--distributed", help="Generate z-slabs as ray tasks."),
    verbose: bool = VERBOSE_OPT,
):
    """
    Generate a tileable volume and write the PNG atlas, RAW volume and JSON metadata.
    """
    settings = _load_settings(verbose)

    try:
        config = _build_config(config_file, resolution, seed, frequency, octaves, lacunarity,
                               gain, warp_strength, gamma, brightness, contrast, threshold)
    except NoiseAtlasError as e:
        _fail(e)

    logger.debug(f"Generating with {config}")
    output_dir = output_dir or settings.get_setting("output_dir")

    if distributed:
        from .cluster import init_ray_cluster, shutdown_ray_cluster
        try:
            init_ray_cluster(address=settings.get_setting("ray_address"))
        except NoiseAtlasError as e:
            _fail(e)

    try:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("[green]Generating volume...", total=100)
            result = run_generation(
                config,
                on_progress=lambda percent: progress.update(task, completed=percent),
                distributed=distributed,
            )
        written = export_all(result, output_dir, formats, level=settings.get_setting("compression_level"))
    except NoiseAtlasError as e:
        _fail(e)
    finally:
        if distributed:
            shutdown_ray_cluster()

    layout = result.layout
    table = Table(title="Noise Atlas")
    table.add_column("Property", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")
    table.add_row("Volume", f"{config.resolution}x{config.resolution}x{config.resolution}")
    table.add_row("Atlas", f"{layout.atlas_width}x{layout.atlas_height}px")
    table.add_row("Tiles", f"{layout.tiles_x}x{layout.tiles_y}")
    table.add_row("Tileability", _status_text(result.verification))
    for fmt, path in written.items():
        table.add_row(fmt.upper(), str(path))
    console.print(table)


@app.command()
def verify(
    config_file: Optional[str] = CONFIG_OPT,
    resolution: Optional[int] = RES_OPT,
    seed: Optional[int] = SEED_OPT,
    frequency: Optional[int] = FREQ_OPT,
    octaves: Optional[int] = OCT_OPT,
    lacunarity: Optional[float] = LAC_OPT,
    gain: Optional[float] = GAIN_OPT,
    warp_strength: Optional[float] = WARP_OPT,
    verbose: bool = VERBOSE_OPT,
):
    """
    Check that the noise tiles seamlessly on all three axes.
    """
    _load_settings(verbose)
    try:
        config = _build_config(config_file, resolution, seed, frequency, octaves, lacunarity,
                               gain, warp_strength, None, None, None, None)
        result = verify_tileability(config)
    except NoiseAtlasError as e:
        _fail(e)

    console.print(f"Tileability: {_status_text(result)}")
    if result.status == "fail":
        raise typer.Exit(code=1)


@app.command()
def layout(resolution: int = typer.Argument(..., help="Volume side N.")):
    """
    Show the atlas tiling chosen for an N-slice volume.
    """
    try:
        atlas = compute_atlas_layout(resolution)
    except NoiseAtlasError as e:
        _fail(e)
    console.print(
        f"{resolution} slices -> {atlas.tiles_x}x{atlas.tiles_y} tiles, "
        f"{atlas.atlas_width}x{atlas.atlas_height}px atlas"
    )


@app.command()
def preview(
    z: int = typer.Option(0, "--z", help="Slice index to render."),
    output: str = typer.Option("slice.png", "--output", "-o", help="PNG or TIFF file."),
    config_file: Optional[str] = CONFIG_OPT,
    resolution: Optional[int] = RES_OPT,
    seed: Optional[int] = SEED_OPT,
    frequency: Optional[int] = FREQ_OPT,
    octaves: Optional[int] = OCT_OPT,
    lacunarity: Optional[float] = LAC_OPT,
    gain: Optional[float] = GAIN_OPT,
    warp_strength: Optional[float] = WARP_OPT,
    gamma: Optional[float] = GAMMA_OPT,
    brightness: Optional[float] = BRIGHT_OPT,
    contrast: Optional[float] = CONTRAST_OPT,
    threshold: Optional[float] = THRESH_OPT,
    verbose: bool = VERBOSE_OPT,
):
    """
    Save one z-slice of the volume as an 8-bit grayscale image.
    """
    _load_settings(verbose)
    try:
        config = _build_config(config_file, resolution, seed, frequency, octaves, lacunarity,
                               gain, warp_strength, gamma, brightness, contrast, threshold)
        if not 0 <= z < config.resolution:
            console.print(f"[bold red]Error:[/bold red] slice {z} out of range 0..{config.resolution - 1}")
            raise typer.Exit(code=1)
        volume = generate_volume(config)
    except NoiseAtlasError as e:
        _fail(e)

    save_slice_preview(volume, config.resolution, z, output)
    console.print(f"Saved slice {z} to {output}")


@app.command()
def inspect(path: Path = typer.Argument(..., exists=True, dir_okay=False, help="PNG file.")):
    """
    List the chunks of a PNG file and check their CRCs.
    """
    data = path.read_bytes()
    table = Table(title=str(path))
    table.add_column("Chunk", style="cyan")
    table.add_column("Length", justify="right")
    table.add_column("CRC", style="magenta")

    bad = 0
    try:
        for chunk_type, chunk_data, stored_crc in iter_chunks(data):
            ok = crc32(chunk_data, crc32(chunk_type)) == stored_crc
            bad += not ok
            table.add_row(chunk_type.decode("ascii", "replace"), str(len(chunk_data)),
                          f"{stored_crc:08x} {'ok' if ok else 'MISMATCH'}")
    except NoiseAtlasError as e:
        _fail(e)

    console.print(table)
    if bad:
        raise typer.Exit(code=1)


def main():
    app()


if __name__ == "__main__":
    main()
