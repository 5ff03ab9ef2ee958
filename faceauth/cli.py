"""Command-line interface for faceauth on-device face verification."""
from __future__ import annotations

import json
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Optional

import numpy as np
import typer

from faceauth.config import (
    DetectorBackend,
    DetectorMode,
    Paths,
    get_data_dir_from_env,
    load_auth_config_from_env,
    resolve_model_paths,
)
from faceauth.core.exceptions import FaceAuthError
from faceauth.core.logger import setup_logging
from faceauth.pipelines.enroll import AuthSession, start_session
from faceauth.pipelines.verify import verify_folder

app = typer.Typer(help="On-device face verification against one enrolled reference face.")


def _start(
    data_dir: Optional[Path],
    reference: Optional[Path],
    threshold: Optional[float],
    detector: Optional[DetectorBackend],
    detector_mode: Optional[DetectorMode],
    use_edgetpu: Optional[bool],
    enroll_timeout: float,
) -> AuthSession:
    if data_dir is None:
        data_dir = get_data_dir_from_env()
    paths = Paths(data_dir=data_dir)

    try:
        config = load_auth_config_from_env(
            threshold=threshold,
            detector_backend=detector,
            detector_mode=detector_mode,
            use_edgetpu=use_edgetpu,
        )
        session = start_session(paths=paths, config=config, reference_image=reference)
        session.enrollment.result(timeout=enroll_timeout)
    except (FaceAuthError, FileNotFoundError, ValueError, FutureTimeoutError) as e:
        typer.echo(f"❌ Could not enroll reference face: {e}", err=True)
        raise typer.Exit(code=1)
    return session


@app.command()
def watch(
    data_dir: Optional[Path] = None,
    reference: Optional[Path] = None,
    threshold: Optional[float] = None,
    detector: Optional[DetectorBackend] = None,
    detector_mode: Optional[DetectorMode] = None,
    use_edgetpu: Optional[bool] = None,
    camera_index: int = 0,
    width: int = 640,
    height: int = 480,
    rotation: int = 0,
    preview: bool = False,
    say: bool = False,
    max_frames: Optional[int] = None,
    enroll_timeout: float = 60.0,
    log_level: str = "INFO",
) -> None:
    """Verify faces from a live camera: detect -> crop -> embed -> compare."""
    from faceauth.pipelines.live_verify import LiveVerificationPipeline

    setup_logging(log_level=log_level)
    session = _start(
        data_dir, reference, threshold, detector, detector_mode, use_edgetpu, enroll_timeout
    )

    pipeline = LiveVerificationPipeline(
        session,
        camera_index=camera_index,
        width=width,
        height=height,
        rotation=rotation,
        preview=preview,
        say=say,
    )
    typer.echo(f"📷 Watching camera {camera_index} (threshold {session.config.threshold})")
    try:
        stats = pipeline.run(max_frames=max_frames)
    except KeyboardInterrupt:
        typer.echo("Stopped")
        return
    except RuntimeError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(stats, indent=2))


@app.command()
def verify(
    input: Path,
    data_dir: Optional[Path] = None,
    reference: Optional[Path] = None,
    threshold: Optional[float] = None,
    detector: Optional[DetectorBackend] = None,
    detector_mode: Optional[DetectorMode] = None,
    use_edgetpu: Optional[bool] = None,
    enroll_timeout: float = 60.0,
    output_json: Optional[Path] = None,
    log_level: str = "INFO",
) -> None:
    """Verify still images against the reference face and print JSON results."""
    setup_logging(log_level=log_level)
    session = _start(
        data_dir, reference, threshold, detector, detector_mode, use_edgetpu, enroll_timeout
    )

    results = verify_folder(session=session, input_path=input)

    if output_json:
        output_json.parent.mkdir(parents=True, exist_ok=True)
        output_json.write_text(json.dumps(results, indent=2), encoding="utf-8")
        typer.echo(f"Wrote results to: {output_json}")

    typer.echo(json.dumps(results, indent=2))


@app.command()
def embed(
    data_dir: Optional[Path] = None,
    reference: Optional[Path] = None,
    detector: Optional[DetectorBackend] = None,
    use_edgetpu: Optional[bool] = None,
    enroll_timeout: float = 60.0,
    output_npy: Optional[Path] = None,
    log_level: str = "INFO",
) -> None:
    """Compute the reference embedding and print a summary."""
    setup_logging(log_level=log_level)
    session = _start(data_dir, reference, None, detector, None, use_edgetpu, enroll_timeout)
    embedding = session.reference.get()

    if output_npy:
        output_npy.parent.mkdir(parents=True, exist_ok=True)
        np.save(output_npy, embedding)
        typer.echo(f"Wrote embedding to: {output_npy}")

    typer.echo(
        json.dumps(
            {
                "dimensions": int(embedding.size),
                "norm": float(np.linalg.norm(embedding)),
            },
            indent=2,
        )
    )


@app.command()
def check(
    data_dir: Optional[Path] = None,
    use_edgetpu: bool = False,
) -> None:
    """Report model files, the reference image and Edge TPU availability."""
    from faceauth.core.tflite import verify_edgetpu_availability

    if data_dir is None:
        data_dir = get_data_dir_from_env()
    paths = Paths(data_dir=data_dir)
    model_paths = resolve_model_paths(paths)

    status = {
        "data_dir": str(data_dir),
        "reference_image": paths.reference_image.exists(),
        "embedder": model_paths.embedder(use_edgetpu).exists(),
        "detector_ssd": model_paths.detector(use_edgetpu).exists(),
    }
    if use_edgetpu:
        available, warning = verify_edgetpu_availability()
        status["edgetpu"] = available
        if warning:
            typer.echo(f"⚠️  {warning}", err=True)

    typer.echo(json.dumps(status, indent=2))
    if not (status["reference_image"] and status["embedder"]):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
