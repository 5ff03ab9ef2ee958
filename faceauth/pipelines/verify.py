"""Still-image verification pipeline: detect, embed and compare each image."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from faceauth.core.exceptions import FaceAuthError
from faceauth.core.image_io import iter_images, load_rgb
from faceauth.core.logger import get_logger
from faceauth.pipelines.enroll import AuthSession

logger = get_logger("verify")


def verify_image(
    session: AuthSession, image_path: Path, threshold: Optional[float] = None
) -> dict[str, Any]:
    """Verify the first face of one image against the session reference.

    Failures are reported in the ``error`` field instead of being raised so
    one bad image does not abort a batch.

    Returns:
        Dictionary with the face box, the decision (or None) and any error.
    """
    result: dict[str, Any] = {
        "image_path": str(image_path),
        "faces": 0,
        "bbox": None,
        "decision": None,
        "error": None,
    }
    try:
        image_rgb = load_rgb(image_path)
        with session.engine_lock:
            detections = session.detector.detect(image_rgb)
        result["faces"] = len(detections)
        if not detections:
            return result

        face = detections[0]
        result["bbox"] = face.bbox.as_dict()
        tensor = session.normalizer.normalize(image_rgb, face.bbox)
        with session.engine_lock:
            embedding = session.embedder.extract(tensor)
        decision = session.similarity.compare(
            session.reference.get(), embedding, threshold=threshold
        )
        result["decision"] = decision.as_dict()
    except FaceAuthError as e:
        logger.warning(f"{image_path}: {type(e).__name__}: {e}")
        result["error"] = f"{type(e).__name__}: {e}"

    return result


def verify_folder(
    *,
    session: AuthSession,
    input_path: Path,
    threshold: Optional[float] = None,
) -> dict[str, Any]:
    """Verify every image under ``input_path`` against the reference face.

    For each input image:
      1. Detect faces and keep the first (best) one
      2. Crop and normalize it to the embedder input size
      3. Extract a unit-length embedding
      4. Compare with the reference embedding by cosine distance

    Args:
        session: Session whose reference enrollment has completed.
        input_path: Folder of images or a single image file.
        threshold: Overrides the session threshold.

    Returns:
        Dictionary with per-image results and summary counts.
    """
    results = [
        verify_image(session, path, threshold=threshold)
        for path in iter_images(input_path)
    ]
    decided = [r["decision"] for r in results if r["decision"] is not None]

    return {
        "input": str(input_path),
        "threshold": threshold if threshold is not None else session.similarity.threshold,
        "images": len(results),
        "authorized": sum(1 for d in decided if d["authorized"]),
        "rejected": sum(1 for d in decided if not d["authorized"]),
        "undecided": len(results) - len(decided),
        "results": results,
    }
