"""TensorFlow Lite model runner with optional Edge TPU support."""
from __future__ import annotations

import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import numpy as np

from faceauth.core.exceptions import ModelLoadError
from faceauth.core.logger import get_logger

logger = get_logger("tflite")

EDGETPU_DELEGATE = "libedgetpu.so.1.0"


@dataclass(frozen=True)
class TFLiteRunner:
    """TensorFlow Lite model runner with optional Edge TPU acceleration.

    Attributes:
        model_path: Path to the .tflite model file.
        use_edgetpu: Whether to use Edge TPU acceleration.
        delegate_path: Path to Edge TPU delegate library.
    """

    model_path: Path
    use_edgetpu: bool = False
    delegate_path: str = EDGETPU_DELEGATE

    def __post_init__(self) -> None:
        """Create the interpreter and allocate tensors.

        Raises:
            ModelLoadError: If the model file is missing or cannot be loaded.
        """
        if not Path(self.model_path).exists():
            raise ModelLoadError(f"Model not found: {self.model_path}")

        try:
            interpreter = self._create_interpreter()
            interpreter.allocate_tensors()
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to load {self.model_path}: {e}") from e

        object.__setattr__(self, "_interpreter", interpreter)
        object.__setattr__(self, "_input_details", interpreter.get_input_details()[0])
        object.__setattr__(self, "_output_details", interpreter.get_output_details()[0])

    def _create_interpreter(self) -> Any:
        """Create TFLite interpreter with or without Edge TPU delegate.

        Note:
            If Edge TPU is requested but not available, falls back to CPU
            and logs a warning. Edge TPU models still run on CPU, only slower.
        """
        try:
            from tflite_runtime.interpreter import Interpreter, load_delegate
        except ImportError as e:
            raise ModelLoadError(
                "tflite-runtime is not installed; install faceauth[tflite]"
            ) from e

        if self.use_edgetpu:
            try:
                delegate = load_delegate(self.delegate_path)
                return Interpreter(
                    model_path=str(self.model_path),
                    experimental_delegates=[delegate],
                )
            except Exception as e:
                error_msg = (
                    f"Edge TPU delegate not available ({type(e).__name__}: {e}), "
                    "falling back to CPU mode"
                )
                logger.warning(error_msg)
                warnings.warn(error_msg, RuntimeWarning, stacklevel=2)
                object.__setattr__(self, "use_edgetpu", False)
        return Interpreter(model_path=str(self.model_path))

    @property
    def interpreter(self) -> Any:
        """Underlying interpreter, for models with several output tensors."""
        return self._interpreter

    @property
    def input_shape(self) -> tuple[int, ...]:
        """Get the input tensor shape, e.g. ``(1, 160, 160, 3)``."""
        return tuple(int(d) for d in self._input_details["shape"])

    def invoke(self, input_float: np.ndarray) -> np.ndarray:
        """Run inference on input tensor, handling quantization automatically.

        Args:
            input_float: Input tensor as float array, batch axis included.

        Returns:
            Output tensor as float array (dequantized if needed).
        """
        tensor_index = self._input_details["index"]
        in_scale, in_zero = self._input_details.get("quantization", (0.0, 0))
        in_dtype = self._input_details["dtype"]

        if in_scale and in_scale > 0:
            info = np.iinfo(in_dtype)
            q = np.clip(np.round(input_float / in_scale + in_zero), info.min, info.max)
            self._interpreter.set_tensor(tensor_index, q.astype(in_dtype))
        else:
            self._interpreter.set_tensor(tensor_index, input_float.astype(in_dtype))

        self._interpreter.invoke()

        out = self._interpreter.get_tensor(self._output_details["index"]).copy()

        out_scale, out_zero = self._output_details.get("quantization", (0.0, 0))
        if out_scale and out_scale > 0:
            out = out_scale * (out.astype(np.float32) - out_zero)

        return out.astype(np.float32)


def verify_edgetpu_availability(
    delegate_path: str = EDGETPU_DELEGATE,
) -> tuple[bool, Optional[str]]:
    """Check whether the Edge TPU delegate library can be loaded.

    Returns:
        Tuple of (is_available, warning_message). The message is None when
        the delegate loaded.
    """
    try:
        from tflite_runtime.interpreter import load_delegate

        load_delegate(delegate_path)
        logger.info("Edge TPU library loaded successfully")
        return True, None
    except Exception as e:
        warning_msg = (
            f"Edge TPU library not available ({type(e).__name__}: {e}). "
            "Models will run on CPU. "
            "To fix: Install Edge TPU runtime: apt-get install libedgetpu1-std"
        )
        logger.warning(warning_msg)
        return False, warning_msg
