"""Model Loader Handler — picks the detector backend for a model directory.

Darknet cfg + weights are preferred; an Ultralytics checkpoint is the
fallback. Only file discovery happens here, never the network load.
"""
from pathlib import Path
from typing import Union

from clearview.Handlers.Model_Detection_Handler import DarknetDetector, UltralyticsDetector
from clearview.utils.constants import (
    DEFAULT_CFG_FILE, DEFAULT_INPUT_SIZE, DEFAULT_WEIGHTS_FILE,
)
from clearview.utils.failures import ModelLoadError
from clearview.utils.logger import Logger


class ModelLoader:
    """Picks a detector backend for a model directory.

    Darknet ``cfg`` + ``weights`` files win when present; otherwise the
    first ``*.pt`` file is loaded through Ultralytics. The network itself
    is not loaded here: the detect stage calls ``load()`` on its own thread.
    """

    def __init__(self, input_size: int = DEFAULT_INPUT_SIZE):
        self.logger = Logger("ModelLoader")
        self.input_size = input_size

    def resolve(
        self,
        model_dir: Union[str, Path],
        cfg_file: str = DEFAULT_CFG_FILE,
        weights_file: str = DEFAULT_WEIGHTS_FILE,
    ) -> Union[DarknetDetector, UltralyticsDetector]:
        """
        Args:
            model_dir: Directory holding the model files.
            cfg_file: Darknet network definition file name.
            weights_file: Darknet weights file name.

        Returns:
            An unloaded detector.

        Raises:
            ModelLoadError: if no supported model is found.
        """
        model_dir = Path(model_dir)
        if not model_dir.is_dir():
            raise ModelLoadError(f"Model directory not found: {model_dir}", critical=True)

        cfg_path = model_dir / cfg_file
        weights_path = model_dir / weights_file
        if cfg_path.exists() and weights_path.exists():
            self.logger.info(f"Using Darknet model {cfg_path.name} / {weights_path.name}")
            return DarknetDetector(cfg_path, weights_path, self.input_size)

        checkpoints = sorted(model_dir.glob("*.pt"))
        if checkpoints:
            self.logger.info(f"Using Ultralytics model {checkpoints[0].name}")
            return UltralyticsDetector(checkpoints[0], self.input_size)

        raise ModelLoadError(
            f"No model in {model_dir}: expected {cfg_file} + {weights_file} or a *.pt file",
            critical=True,
        )
