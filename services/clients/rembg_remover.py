"""
Local background removal using rembg.

The segmentation model is downloaded on first use into ``models_dir`` and the
session is kept for the lifetime of the remover.
"""

import asyncio
import functools
import os
from io import BytesIO
from pathlib import Path
from typing import Optional

import rembg
from loguru import logger
from PIL import Image

from shared.errors import BackgroundRemovalError

from .image_optimizer import ImageOptimizer


class RembgBackgroundRemover:
    """Background remover running a rembg model in-process."""

    name = "rembg"

    def __init__(
        self,
        image_loader: ImageOptimizer,
        model_name: str = "u2net",
        models_dir: Optional[str] = None,
    ):
        self.image_loader = image_loader
        self.model_name = model_name
        self.models_dir = Path(models_dir) if models_dir else None
        self.rembg_session = None
        self._session_lock = asyncio.Lock()

    def is_configured(self) -> bool:
        return True

    async def _ensure_session(self):
        async with self._session_lock:
            if self.rembg_session is not None:
                return self.rembg_session

            if self.models_dir:
                self.models_dir.mkdir(parents=True, exist_ok=True)
                # rembg reads its model cache location from the environment
                os.environ["U2NET_HOME"] = str(self.models_dir)
                model_file = self.models_dir / f"{self.model_name}.onnx"
                logger.info(
                    "Loading segmentation model",
                    model=self.model_name,
                    cached=model_file.exists(),
                    model_path=str(model_file),
                )

            loop = asyncio.get_running_loop()
            self.rembg_session = await loop.run_in_executor(None, rembg.new_session, self.model_name)
            logger.info("Segmentation model loaded", model=self.model_name)
            return self.rembg_session

    async def remove_background(self, image_url: str) -> bytes:
        """Remove the background of an image and return it as PNG bytes."""
        try:
            session = await self._ensure_session()
            data = await self.image_loader.read_bytes(image_url)

            loop = asyncio.get_running_loop()
            input_image = await loop.run_in_executor(None, Image.open, BytesIO(data))
            output_image = await loop.run_in_executor(
                None, functools.partial(rembg.remove, input_image, session=session)
            )

            buffer = BytesIO()
            await loop.run_in_executor(None, functools.partial(output_image.save, buffer, format="PNG"))
        except Exception as e:
            raise BackgroundRemovalError(f"Failed to segment image with rembg: {str(e)}") from e

        return buffer.getvalue()
