"""OCR Engine component for reading text out of image regions using PaddleOCR."""

import io
import logging
from dataclasses import dataclass
from typing import List, Optional

import fitz  # PyMuPDF
import numpy as np
from PIL import Image

from models.config import OcrConfig
from models.data_models import BoundingBox


logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"
RASTER_DPI = 200


class OCRError(Exception):
    """Exception raised when OCR processing fails."""
    pass


@dataclass(frozen=True)
class OCRLine:
    """A line of recognized text in image pixel space."""
    text: str
    box: BoundingBox
    confidence: float


class OCREngine:
    """Extracts text from image or single-page PDF payloads with PaddleOCR."""

    def __init__(self, config: Optional[OcrConfig] = None):
        """
        Initialize the engine. PaddleOCR itself is loaded on first use.

        Args:
            config: OCR settings; GPU is only used when available
        """
        self.config = config or OcrConfig()
        self._use_gpu = self.config.use_gpu and self.is_gpu_available()
        self._ocr = None
        self._initialized = False

    def _initialize_ocr(self) -> None:
        """Lazy initialization of PaddleOCR."""
        if self._initialized:
            return

        try:
            from paddleocr import PaddleOCR

            self._ocr = PaddleOCR(
                use_angle_cls=True,
                lang=self.config.lang,
                use_gpu=self._use_gpu,
                show_log=False,
            )
            self._initialized = True

        except ImportError:
            raise OCRError("PaddleOCR is not installed. Install with: pip install 'paddleocr<3'")
        except Exception as e:
            raise OCRError(f"Failed to initialize PaddleOCR: {str(e)}")

    def is_gpu_available(self) -> bool:
        """
        Check if GPU is available for processing.

        Returns:
            True if GPU is available
        """
        try:
            import paddle
            return paddle.device.is_compiled_with_cuda() and paddle.device.cuda.device_count() > 0
        except ImportError:
            return False
        except Exception:
            return False

    def extract_text(self, payloads: List[bytes]) -> Optional[str]:
        """
        Read text from the first payload that yields any.

        Payloads are tried in order. Image payloads are decoded directly,
        PDF payloads are rasterised from their first page.

        Args:
            payloads: Image bytes and/or single-page PDF bytes

        Returns:
            Recognized text joined line by line, or None when nothing was read

        Raises:
            OCRError: If PaddleOCR cannot be loaded
        """
        self._initialize_ocr()

        for payload in payloads:
            if not payload:
                continue

            image = self._payload_to_image(payload)
            if image is None:
                continue

            try:
                result = self._ocr.ocr(image, cls=True)
            except Exception as e:
                logger.warning(f"OCR extraction failed: {str(e)}")
                continue

            lines = self._parse_ocr_result(result)
            text = "\n".join(line.text for line in lines if line.confidence >= self.config.min_confidence)
            if text.strip():
                return text

        return None

    def _payload_to_image(self, payload: bytes) -> Optional[np.ndarray]:
        if payload.startswith(PDF_MAGIC):
            payload = self._rasterise_pdf(payload)
            if payload is None:
                return None
        return self._bytes_to_image(payload)

    def _rasterise_pdf(self, pdf_bytes: bytes) -> Optional[bytes]:
        """Render the first page of a PDF payload to PNG bytes."""
        try:
            with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
                if doc.page_count == 0:
                    return None
                pixmap = doc[0].get_pixmap(dpi=RASTER_DPI)
                return pixmap.tobytes("png")
        except Exception as e:
            logger.warning(f"Failed to rasterise PDF payload: {str(e)}")
            return None

    def _bytes_to_image(self, image_data: bytes) -> Optional[np.ndarray]:
        """
        Convert image bytes to numpy array.

        Args:
            image_data: Image data as bytes

        Returns:
            Numpy array or None if conversion fails
        """
        try:
            image = Image.open(io.BytesIO(image_data))

            if image.mode != "RGB":
                image = image.convert("RGB")

            return np.array(image)

        except Exception as e:
            logger.warning(f"Failed to convert image: {str(e)}")
            return None

    def _parse_ocr_result(self, result: List) -> List[OCRLine]:
        """
        Parse PaddleOCR result into OCRLine objects in reading order.

        Args:
            result: Raw PaddleOCR result

        Returns:
            List of OCRLine objects
        """
        lines: List[OCRLine] = []

        if not result or not result[0]:
            return lines

        for line in result[0]:
            try:
                # line format: [[[x1,y1], [x2,y2], [x3,y3], [x4,y4]], (text, confidence)]
                if len(line) < 2:
                    continue

                points, text_info = line[0], line[1]
                if not points or not text_info:
                    continue

                text = text_info[0] if isinstance(text_info, (list, tuple)) else str(text_info)
                confidence = float(text_info[1]) if isinstance(text_info, (list, tuple)) and len(text_info) > 1 else 0.0

                if text.strip():
                    lines.append(OCRLine(
                        text=text.strip(),
                        box=self._polygon_to_bbox(points),
                        confidence=confidence,
                    ))

            except Exception as e:
                logger.debug(f"Failed to parse OCR line: {str(e)}")
                continue

        return self._sort_by_reading_order(lines)

    def _polygon_to_bbox(self, points: List[List[float]]) -> BoundingBox:
        if not points or len(points) < 4:
            return BoundingBox(0, 0, 0, 0)

        xs = [p[0] for p in points]
        ys = [p[1] for p in points]
        return BoundingBox.from_corners(min(xs), min(ys), max(xs), max(ys))

    def _sort_by_reading_order(self, lines: List[OCRLine]) -> List[OCRLine]:
        tolerance = 10.0  # pixels

        def get_sort_key(line: OCRLine):
            return (round(line.box.y / tolerance) * tolerance, line.box.x)

        return sorted(lines, key=get_sort_key)
