"""
Image transcoding - downsample and re-encode for transmission and storage.

Output is always a JPEG data URL whose long edge is at most MAX_DIMENSION.
"""

import base64
import io

from PIL import Image, ImageOps

from fieldreport.models import ValidatedImage, EncodedImage, TranscodeError
from fieldreport.config import MAX_DIMENSION, JPEG_QUALITY, OUTPUT_MEDIA_TYPE


def target_dimensions(width: int, height: int) -> tuple[int, int]:
    """
    Scales (width, height) so the long edge is MAX_DIMENSION.

    Images already within bounds keep their size.
    """
    if width <= MAX_DIMENSION and height <= MAX_DIMENSION:
        return width, height

    if width > height:
        return MAX_DIMENSION, max(1, round(height * MAX_DIMENSION / width))
    return max(1, round(width * MAX_DIMENSION / height)), MAX_DIMENSION


def transcode_image(image: ValidatedImage) -> EncodedImage:
    """
    Re-encodes a validated image as a size-bounded JPEG data URL.

    Pipeline:
    1. Decode → PIL Image
    2. Apply EXIF orientation
    3. Flatten alpha / palette → RGB
    4. Resize to target_dimensions (LANCZOS)
    5. Encode JPEG at JPEG_QUALITY

    Raises:
        TranscodeError: If decoding or encoding fails.
    """
    try:
        img = Image.open(io.BytesIO(image.raw.data))
        img = _to_rgb(ImageOps.exif_transpose(img))

        size = target_dimensions(*img.size)
        if size != img.size:
            img = img.resize(size, Image.Resampling.LANCZOS)

        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=round(JPEG_QUALITY * 100))
    except Exception as e:
        raise TranscodeError(f"Transcoding failed: {e}") from e

    payload = base64.b64encode(buf.getvalue()).decode("ascii")
    return EncodedImage(
        data_url=f"data:{OUTPUT_MEDIA_TYPE};base64,{payload}",
        width=img.width,
        height=img.height,
    )


def _to_rgb(img: Image.Image) -> Image.Image:
    """JPEG has no alpha; composite transparent pixels onto white."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return img.convert("RGB")
