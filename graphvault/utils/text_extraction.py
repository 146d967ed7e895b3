"""
Best-effort text extraction from uploaded files (DOCX, PDF, PPTX, images, plain text).

Every extractor logs and returns an empty string on failure instead of raising.
"""

import asyncio
import io
from typing import Optional

import docx
import fitz
from pptx import Presentation

from .completion_gateway import CompletionGateway
from .logging_config import get_logger

logger = get_logger(__name__)

DOCX_MIME = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'
PPTX_MIME = 'application/vnd.openxmlformats-officedocument.presentationml.presentation'
PDF_MIME = 'application/pdf'

TEXT_EXTENSIONS = ('txt', 'md', 'markdown', 'json', 'csv', 'xml', 'html', 'css', 'js', 'ts', 'py')
IMAGE_EXTENSIONS = ('png', 'jpg', 'jpeg', 'gif', 'webp')


def file_extension(filename: str) -> str:
    """Lower-cased extension without the dot, or an empty string."""
    if '.' not in filename:
        return ''
    return filename.rsplit('.', 1)[-1].lower()


def is_text_file(filename: str, mime_type: Optional[str]) -> bool:
    """Whether a file can be decoded as UTF-8 text directly."""
    return file_extension(filename) in TEXT_EXTENSIONS or (mime_type or '').startswith('text/')


def extract_text_from_docx(data: bytes) -> str:
    """Extract paragraph text from a Word document."""
    try:
        document = docx.Document(io.BytesIO(data))
        return '\n'.join(paragraph.text for paragraph in document.paragraphs if paragraph.text.strip())
    except Exception as e:
        logger.error(f'DOCX parse error: {e}')
        return ''


def extract_text_from_pdf(data: bytes) -> str:
    """Extract text from every page of a PDF."""
    logger.debug(f'PDF extraction started, {len(data)} bytes')
    try:
        with fitz.open(stream=data, filetype='pdf') as pdf:
            pages = [page.get_text('text') for page in pdf]
        text = '\n'.join(pages)
        logger.info(f'PDF extraction: {len(pages)} pages, {len(text)} chars')
        return text
    except Exception as e:
        logger.error(f'PDF parse error: {e}')
        return ''


def extract_text_from_pptx(data: bytes) -> str:
    """Extract slide text in slide order, one block per slide."""
    try:
        presentation = Presentation(io.BytesIO(data))
        slides = []
        for slide in presentation.slides:
            runs = []
            for shape in slide.shapes:
                if not shape.has_text_frame:
                    continue
                for paragraph in shape.text_frame.paragraphs:
                    runs.extend(run.text for run in paragraph.runs if run.text)
            if runs:
                slides.append(' '.join(runs))
        return '\n\n'.join(slides)
    except Exception as e:
        logger.error(f'PPTX parse error: {e}')
        return ''


async def extract_text(data: bytes, filename: str, mime_type: Optional[str], gateway: Optional[CompletionGateway] = None) -> str:
    """
    Extract text from an uploaded file, dispatching on extension and MIME type.

    Args:
        data: Raw file bytes
        filename: Original file name
        mime_type: Declared MIME type, may be empty
        gateway: CompletionGateway used for image OCR; images yield no text without it

    Returns:
        Extracted text, empty when nothing could be extracted
    """
    ext = file_extension(filename)
    mime_type = mime_type or ''

    if ext == 'docx' or mime_type == DOCX_MIME:
        return await asyncio.to_thread(extract_text_from_docx, data)
    if ext == 'pdf' or mime_type == PDF_MIME:
        return await asyncio.to_thread(extract_text_from_pdf, data)
    if ext == 'pptx' or mime_type == PPTX_MIME:
        return await asyncio.to_thread(extract_text_from_pptx, data)

    if ext in IMAGE_EXTENSIONS or mime_type.startswith('image/'):
        if gateway is None:
            logger.warning(f'No completion gateway available for OCR of {filename}')
            return ''
        return await gateway.extract_text_from_image(data, mime_type or f'image/{ext}')

    return data.decode('utf-8', errors='replace')
