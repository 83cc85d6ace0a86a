"""
Document Loader Module

Loads the source documents of a book from one directory:
- Markdown (.md) and plain text (.txt)
- PDF (.pdf)
- Word documents (.docx)

Only files whose extension is in the configured set are read, and the
directory is not walked recursively.
"""
import logging
import zipfile
from pathlib import Path
from typing import Dict, Any, Iterable, List

import chardet
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError
from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError

from .data_models import Document
from .errors import LoadError

logger = logging.getLogger(__name__)

# Raised by the parsers for corrupt or undecodable files.
_READ_ERRORS = (OSError, PdfReadError, PackageNotFoundError, zipfile.BadZipFile, UnicodeDecodeError, LookupError)


class DocumentLoader:
    """
    Loads documents from a directory, filtering by extension.

    Supported formats:
    - Markdown (.md)
    - Plain text (.txt)
    - PDF (.pdf)
    - Word documents (.docx)
    """

    SUPPORTED_EXTENSIONS = {'.md', '.txt', '.pdf', '.docx'}

    def __init__(self, extensions: Iterable[str] = ('.md',)):
        """
        Initialize the loader.

        Args:
            extensions: File extensions to load (with or without leading dot)
        """
        normalized = set()
        for ext in extensions:
            ext = ext.lower()
            if not ext.startswith('.'):
                ext = '.' + ext
            if ext not in self.SUPPORTED_EXTENSIONS:
                raise ValueError(
                    f"Unsupported file type: {ext}. Supported: {sorted(self.SUPPORTED_EXTENSIONS)}"
                )
            normalized.add(ext)
        self.extensions = frozenset(normalized)

    @staticmethod
    def _read_text(path: Path) -> Dict[str, Any]:
        with open(path, 'rb') as f:
            raw = f.read()
        detected = chardet.detect(raw)
        encoding = detected.get('encoding') or 'utf-8'
        text = raw.decode(encoding, errors='replace')
        return {'text': text, 'encoding': encoding}

    @classmethod
    def load_text(cls, path: Path) -> Document:
        """Load a Markdown or plain text file."""
        data = cls._read_text(path)
        text = data['text']
        return Document(
            content=text,
            source=path.name,
            file_type=path.suffix.lower().lstrip('.'),
            metadata={
                'file_path': str(path),
                'encoding': data['encoding'],
                'char_count': len(text),
                'line_count': text.count('\n') + 1,
            }
        )

    @staticmethod
    def load_pdf(path: Path) -> Document:
        """Load text from a PDF file."""
        reader = PdfReader(str(path))
        text_parts = []
        for page in reader.pages:
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)
        text = "\n".join(text_parts)

        return Document(
            content=text,
            source=path.name,
            file_type="pdf",
            metadata={
                'file_path': str(path),
                'page_count': len(reader.pages),
                'char_count': len(text),
            }
        )

    @staticmethod
    def load_docx(path: Path) -> Document:
        """Load text from a DOCX file."""
        doc = DocxDocument(str(path))
        paragraphs = [para.text for para in doc.paragraphs if para.text.strip()]
        text = "\n\n".join(paragraphs)

        return Document(
            content=text,
            source=path.name,
            file_type="docx",
            metadata={
                'file_path': str(path),
                'paragraph_count': len(paragraphs),
                'char_count': len(text),
            }
        )

    def load(self, file_path) -> Document:
        """
        Load a single document based on its file extension.

        Raises:
            LoadError: If the file is missing, unsupported or unreadable
        """
        path = Path(file_path)
        if not path.is_file():
            raise LoadError(f"File not found: {path}")

        loaders = {
            '.md': self.load_text,
            '.txt': self.load_text,
            '.pdf': self.load_pdf,
            '.docx': self.load_docx,
        }
        ext = path.suffix.lower()
        if ext not in loaders:
            raise LoadError(f"Unsupported file type: {ext}. Supported: {sorted(loaders)}")

        try:
            return loaders[ext](path)
        except _READ_ERRORS as e:
            raise LoadError(f"Could not read {path}: {e}") from e

    def list_files(self, directory_path) -> List[Path]:
        """Eligible files in the directory, sorted by name."""
        path = Path(directory_path)
        if not path.is_dir():
            raise LoadError(f"Source directory not found: {directory_path}")

        try:
            entries = sorted(path.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise LoadError(f"Could not list {directory_path}: {e}") from e

        return [p for p in entries if p.is_file() and p.suffix.lower() in self.extensions]

    def load_directory(self, directory_path) -> List[Document]:
        """
        Load all eligible documents from a directory (non-recursive).

        Args:
            directory_path: Path to the directory

        Returns:
            List of Document objects, in file name order

        Raises:
            LoadError: If the directory or any eligible file cannot be read
        """
        files = self.list_files(directory_path)
        documents = [self.load(file_path) for file_path in files]
        logger.info("Loaded %d documents from %s", len(documents), directory_path)
        return documents
