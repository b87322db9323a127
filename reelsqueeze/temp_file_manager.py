"""
Scratch file registry
Encoder outputs live in temp files until their bytes are read back; anything still
registered when the process exits (or is interrupted) is removed by cleanup()
"""

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import List, Optional, Set

logger = logging.getLogger(__name__)


class TempFileManager:
    """Process-wide registry of scratch files owned by encoding sessions"""
    _temp_files: Set[Path] = set()
    _lock = threading.Lock()

    @classmethod
    def create(cls, suffix: str = '', prefix: str = 'reelsqueeze_', directory: Optional[str] = None) -> Path:
        """Create an empty scratch file and register it"""
        fd, name = tempfile.mkstemp(suffix=suffix, prefix=prefix, dir=directory)
        os.close(fd)
        path = Path(name)
        with cls._lock:
            cls._temp_files.add(path)
        logger.debug(f"Created scratch file {path}")
        return path

    @classmethod
    def unregister(cls, file_path) -> None:
        with cls._lock:
            cls._temp_files.discard(Path(file_path))

    @classmethod
    def release(cls, file_path) -> None:
        """Delete one scratch file; it is forgotten even when deletion fails"""
        path = Path(file_path)
        try:
            path.unlink()
            logger.debug(f"Released scratch file {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to release scratch file {path}: {e}")
        finally:
            cls.unregister(path)

    @classmethod
    def cleanup(cls) -> int:
        """Release every registered file; returns how many were pending"""
        with cls._lock:
            pending = list(cls._temp_files)
        for file_path in pending:
            cls.release(file_path)
        if pending:
            logger.info(f"Cleaned up {len(pending)} scratch file(s)")
        return len(pending)

    @classmethod
    def pending(cls) -> List[Path]:
        with cls._lock:
            return sorted(cls._temp_files)
