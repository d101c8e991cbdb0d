from abc import abstractmethod
from PySide6.QtCore import QObject, Signal

class BaseFileHandler(QObject):
    """Base class for file handlers with common functionality"""
    modified_changed = Signal(bool)

    def __init__(self):
        super().__init__()
        self.app = None
        self.filepath = ""
        self.settings = None
        self._modified = False

    @property
    def modified(self):
        return self._modified

    @modified.setter
    def modified(self, value):
        if self._modified != value:
            self._modified = value
            self.modified_changed.emit(value)

    def supports_editing(self) -> bool:
        """Default to supporting editing"""
        return True

    def create_viewer(self):
        """Create and return a viewer instance - override in subclasses"""
        raise NotImplementedError()

    def read(self, data: bytes):
        """Read file data - override in subclasses"""
        raise NotImplementedError()

    def rebuild(self) -> bytes:
        """Rebuild file data - override in subclasses"""
        raise NotImplementedError()


class FileHandler(BaseFileHandler):
    @classmethod
    @abstractmethod
    def can_handle(cls, data: bytes) -> bool:
        """Return True if this handler can parse the given data."""
        pass

    @abstractmethod
    def read(self, data: bytes):
        """Parse the raw data into internal structures."""
        pass

    @abstractmethod
    def rebuild(self) -> bytes:
        """Rebuild the file and return its raw data."""
        pass
