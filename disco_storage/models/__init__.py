from disco_storage.models.chunk import Chunk
from disco_storage.models.chunk import FileModel
from disco_storage.models.chunk import FilePart


__all__ = ["Chunk", "FileModel", "FilePart"]
