"""Path-addressed document store the chat engine reads and writes through."""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath


class DocumentStore(ABC):
    """Base class for the storage backend holding chat files.

    Paths are ``/``-separated strings relative to the store root, e.g.
    ``"Chats/3f1c.md"``. Every method may suspend the caller; timeouts and
    cancellation are left to the implementation.
    """

    @abstractmethod
    async def read(self, path: str) -> str:
        """Return the text of the document at ``path``."""
        ...

    @abstractmethod
    async def modify(self, path: str, text: str) -> None:
        """Replace the text of an existing document."""
        ...

    @abstractmethod
    async def create(self, path: str, text: str) -> None:
        """Create a new document; fails if ``path`` already exists."""
        ...

    @abstractmethod
    async def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    async def list(self, directory: str) -> list[str]:
        """Return the store paths of the files directly inside ``directory``."""
        ...

    @abstractmethod
    async def create_folder(self, path: str) -> None:
        ...


class FileSystemStore(DocumentStore):
    """Store backed by a directory on the local filesystem."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Store path escapes the store root: {path}")
        return self.root.joinpath(*relative.parts)

    async def read(self, path: str) -> str:
        return await asyncio.to_thread(self.resolve(path).read_text, encoding="utf-8")

    async def modify(self, path: str, text: str) -> None:
        target = self.resolve(path)
        if not target.is_file():
            raise FileNotFoundError(f"No such document: {path}")
        await asyncio.to_thread(target.write_text, text, encoding="utf-8")

    async def create(self, path: str, text: str) -> None:
        await asyncio.to_thread(self._create, self.resolve(path), text)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self.resolve(path).exists)

    async def list(self, directory: str) -> list[str]:
        base = self.resolve(directory)
        names = await asyncio.to_thread(lambda: sorted(p.name for p in base.iterdir() if p.is_file()))
        prefix = directory.rstrip("/")
        return [f"{prefix}/{name}" if prefix else name for name in names]

    async def create_folder(self, path: str) -> None:
        await asyncio.to_thread(self.resolve(path).mkdir, parents=True, exist_ok=True)

    @staticmethod
    def _create(target: Path, text: str) -> None:
        # "x" mode refuses to clobber a file that appeared since exists() was checked.
        with target.open("x", encoding="utf-8") as f:
            f.write(text)
