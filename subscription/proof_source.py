"""Proof-of-payment image sources"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union


class ProofOfPaymentSource(ABC):
    """Yields the raw bytes of a user-supplied proof-of-payment image"""

    @abstractmethod
    async def read_bytes(self) -> bytes:
        pass


class BytesProofSource(ProofOfPaymentSource):
    """Image bytes already held in memory (camera capture, picker result)"""

    def __init__(self, data: bytes):
        self._data = data

    async def read_bytes(self) -> bytes:
        return self._data


class FileProofSource(ProofOfPaymentSource):
    """Image stored on disk"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def read_bytes(self) -> bytes:
        return await asyncio.get_event_loop().run_in_executor(None, self.path.read_bytes)
