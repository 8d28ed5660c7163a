"""
Data Ingestion Module
"""
from .input_loader import FileFormat, InputContractError, InputLoader, InputSnapshot

__all__ = [
    "FileFormat",
    "InputContractError",
    "InputLoader",
    "InputSnapshot",
]
