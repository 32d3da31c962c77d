from dissect.vhdx.c_vhdx import KnownRegion, Signature, UnknownSignature
from dissect.vhdx.exceptions import Error
from dissect.vhdx.header import FileTypeIdentifier, Header
from dissect.vhdx.log import DataDescriptor, DataSector, Log, LogEntry, LogSequence, ZeroDescriptor
from dissect.vhdx.region import RegionTable, RegionTableEntry
from dissect.vhdx.vhdx import VHDX

__all__ = [
    "DataDescriptor",
    "DataSector",
    "Error",
    "FileTypeIdentifier",
    "Header",
    "KnownRegion",
    "Log",
    "LogEntry",
    "LogSequence",
    "RegionTable",
    "RegionTableEntry",
    "Signature",
    "UnknownSignature",
    "VHDX",
    "ZeroDescriptor",
]
